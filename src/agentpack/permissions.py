"""Permission evaluation for agent actions (network, storage, code)."""

from dataclasses import dataclass
from typing import Any
from urllib.parse import urlsplit

from agentpack.errors import PermissionDeniedError
from agentpack.manifest import mcp_servers

WILDCARD = "*"


@dataclass(frozen=True, slots=True)
class PermissionGrant:
    network: tuple[str, ...] = ()
    storage: bool = False
    code: bool = False
    mcp_hosts: tuple[str, ...] = ()

    @classmethod
    def from_manifest(
        cls,
        manifest: dict[str, Any],
        *,
        include_mcp_hosts: bool = True,
    ) -> "PermissionGrant | None":
        permissions = manifest.get("permissions")
        if not isinstance(permissions, dict):
            return None
        raw_network = permissions.get("network")
        network = (
            tuple(item.strip().lower() for item in raw_network if isinstance(item, str))
            if isinstance(raw_network, list)
            else ()
        )
        mcp_hosts: tuple[str, ...] = ()
        if include_mcp_hosts:
            hosts = [_hostname(server.url) for server in mcp_servers(manifest)]
            mcp_hosts = tuple(host for host in hosts if host)
        return cls(
            network=network,
            storage=permissions.get("storage") is True,
            code=permissions.get("code") is True,
            mcp_hosts=mcp_hosts,
        )


def _hostname(url: str) -> str | None:
    try:
        return urlsplit(url).hostname
    except ValueError:
        return None


def _network_allowed(grant: PermissionGrant, target: str) -> bool:
    hostname = _hostname(target)
    if not hostname:
        return False
    for entry in grant.network:
        if entry == WILDCARD or hostname == entry or hostname.endswith("." + entry):
            return True
    # Declared MCP servers widen the network grant to their exact hostnames.
    return hostname in grant.mcp_hosts


def check_permission(
    grant: PermissionGrant | None,
    action: str,
    target: str | None = None,
) -> bool:
    if grant is None:
        return False
    if action == "fetch":
        if not target:
            return False
        return _network_allowed(grant, target)
    if action == "storage":
        return grant.storage
    if action == "code":
        return grant.code
    return False


def require_permission(
    grant: PermissionGrant | None,
    action: str,
    target: str | None = None,
) -> None:
    if not check_permission(grant, action, target):
        raise PermissionDeniedError(action, target)
