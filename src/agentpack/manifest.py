"""Manifest validation and MCP server declarations."""

import logging
import re
from typing import Any, Literal

from pydantic import BaseModel, ValidationError

logger = logging.getLogger(__name__)

ID_PATTERN = re.compile(r"^[a-z0-9-]+$")
VERSION_PATTERN = re.compile(r"^\d+\.\d+\.\d+")


class MCPAuth(BaseModel):
    type: Literal["none", "bearer", "oauth"] = "none"
    token: str | None = None


class MCPServerConfig(BaseModel):
    name: str
    url: str
    description: str | None = None
    auth: MCPAuth | None = None

    @property
    def token(self) -> str | None:
        if self.auth is None:
            return None
        return self.auth.token


def validate_manifest(manifest: Any) -> list[str]:
    """Return human-readable problems with a manifest; empty means valid."""
    if not isinstance(manifest, dict):
        return ["Manifest must be an object"]
    errors: list[str] = []
    if not manifest.get("id"):
        errors.append("Missing id")
    if not manifest.get("name"):
        errors.append("Missing name")
    if not manifest.get("version"):
        errors.append("Missing version")

    agent_id = manifest.get("id")
    if agent_id and not (isinstance(agent_id, str) and ID_PATTERN.match(agent_id)):
        errors.append("Invalid id format")
    version = manifest.get("version")
    if version and not (isinstance(version, str) and VERSION_PATTERN.match(version)):
        errors.append("Invalid version format")

    permissions = manifest.get("permissions")
    if permissions is not None:
        if not isinstance(permissions, dict):
            errors.append("permissions must be an object")
        else:
            network = permissions.get("network")
            if network is not None and not (
                isinstance(network, list) and all(isinstance(item, str) for item in network)
            ):
                errors.append("permissions.network must be a list of hostnames")

    for index, raw in enumerate(_raw_servers(manifest)):
        try:
            MCPServerConfig.model_validate(raw)
        except ValidationError:
            errors.append(f"Invalid mcp server declaration at index {index}")
    return errors


def _raw_servers(manifest: dict[str, Any]) -> list[Any]:
    mcp = manifest.get("mcp")
    if not isinstance(mcp, dict):
        return []
    servers = mcp.get("servers")
    return servers if isinstance(servers, list) else []


def mcp_servers(manifest: dict[str, Any]) -> list[MCPServerConfig]:
    """Parse declared MCP servers, skipping malformed entries."""
    servers: list[MCPServerConfig] = []
    for raw in _raw_servers(manifest):
        try:
            servers.append(MCPServerConfig.model_validate(raw))
        except ValidationError:
            logger.warning("Skipping malformed mcp server declaration: %r", raw)
    return servers
