"""Agent runtime inside the execution context.

Builds the capabilities handed to agent code (network gateway, storage,
MCP manager), loads the agent source into a fresh namespace and serves
``run`` calls.
"""

from __future__ import annotations

import asyncio
import copy
import inspect
import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import httpx

from agentpack.config import Settings, get_settings
from agentpack.errors import SandboxError
from agentpack.manifest import MCPServerConfig, mcp_servers
from agentpack.mcp.manager import MCPManager
from agentpack.permissions import PermissionGrant, check_permission, require_permission
from agentpack.sandbox.gateway import NetworkGateway

logger = logging.getLogger(__name__)

AGENT_CLASS_NAME = "Agent"


class McpState(str, Enum):
    DISABLED = "disabled"
    PENDING = "pending"
    READY = "ready"


class KeyValueStore:
    """Per-session key/value storage, available only with the storage grant."""

    def __init__(self, grant: PermissionGrant | None) -> None:
        self._grant = grant
        self._data: dict[str, Any] = {}

    def get(self, key: str, default: Any = None) -> Any:
        require_permission(self._grant, "storage")
        return self._data.get(key, default)

    def set(self, key: str, value: Any) -> None:
        require_permission(self._grant, "storage")
        self._data[key] = value

    def delete(self, key: str) -> None:
        require_permission(self._grant, "storage")
        self._data.pop(key, None)


@dataclass(slots=True)
class AgentContext:
    """Capabilities handed to ``Agent.__init__``.

    Only ``gateway`` and ``mcp`` enforce the network grant; modules the agent
    imports itself are not intercepted.
    """

    gateway: NetworkGateway
    storage: KeyValueStore
    grant: PermissionGrant | None = None
    memory: Any = None
    mcp: MCPManager | None = None
    extras: dict[str, Any] = field(default_factory=dict)

    def check(self, action: str, target: str | None = None) -> bool:
        return check_permission(self.grant, action, target)


def load_agent_class(code: str) -> type:
    namespace: dict[str, Any] = {"__name__": "agentpack_agent"}
    try:
        exec(compile(code, "<agent>", "exec"), namespace)
    except Exception as exc:
        raise SandboxError(f"agent code failed to load: {exc}") from exc
    agent_cls = namespace.get(AGENT_CLASS_NAME)
    if not isinstance(agent_cls, type):
        raise SandboxError("agent code does not define an Agent class")
    if not callable(getattr(agent_cls, "run", None)):
        raise SandboxError("Agent class has no run method")
    return agent_cls


class AgentRuntime:
    def __init__(
        self,
        manifest: dict[str, Any],
        code: str,
        memory: Any = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        settings: Settings | None = None,
    ) -> None:
        settings = settings or get_settings()
        self.manifest = manifest
        self.grant = PermissionGrant.from_manifest(
            manifest, include_mcp_hosts=bool(settings.mcp_host_widening)
        )
        # The gateway exists before any agent code is executed.
        self.gateway = NetworkGateway(
            self.grant, transport=transport, timeout=settings.fetch_timeout_seconds
        )
        self.storage = KeyValueStore(self.grant)
        self.memory = memory
        self._servers: list[MCPServerConfig] = mcp_servers(manifest)
        self.mcp: MCPManager | None = None
        self.mcp_state = McpState.DISABLED
        if self._servers:
            self.mcp = MCPManager(gateway=self.gateway, timeout=settings.mcp_timeout_seconds)
            self.mcp_state = McpState.PENDING
        self._mcp_lock = asyncio.Lock()
        self._agent_cls = load_agent_class(code)

    async def ensure_mcp(self) -> None:
        if self.mcp_state is not McpState.PENDING or self.mcp is None:
            return
        async with self._mcp_lock:
            if self.mcp_state is not McpState.PENDING:
                return
            for server in self._servers:
                try:
                    await self.mcp.add_server(server.name, server.url, server.token)
                except Exception:
                    logger.error(
                        "Failed to connect to MCP server %s", server.name, exc_info=True
                    )
            self.mcp_state = McpState.READY

    def _context(self) -> AgentContext:
        return AgentContext(
            gateway=self.gateway,
            storage=self.storage,
            grant=self.grant,
            memory=copy.deepcopy(self.memory),
            mcp=self.mcp,
        )

    async def run(self, input_value: Any) -> Any:
        await self.ensure_mcp()
        agent = self._agent_cls(self.manifest, self._context())
        result = agent.run(input_value)
        if inspect.isawaitable(result):
            result = await result
        return result

    async def handle(self, message: dict[str, Any]) -> dict[str, Any]:
        call_id = message.get("id")
        try:
            result = await self.run(message.get("input"))
        except Exception as exc:
            logger.info("Agent run %s failed: %s", call_id, exc)
            return {"id": call_id, "error": str(exc) or type(exc).__name__}
        try:
            json.dumps(result)
        except (TypeError, ValueError):
            return {"id": call_id, "error": "agent result is not JSON serializable"}
        return {"id": call_id, "result": result}

    async def close(self) -> None:
        if self.mcp is not None:
            await self.mcp.disconnect_all()
