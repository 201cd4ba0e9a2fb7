"""Registry of named MCP connections with cross-server tool dispatch."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import httpx

from agentpack.errors import ToolNotFoundError
from agentpack.mcp.client import MCPClient

if TYPE_CHECKING:
    from agentpack.sandbox.gateway import NetworkGateway

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ToolRef:
    server: str
    tool: dict[str, Any]


class MCPManager:
    """Owns the MCP connections of one session.

    Servers are kept in registration order; re-registering a name replaces
    its client without moving it.
    """

    def __init__(
        self,
        *,
        gateway: NetworkGateway | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float | None = None,
    ) -> None:
        self._gateway = gateway
        self._transport = transport
        self._timeout = timeout
        self._clients: dict[str, MCPClient] = {}

    def _build_client(self, url: str, auth_token: str | None) -> MCPClient:
        return MCPClient(
            url,
            auth_token,
            gateway=self._gateway,
            transport=self._transport,
            timeout=self._timeout,
        )

    async def add_server(self, name: str, url: str, auth_token: str | None = None) -> MCPClient:
        client = self._build_client(url, auth_token)
        await client.connect()
        previous = self._clients.get(name)
        self._clients[name] = client
        if previous is not None:
            logger.info("Replacing MCP server registration %s", name)
            await previous.disconnect()
        return client

    def get_client(self, name: str) -> MCPClient | None:
        return self._clients.get(name)

    def server_names(self) -> list[str]:
        return list(self._clients)

    def get_all_tools(self) -> list[ToolRef]:
        return [
            ToolRef(server=server, tool=tool)
            for server, client in self._clients.items()
            for tool in client.get_tools()
        ]

    async def call_tool(
        self,
        tool_name: str,
        arguments: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        for server, client in self._clients.items():
            if client.has_tool(tool_name):
                logger.debug("Dispatching tool %s to server %s", tool_name, server)
                return await client.call_tool(tool_name, arguments or {})
        raise ToolNotFoundError(tool_name)

    async def disconnect_all(self) -> None:
        clients = list(self._clients.items())
        self._clients.clear()
        for server, client in clients:
            try:
                await client.disconnect()
            except Exception:
                logger.warning("Failed to disconnect MCP server %s", server, exc_info=True)
