"""MCP client over the Streamable HTTP transport (JSON-RPC 2.0 via POST)."""

from __future__ import annotations

import json
import logging
from enum import Enum
from typing import TYPE_CHECKING, Any

import httpx

from agentpack import __version__
from agentpack.config import get_settings
from agentpack.errors import AgentPackError, ProtocolError, TransportError

if TYPE_CHECKING:
    from agentpack.sandbox.gateway import NetworkGateway

logger = logging.getLogger(__name__)

SESSION_HEADER = "Mcp-Session-Id"
CLIENT_INFO = {"name": "agentpack-mcp-client", "version": __version__}
# Upper bound on list pages followed via nextCursor during discovery.
MAX_DISCOVERY_PAGES = 50


class ClientState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    INITIALIZED = "initialized"
    DISCOVERING = "discovering"
    READY = "ready"


def error_result(message: str) -> dict[str, Any]:
    return {"content": [{"type": "text", "text": f"Error: {message}"}], "isError": True}


class MCPClient:
    def __init__(
        self,
        url: str,
        auth_token: str | None = None,
        *,
        gateway: NetworkGateway | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float | None = None,
    ) -> None:
        settings = get_settings()
        self.url = url
        self.auth_token = auth_token
        self.protocol_version = settings.mcp_protocol_version
        self.session_id: str | None = None
        self.server_info: dict[str, Any] | None = None
        self.state = ClientState.DISCONNECTED
        self._gateway = gateway
        self._transport = transport
        self._timeout = timeout if timeout is not None else settings.mcp_timeout_seconds
        self._tools: dict[str, dict[str, Any]] = {}
        self._resources: dict[str, dict[str, Any]] = {}
        self._request_id = 0

    async def connect(self) -> None:
        """Initialize the session, then discover tools and resources.

        Discovery failures are logged and leave the corresponding set empty;
        a failed ``initialize`` raises and leaves the client disconnected.
        """
        self.state = ClientState.CONNECTING
        try:
            response = await self.request(
                "initialize",
                {
                    "protocolVersion": self.protocol_version,
                    "capabilities": {"tools": {}, "resources": {}},
                    "clientInfo": dict(CLIENT_INFO),
                },
            )
            result = response.get("result")
            if not isinstance(result, dict):
                message, code = _error_details(response)
                raise ProtocolError(f"MCP initialize failed: {message}", code=code)
        except Exception:
            self.state = ClientState.DISCONNECTED
            raise

        server_info = result.get("serverInfo")
        self.server_info = server_info if isinstance(server_info, dict) else None
        self.state = ClientState.INITIALIZED

        await self.notify("notifications/initialized")

        self.state = ClientState.DISCOVERING
        await self._discover("tools/list", "tools", "name", self._tools)
        await self._discover("resources/list", "resources", "uri", self._resources)
        self.state = ClientState.READY
        logger.info(
            "Connected to MCP server %s (%d tools, %d resources)",
            self.url,
            len(self._tools),
            len(self._resources),
        )

    async def _discover(
        self,
        method: str,
        result_key: str,
        id_key: str,
        into: dict[str, dict[str, Any]],
    ) -> None:
        cursor: str | None = None
        try:
            for _ in range(MAX_DISCOVERY_PAGES):
                params: dict[str, Any] = {"cursor": cursor} if cursor else {}
                response = await self.request(method, params)
                result = response.get("result")
                if not isinstance(result, dict):
                    break
                items = result.get(result_key)
                if isinstance(items, list):
                    for item in items:
                        if isinstance(item, dict) and isinstance(item.get(id_key), str):
                            into[item[id_key]] = item
                next_cursor = result.get("nextCursor")
                if not isinstance(next_cursor, str) or not next_cursor:
                    break
                cursor = next_cursor
        except AgentPackError as exc:
            logger.warning("Failed to discover %s from %s: %s", result_key, self.url, exc)

    def get_tools(self) -> list[dict[str, Any]]:
        return list(self._tools.values())

    def get_resources(self) -> list[dict[str, Any]]:
        return list(self._resources.values())

    def get_server_info(self) -> dict[str, Any] | None:
        return self.server_info

    def has_tool(self, name: str) -> bool:
        return name in self._tools

    async def call_tool(self, name: str, arguments: dict[str, Any] | None = None) -> dict[str, Any]:
        """Invoke a tool; JSON-RPC errors come back as an ``isError`` result, never raised."""
        response = await self.request("tools/call", {"name": name, "arguments": arguments or {}})
        if "error" in response:
            message, _ = _error_details(response)
            return error_result(message)
        result = response.get("result")
        if not isinstance(result, dict):
            raise ProtocolError(f"MCP tools/call for {name} returned no result")
        return result

    async def read_resource(self, uri: str) -> dict[str, Any]:
        response = await self.request("resources/read", {"uri": uri})
        if "error" in response:
            message, code = _error_details(response)
            raise ProtocolError(message, code=code)
        result = response.get("result")
        if not isinstance(result, dict):
            raise ProtocolError(f"MCP resources/read for {uri} returned no result")
        return result

    def _headers(self) -> dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json, text/event-stream",
            "MCP-Protocol-Version": self.protocol_version,
        }
        if self.session_id:
            headers[SESSION_HEADER] = self.session_id
        if self.auth_token:
            headers["Authorization"] = f"Bearer {self.auth_token}"
        return headers

    async def _post(self, body: dict[str, Any]) -> httpx.Response:
        content = json.dumps(body)
        headers = self._headers()
        if self._gateway is not None:
            return await self._gateway.post(
                self.url, headers=headers, content=content, timeout=self._timeout
            )
        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            return await client.post(self.url, headers=headers, content=content)

    async def request(self, method: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        self._request_id += 1
        request_id = self._request_id
        body = {"jsonrpc": "2.0", "id": request_id, "method": method, "params": params or {}}
        try:
            response = await self._post(body)
        except httpx.HTTPError as exc:
            raise TransportError(f"MCP request failed: {exc}") from exc
        if not response.is_success:
            raise TransportError(
                f"MCP request failed: {response.status_code} {response.reason_phrase}",
                status_code=response.status_code,
            )

        session_id = response.headers.get(SESSION_HEADER)
        if session_id:
            self.session_id = session_id
        return _parse_body(response, request_id)

    async def notify(self, method: str, params: dict[str, Any] | None = None) -> None:
        """Send a notification; delivery is best-effort and nothing is awaited back."""
        body = {"jsonrpc": "2.0", "method": method, "params": params or {}}
        try:
            await self._post(body)
        except (httpx.HTTPError, AgentPackError) as exc:
            logger.debug("MCP notification %s to %s failed: %s", method, self.url, exc)

    async def disconnect(self) -> None:
        self.session_id = None
        self.server_info = None
        self._tools.clear()
        self._resources.clear()
        self.state = ClientState.DISCONNECTED


def _error_details(response: dict[str, Any]) -> tuple[str, int | None]:
    error = response.get("error")
    if isinstance(error, dict):
        code = error.get("code")
        return str(error.get("message", "unknown error")), code if isinstance(code, int) else None
    if error is not None:
        return str(error), None
    return "missing result", None


def _parse_body(response: httpx.Response, request_id: int) -> dict[str, Any]:
    content_type = response.headers.get("content-type", "")
    if content_type.startswith("text/event-stream"):
        return _parse_event_stream(response.text, request_id)
    try:
        payload = response.json()
    except ValueError as exc:
        raise ProtocolError("MCP response is not valid JSON") from exc
    if not isinstance(payload, dict):
        raise ProtocolError("MCP response is not a JSON object")
    return payload


def _parse_event_stream(text: str, request_id: int) -> dict[str, Any]:
    """Pick the JSON-RPC response for ``request_id`` out of an SSE body."""
    fallback: dict[str, Any] | None = None
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    for block in text.split("\n\n"):
        data = "\n".join(
            line[5:].lstrip() for line in block.splitlines() if line.startswith("data:")
        )
        if not data:
            continue
        try:
            message = json.loads(data)
        except json.JSONDecodeError:
            continue
        if not isinstance(message, dict):
            continue
        if message.get("id") == request_id:
            return message
        if fallback is None and ("result" in message or "error" in message):
            fallback = message
    if fallback is None:
        raise ProtocolError("MCP event stream carried no response")
    return fallback
