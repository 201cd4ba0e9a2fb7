import json
from collections.abc import Callable
from typing import Any

import httpx
import pytest

from agentpack.config import get_settings


@pytest.fixture(autouse=True)
def test_env(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("AGENTPACK_ENV", "test")
    monkeypatch.setenv("AGENTPACK_LOG_LEVEL", "WARNING")
    monkeypatch.setenv("AGENTPACK_SANDBOX_READY_TIMEOUT_SECONDS", "30")
    monkeypatch.setenv("AGENTPACK_SANDBOX_RUN_TIMEOUT_SECONDS", "30")
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


class FakeMCPServer:
    """In-memory MCP server answering JSON-RPC over an httpx.MockTransport."""

    def __init__(
        self,
        tools: list[dict[str, Any]] | None = None,
        resources: list[dict[str, Any]] | None = None,
        *,
        session_id: str | None = "sess-1",
        name: str = "fake",
    ) -> None:
        self.tools = tools or []
        self.resources = resources or []
        self.session_id = session_id
        self.name = name
        self.requests: list[httpx.Request] = []
        self.bodies: list[dict[str, Any]] = []
        self.overrides: dict[str, Callable[[dict[str, Any]], httpx.Response]] = {}

    def methods(self) -> list[str]:
        return [body["method"] for body in self.bodies]

    def handler(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content.decode("utf-8"))
        self.requests.append(request)
        self.bodies.append(body)
        method = body["method"]
        if method in self.overrides:
            return self.overrides[method](body)
        if method == "notifications/initialized":
            return httpx.Response(202)
        headers = {}
        if method == "initialize" and self.session_id:
            headers["Mcp-Session-Id"] = self.session_id
        result: dict[str, Any]
        if method == "initialize":
            result = {
                "protocolVersion": "2025-06-18",
                "capabilities": {"tools": {}, "resources": {}},
                "serverInfo": {"name": self.name, "version": "1.0.0"},
            }
        elif method == "tools/list":
            result = {"tools": self.tools}
        elif method == "resources/list":
            result = {"resources": self.resources}
        elif method == "tools/call":
            params = body["params"]
            result = {
                "content": [
                    {
                        "type": "text",
                        "text": f"{self.name}:{params['name']}:{json.dumps(params['arguments'])}",
                    }
                ]
            }
        elif method == "resources/read":
            result = {"contents": [{"uri": body["params"]["uri"], "text": "hello"}]}
        else:
            return httpx.Response(
                200,
                json={
                    "jsonrpc": "2.0",
                    "id": body.get("id"),
                    "error": {"code": -32601, "message": "Method not found"},
                },
            )
        return httpx.Response(
            200,
            json={"jsonrpc": "2.0", "id": body["id"], "result": result},
            headers=headers,
        )

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


@pytest.fixture
def fake_server() -> FakeMCPServer:
    return FakeMCPServer(
        tools=[
            {"name": "echo", "description": "Echo input", "inputSchema": {"type": "object"}},
            {"name": "ping", "inputSchema": {"type": "object"}},
        ],
        resources=[{"uri": "file:///notes.txt", "name": "notes"}],
    )


@pytest.fixture
def make_server() -> type[FakeMCPServer]:
    return FakeMCPServer
