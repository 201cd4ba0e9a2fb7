"""Model Context Protocol client and multi-server manager."""

from agentpack.mcp.client import ClientState, MCPClient
from agentpack.mcp.manager import MCPManager, ToolRef

__all__ = ["ClientState", "MCPClient", "MCPManager", "ToolRef"]
