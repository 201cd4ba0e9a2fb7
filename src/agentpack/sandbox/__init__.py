"""Isolated execution of packaged agents."""

from agentpack.sandbox.bridge import SandboxSession, SessionState
from agentpack.sandbox.gateway import NetworkGateway
from agentpack.sandbox.runtime import AgentContext, AgentRuntime, McpState

__all__ = [
    "AgentContext",
    "AgentRuntime",
    "McpState",
    "NetworkGateway",
    "SandboxSession",
    "SessionState",
]
