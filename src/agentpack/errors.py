"""agentpack exception hierarchy.

All agentpack-specific exceptions inherit from AgentPackError,
enabling structured error handling and cleaner catch clauses.
"""


class AgentPackError(Exception):
    """Base exception for all agentpack errors."""

    def __init__(self, message: str = "", *, retryable: bool = False) -> None:
        super().__init__(message)
        self.retryable = retryable


class FormatError(AgentPackError):
    """Package artifact is missing a required section or is malformed."""


class IntegrityError(AgentPackError):
    """Embedded manifest or code does not match its fingerprint."""


class PermissionDeniedError(AgentPackError):
    """Action falls outside the package's permission grant."""

    def __init__(self, action: str, target: str | None = None) -> None:
        message = f"Permission denied: {target}" if target else f"Permission denied: {action}"
        super().__init__(message)
        self.action = action
        self.target = target


class TransportError(AgentPackError):
    """HTTP transport failure talking to a remote server."""

    def __init__(
        self,
        message: str = "",
        *,
        status_code: int | None = None,
        retryable: bool = True,
    ) -> None:
        super().__init__(message, retryable=retryable)
        self.status_code = status_code


class ProtocolError(AgentPackError):
    """Remote server answered with a JSON-RPC error or an unreadable payload."""

    def __init__(self, message: str = "", *, code: int | None = None) -> None:
        super().__init__(message)
        self.code = code


class ToolNotFoundError(AgentPackError):
    """No registered MCP server exposes the requested tool."""

    def __init__(self, tool_name: str) -> None:
        super().__init__(f"Tool not found: {tool_name}")
        self.tool_name = tool_name


class SandboxError(AgentPackError):
    """Execution context failed to start, load agent code, or exited."""


class AgentRunError(AgentPackError):
    """Agent code reported an error for one run call."""

    def __init__(self, message: str = "", *, call_id: str | None = None) -> None:
        super().__init__(message)
        self.call_id = call_id


class ConfigError(AgentPackError):
    """Invalid or missing configuration."""
