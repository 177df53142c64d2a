"""Custom exceptions for Turnkeeper."""


class TurnkeeperError(Exception):
    """Base exception for Turnkeeper."""

    pass


class ConfigurationError(TurnkeeperError):
    """Configuration-related errors."""

    pass


class LLMError(TurnkeeperError):
    """LLM-related errors."""

    pass


class LLMAPIError(LLMError):
    """LLM API errors (rate limit, auth, transport failure)."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class LLMStreamError(LLMError):
    """Error record received inside the response stream."""

    def __init__(self, message: str, error_type: str = ""):
        super().__init__(message)
        self.error_type = error_type


class ToolError(TurnkeeperError):
    """Tool execution errors."""

    pass


class ToolExecutionError(ToolError):
    """Tool execution failed."""

    def __init__(self, tool_name: str, message: str):
        super().__init__(f"Tool '{tool_name}' failed: {message}")
        self.tool_name = tool_name


class ToolNotFoundError(ToolError):
    """Tool not found in registry."""

    def __init__(self, tool_name: str):
        super().__init__(f"Tool not found: {tool_name}")
        self.tool_name = tool_name


class ToolBlockedError(ToolError):
    """Tool execution blocked by permission or workspace policy."""

    def __init__(self, tool_name: str, reason: str):
        super().__init__(f"Tool '{tool_name}' blocked: {reason}")
        self.tool_name = tool_name
        self.reason = reason


class TurnError(TurnkeeperError):
    """Turn-fatal conditions."""

    pass


class DepthExceededError(TurnError):
    """Tool-calling loop went deeper than allowed."""

    def __init__(self, depth: int, max_depth: int):
        super().__init__(f"Maximum recursion depth ({max_depth}) exceeded at depth {depth}")
        self.depth = depth
        self.max_depth = max_depth


class TurnAbortedError(TurnError):
    """Turn cancelled through the abort event."""

    def __init__(self, message: str = "Turn aborted by user"):
        super().__init__(message)


class HistoryError(TurnkeeperError):
    """Conversation history would become invalid for the remote service."""

    pass
