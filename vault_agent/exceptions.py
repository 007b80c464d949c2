"""Custom exceptions for Vault Agent.

Every exception carries a stable ``code`` which is what reaches the wire in
``error`` messages and error tool results.
"""


class VaultAgentError(Exception):
    """Base exception for Vault Agent."""

    code: str = "AGENT_ERROR"


class ConfigurationError(VaultAgentError):
    """Configuration-related errors."""

    code = "CONFIG_ERROR"


class UnauthorizedError(VaultAgentError):
    """Shared-secret check failed."""

    code = "UNAUTHORIZED"


class ProtocolError(VaultAgentError):
    """Inbound frame could not be parsed into a known message."""

    def __init__(self, message: str, code: str = "PROTOCOL_ERROR"):
        super().__init__(message)
        self.code = code


class OperationError(VaultAgentError):
    """Outbound operation did not produce a result."""

    code = "OPERATION_ERROR"


class OperationTimeoutError(OperationError):
    """No response arrived before the operation deadline."""

    code = "TIMEOUT"

    def __init__(self, method: str, timeout: float):
        super().__init__(f"RPC timeout: {method} (no response after {timeout:g}s)")
        self.method = method
        self.timeout = timeout


class ConnectionClosedError(OperationError):
    """The owning connection went away while the operation was outstanding."""

    code = "CONNECTION_CLOSED"

    def __init__(self, method: str = ""):
        message = f"Connection closed before {method} completed" if method else "Connection closed"
        super().__init__(message)
        self.method = method


class RemoteOperationError(OperationError):
    """The remote executor reported a failure."""

    def __init__(self, message: str, code: str = "REMOTE_ERROR"):
        super().__init__(message)
        self.code = code or "REMOTE_ERROR"


class BackendError(VaultAgentError):
    """Completion backend errors (HTTP status, stream error events, transport)."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code

    @property
    def code(self) -> str:  # type: ignore[override]
        if self.status_code:
            return f"API_ERROR_{self.status_code}"
        return "BACKEND_ERROR"


class RunError(VaultAgentError):
    """Agent run termination errors."""

    pass


class MaxIterationsExceededError(RunError):
    """The tool loop kept requesting tools past the iteration cap."""

    code = "MAX_ITERATIONS"

    def __init__(self, max_iterations: int):
        super().__init__(f"Reached maximum iterations ({max_iterations})")
        self.max_iterations = max_iterations


class StalledError(RunError):
    """The run produced no progress within its inactivity window."""

    code = "STALLED"

    def __init__(self, window: float):
        super().__init__(f"Agent made no progress for {window:g}s")
        self.window = window


class DuplicateRunError(RunError):
    """A prompt reused the id of a run that is still active."""

    code = "DUPLICATE_REQUEST"

    def __init__(self, run_id: str):
        super().__init__(f"Request already in progress: {run_id}")
        self.run_id = run_id


class ToolError(VaultAgentError):
    """Tool execution errors."""

    code = "TOOL_ERROR"


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
