"""Error taxonomy shared by the server and the client."""

from __future__ import annotations

from enum import Enum


class ErrorCode(str, Enum):
    """Machine-readable error codes used on the wire and in the client"""

    BACKEND_UNAVAILABLE = "BACKEND_UNAVAILABLE"
    MODEL_NOT_FOUND = "MODEL_NOT_FOUND"
    STREAMING_INTERRUPTED = "STREAMING_INTERRUPTED"
    INFERENCE_FAILED = "INFERENCE_FAILED"
    TIMEOUT = "TIMEOUT"
    TOOL_EXECUTION_FAILED = "TOOL_EXECUTION_FAILED"
    UNKNOWN = "UNKNOWN"
    # Generic pre-stream failure reported in HTTP error bodies
    CHAT_ERROR = "CHAT_ERROR"
    PRELOAD_ERROR = "PRELOAD_ERROR"
    PULL_ERROR = "PULL_ERROR"


class ChatStreamError(Exception):
    """Base error for all chatstream operations."""

    code: ErrorCode = ErrorCode.UNKNOWN


class BackendError(ChatStreamError):
    """The inference backend answered with an error."""

    code = ErrorCode.INFERENCE_FAILED

    def __init__(self, message: str, status: int | None = None):
        self.status = status
        super().__init__(message)


class BackendUnavailableError(BackendError):
    """The inference backend refused or could not be reached."""

    code = ErrorCode.BACKEND_UNAVAILABLE

    def __init__(self, host: str, reason: str | None = None):
        self.host = host
        message = f"Cannot connect to the inference backend at {host}"
        if reason:
            message += f": {reason}"
        super().__init__(message)


class ModelNotFoundError(BackendError):
    """The requested model is not installed on the backend."""

    code = ErrorCode.MODEL_NOT_FOUND

    def __init__(self, model: str):
        self.model = model
        super().__init__(f"model '{model}' not found", status=404)


class BackendTimeoutError(BackendError):
    """The backend did not answer within the configured timeout."""

    code = ErrorCode.TIMEOUT

    def __init__(self, timeout: float):
        self.timeout = timeout
        super().__init__(f"Request timed out after {timeout}s")


class ToolError(ChatStreamError):
    """Error raised while resolving or running a tool."""

    code = ErrorCode.TOOL_EXECUTION_FAILED

    def __init__(self, tool_name: str, message: str):
        self.tool_name = tool_name
        super().__init__(message)


class ToolNotFoundError(ToolError):
    def __init__(self, tool_name: str):
        super().__init__(tool_name, f'Tool "{tool_name}" not found')


class ToolExecutionError(ToolError):
    def __init__(self, tool_name: str, reason: str):
        self.reason = reason
        super().__init__(tool_name, f'Tool "{tool_name}" execution failed: {reason}')


class ToolLoopLimitError(ChatStreamError):
    """The model kept requesting tools past the round cap."""

    code = ErrorCode.INFERENCE_FAILED

    def __init__(self, max_rounds: int):
        self.max_rounds = max_rounds
        super().__init__(f"Tool loop exceeded {max_rounds} rounds without a final answer")


class StoreError(ChatStreamError):
    """The conversation store rejected an operation."""
