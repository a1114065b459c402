"""Client-side error classification and user-facing messages"""

from __future__ import annotations

import asyncio
import logging
import random
import re
from dataclasses import dataclass
from typing import Any, Optional, Union

import aiohttp

from chatstream.errors import ChatStreamError, ErrorCode

logger = logging.getLogger(__name__)

# Checked in order; the first match wins
_PATTERNS: list[tuple[ErrorCode, re.Pattern]] = [
    (ErrorCode.BACKEND_UNAVAILABLE, re.compile(r"econnrefused|connection refused|cannot connect|fetch failed|enotfound|ehostunreach|unreachable", re.I)),
    (ErrorCode.TIMEOUT, re.compile(r"timeout|timed out", re.I)),
    (ErrorCode.MODEL_NOT_FOUND, re.compile(r"model.*not found|model.*doesn't exist", re.I)),
    (ErrorCode.STREAMING_INTERRUPTED, re.compile(r"aborted|cancelled|interrupted|disconnected|payload is not completed", re.I)),
    (ErrorCode.BACKEND_UNAVAILABLE, re.compile(r"unavailable|\b502\b|\b503\b", re.I)),
    (ErrorCode.TOOL_EXECUTION_FAILED, re.compile(r'tool ".*" (execution failed|not found)', re.I)),
    (ErrorCode.INFERENCE_FAILED, re.compile(r"inference|generation.*failed|backend error|tool loop exceeded", re.I)),
]

_USER_MESSAGES = {
    ErrorCode.BACKEND_UNAVAILABLE: "Unable to connect to the model server. Please ensure it is running (`ollama serve`) and try again.",
    ErrorCode.MODEL_NOT_FOUND: "The selected model is not available. Please choose a different model or install it with `ollama pull <model-name>`.",
    ErrorCode.STREAMING_INTERRUPTED: "Response generation was interrupted. Please try again.",
    ErrorCode.INFERENCE_FAILED: "The model encountered an error while generating a response. Please try again or try with a different model.",
    ErrorCode.TIMEOUT: "Request timed out. The model may be taking too long to respond. Please try again.",
    ErrorCode.TOOL_EXECUTION_FAILED: "A tool used by the model failed. Please try again.",
    ErrorCode.UNKNOWN: "An unexpected error occurred. Please check that the model server is running and try again.",
}

_MARKERS = {
    ErrorCode.BACKEND_UNAVAILABLE: "🔌",
    ErrorCode.MODEL_NOT_FOUND: "🤖",
    ErrorCode.STREAMING_INTERRUPTED: "⏸️",
    ErrorCode.INFERENCE_FAILED: "⚠️",
    ErrorCode.TIMEOUT: "⏱️",
    ErrorCode.TOOL_EXECUTION_FAILED: "🛠️",
}

_RETRY_TEXT = {
    ErrorCode.BACKEND_UNAVAILABLE: "Retry Connection",
    ErrorCode.STREAMING_INTERRUPTED: "Retry Generation",
    ErrorCode.INFERENCE_FAILED: "Try Again",
    ErrorCode.TIMEOUT: "Retry (May Take Time)",
    ErrorCode.MODEL_NOT_FOUND: "Choose Different Model",
}

_BASE_DELAYS = {
    ErrorCode.BACKEND_UNAVAILABLE: 1.0,
    ErrorCode.STREAMING_INTERRUPTED: 0.5,
    ErrorCode.INFERENCE_FAILED: 1.0,
    ErrorCode.TIMEOUT: 2.0,
    ErrorCode.TOOL_EXECUTION_FAILED: 1.0,
    ErrorCode.MODEL_NOT_FOUND: 0.0,
    ErrorCode.UNKNOWN: 1.0,
}

MAX_RETRY_DELAY = 10.0


@dataclass(frozen=True)
class ChatError:
    """A classified failure, ready to show to the user"""

    type: ErrorCode
    message: str
    retryable: bool
    show_toast: bool
    user_message: str


class ChatRequestError(Exception):
    """The chat request failed before any chunk arrived"""

    def __init__(self, error: ChatError, status: Optional[int] = None):
        self.error = error
        self.status = status
        super().__init__(error.user_message)


def detect_error_type(error: Union[BaseException, str]) -> ErrorCode:
    if isinstance(error, ChatStreamError):
        return error.code
    if isinstance(error, aiohttp.ClientConnectorError):
        return ErrorCode.BACKEND_UNAVAILABLE
    if isinstance(error, asyncio.TimeoutError):
        return ErrorCode.TIMEOUT
    if isinstance(error, (asyncio.CancelledError, aiohttp.ServerDisconnectedError, aiohttp.ClientPayloadError)):
        return ErrorCode.STREAMING_INTERRUPTED

    message = str(error)
    for code, pattern in _PATTERNS:
        if pattern.search(message):
            return code
    return ErrorCode.UNKNOWN


def classify_error(error: Union[BaseException, str]) -> ChatError:
    code = detect_error_type(error)
    if code == ErrorCode.CHAT_ERROR:
        code = ErrorCode.UNKNOWN
    return ChatError(
        type=code,
        message=str(error) or type(error).__name__,
        retryable=code != ErrorCode.MODEL_NOT_FOUND,
        # Unreachable-backend is shown as an in-chat banner, not a toast
        show_toast=code == ErrorCode.MODEL_NOT_FOUND,
        user_message=_USER_MESSAGES[code],
    )


def from_api_error(status: int, body: Any, reason: str = "") -> ChatError:
    """Classify a non-streaming ``{error, code}`` response"""
    detail = ""
    code = ""
    if isinstance(body, dict):
        detail = str(body.get("error") or body.get("detail") or "")
        code = str(body.get("code") or "")

    if code == ErrorCode.BACKEND_UNAVAILABLE.value:
        return classify_error(f"Backend unavailable: {detail}")
    if code == ErrorCode.CHAT_ERROR.value:
        return classify_error(detail or "Chat API error")
    return classify_error(detail or f"HTTP {status}: {reason}".strip())


def from_stream_chunk(error_text: Optional[str]) -> ChatError:
    return classify_error(error_text or "Unknown streaming error occurred")


def format_error_for_display(error: ChatError) -> str:
    marker = _MARKERS.get(error.type, "❌")
    retry = "\n\nClick the retry button to try again." if error.retryable else ""
    return f"{marker} {error.user_message}{retry}"


def retry_button_text(code: ErrorCode) -> str:
    return _RETRY_TEXT.get(code, "Retry")


def retry_delay(code: ErrorCode, attempt: int) -> float:
    """Seconds to wait before retry ``attempt`` (1-based); 0 means do not retry"""
    base = _BASE_DELAYS.get(code, 1.0)
    if base == 0:
        return 0.0
    delay = base * 2 ** (attempt - 1)
    jitter = random.random() * 0.1 * delay
    return min(delay + jitter, MAX_RETRY_DELAY)
