"""Python client for the streaming chat endpoint"""

from .display_state import DisplayStateManager, ReasoningEvent, ToolCallView
from .errors import ChatError, ChatRequestError, classify_error, format_error_for_display
from .session import ChatSession
from .store_client import StoreClient
from .stream_consumer import StreamConsumer, iter_stream_chunks

__all__ = [
    "ChatError",
    "ChatRequestError",
    "ChatSession",
    "DisplayStateManager",
    "ReasoningEvent",
    "StoreClient",
    "StreamConsumer",
    "ToolCallView",
    "classify_error",
    "format_error_for_display",
    "iter_stream_chunks",
]
