"""Models module - Pydantic data models"""

from .chat import (
    ApiMessage,
    ChatRequest,
    ErrorResponse,
    StreamChunk,
    ToolCallPayload,
    ToolResultPayload,
)
from .message import (
    ChatRecord,
    FilePart,
    ImagePart,
    MessagePart,
    ReasoningPart,
    StoredMessage,
    TextPart,
    ToolCallPart,
    ToolResultPart,
    UIMessage,
)

__all__ = [
    # Wire models
    "ApiMessage",
    "ChatRequest",
    "ErrorResponse",
    "StreamChunk",
    "ToolCallPayload",
    "ToolResultPayload",
    # Conversation models
    "ChatRecord",
    "FilePart",
    "ImagePart",
    "MessagePart",
    "ReasoningPart",
    "StoredMessage",
    "TextPart",
    "ToolCallPart",
    "ToolResultPart",
    "UIMessage",
]
