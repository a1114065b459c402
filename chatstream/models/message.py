"""Conversation message and store record models"""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

from .chat import ToolPhase

MessageRole = Literal["user", "assistant", "system"]


class _Part(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class TextPart(_Part):
    type: Literal["text"] = "text"
    text: str = ""


class ReasoningPart(_Part):
    type: Literal["reasoning"] = "reasoning"
    text: str = ""


class ImagePart(_Part):
    type: Literal["image"] = "image"
    data: str
    mime_type: str = Field(alias="mimeType")
    file_name: str | None = Field(default=None, alias="fileName")


class FilePart(_Part):
    type: Literal["file"] = "file"
    data: str = ""
    mime_type: str = Field(default="text/plain", alias="mimeType")
    file_name: str = Field(alias="fileName")
    content: str | None = None  # extracted text, when available
    file_type: str | None = Field(default=None, alias="fileType")


class ToolCallPart(_Part):
    type: Literal["tool-call"] = "tool-call"
    id: str
    name: str
    arguments: dict[str, Any] = {}
    phase: ToolPhase = "response"


class ToolResultPart(_Part):
    type: Literal["tool-result"] = "tool-result"
    id: str
    name: str | None = None
    result: Any = None
    error: str | None = None
    phase: ToolPhase = "response"


MessagePart = Annotated[
    Union[TextPart, ReasoningPart, ImagePart, FilePart, ToolCallPart, ToolResultPart],
    Field(discriminator="type"),
]


class UIMessage(BaseModel):
    """A conversational turn as rendered by the client"""

    id: str
    role: MessageRole
    parts: list[MessagePart] = []
    metadata: dict[str, Any] | None = None

    @property
    def is_error(self) -> bool:
        return bool(self.metadata and self.metadata.get("isError"))

    def text(self) -> str:
        """Concatenated answer text, ignoring reasoning and attachments"""
        return " ".join(p.text for p in self.parts if p.type == "text")


class StoredMessage(BaseModel):
    """A message record held by the conversation store"""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    chat_id: str = Field(alias="chatId")
    role: MessageRole
    parts: list[MessagePart] = []
    created_at: datetime = Field(alias="createdAt")
    index: int | None = None


class ChatRecord(BaseModel):
    """A chat (conversation) record held by the store"""

    model_config = ConfigDict(populate_by_name=True, protected_namespaces=())

    id: str
    title: str = "New Chat"
    model: str | None = None
    last_set_model: str | None = Field(default=None, alias="lastSetModel")
    created_at: datetime = Field(alias="createdAt")
    last_message_at: datetime | None = Field(default=None, alias="lastMessageAt")
    pinned: bool = False
    pinned_at: datetime | None = Field(default=None, alias="pinnedAt")


# ========== Store API requests ==========


class CreateMessageRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str | None = None
    chat_id: str = Field(alias="chatId")
    role: MessageRole
    parts: list[MessagePart]
    index: int | None = None


class DeleteAfterRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    chat_id: str = Field(alias="chatId")
    message_id: str = Field(alias="messageId")


class CreateChatRequest(BaseModel):
    model_config = ConfigDict(protected_namespaces=())

    id: str | None = None
    title: str | None = Field(default=None, min_length=1, max_length=200)
    model: str | None = Field(default=None, min_length=1, max_length=200)


class RenameChatRequest(BaseModel):
    title: str = Field(min_length=1, max_length=200)


class PinChatRequest(BaseModel):
    pinned: bool


class SetModelRequest(BaseModel):
    model_config = ConfigDict(protected_namespaces=())

    model: str = Field(min_length=1, max_length=200)
