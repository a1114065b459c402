"""Chat streaming data models"""

from __future__ import annotations

from typing import Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

ReasoningLevel = Literal["low", "medium", "high"]
ToolPhase = Literal["reasoning", "response"]
ChunkKind = Literal[
    "reasoning",
    "text",
    "tool_call",
    "tool_result",
    "stream_continue",
    "error",
    "done",
]


class ApiMessage(BaseModel):
    """A message as sent to the backend"""

    role: Literal["system", "user", "assistant", "tool"]
    content: str = ""
    images: list[str] | None = None  # base64 payloads, user messages only


class ChatRequest(BaseModel):
    """Request body for the streaming chat endpoint"""

    model_config = ConfigDict(populate_by_name=True, protected_namespaces=())

    model: str
    messages: list[ApiMessage]
    think: Union[bool, ReasoningLevel, None] = None
    reasoning_level: ReasoningLevel | None = Field(default=None, alias="reasoningLevel")
    chat_id: str | None = Field(default=None, alias="chatId")
    assistant_message_id: str | None = Field(default=None, alias="assistantMessageId")
    user_message_id: str | None = Field(default=None, alias="userMessageId")
    enable_tools: bool = Field(default=False, alias="enableTools")

    def resolve_think(self) -> Union[bool, ReasoningLevel]:
        """reasoningLevel wins over think; absent both, thinking is off"""
        if self.reasoning_level is not None:
            return self.reasoning_level
        if self.think is not None:
            return self.think
        return False

    @property
    def persists(self) -> bool:
        return bool(self.chat_id and self.assistant_message_id)


class ToolCallPayload(BaseModel):
    """A tool invocation requested by the model"""

    id: str
    name: str
    arguments: dict[str, Any] = {}
    phase: ToolPhase = "response"


class ToolResultPayload(BaseModel):
    """Outcome of a tool invocation"""

    id: str
    result: Any = None
    error: str | None = None
    phase: ToolPhase = "response"


class StreamChunk(BaseModel):
    """One line of the streaming wire protocol"""

    model_config = ConfigDict(populate_by_name=True)

    kind: ChunkKind
    text: str | None = None
    error: str | None = None
    tool_call: ToolCallPayload | None = Field(default=None, alias="toolCall")
    tool_result: ToolResultPayload | None = Field(default=None, alias="toolResult")

    def to_line(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True) + "\n"


class ErrorResponse(BaseModel):
    """JSON body for failures detected before streaming starts"""

    error: str
    code: str
