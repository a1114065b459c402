"""
Display State Manager - the client's authoritative view of one conversation

All mutation of the live conversation goes through this class. Streaming
chunks are applied as they arrive, persisted history is reconciled without
tearing down a message that is still being written, and every change is
announced to registered listeners so a UI can re-render.
"""

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Literal, Optional

from chatstream.models.chat import StreamChunk, ToolPhase
from chatstream.models.message import ReasoningPart, TextPart, UIMessage

logger = logging.getLogger(__name__)

ChatStatus = Literal["ready", "submitted", "streaming", "error"]
StreamPhase = Literal["idle", "reasoning", "answer"]
ToolCallState = Literal["input-available", "output-available", "output-error"]

# Forward moves allowed within a turn; "ready" and "error" are always reachable
# except from "error", which only returns to "ready".
_TRANSITIONS: dict[str, set[str]] = {
    "ready": {"ready", "submitted", "error"},
    "submitted": {"submitted", "streaming", "ready", "error"},
    "streaming": {"streaming", "ready", "error"},
    "error": {"error", "ready"},
}


@dataclass
class ToolCallView:
    """A tool call as tracked for display"""

    id: str
    name: str
    arguments: dict[str, Any]
    phase: ToolPhase
    state: ToolCallState = "input-available"
    result: Any = None
    error: Optional[str] = None


@dataclass
class ReasoningEvent:
    """One entry of a phase timeline, for inline rendering"""

    type: Literal["text", "tool_call"]
    timestamp: float
    content: Optional[str] = None
    tool_call: Optional[ToolCallView] = None


@dataclass
class DisplayState:
    messages: list[UIMessage] = field(default_factory=list)
    status: ChatStatus = "ready"
    stream_phase: StreamPhase = "idle"
    reasoning_durations: dict[str, int] = field(default_factory=dict)
    current_assistant_id: Optional[str] = None
    reasoning_start: Optional[float] = None
    reasoning_tool_calls: dict[str, ToolCallView] = field(default_factory=dict)
    response_tool_calls: dict[str, ToolCallView] = field(default_factory=dict)
    reasoning_timeline: list[ReasoningEvent] = field(default_factory=list)
    response_timeline: list[ReasoningEvent] = field(default_factory=list)


def apply_text_chunk(messages: list[UIMessage], kind: str, text: str, assistant_id: str) -> list[UIMessage]:
    """Return a new message list with ``text`` appended to the open assistant message"""
    updated = list(messages)
    last = updated[-1] if updated else None
    if last is None or last.role != "assistant" or last.id != assistant_id:
        updated.append(UIMessage(id=assistant_id, role="assistant", parts=[]))

    message = updated[-1]
    parts = list(message.parts)
    if parts and parts[-1].type == kind:
        parts[-1] = parts[-1].model_copy(update={"text": parts[-1].text + text})
    else:
        parts.append(ReasoningPart(text=text) if kind == "reasoning" else TextPart(text=text))
    updated[-1] = message.model_copy(update={"parts": parts})
    return updated


def reasoning_duration(start: float, now: float) -> int:
    return max(0, round(now - start))


class DisplayStateManager:
    """Owns the live conversation view for one chat"""

    def __init__(self, chat_id: str, clock: Callable[[], float] = time.monotonic):
        self.chat_id = chat_id
        self.clock = clock
        self._state = DisplayState()
        self._persisted: list[UIMessage] = []
        self._listeners: list[Callable[[], None]] = []

    # ========== Change notification ==========

    def on_state_change(self, listener: Callable[[], None]) -> Callable[[], None]:
        """Register a listener; returns a callable that unregisters it"""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        for listener in list(self._listeners):
            listener()

    # ========== Immediate updates ==========

    def add_user_message(self, message: UIMessage) -> None:
        self._state.messages = [*self._state.messages, message]
        self._notify()

    def remove_messages_after(self, message_id: str) -> list[UIMessage]:
        """Drop the message and everything after it; returns what was removed"""
        index = self.find_message_index(message_id)
        if index == -1:
            return []
        removed = self._state.messages[index:]
        self._state.messages = self._state.messages[:index]
        self._notify()
        return removed

    def replace_messages_from_index(self, index: int, new_messages: list[UIMessage]) -> None:
        self._state.messages = [*self._state.messages[:index], *new_messages]
        self._notify()

    def set_status(self, status: ChatStatus) -> None:
        current = self._state.status
        if status not in _TRANSITIONS[current]:
            logger.warning("[DisplayState] ignoring status change %s -> %s", current, status)
            return
        self._state.status = status
        self._notify()

    def set_stream_phase(self, phase: StreamPhase) -> None:
        self._state.stream_phase = phase
        self._notify()

    def set_current_assistant_id(self, assistant_id: Optional[str]) -> None:
        if assistant_id and assistant_id != self._state.current_assistant_id:
            # A new assistant message starts with empty tool tracking
            self._state.reasoning_tool_calls = {}
            self._state.response_tool_calls = {}
            self._state.reasoning_timeline = []
            self._state.response_timeline = []
        self._state.current_assistant_id = assistant_id

    def set_reasoning_start(self, start: Optional[float]) -> None:
        self._state.reasoning_start = start

    # ========== Streaming updates ==========

    def update_streaming_message(self, chunk: StreamChunk, assistant_id: str) -> None:
        state = self._state
        if state.status == "submitted":
            state.status = "streaming"

        if chunk.kind == "tool_call" and chunk.tool_call is not None:
            self._record_tool_call(chunk)
        elif chunk.kind == "tool_result" and chunk.tool_result is not None:
            self._record_tool_result(chunk)
        elif chunk.kind in ("reasoning", "text"):
            text = chunk.text or ""
            if chunk.kind == "reasoning" and text:
                state.reasoning_timeline.append(ReasoningEvent(type="text", timestamp=self.clock(), content=text))
            state.messages = apply_text_chunk(state.messages, chunk.kind, text, assistant_id)
            if chunk.kind == "text" and state.stream_phase != "answer":
                state.stream_phase = "answer"
            if chunk.kind == "reasoning" and state.reasoning_start is None:
                state.reasoning_start = self.clock()
        elif chunk.kind != "stream_continue":
            return

        self._notify()

    def _record_tool_call(self, chunk: StreamChunk) -> None:
        call = chunk.tool_call
        view = ToolCallView(id=call.id, name=call.name, arguments=dict(call.arguments), phase=call.phase)
        calls, timeline = self._tool_tracking(call.phase)
        calls[call.id] = view
        timeline.append(ReasoningEvent(type="tool_call", timestamp=self.clock(), tool_call=view))
        logger.debug("[DisplayState] tool call %s (%s) during %s", call.name, call.id, call.phase)

    def _record_tool_result(self, chunk: StreamChunk) -> None:
        result = chunk.tool_result
        calls, timeline = self._tool_tracking(result.phase)
        existing = calls.get(result.id)
        if existing is None:
            logger.warning("[DisplayState] no tool call %s for result; known: %s", result.id, list(calls))
            return
        updated = replace(
            existing,
            result=result.result,
            error=result.error,
            state="output-error" if result.error else "output-available",
        )
        calls[result.id] = updated
        for i, event in enumerate(timeline):
            if event.type == "tool_call" and event.tool_call is not None and event.tool_call.id == result.id:
                timeline[i] = replace(event, tool_call=updated)
                break

    def _tool_tracking(self, phase: ToolPhase) -> tuple[dict[str, ToolCallView], list[ReasoningEvent]]:
        if phase == "reasoning":
            return self._state.reasoning_tool_calls, self._state.reasoning_timeline
        return self._state.response_tool_calls, self._state.response_timeline

    def finalize_reasoning(self) -> None:
        """Close the open assistant message and record how long it reasoned"""
        state = self._state
        if state.current_assistant_id and state.reasoning_start is not None:
            seconds = reasoning_duration(state.reasoning_start, self.clock())
            state.reasoning_durations = {**state.reasoning_durations, state.current_assistant_id: seconds}
        state.current_assistant_id = None
        state.reasoning_start = None
        # Tool calls stay visible until the next assistant message starts

    # ========== Errors ==========

    def add_error_message(self, error: str, retryable: bool = True) -> UIMessage:
        self._drop_error_messages()
        message = UIMessage(
            id=str(uuid.uuid4()),
            role="assistant",
            parts=[TextPart(text=error)],
            metadata={"isError": True, "retryable": retryable},
        )
        self._state.messages = [*self._state.messages, message]
        self._state.status = "error"
        self._state.stream_phase = "idle"
        self._notify()
        return message

    def _drop_error_messages(self) -> bool:
        kept = [m for m in self._state.messages if not m.is_error]
        if len(kept) == len(self._state.messages):
            return False
        self._state.messages = kept
        return True

    def remove_error_messages(self) -> None:
        if self._drop_error_messages():
            self._notify()

    # ========== Hydration ==========

    def hydrate(self, db_messages: list[UIMessage]) -> bool:
        """Offer persisted history; returns True when it replaced the live view"""
        self._persisted = list(db_messages)
        if not self._should_use_db_state(db_messages):
            return False
        self._state.messages = list(db_messages)
        self._notify()
        return True

    def _should_use_db_state(self, db_messages: list[UIMessage]) -> bool:
        state = self._state
        # Never tear down a message that is still being written
        if state.status in ("submitted", "streaming"):
            return False

        live = len(state.messages)
        persisted = len(db_messages)
        if live == 0:
            return True
        if persisted > live:
            return True
        if self.has_error_messages() and persisted >= live - 1:
            return True
        # One message of slack for optimistic writes still in flight
        if state.status == "ready" and abs(persisted - live) > 1:
            return True
        return False

    def mark_as_persisted(self, message_id: str) -> None:
        message = self.get_message(message_id)
        if message is not None and all(m.id != message_id for m in self._persisted):
            self._persisted = [*self._persisted, message]

    # ========== Reset ==========

    def reset(self) -> None:
        self._state = DisplayState()
        self._persisted = []
        self._notify()

    # ========== Getters ==========

    @property
    def display_state(self) -> DisplayState:
        """Shallow snapshot of the current state"""
        return replace(self._state, messages=list(self._state.messages))

    @property
    def messages(self) -> list[UIMessage]:
        return list(self._state.messages)

    @property
    def status(self) -> ChatStatus:
        return self._state.status

    @property
    def stream_phase(self) -> StreamPhase:
        return self._state.stream_phase

    @property
    def reasoning_durations(self) -> dict[str, int]:
        return dict(self._state.reasoning_durations)

    @property
    def current_assistant_id(self) -> Optional[str]:
        return self._state.current_assistant_id

    @property
    def reasoning_start(self) -> Optional[float]:
        return self._state.reasoning_start

    @property
    def persisted_messages(self) -> list[UIMessage]:
        return list(self._persisted)

    def find_message_index(self, message_id: str) -> int:
        for i, message in enumerate(self._state.messages):
            if message.id == message_id:
                return i
        return -1

    def get_message(self, message_id: str) -> Optional[UIMessage]:
        index = self.find_message_index(message_id)
        return self._state.messages[index] if index != -1 else None

    def last_message(self) -> Optional[UIMessage]:
        return self._state.messages[-1] if self._state.messages else None

    def has_error_messages(self) -> bool:
        return any(m.is_error for m in self._state.messages)

    def reasoning_tool_calls(self) -> list[ToolCallView]:
        return list(self._state.reasoning_tool_calls.values())

    def response_tool_calls(self) -> list[ToolCallView]:
        return list(self._state.response_tool_calls.values())

    def all_tool_calls(self) -> list[ToolCallView]:
        return self.reasoning_tool_calls() + self.response_tool_calls()

    def clear_tool_calls(self) -> None:
        self._state.reasoning_tool_calls = {}
        self._state.response_tool_calls = {}
        self._notify()

    def reasoning_timeline(self) -> list[ReasoningEvent]:
        return list(self._state.reasoning_timeline)

    def response_timeline(self) -> list[ReasoningEvent]:
        return list(self._state.response_timeline)

    def debug_info(self) -> dict[str, Any]:
        return {
            "displayMessagesCount": len(self._state.messages),
            "persistedMessagesCount": len(self._persisted),
            "status": self._state.status,
            "streamPhase": self._state.stream_phase,
            "hasErrors": self.has_error_messages(),
            "chatId": self.chat_id,
            "reasoningTimelineLength": len(self._state.reasoning_timeline),
            "responseTimelineLength": len(self._state.response_timeline),
        }
