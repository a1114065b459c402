"""
Tool Loop - drives backend rounds until the model stops requesting tools

Each round streams one backend invocation. Reasoning and answer fragments are
normalized and forwarded as they arrive; tool calls requested by the model are
executed one at a time and their results fed back for the next round.
"""

from __future__ import annotations

import json
import logging
import uuid
from typing import Any, AsyncIterator, Callable, Optional, Union

from chatstream.errors import ToolLoopLimitError
from chatstream.models.chat import StreamChunk, ToolCallPayload, ToolPhase, ToolResultPayload
from chatstream.models.message import (
    MessagePart,
    ReasoningPart,
    TextPart,
    ToolCallPart,
    ToolResultPart,
)
from chatstream.services.llm_service import ChatBackend
from chatstream.services.normalizer import MathDelimiterNormalizer
from chatstream.tools.registry import ToolCapabilityProvider

logger = logging.getLogger(__name__)

DEFAULT_MAX_ROUNDS = 25


def _new_call_id() -> str:
    return f"call_{uuid.uuid4().hex[:16]}"


def _parse_arguments(raw: Any) -> dict[str, Any]:
    if isinstance(raw, dict):
        return raw
    if isinstance(raw, str) and raw.strip():
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError:
            return {"input": raw}
        return parsed if isinstance(parsed, dict) else {"input": parsed}
    return {}


def _tool_content(result: Any, error: Optional[str]) -> str:
    if error is not None:
        return json.dumps({"error": error})
    if isinstance(result, str):
        return result
    return json.dumps(result, default=str)


class ToolLoop:
    """Run one generation turn, possibly spanning several backend rounds"""

    def __init__(
        self,
        backend: ChatBackend,
        tool_provider: Optional[ToolCapabilityProvider] = None,
        max_rounds: int = DEFAULT_MAX_ROUNDS,
        normalizer: Optional[MathDelimiterNormalizer] = None,
        id_factory: Callable[[], str] = _new_call_id,
    ):
        self.backend = backend
        self.tool_provider = tool_provider
        self.max_rounds = max_rounds
        self.normalizer = normalizer or MathDelimiterNormalizer()
        self.id_factory = id_factory

        self.rounds = 0
        self.phase: ToolPhase = "response"
        self.reasoning = ""
        self.text = ""
        self.parts: list[MessagePart] = []
        self._last_kind: Optional[str] = None

    # ========== Accumulation ==========

    def _append_text(self, kind: str, text: str) -> None:
        if kind == "reasoning":
            self.reasoning += text
        else:
            self.text += text

        part_cls = ReasoningPart if kind == "reasoning" else TextPart
        if self.parts and self.parts[-1].type == kind:
            last = self.parts[-1]
            self.parts[-1] = last.model_copy(update={"text": last.text + text})
        else:
            self.parts.append(part_cls(text=text))

    def _fragment(self, kind: str, raw: str) -> Optional[StreamChunk]:
        self._last_kind = kind
        normalized = self.normalizer.normalize(raw)
        if not normalized:
            return None
        self._append_text(kind, normalized)
        return StreamChunk(kind=kind, text=normalized)

    def _flush(self) -> Optional[StreamChunk]:
        carried = self.normalizer.flush()
        if not carried or self._last_kind is None:
            return None
        self._append_text(self._last_kind, carried)
        return StreamChunk(kind=self._last_kind, text=carried)

    # ========== Tool execution ==========

    async def _execute(self, name: str, args: dict[str, Any]) -> tuple[Any, Optional[str]]:
        if self.tool_provider is None:
            return None, f'Tool "{name}" is not available: tools are disabled for this request'
        try:
            return await self.tool_provider.execute(name, args), None
        except Exception as e:
            logger.warning("[ToolLoop] tool %s failed: %s", name, e)
            return None, str(e) or type(e).__name__

    # ========== Main loop ==========

    async def run(
        self,
        model: str,
        messages: list[dict[str, Any]],
        think: Union[bool, str] = False,
        tools: Optional[list[dict[str, Any]]] = None,
    ) -> AsyncIterator[StreamChunk]:
        """Yield protocol chunks for the whole turn; does not emit ``done``"""
        history = list(messages)

        while True:
            self.rounds += 1
            round_text = ""
            round_reasoning = ""
            raw_calls: list[dict[str, Any]] = []

            async for event in self.backend.chat_stream(model, history, think=think, tools=tools):
                if event.thinking:
                    self.phase = "reasoning"
                    round_reasoning += event.thinking
                    chunk = self._fragment("reasoning", event.thinking)
                    if chunk:
                        yield chunk
                if event.content:
                    self.phase = "response"
                    round_text += event.content
                    chunk = self._fragment("text", event.content)
                    if chunk:
                        yield chunk
                if event.tool_calls:
                    raw_calls.extend(event.tool_calls)

            chunk = self._flush()
            if chunk:
                yield chunk

            if not raw_calls:
                logger.debug("[ToolLoop] finished after %d round(s)", self.rounds)
                return

            if self.rounds >= self.max_rounds:
                raise ToolLoopLimitError(self.max_rounds)

            calls = []
            for raw in raw_calls:
                function = raw.get("function") or {}
                call = ToolCallPayload(
                    id=self.id_factory(),
                    name=str(function.get("name") or raw.get("name") or ""),
                    arguments=_parse_arguments(function.get("arguments", raw.get("arguments"))),
                    phase=self.phase,
                )
                calls.append(call)
                self.parts.append(ToolCallPart(**call.model_dump()))
                yield StreamChunk(kind="tool_call", tool_call=call)

            tool_messages = []
            for call in calls:
                logger.info("[ToolLoop] round %d executing %s", self.rounds, call.name)
                result, error = await self._execute(call.name, call.arguments)
                self.parts.append(
                    ToolResultPart(id=call.id, name=call.name, result=result, error=error, phase=call.phase)
                )
                yield StreamChunk(
                    kind="tool_result",
                    tool_result=ToolResultPayload(id=call.id, result=result, error=error, phase=call.phase),
                )
                tool_messages.append(
                    {"role": "tool", "content": _tool_content(result, error), "tool_name": call.name}
                )

            yield StreamChunk(kind="stream_continue")

            assistant: dict[str, Any] = {"role": "assistant", "content": round_text, "tool_calls": raw_calls}
            if round_reasoning:
                assistant["thinking"] = round_reasoning
            history = history + [assistant] + tool_messages
