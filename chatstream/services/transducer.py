"""
Stream Transducer - turns one chat request into protocol lines

Runs the tool loop, serializes its chunks one JSON object per line, closes a
successful turn with exactly one ``done`` chunk and converts failures after
the first byte into an in-band ``error`` chunk. When the request names a chat
and an assistant message, the in-progress message is persisted on the side.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, AsyncIterator, Awaitable, Callable, Optional

from chatstream.errors import BackendUnavailableError
from chatstream.models.chat import ChatRequest, StreamChunk
from chatstream.models.message import MessagePart
from chatstream.services.chat_store import ChatStore
from chatstream.services.llm_service import OllamaService
from chatstream.services.tool_loop import DEFAULT_MAX_ROUNDS, ToolLoop
from chatstream.tools.registry import ToolCapabilityProvider

logger = logging.getLogger(__name__)

DEFAULT_PERSIST_INTERVAL = 0.25

DisconnectCheck = Callable[[], Awaitable[bool]]


class MessagePersister:
    """Best-effort, throttled writes of the assistant message being streamed.

    Throttled writes run as background tasks, one at a time; a tick that lands
    while a write is still in flight is skipped. Every failure is logged and
    swallowed.
    """

    def __init__(
        self,
        store: ChatStore,
        chat_id: str,
        message_id: str,
        interval: float = DEFAULT_PERSIST_INTERVAL,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.store = store
        self.chat_id = chat_id
        self.message_id = message_id
        self.interval = interval
        self.clock = clock
        self.writes = 0
        self._last_write: Optional[float] = None
        self._pending: Optional[asyncio.Task] = None

    async def start(self) -> None:
        try:
            await self.store.upsert_message(self.chat_id, self.message_id, "assistant", [])
        except Exception as e:
            logger.warning("[Transducer] placeholder upsert failed for %s: %s", self.message_id, e)
        self._last_write = self.clock()

    async def _write(self, parts: list[MessagePart]) -> None:
        try:
            await self.store.update_message_parts(self.message_id, parts)
            self.writes += 1
        except Exception as e:
            logger.warning("[Transducer] persisting %s failed: %s", self.message_id, e)

    def maybe_update(self, parts: list[MessagePart]) -> None:
        now = self.clock()
        if self._last_write is not None and now - self._last_write < self.interval:
            return
        if self._pending is not None and not self._pending.done():
            return
        self._last_write = now
        self._pending = asyncio.create_task(self._write(list(parts)))

    async def finalize(self, parts: list[MessagePart]) -> None:
        if self._pending is not None:
            await self._pending
            self._pending = None
        await self._write(list(parts))
        try:
            await self.store.touch_chat(self.chat_id)
        except Exception as e:
            logger.warning("[Transducer] touching chat %s failed: %s", self.chat_id, e)


class StreamTransducer:
    """Orchestrates one streaming chat turn"""

    def __init__(
        self,
        backend: OllamaService,
        store: Optional[ChatStore] = None,
        tool_provider: Optional[ToolCapabilityProvider] = None,
        persist_interval: float = DEFAULT_PERSIST_INTERVAL,
        max_tool_rounds: int = DEFAULT_MAX_ROUNDS,
    ):
        self.backend = backend
        self.store = store
        self.tool_provider = tool_provider
        self.persist_interval = persist_interval
        self.max_tool_rounds = max_tool_rounds

    async def preflight(self, request: ChatRequest) -> Optional[list[dict[str, Any]]]:
        """Checks that must pass before the response starts.

        Raises ``BackendUnavailableError`` when the backend is down. Returns
        the tool schemas to advertise, or None when tools stay off.
        """
        if not await self.backend.ping():
            raise BackendUnavailableError(self.backend.host)

        if not request.enable_tools or self.tool_provider is None:
            return None
        try:
            supported = await self.backend.supports_tools(request.model)
        except Exception as e:
            logger.info("[Transducer] capability probe failed for %s, tools disabled: %s", request.model, e)
            return None
        if not supported:
            logger.info("[Transducer] %s does not support tools", request.model)
            return None
        return self.tool_provider.list() or None

    async def stream(
        self,
        request: ChatRequest,
        tools: Optional[list[dict[str, Any]]] = None,
        is_disconnected: Optional[DisconnectCheck] = None,
    ) -> AsyncIterator[str]:
        """Yield protocol lines for the turn"""
        loop = ToolLoop(
            self.backend,
            self.tool_provider if tools else None,
            max_rounds=self.max_tool_rounds,
        )
        persister = None
        if self.store is not None and request.persists:
            persister = MessagePersister(
                self.store, request.chat_id, request.assistant_message_id, self.persist_interval
            )
            await persister.start()

        messages = [m.model_dump(exclude_none=True) for m in request.messages]
        chunks = loop.run(request.model, messages, think=request.resolve_think(), tools=tools)
        try:
            async for chunk in chunks:
                if is_disconnected is not None and await is_disconnected():
                    logger.info("[Transducer] client disconnected, stopping generation")
                    break
                yield chunk.to_line()
                if persister is not None:
                    persister.maybe_update(loop.parts)
            else:
                yield StreamChunk(kind="done").to_line()
        except Exception as e:
            logger.error("[Transducer] stream failed after start: %s", e)
            yield StreamChunk(kind="error", error=str(e) or type(e).__name__).to_line()
        finally:
            # Also reached on client disconnect, via GeneratorExit or CancelledError
            try:
                await chunks.aclose()
            finally:
                if persister is not None:
                    await asyncio.shield(persister.finalize(list(loop.parts)))

        if logger.isEnabledFor(logging.DEBUG):
            combined = (f"[thinking]\n{loop.reasoning}\n[/thinking]\n" if loop.reasoning else "") + loop.text
            logger.debug("[Transducer] final assistant message (%d rounds): %s", loop.rounds, combined)
