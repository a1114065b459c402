"""
Chat Session - drives one conversation against the streaming chat endpoint

Submitting, editing and retrying all follow the same shape: adjust the live
view immediately, reconcile the store, then stream a fresh assistant message
into the DisplayStateManager.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Any, AsyncIterator, Callable, Optional, Protocol

import aiohttp

from chatstream.client.display_state import DisplayStateManager
from chatstream.client.errors import (
    ChatError,
    ChatRequestError,
    classify_error,
    format_error_for_display,
    from_stream_chunk,
)
from chatstream.client.payload import (
    convert_db_to_ui_messages,
    create_user_message,
    extract_images,
    first_text,
    log_payload,
    message_already_exists,
    prepare_payload,
)
from chatstream.models.chat import ReasoningLevel, StreamChunk
from chatstream.models.message import StoredMessage, UIMessage

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "llama3.2:latest"

_STORE_ERRORS = (aiohttp.ClientError, asyncio.TimeoutError)


class ChatTransport(Protocol):
    def stream(self, payload: dict[str, Any]) -> AsyncIterator[StreamChunk]: ...

    def cancel(self) -> None: ...


class MessageStore(Protocol):
    async def list_messages(self, chat_id: str) -> list[StoredMessage]: ...

    async def create_message(self, chat_id: str, message: UIMessage) -> None: ...

    async def delete_after(self, chat_id: str, message_id: str) -> int: ...


class ChatSession:
    """Client-side controller for one chat"""

    def __init__(
        self,
        chat_id: str,
        transport: ChatTransport,
        store: Optional[MessageStore] = None,
        default_model: str = DEFAULT_MODEL,
        enable_tools: bool = True,
        id_factory: Callable[[], str] = lambda: str(uuid.uuid4()),
        state: Optional[DisplayStateManager] = None,
    ):
        self.chat_id = chat_id
        self.transport = transport
        self.store = store
        self.default_model = default_model
        self.enable_tools = enable_tools
        self.id_factory = id_factory
        self.state = state or DisplayStateManager(chat_id)
        self._streaming = False
        self._aborted = False
        self._pending: set[asyncio.Task] = set()

    # ========== Hydration ==========

    async def load_history(self) -> bool:
        """Offer persisted history to the live view; True when it was adopted"""
        if self.store is None:
            return False
        records = await self.store.list_messages(self.chat_id)
        adopted = self.state.hydrate(convert_db_to_ui_messages(records))
        logger.debug("[ChatSession] hydration of %d messages for %s adopted=%s", len(records), self.chat_id, adopted)
        return adopted

    # ========== Turns ==========

    async def submit(
        self,
        text: str,
        model: Optional[str] = None,
        reasoning_level: Optional[ReasoningLevel] = None,
        system_prompt: Optional[str] = None,
        images: Optional[list[dict[str, str]]] = None,
    ) -> None:
        if not text.strip():
            return

        self._clear_errors()
        user_message_id = None
        if not message_already_exists(self.state.messages, text):
            user = create_user_message(text, images)
            user_message_id = user.id
            self.state.add_user_message(user)
            self._persist_in_background(user)

        await self._stream(
            model or self.default_model,
            self.state.messages,
            reasoning_level=reasoning_level,
            system_prompt=system_prompt,
            user_message_id=user_message_id,
        )

    async def edit_message(
        self,
        message_id: str,
        new_text: str,
        model: Optional[str] = None,
        reasoning_level: Optional[ReasoningLevel] = None,
        system_prompt: Optional[str] = None,
        images: Optional[list[dict[str, str]]] = None,
    ) -> None:
        """Replace a user message and regenerate everything after it"""
        self._clear_errors()
        if self.state.find_message_index(message_id) == -1:
            return

        removed = self.state.remove_messages_after(message_id)
        edited = create_user_message(new_text, images)
        self.state.add_user_message(edited)

        if self.store is not None:
            if removed:
                await self._delete_after(removed[0].id)
            try:
                await self.store.create_message(self.chat_id, edited)
                self.state.mark_as_persisted(edited.id)
            except _STORE_ERRORS as e:
                logger.warning("[ChatSession] failed to persist edited message: %s", e)

        await self._stream(
            model or self.default_model,
            self.state.messages,
            reasoning_level=reasoning_level,
            system_prompt=system_prompt,
            user_message_id=edited.id,
            images=images,
        )

    async def retry_message(
        self,
        message_id: str,
        model: Optional[str] = None,
        reasoning_level: Optional[ReasoningLevel] = None,
        system_prompt: Optional[str] = None,
    ) -> None:
        """Regenerate an assistant reply from the user message before it"""
        messages = self.state.messages
        index = self.state.find_message_index(message_id)
        if index == -1:
            return

        user_index = next((i for i in range(index - 1, -1, -1) if messages[i].role == "user"), -1)
        if user_index == -1:
            return
        user = messages[user_index]
        if not first_text(user):
            return

        # Retrying from an error placeholder discards the partial reply before it
        target = messages[index]
        if target.is_error:
            target = next((m for m in messages[user_index + 1 : index] if not m.is_error), None)

        self._clear_errors()
        self.state.replace_messages_from_index(user_index + 1, [])
        if self.store is not None and target is not None:
            await self._delete_after(target.id)

        await self._stream(
            model or self.default_model,
            self.state.messages,
            reasoning_level=reasoning_level,
            system_prompt=system_prompt,
            user_message_id=user.id,
            images=extract_images(user),
        )

    def abort(self) -> None:
        if not self._streaming:
            return
        self._aborted = True
        self.transport.cancel()
        self.state.set_status("ready")
        self.state.set_stream_phase("idle")

    @property
    def is_streaming(self) -> bool:
        return self._streaming

    async def wait_for_persistence(self) -> None:
        """Wait for fire-and-forget message writes to settle"""
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)

    # ========== Internals ==========

    def _clear_errors(self) -> None:
        self.state.remove_error_messages()
        if self.state.status == "error":
            self.state.set_status("ready")

    async def _stream(
        self,
        model: str,
        history: list[UIMessage],
        reasoning_level: Optional[ReasoningLevel] = None,
        system_prompt: Optional[str] = None,
        user_message_id: Optional[str] = None,
        images: Optional[list[dict[str, str]]] = None,
    ) -> None:
        state = self.state
        state.set_status("submitted")
        state.set_stream_phase("reasoning")

        assistant_id = self.id_factory()
        state.set_current_assistant_id(assistant_id)
        state.set_reasoning_start(None)

        payload = prepare_payload(
            model,
            history,
            self.chat_id,
            assistant_id,
            system_prompt=system_prompt,
            reasoning_level=reasoning_level,
            images=images,
            user_message_id=user_message_id,
            enable_tools=self.enable_tools,
        )
        log_payload(payload, "submit")

        self._streaming = True
        self._aborted = False
        try:
            async for chunk in self.transport.stream(payload):
                if self._aborted:
                    break
                if chunk.kind == "error":
                    self._show_error(from_stream_chunk(chunk.error))
                    continue
                if chunk.kind == "done":
                    state.set_status("ready")
                    state.set_stream_phase("idle")
                    state.finalize_reasoning()
                    continue
                state.update_streaming_message(chunk, assistant_id)
        except ChatRequestError as e:
            logger.warning("[ChatSession] chat request rejected (%s): %s", e.status, e.error.message)
            self._show_error(e.error)
        except Exception as e:
            if not self._aborted:
                logger.warning("[ChatSession] streaming failed: %s", e)
                self._show_error(classify_error(e))
        finally:
            self._streaming = False

        if state.status != "error":
            state.set_status("ready")
            state.set_stream_phase("idle")

    def _show_error(self, error: ChatError) -> None:
        self.state.add_error_message(format_error_for_display(error), error.retryable)

    def _persist_in_background(self, message: UIMessage) -> None:
        if self.store is None:
            return
        task = asyncio.ensure_future(self._persist(message))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _persist(self, message: UIMessage) -> None:
        try:
            await self.store.create_message(self.chat_id, message)
        except _STORE_ERRORS as e:
            logger.warning("[ChatSession] failed to persist user message: %s", e)
            return
        self.state.mark_as_persisted(message.id)
        logger.debug("[ChatSession] persisted user message %s", message.id)

    async def _delete_after(self, message_id: str) -> None:
        try:
            deleted = await self.store.delete_after(self.chat_id, message_id)
            logger.debug("[ChatSession] deleted %d stored messages from %s", deleted, message_id)
        except _STORE_ERRORS as e:
            logger.warning("[ChatSession] failed to delete messages after %s: %s", message_id, e)
