"""
Chat Store - persisted conversation records

``ChatStore`` is the interface the rest of the server depends on.
``InMemoryChatStore`` keeps everything in process memory, which is enough for
a single local user; swap in a database-backed implementation for durability.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import datetime, timezone
from typing import Optional, Protocol, Sequence

from chatstream.errors import StoreError
from chatstream.models.message import ChatRecord, MessagePart, MessageRole, StoredMessage

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class ChatStore(Protocol):
    async def upsert_chat(self, chat_id: str, title: Optional[str] = None, model: Optional[str] = None) -> ChatRecord: ...

    async def get_chat(self, chat_id: str) -> Optional[ChatRecord]: ...

    async def list_chats(self) -> list[ChatRecord]: ...

    async def rename_chat(self, chat_id: str, title: str) -> ChatRecord: ...

    async def pin_chat(self, chat_id: str, pinned: bool) -> ChatRecord: ...

    async def set_chat_model(self, chat_id: str, model: str) -> ChatRecord: ...

    async def delete_chat(self, chat_id: str) -> None: ...

    async def touch_chat(self, chat_id: str) -> None: ...

    async def list_messages(self, chat_id: str) -> list[StoredMessage]: ...

    async def create_message(
        self,
        chat_id: str,
        role: MessageRole,
        parts: Sequence[MessagePart],
        message_id: Optional[str] = None,
        index: Optional[int] = None,
    ) -> StoredMessage: ...

    async def upsert_message(
        self, chat_id: str, message_id: str, role: MessageRole, parts: Sequence[MessagePart]
    ) -> StoredMessage: ...

    async def update_message_parts(self, message_id: str, parts: Sequence[MessagePart]) -> StoredMessage: ...

    async def delete_after_message(self, chat_id: str, message_id: str) -> int: ...

    async def delete_message(self, message_id: str) -> None: ...


class InMemoryChatStore:
    """Process-local store; messages ordered by (created_at, index)"""

    def __init__(self):
        self._chats: dict[str, ChatRecord] = {}
        self._messages: dict[str, StoredMessage] = {}
        self._lock = asyncio.Lock()
        self._sequence = 0

    def _next_index(self) -> int:
        self._sequence += 1
        return self._sequence

    def _require_chat(self, chat_id: str) -> ChatRecord:
        chat = self._chats.get(chat_id)
        if chat is None:
            raise StoreError(f"Chat {chat_id} not found")
        return chat

    def _ensure_chat(self, chat_id: str) -> ChatRecord:
        chat = self._chats.get(chat_id)
        if chat is None:
            chat = ChatRecord(id=chat_id, created_at=_now())
            self._chats[chat_id] = chat
        return chat

    @staticmethod
    def _sort_key(message: StoredMessage):
        return (message.created_at, message.index or 0)

    # ========== Chats ==========

    async def upsert_chat(self, chat_id: str, title: Optional[str] = None, model: Optional[str] = None) -> ChatRecord:
        async with self._lock:
            chat = self._ensure_chat(chat_id)
            update = {}
            if title is not None:
                update["title"] = title
            if model is not None:
                update["model"] = model
            if update:
                chat = chat.model_copy(update=update)
                self._chats[chat_id] = chat
            return chat

    async def get_chat(self, chat_id: str) -> Optional[ChatRecord]:
        return self._chats.get(chat_id)

    async def list_chats(self) -> list[ChatRecord]:
        def key(chat: ChatRecord):
            pinned_at = chat.pinned_at.timestamp() if chat.pinned_at else 0.0
            last = chat.last_message_at.timestamp() if chat.last_message_at else 0.0
            return (chat.pinned, pinned_at, last, chat.created_at.timestamp())

        return sorted(self._chats.values(), key=key, reverse=True)

    async def rename_chat(self, chat_id: str, title: str) -> ChatRecord:
        async with self._lock:
            chat = self._require_chat(chat_id).model_copy(update={"title": title})
            self._chats[chat_id] = chat
            return chat

    async def pin_chat(self, chat_id: str, pinned: bool) -> ChatRecord:
        async with self._lock:
            chat = self._require_chat(chat_id).model_copy(
                update={"pinned": pinned, "pinned_at": _now() if pinned else None}
            )
            self._chats[chat_id] = chat
            return chat

    async def set_chat_model(self, chat_id: str, model: str) -> ChatRecord:
        async with self._lock:
            chat = self._ensure_chat(chat_id).model_copy(update={"last_set_model": model})
            self._chats[chat_id] = chat
            return chat

    async def delete_chat(self, chat_id: str) -> None:
        async with self._lock:
            self._require_chat(chat_id)
            del self._chats[chat_id]
            for message_id in [m.id for m in self._messages.values() if m.chat_id == chat_id]:
                del self._messages[message_id]

    async def touch_chat(self, chat_id: str) -> None:
        async with self._lock:
            chat = self._ensure_chat(chat_id)
            self._chats[chat_id] = chat.model_copy(update={"last_message_at": _now()})

    # ========== Messages ==========

    async def list_messages(self, chat_id: str) -> list[StoredMessage]:
        messages = [m for m in self._messages.values() if m.chat_id == chat_id]
        return sorted(messages, key=self._sort_key)

    async def create_message(
        self,
        chat_id: str,
        role: MessageRole,
        parts: Sequence[MessagePart],
        message_id: Optional[str] = None,
        index: Optional[int] = None,
    ) -> StoredMessage:
        async with self._lock:
            message_id = message_id or str(uuid.uuid4())
            if message_id in self._messages:
                raise StoreError(f"Message {message_id} already exists")
            chat = self._ensure_chat(chat_id)
            message = StoredMessage(
                id=message_id,
                chat_id=chat_id,
                role=role,
                parts=list(parts),
                created_at=_now(),
                index=index if index is not None else self._next_index(),
            )
            self._messages[message_id] = message
            self._chats[chat_id] = chat.model_copy(update={"last_message_at": _now()})
            return message

    async def upsert_message(
        self, chat_id: str, message_id: str, role: MessageRole, parts: Sequence[MessagePart]
    ) -> StoredMessage:
        async with self._lock:
            self._ensure_chat(chat_id)
            existing = self._messages.get(message_id)
            if existing is not None:
                message = existing.model_copy(update={"parts": list(parts), "role": role})
            else:
                message = StoredMessage(
                    id=message_id,
                    chat_id=chat_id,
                    role=role,
                    parts=list(parts),
                    created_at=_now(),
                    index=self._next_index(),
                )
            self._messages[message_id] = message
            return message

    async def update_message_parts(self, message_id: str, parts: Sequence[MessagePart]) -> StoredMessage:
        async with self._lock:
            existing = self._messages.get(message_id)
            if existing is None:
                raise StoreError(f"Message {message_id} not found")
            message = existing.model_copy(update={"parts": list(parts)})
            self._messages[message_id] = message
            return message

    async def delete_after_message(self, chat_id: str, message_id: str) -> int:
        """Delete the message and every later message of the same chat"""
        async with self._lock:
            target = self._messages.get(message_id)
            if target is None or target.chat_id != chat_id:
                return 0
            cutoff = self._sort_key(target)
            doomed = [
                m.id
                for m in self._messages.values()
                if m.chat_id == chat_id and (m.id == message_id or self._sort_key(m) > cutoff)
            ]
            for doomed_id in doomed:
                del self._messages[doomed_id]
            logger.debug("Deleted %d message(s) from chat %s", len(doomed), chat_id)
            return len(doomed)

    async def delete_message(self, message_id: str) -> None:
        async with self._lock:
            if self._messages.pop(message_id, None) is None:
                raise StoreError(f"Message {message_id} not found")
