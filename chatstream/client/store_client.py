"""HTTP client for the persisted message endpoints"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, Optional

import aiohttp

from chatstream.models.message import StoredMessage, UIMessage

logger = logging.getLogger(__name__)


class StoreClient:
    """Reads and writes a chat's persisted messages through the API"""

    def __init__(self, base_url: str = "http://127.0.0.1:8000", timeout: float = 30):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    @asynccontextmanager
    async def _request(self, method: str, path: str, payload: Optional[dict[str, Any]] = None):
        timeout = aiohttp.ClientTimeout(total=self.timeout)
        async with aiohttp.ClientSession(timeout=timeout, raise_for_status=True) as session:
            async with session.request(method, f"{self.base_url}{path}", json=payload) as response:
                yield response

    async def list_messages(self, chat_id: str) -> list[StoredMessage]:
        async with self._request("GET", f"/api/messages/{chat_id}") as response:
            data = await response.json()
        return [StoredMessage.model_validate(m) for m in data.get("messages", [])]

    async def create_message(self, chat_id: str, message: UIMessage) -> None:
        payload = {
            "id": message.id,
            "chatId": chat_id,
            "role": message.role,
            "parts": [p.model_dump(mode="json", by_alias=True, exclude_none=True) for p in message.parts],
        }
        async with self._request("POST", "/api/messages", payload):
            pass

    async def delete_after(self, chat_id: str, message_id: str) -> int:
        """Delete ``message_id`` and everything after it; returns the count removed"""
        async with self._request("POST", "/api/messages/delete-after", {"chatId": chat_id, "messageId": message_id}) as response:
            data = await response.json()
        return int(data.get("deletedCount", 0))
