"""
Stream Consumer - reads the NDJSON chunk stream from the chat endpoint
"""

from __future__ import annotations

import codecs
import json
import logging
from typing import Any, AsyncIterator, Optional

import aiohttp
from pydantic import ValidationError

from chatstream.client.errors import ChatRequestError, from_api_error
from chatstream.models.chat import StreamChunk

logger = logging.getLogger(__name__)

CHAT_PATH = "/api/ollama/chat"


def parse_stream_line(line: str) -> Optional[StreamChunk]:
    """Decode one line; blank or malformed lines yield None"""
    line = line.strip()
    if not line:
        return None
    try:
        return StreamChunk.model_validate_json(line)
    except ValidationError:
        logger.debug("[StreamConsumer] skipping unparsable line: %.100s", line)
        return None


async def iter_stream_chunks(byte_iter: AsyncIterator[bytes]) -> AsyncIterator[StreamChunk]:
    """Reassemble lines across arbitrary byte boundaries and yield parsed chunks"""
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    buffer = ""
    async for data in byte_iter:
        buffer += decoder.decode(data)
        while "\n" in buffer:
            line, buffer = buffer.split("\n", 1)
            chunk = parse_stream_line(line)
            if chunk is not None:
                yield chunk

    buffer += decoder.decode(b"", final=True)
    chunk = parse_stream_line(buffer)
    if chunk is not None:
        yield chunk


class StreamConsumer:
    """POSTs a chat payload and yields the chunks of the response"""

    def __init__(self, base_url: str = "http://127.0.0.1:8000", timeout: float = 300):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._response: Optional[aiohttp.ClientResponse] = None
        self._cancelled = False

    async def stream(self, payload: dict[str, Any]) -> AsyncIterator[StreamChunk]:
        self._cancelled = False
        timeout = aiohttp.ClientTimeout(total=self.timeout)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            async with session.post(f"{self.base_url}{CHAT_PATH}", json=payload) as response:
                if response.status >= 400:
                    text = await response.text()
                    try:
                        body = json.loads(text)
                    except json.JSONDecodeError:
                        body = {"error": text}
                    raise ChatRequestError(from_api_error(response.status, body, response.reason or ""), response.status)

                self._response = response
                try:
                    async for chunk in iter_stream_chunks(response.content.iter_any()):
                        if self._cancelled:
                            return
                        yield chunk
                except aiohttp.ClientError:
                    if self._cancelled:
                        return
                    raise
                finally:
                    self._response = None

    def cancel(self) -> None:
        """Abort the in-flight request; the reader stops quietly"""
        self._cancelled = True
        if self._response is not None:
            self._response.close()
