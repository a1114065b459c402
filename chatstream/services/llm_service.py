"""
LLM Service - Streaming client for a local Ollama-compatible inference server
"""

from __future__ import annotations

import asyncio
import json
import logging
import math
import re
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Optional, Protocol, Union

import aiohttp

from chatstream.errors import (
    BackendError,
    BackendTimeoutError,
    BackendUnavailableError,
    ModelNotFoundError,
)

logger = logging.getLogger(__name__)

DEFAULT_HOST = "http://127.0.0.1:11434"
DEFAULT_KEEP_ALIVE = "3m"
DEFAULT_TITLE = "New Chat"
TITLE_MAX_LEN = 60

TITLE_PROMPT = (
    "Generate a concise, single-line chat title (max 60 chars) for this first user message. "
    'No quotes, no punctuation at the end.\n\nMessage:\n"""{message}"""'
)

_THINKING_BLOCK = re.compile(r"\[thinking\][\s\S]*?\[/thinking\]", re.IGNORECASE)
_MATH_DELIMITER = re.compile(r"\$\$?|\\[()\[\]]")


@dataclass
class ChatEvent:
    """One decoded event of a backend chat stream"""

    thinking: Optional[str] = None
    content: Optional[str] = None
    tool_calls: list[dict[str, Any]] = field(default_factory=list)
    done: bool = False

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> "ChatEvent":
        message = data.get("message") or {}
        return cls(
            thinking=message.get("thinking") or None,
            content=message.get("content") or None,
            tool_calls=list(message.get("tool_calls") or []),
            done=bool(data.get("done")),
        )


class ChatBackend(Protocol):
    """What the tool loop needs from an inference backend"""

    def chat_stream(
        self,
        model: str,
        messages: list[dict[str, Any]],
        think: Union[bool, str] = False,
        tools: Optional[list[dict[str, Any]]] = None,
    ) -> AsyncIterator[ChatEvent]: ...


class OllamaService:
    """Service for talking to the inference backend over HTTP"""

    def __init__(self, config: dict[str, Any]):
        self.config = config
        cfg = config.get("ollama", {})
        self.host = cfg.get("host", DEFAULT_HOST).rstrip("/")
        self.timeout = cfg.get("timeout", 300)
        self.connect_timeout = cfg.get("connectTimeout", 5)
        self.pull_timeout = cfg.get("pullTimeout", 3600)

    # ========== HTTP Helpers ==========

    @asynccontextmanager
    async def _request(
        self,
        method: str,
        path: str,
        payload: dict[str, Any] | None = None,
        timeout_seconds: float | None = None,
        model: str | None = None,
    ):
        """Context manager for HTTP requests with automatic session cleanup"""
        url = f"{self.host}{path}"
        timeout = aiohttp.ClientTimeout(
            total=timeout_seconds or self.timeout,
            sock_connect=self.connect_timeout,
        )
        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.request(method, url, json=payload) as response:
                    if response.status != 200:
                        error_text = await response.text()
                        detail = _error_detail(error_text)
                        logger.warning("[OllamaService] %s %s -> %s: %s", method, path, response.status, detail)
                        if response.status == 404 and model and "not found" in detail.lower():
                            raise ModelNotFoundError(model)
                        raise BackendError(f"Backend error ({response.status}): {detail}", status=response.status)
                    yield response
        except aiohttp.ClientConnectorError as e:
            raise BackendUnavailableError(self.host, str(e)) from e
        except asyncio.TimeoutError as e:
            raise BackendTimeoutError(timeout.total) from e

    async def _request_json(self, method: str, path: str, payload: dict[str, Any] | None = None, **kwargs) -> dict[str, Any]:
        async with self._request(method, path, payload, **kwargs) as response:
            return await response.json(content_type=None)

    # ========== Payload Builders ==========

    def _build_chat_payload(
        self,
        model: str,
        messages: list[dict[str, Any]],
        think: Union[bool, str],
        tools: Optional[list[dict[str, Any]]],
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "model": model,
            "messages": messages,
            "stream": True,
            "think": think,
        }
        if tools:
            payload["tools"] = [
                {"type": "function", "function": schema} for schema in tools
            ]
        return payload

    # ========== Public API ==========

    async def chat_stream(
        self,
        model: str,
        messages: list[dict[str, Any]],
        think: Union[bool, str] = False,
        tools: Optional[list[dict[str, Any]]] = None,
    ) -> AsyncIterator[ChatEvent]:
        """Stream chat events for one backend round"""
        payload = self._build_chat_payload(model, messages, think, tools)
        logger.debug("[OllamaService] chat model=%s messages=%d tools=%d", model, len(messages), len(tools or []))

        async with self._request("POST", "/api/chat", payload, model=model) as response:
            async for line in response.content:
                line_text = line.decode("utf-8").strip()
                if not line_text:
                    continue
                try:
                    data = json.loads(line_text)
                except json.JSONDecodeError:
                    logger.debug("[OllamaService] skipping malformed line: %r", line_text[:200])
                    continue
                if "error" in data:
                    raise BackendError(str(data["error"]))
                yield ChatEvent.from_payload(data)

    async def ping(self) -> bool:
        """Return True when the backend answers its model listing"""
        try:
            data = await self._request_json("GET", "/api/tags", timeout_seconds=self.connect_timeout + 5)
        except BackendError as e:
            logger.info("[OllamaService] ping failed: %s", e)
            return False
        return isinstance(data.get("models"), list)

    async def list_models(self) -> list[dict[str, Any]]:
        data = await self._request_json("GET", "/api/tags")
        models = data.get("models") or []
        return [
            {
                "name": m.get("name"),
                "size": m.get("size"),
                "modifiedAt": m.get("modified_at"),
                "family": (m.get("details") or {}).get("family"),
                "parameterSize": (m.get("details") or {}).get("parameter_size"),
                "quantization": (m.get("details") or {}).get("quantization_level"),
            }
            for m in models
        ]

    async def show(self, model: str) -> dict[str, Any]:
        return await self._request_json("POST", "/api/show", {"model": model}, model=model)

    async def declared_capabilities(self, model: str) -> list[str]:
        data = await self.show(model)
        caps = data.get("capabilities")
        if not isinstance(caps, list):
            return []
        return [c for c in caps if isinstance(c, str)]

    async def supports_tools(self, model: str) -> bool:
        return "tools" in await self.declared_capabilities(model)

    async def chat_once(self, model: str, messages: list[dict[str, Any]]) -> str:
        """Non-streaming chat call; returns the reply content"""
        payload = {"model": model, "messages": messages, "stream": False}
        data = await self._request_json("POST", "/api/chat", payload, model=model)
        return str((data.get("message") or {}).get("content") or "")

    async def preload(self, model: str, keep_alive: str = DEFAULT_KEEP_ALIVE) -> None:
        """Load a model into memory with a one-token generation"""
        payload = {
            "model": model,
            "prompt": "",
            "options": {"num_predict": 1, "temperature": 0},
            "keep_alive": keep_alive,
            "stream": False,
        }
        await self._request_json("POST", "/api/generate", payload, model=model)
        logger.info("[OllamaService] preloaded %s (keep_alive=%s)", model, keep_alive)

    async def pull(self, model: str, insecure: bool = False) -> AsyncIterator[dict[str, Any]]:
        """Pull a model, yielding the backend's raw progress objects"""
        payload = {"model": model, "insecure": insecure, "stream": True}
        async with self._request("POST", "/api/pull", payload, timeout_seconds=self.pull_timeout) as response:
            async for line in response.content:
                line_text = line.decode("utf-8").strip()
                if not line_text:
                    continue
                try:
                    data = json.loads(line_text)
                except json.JSONDecodeError:
                    logger.debug("[OllamaService] skipping malformed pull line: %r", line_text[:200])
                    continue
                if "error" in data:
                    raise BackendError(str(data["error"]))
                yield data


def _error_detail(error_text: str) -> str:
    """Pull the message out of an ``{"error": ...}`` body when there is one"""
    try:
        data = json.loads(error_text)
    except json.JSONDecodeError:
        return error_text.strip()
    if isinstance(data, dict) and data.get("error"):
        return str(data["error"])
    return error_text.strip()


def clean_title(raw: str, max_len: int = TITLE_MAX_LEN) -> str:
    """Tidy a model-generated chat title: drop reasoning blocks and math delimiters, cap the length"""
    title = _THINKING_BLOCK.sub("", raw).strip()
    title = _MATH_DELIMITER.sub("", title).strip()
    if len(title) > max_len:
        title = title[: max_len - 1] + "…"
    return title or DEFAULT_TITLE


def pull_progress(data: dict[str, Any]) -> dict[str, Any]:
    """Shape one backend pull status object as a ``progress`` chunk"""
    total = data.get("total")
    completed = data.get("completed")
    chunk: dict[str, Any] = {"kind": "progress", "status": str(data.get("status") or "")}
    if isinstance(total, (int, float)) and not isinstance(total, bool):
        chunk["total"] = total
    if isinstance(completed, (int, float)) and not isinstance(completed, bool):
        chunk["completed"] = completed
    if "total" in chunk and "completed" in chunk and total > 0:
        chunk["percent"] = max(0, min(100, math.floor(completed / total * 100 + 0.5)))
    if data.get("digest"):
        chunk["digest"] = str(data["digest"])
    return chunk
