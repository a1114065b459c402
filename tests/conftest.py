"""Shared fixtures: scripted backend, recording store and app factory"""

from __future__ import annotations

from typing import Any, Optional

import pytest
from fastapi.testclient import TestClient

from chatstream.errors import BackendUnavailableError, ModelNotFoundError
from chatstream.main import create_app
from chatstream.services.chat_store import InMemoryChatStore
from chatstream.services.config_manager import ConfigManager
from chatstream.services.llm_service import ChatEvent
from chatstream.tools import ToolProvider, create_default_registry


def thinking(text: str) -> ChatEvent:
    return ChatEvent(thinking=text)


def content(text: str) -> ChatEvent:
    return ChatEvent(content=text)


def tool_call(name: str, **arguments: Any) -> ChatEvent:
    return ChatEvent(tool_calls=[{"function": {"name": name, "arguments": arguments}}])


class ScriptedBackend:
    """Replays one list of events per backend round"""

    def __init__(
        self,
        rounds: Optional[list[list[ChatEvent]]] = None,
        reachable: bool = True,
        tools_supported: bool = True,
        capabilities: Optional[list[str]] = None,
        fail_after: Optional[int] = None,
    ):
        self.rounds = list(rounds or [])
        self.reachable = reachable
        self.tools_supported = tools_supported
        self.capabilities = capabilities if capabilities is not None else ["completion"]
        self.fail_after = fail_after
        self.host = "http://backend.test"
        self.calls: list[dict[str, Any]] = []
        self.reply = ""
        self.pull_events: list[Any] = []
        self.preloaded: list[tuple[str, str]] = []

    async def chat_stream(self, model, messages, think=False, tools=None):
        self.calls.append({"model": model, "messages": list(messages), "think": think, "tools": tools})
        index = len(self.calls) - 1
        events = self.rounds[index] if index < len(self.rounds) else self.rounds[-1]
        for i, event in enumerate(events):
            if self.fail_after is not None and i == self.fail_after:
                raise RuntimeError("backend connection dropped")
            yield event

    async def ping(self) -> bool:
        return self.reachable

    async def supports_tools(self, model: str) -> bool:
        return self.tools_supported

    async def declared_capabilities(self, model: str) -> list[str]:
        if not self.reachable:
            raise BackendUnavailableError(self.host)
        return list(self.capabilities)

    async def list_models(self) -> list[dict[str, Any]]:
        if not self.reachable:
            raise BackendUnavailableError(self.host)
        return [{"name": "llama3.2:latest"}]

    async def chat_once(self, model: str, messages: list[dict[str, Any]]) -> str:
        self.calls.append({"model": model, "messages": list(messages)})
        if not self.reachable:
            raise BackendUnavailableError(self.host)
        return self.reply

    async def preload(self, model: str, keep_alive: str = "3m") -> None:
        if not self.reachable:
            raise BackendUnavailableError(self.host)
        if model == "missing":
            raise ModelNotFoundError(model)
        self.preloaded.append((model, keep_alive))

    async def pull(self, model: str, insecure: bool = False):
        """Yields ``pull_events``; an exception in the list is raised at its position"""
        if not self.reachable:
            raise BackendUnavailableError(self.host)
        for event in self.pull_events:
            if isinstance(event, Exception):
                raise event
            yield event


class FailingStore(InMemoryChatStore):
    """Store whose writes always fail"""

    async def upsert_message(self, *args, **kwargs):
        raise RuntimeError("disk full")

    async def update_message_parts(self, *args, **kwargs):
        raise RuntimeError("disk full")

    async def touch_chat(self, chat_id):
        raise RuntimeError("disk full")


@pytest.fixture
def config_manager(tmp_path) -> ConfigManager:
    return ConfigManager(config_dir=tmp_path / "config")


@pytest.fixture
def store() -> InMemoryChatStore:
    return InMemoryChatStore()


@pytest.fixture
def tool_provider() -> ToolProvider:
    return ToolProvider(create_default_registry())


@pytest.fixture
def make_client(config_manager, store, tool_provider):
    def _make(backend: ScriptedBackend) -> TestClient:
        app = create_app(
            config_manager=config_manager,
            store=store,
            tool_provider=tool_provider,
            backend_factory=lambda config: backend,
        )
        return TestClient(app)

    return _make
