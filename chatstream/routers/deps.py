"""Request-scoped accessors for the services wired up in ``create_app``"""

from __future__ import annotations

from typing import Any, Callable

from fastapi import Request

from chatstream.services.chat_store import ChatStore
from chatstream.services.config_manager import ConfigManager
from chatstream.services.llm_service import OllamaService
from chatstream.tools.registry import ToolProvider


def get_config_manager(request: Request) -> ConfigManager:
    return request.app.state.config_manager


def get_config(request: Request) -> dict[str, Any]:
    return get_config_manager(request).get_config()


def get_store(request: Request) -> ChatStore:
    return request.app.state.store


def get_tool_provider(request: Request) -> ToolProvider:
    return request.app.state.tool_provider


def get_backend(request: Request) -> OllamaService:
    factory: Callable[[dict[str, Any]], OllamaService] = request.app.state.backend_factory
    return factory(get_config(request))
