"""
Chatstream Backend - FastAPI Application Entry Point
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, Callable, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from chatstream.logging_setup import setup_logging
from chatstream.routers import chat, chats, config, messages, models
from chatstream.services.chat_store import ChatStore, InMemoryChatStore
from chatstream.services.config_manager import ConfigManager
from chatstream.services.llm_service import OllamaService
from chatstream.tools import ToolProvider, create_default_registry

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager - startup and shutdown logic"""
    cfg = app.state.config_manager.get_config()
    setup_logging(cfg.get("logging", {}).get("level", "INFO"))
    logger.info("Starting chatstream backend (inference backend: %s)", cfg.get("ollama", {}).get("host"))
    logger.info("Tools available: %s", ", ".join(s["name"] for s in app.state.tool_provider.list()) or "none")
    yield
    logger.info("Shutting down chatstream backend")


def create_app(
    config_manager: Optional[ConfigManager] = None,
    store: Optional[ChatStore] = None,
    tool_provider: Optional[ToolProvider] = None,
    backend_factory: Optional[Callable[[dict[str, Any]], Any]] = None,
) -> FastAPI:
    """Build the app; every collaborator can be swapped for tests"""
    app = FastAPI(
        title="Chatstream Backend",
        description="Streaming chat backend for a local inference server",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.state.config_manager = config_manager or ConfigManager.get_instance()
    app.state.store = store if store is not None else InMemoryChatStore()
    app.state.tool_provider = tool_provider or ToolProvider(create_default_registry())
    app.state.backend_factory = backend_factory or OllamaService

    # The web client is served from another local origin
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(chat.router, prefix="/api/ollama", tags=["chat"])
    app.include_router(models.router, prefix="/api/ollama", tags=["models"])
    app.include_router(messages.router, prefix="/api/messages", tags=["messages"])
    app.include_router(chats.router, prefix="/api/chats", tags=["chats"])
    app.include_router(config.router, prefix="/api/config", tags=["config"])

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {"status": "healthy", "service": "chatstream-backend"}

    return app


def run() -> None:
    import uvicorn

    server = ConfigManager.get_instance().get_config().get("server", {})
    uvicorn.run(create_app(), host=server.get("host", "127.0.0.1"), port=int(server.get("port", 8000)))


if __name__ == "__main__":
    run()
