"""Routers module - FastAPI route handlers"""

from . import chat, chats, config, messages, models

__all__ = ["chat", "chats", "config", "messages", "models"]
