"""Services module - Business logic layer"""

from .config_manager import ConfigManager
from .llm_service import ChatEvent, OllamaService
from .normalizer import MathDelimiterNormalizer, NormalizerState
from .chat_store import ChatStore, InMemoryChatStore
from .tool_loop import ToolLoop
from .transducer import MessagePersister, StreamTransducer

__all__ = [
    "ChatEvent",
    "ChatStore",
    "ConfigManager",
    "InMemoryChatStore",
    "MathDelimiterNormalizer",
    "MessagePersister",
    "NormalizerState",
    "OllamaService",
    "StreamTransducer",
    "ToolLoop",
]
