"""chatstate - conversational state engine: sessions, memories and durable history."""

__version__ = "1.0.0"

from .config import EngineConfig
from .core.engine import ConversationStateEngine

__all__ = ["ConversationStateEngine", "EngineConfig"]
