"""Core components of the conversational state engine."""

from .engine import ConversationStateEngine, EngineStats, TurnRecord

__all__ = ["ConversationStateEngine", "EngineStats", "TurnRecord"]
