"""Exception types for the conversational state engine."""


class ChatStateError(Exception):
    """Base exception for chatstate errors."""


class ConfigurationError(ChatStateError, ValueError):
    """Raised when an engine configuration value is invalid."""


class HistoryStorageError(ChatStateError):
    """Raised by the low-level history writers when a file cannot be written.

    Public history operations catch it, log it and degrade to "nothing saved".
    """

    def __init__(self, message: str, path: str = ""):
        super().__init__(message)
        self.path = path
