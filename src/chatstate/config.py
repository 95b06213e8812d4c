"""Engine configuration loaded from the environment."""

import logging
import os
import sys
from dataclasses import dataclass, field
from typing import Optional

from dotenv import load_dotenv

from .errors import ConfigurationError

logger = logging.getLogger(__name__)

ENV_PREFIX = "CHATSTATE_"


def _env_int(name: str, default: int) -> int:
    """Read an integer environment variable, keeping the default if malformed."""
    raw = os.getenv(ENV_PREFIX + name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning(f"Ignoring invalid {ENV_PREFIX}{name}={raw!r}, using {default}")
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(ENV_PREFIX + name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning(f"Ignoring invalid {ENV_PREFIX}{name}={raw!r}, using {default}")
        return default


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(ENV_PREFIX + name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def load_env_file() -> bool:
    """Load a .env file from the usual locations.

    Tries the entry point directory, its parent, the current directory and
    this package's directory, in that order.

    Returns:
        True if a .env file was found and loaded.
    """
    main_dir = os.path.dirname(os.path.abspath(sys.argv[0]))
    env_locations = [
        os.path.join(main_dir, ".env"),
        os.path.join(os.path.dirname(main_dir), ".env"),
        os.path.join(os.getcwd(), ".env"),
        os.path.join(os.path.dirname(os.path.abspath(__file__)), ".env"),
    ]

    for env_path in env_locations:
        if os.path.exists(env_path):
            logger.info(f"Loading .env from {env_path}")
            return load_dotenv(env_path)

    logger.debug("No .env file found in expected locations")
    return False


@dataclass
class EngineConfig:
    """Settings consumed by the session registry, memory store and history writer."""

    data_dir: str = "data"
    sessions_dir: str = ""
    conversations_dir: str = ""
    session_timeout_seconds: float = 1800.0
    sweep_interval_seconds: float = 60.0
    memory_capacity: int = 1000
    retrieval_limit: int = 5
    archive_search_days: int = 7
    worker_threads: int = 4
    save_every_turn: bool = True
    log_level: str = field(default="INFO")

    def __post_init__(self) -> None:
        if not self.sessions_dir:
            self.sessions_dir = os.path.join(self.data_dir, "sessions")
        if not self.conversations_dir:
            self.conversations_dir = os.path.join(self.data_dir, "conversations")

        for name in (
            "session_timeout_seconds",
            "sweep_interval_seconds",
            "memory_capacity",
            "retrieval_limit",
            "archive_search_days",
            "worker_threads",
        ):
            value = getattr(self, name)
            if value <= 0:
                raise ConfigurationError(f"{name} must be positive, got {value}")

        self.log_level = self.log_level.upper()
        if not isinstance(logging.getLevelName(self.log_level), int):
            raise ConfigurationError(f"Unknown log level: {self.log_level}")

    @classmethod
    def from_env(cls, data_dir: Optional[str] = None) -> "EngineConfig":
        """Build a config from CHATSTATE_* environment variables."""
        base_dir = data_dir or os.getenv(ENV_PREFIX + "DATA_DIR", "data")
        return cls(
            data_dir=base_dir,
            sessions_dir=os.getenv(ENV_PREFIX + "SESSIONS_DIR", ""),
            conversations_dir=os.getenv(ENV_PREFIX + "CONVERSATIONS_DIR", ""),
            session_timeout_seconds=_env_float("SESSION_TIMEOUT", 1800.0),
            sweep_interval_seconds=_env_float("SWEEP_INTERVAL", 60.0),
            memory_capacity=_env_int("MEMORY_CAPACITY", 1000),
            retrieval_limit=_env_int("RETRIEVAL_LIMIT", 5),
            archive_search_days=_env_int("ARCHIVE_SEARCH_DAYS", 7),
            worker_threads=_env_int("WORKER_THREADS", 4),
            save_every_turn=_env_bool("SAVE_EVERY_TURN", True),
            log_level=os.getenv(ENV_PREFIX + "LOG_LEVEL", "INFO"),
        )
