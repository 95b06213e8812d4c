"""Shared pytest configuration and fixtures."""

import logging
import sys
from datetime import datetime
from pathlib import Path

import pytest

# Add the src directory to Python path so tests can import without installing
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root / "src"))

from chatstate.config import EngineConfig  # noqa: E402
from chatstate.models.history import ChatMessage  # noqa: E402
from chatstate.services.history import HistoryPersistence  # noqa: E402


@pytest.fixture(autouse=True)
def quiet_logging(caplog):
    """Capture chatstate logs at debug level so log calls are exercised."""
    caplog.set_level(logging.DEBUG, logger="chatstate")
    yield


@pytest.fixture
def config(tmp_path):
    """Engine config rooted in a temporary data directory."""
    return EngineConfig(data_dir=str(tmp_path / "data"))


@pytest.fixture
def history(tmp_path):
    return HistoryPersistence(
        sessions_dir=str(tmp_path / "sessions"),
        conversations_dir=str(tmp_path / "conversations"),
        archive_search_days=7,
    )


@pytest.fixture
def sample_messages():
    return [
        ChatMessage(role="user", content="Hello there", timestamp=datetime(2026, 10, 1, 9, 0, 0)),
        ChatMessage(
            role="assistant",
            content="你好！有什么可以帮你？",
            timestamp=datetime(2026, 10, 1, 9, 0, 5),
        ),
        ChatMessage(
            role="user",
            content="Remember my name is Ana",
            timestamp=datetime(2026, 10, 1, 9, 1, 0),
        ),
    ]
