"""
Process entry point that owns a conversation state engine.
"""

import logging
import sys
import threading
from typing import Optional

from . import __version__
from .config import EngineConfig, load_env_file
from .core.engine import ConversationStateEngine
from .errors import ConfigurationError

logger = logging.getLogger(__name__)


def build_engine(config: Optional[EngineConfig] = None) -> ConversationStateEngine:
    """Create an engine from the given config or from the environment."""
    config = config or EngineConfig.from_env()
    logger.info(
        f"Sessions in {config.sessions_dir}, archives in {config.conversations_dir}, "
        f"timeout {config.session_timeout_seconds}s, memory capacity {config.memory_capacity}"
    )
    return ConversationStateEngine(config)


def main(stop_event: Optional[threading.Event] = None) -> None:
    """Main entry point."""
    load_env_file()

    try:
        config = EngineConfig.from_env()
    except ConfigurationError as e:
        logging.basicConfig(level=logging.ERROR, stream=sys.stderr)
        logger.error(f"Invalid configuration: {e}")
        sys.exit(1)

    logging.basicConfig(
        level=getattr(logging, config.log_level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )
    logger.info(f"Starting chatstate engine v{__version__}")

    stop_event = stop_event or threading.Event()
    engine = build_engine(config)
    try:
        engine.start()
        while not stop_event.wait(config.sweep_interval_seconds):
            stats = engine.get_stats()
            logger.info(
                f"{stats.active_sessions} sessions, {stats.active_conversations} open transcripts"
            )
    except KeyboardInterrupt:
        logger.info("Engine stopped by user")
    finally:
        engine.shutdown()


if __name__ == "__main__":
    main()
