"""Durable transcript storage with a live and an archive layout.

Live layout::

    sessions/{session_id}_history.json

One file per session, always rewritten in full so it mirrors the transcript
at save time.

Archive layout::

    conversations/YYYY/MM/DD/{session_id}_{YYYYMMDD_HHMMSS}.json

A new snapshot file for every archive save; existing files are never
overwritten.

Both files hold a pretty-printed JSON array of ``{timestamp, role, content}``
records. Read failures are logged and treated as missing data; write failures
are logged and reported through the return value.
"""

import json
import logging
import os
import re
from datetime import date, datetime, timedelta
from typing import Dict, List, Optional, Sequence

from ..errors import HistoryStorageError
from ..models.history import ArchivedConversation, ChatMessage, HistoryStats, StorageLayout
from .locks import KeyedLocks

logger = logging.getLogger(__name__)

LIVE_SUFFIX = "_history.json"
ARCHIVE_STAMP_FORMAT = "%Y%m%d_%H%M%S"
ARCHIVE_NAME = re.compile(r"^(?P<session>.+)_(?P<stamp>\d{8}_\d{6})(?:_(?P<seq>\d+))?\.json$")


def serialize_messages(messages: Sequence[ChatMessage]) -> str:
    """Render messages in the on-disk format, dropping blank ones."""
    records = [m.to_record() for m in messages if not m.is_blank]
    return json.dumps(records, indent=2, ensure_ascii=False)


def parse_messages(text: str) -> List[ChatMessage]:
    """Parse the on-disk format.

    Raises:
        ValueError: If the text is not a JSON array of objects.
    """
    data = json.loads(text)
    if not isinstance(data, list):
        raise ValueError(f"expected a JSON array, got {type(data).__name__}")
    messages = []
    for record in data:
        if not isinstance(record, dict):
            raise ValueError(f"expected a JSON object, got {type(record).__name__}")
        messages.append(ChatMessage.from_record(record))
    return messages


class HistoryPersistence:
    """Buffers transcripts in memory and persists them to disk."""

    def __init__(
        self,
        sessions_dir: str = "data/sessions",
        conversations_dir: str = "data/conversations",
        archive_search_days: int = 7,
    ):
        self.sessions_dir = sessions_dir
        self.conversations_dir = conversations_dir
        self.archive_search_days = archive_search_days
        self._buffers: Dict[str, List[ChatMessage]] = {}
        self._buffer_locks = KeyedLocks()
        self._file_locks = KeyedLocks()
        self._initialize_directories()

    def _initialize_directories(self) -> None:
        for directory in (self.sessions_dir, self.conversations_dir):
            try:
                if not os.path.isdir(directory):
                    os.makedirs(directory, exist_ok=True)
                    logger.info(f"Created history directory {directory}")
            except OSError as e:
                logger.error(f"Failed to create history directory {directory}: {e}")

    # In-memory buffer

    def start_conversation(
        self, session_id: str, seed: Optional[Sequence[ChatMessage]] = None
    ) -> None:
        """Begin buffering a conversation, optionally with earlier messages."""
        with self._buffer_locks(session_id):
            self._buffers[session_id] = list(seed or [])
        logger.debug(f"Started conversation buffer for {session_id}")

    def add_message(self, session_id: str, message: ChatMessage) -> None:
        """Append a message to the in-memory buffer. No I/O."""
        with self._buffer_locks(session_id):
            buffer = self._buffers.get(session_id)
            if buffer is None:
                logger.debug(f"No buffer for {session_id}, starting one")
                buffer = self._buffers.setdefault(session_id, [])
            buffer.append(message)

    def has_buffer(self, session_id: str) -> bool:
        return session_id in self._buffers

    def buffered_messages(self, session_id: str) -> List[ChatMessage]:
        with self._buffer_locks(session_id):
            return list(self._buffers.get(session_id, []))

    # Saving

    def add_message_and_save(self, session_id: str, message: ChatMessage) -> bool:
        """Append one message straight to the live file (read-modify-write).

        Calls for the same session are serialized so writes never interleave.
        """
        with self._file_locks(session_id):
            history = self._load_live(session_id)
            history.append(message)
            return self._save_logged(session_id, history, StorageLayout.LIVE) is not None

    def save_history(
        self,
        session_id: str,
        messages: Sequence[ChatMessage],
        layout: StorageLayout = StorageLayout.LIVE,
    ) -> Optional[str]:
        """Write a full transcript to one layout.

        Returns:
            The written path, or None if the write failed.
        """
        with self._file_locks(session_id):
            return self._save_logged(session_id, messages, layout)

    def flush(self, session_id: str) -> Optional[str]:
        """Rewrite the live file from the in-memory buffer."""
        with self._file_locks(session_id):
            messages = self.buffered_messages(session_id)
            if not messages:
                return None
            return self._save_logged(session_id, messages, StorageLayout.LIVE)

    def end_conversation(self, session_id: str) -> Optional[str]:
        """Flush the buffer to both layouts and drop it.

        The live and archive writes are independent: either may fail without
        undoing the other.

        Returns:
            The archive path, or None if nothing was buffered or the archive
            write failed.
        """
        with self._buffer_locks(session_id):
            messages = self._buffers.pop(session_id, None)

        if not messages:
            logger.warning(f"Tried to end an empty or unknown conversation {session_id}")
            return None

        with self._file_locks(session_id):
            self._save_logged(session_id, messages, StorageLayout.LIVE)
            archive_path = self._save_logged(session_id, messages, StorageLayout.ARCHIVE)

        logger.info(f"Conversation {session_id} ended with {len(messages)} messages")
        return archive_path

    def release(self, session_id: str) -> bool:
        """Drop the per-session locks of a conversation that is no longer buffered.

        Returns:
            False if the session still has a buffer and the locks were kept.
        """
        if self.has_buffer(session_id):
            return False
        self._buffer_locks.discard(session_id)
        self._file_locks.discard(session_id)
        return True

    def _save_logged(
        self, session_id: str, messages: Sequence[ChatMessage], layout: StorageLayout
    ) -> Optional[str]:
        layout = StorageLayout(layout)
        try:
            if layout is StorageLayout.ARCHIVE:
                path = self._write_archive(session_id, messages)
            else:
                path = self._write_live(session_id, messages)
        except HistoryStorageError as e:
            logger.error(f"Failed to save {layout.value} history for {session_id}: {e}")
            return None
        logger.info(f"Saved {layout.value} history for {session_id}: {len(messages)} messages")
        return path

    def _write_live(self, session_id: str, messages: Sequence[ChatMessage]) -> str:
        path = self.live_path(session_id)
        tmp_path = f"{path}.tmp"
        try:
            os.makedirs(self.sessions_dir, exist_ok=True)
            with open(tmp_path, "w", encoding="utf-8") as f:
                f.write(serialize_messages(messages))
            os.replace(tmp_path, path)
        except OSError as e:
            raise HistoryStorageError(str(e), path) from e
        return path

    def _write_archive(
        self, session_id: str, messages: Sequence[ChatMessage], now: Optional[datetime] = None
    ) -> str:
        now = now or datetime.now()
        directory = self.archive_dir(now.date())
        stem = f"{session_id}_{now.strftime(ARCHIVE_STAMP_FORMAT)}"
        content = serialize_messages(messages)
        try:
            os.makedirs(directory, exist_ok=True)
            sequence = 0
            while True:
                name = f"{stem}.json" if sequence == 0 else f"{stem}_{sequence}.json"
                path = os.path.join(directory, name)
                try:
                    # "x" refuses to overwrite an earlier snapshot from the same second
                    with open(path, "x", encoding="utf-8") as f:
                        f.write(content)
                    return path
                except FileExistsError:
                    sequence += 1
        except OSError as e:
            raise HistoryStorageError(str(e), directory) from e

    # Loading

    def load_history(self, session_id: str) -> List[ChatMessage]:
        """Load a transcript: memory buffer, then live file, then recent archives.

        Returns an empty list when nothing is found.
        """
        cached = self.buffered_messages(session_id)
        if cached:
            logger.debug(f"Loaded {len(cached)} messages for {session_id} from memory")
            return cached

        live = self._load_live(session_id)
        if live:
            logger.debug(f"Loaded {len(live)} messages for {session_id} from live file")
            return live

        archived = self._search_archive(session_id, self.archive_search_days)
        if archived:
            logger.debug(f"Loaded {len(archived)} messages for {session_id} from archive")
            return archived

        logger.debug(f"No history found for {session_id}")
        return []

    def _load_live(self, session_id: str) -> List[ChatMessage]:
        path = self.live_path(session_id)
        if not os.path.exists(path):
            return []
        try:
            with open(path, "r", encoding="utf-8") as f:
                return parse_messages(f.read())
        except (OSError, ValueError) as e:
            logger.error(f"Failed to load live history for {session_id} from {path}: {e}")
            return []

    def _search_archive(
        self, session_id: str, recent_days: int, today: Optional[date] = None
    ) -> List[ChatMessage]:
        """Newest readable archive snapshot of a session within the last N days."""
        today = today or date.today()
        for offset in range(recent_days + 1):
            directory = self.archive_dir(today - timedelta(days=offset))
            for path in self._archive_files(directory, session_id):
                try:
                    with open(path, "r", encoding="utf-8") as f:
                        return parse_messages(f.read())
                except (OSError, ValueError) as e:
                    logger.warning(f"Skipping unreadable archive file {path}: {e}")
        return []

    def _archive_files(self, directory: str, session_id: str) -> List[str]:
        """Archive files of one session in a day directory, newest first."""
        try:
            names = os.listdir(directory)
        except FileNotFoundError:
            return []
        except OSError as e:
            logger.warning(f"Cannot list archive directory {directory}: {e}")
            return []

        matches = []
        for name in names:
            match = ARCHIVE_NAME.match(name)
            if match and match.group("session") == session_id:
                matches.append((match.group("stamp"), int(match.group("seq") or 0), name))
        matches.sort(reverse=True)
        return [os.path.join(directory, name) for _, _, name in matches]

    def get_recent_messages(self, session_id: str, limit: int) -> List[ChatMessage]:
        history = self.load_history(session_id)
        if limit <= 0:
            return []
        return history[-limit:]

    def get_conversations_by_date(self, day: date) -> List[ArchivedConversation]:
        """All archive snapshots saved on one day, oldest first."""
        directory = self.archive_dir(day)
        try:
            names = sorted(os.listdir(directory))
        except FileNotFoundError:
            logger.debug(f"No archive directory for {day.isoformat()}")
            return []
        except OSError as e:
            logger.error(f"Cannot list archive directory {directory}: {e}")
            return []

        conversations = []
        for name in names:
            match = ARCHIVE_NAME.match(name)
            if not match:
                continue
            path = os.path.join(directory, name)
            try:
                with open(path, "r", encoding="utf-8") as f:
                    messages = parse_messages(f.read())
            except (OSError, ValueError) as e:
                logger.warning(f"Skipping unreadable archive file {path}: {e}")
                continue
            conversations.append(
                ArchivedConversation(
                    session_id=match.group("session"),
                    path=path,
                    saved_at=datetime.strptime(match.group("stamp"), ARCHIVE_STAMP_FORMAT),
                    messages=messages,
                )
            )
        return conversations

    # Deletion and inspection

    def delete_history(self, session_id: str) -> bool:
        """Drop the buffer and the live file. Archive snapshots are kept."""
        with self._buffer_locks(session_id):
            self._buffers.pop(session_id, None)

        path = self.live_path(session_id)
        with self._file_locks(session_id):
            try:
                if os.path.exists(path):
                    os.remove(path)
                    logger.info(f"Deleted live history for {session_id}")
            except OSError as e:
                logger.error(f"Failed to delete live history for {session_id}: {e}")
                return False
        return True

    def has_history(self, session_id: str) -> bool:
        return self.has_buffer(session_id) or os.path.exists(self.live_path(session_id))

    def active_conversation_count(self) -> int:
        return len(self._buffers)

    def get_statistics(self) -> HistoryStats:
        """Counts over live files and in-memory buffers."""
        stats = HistoryStats()
        try:
            names = os.listdir(self.sessions_dir)
        except OSError as e:
            logger.error(f"Cannot list sessions directory {self.sessions_dir}: {e}")
            names = []

        for name in names:
            if not name.endswith(LIVE_SUFFIX):
                continue
            path = os.path.join(self.sessions_dir, name)
            try:
                stats.total_file_size += os.path.getsize(path)
                with open(path, "r", encoding="utf-8") as f:
                    stats.total_messages += len(parse_messages(f.read()))
                stats.total_sessions += 1
            except (OSError, ValueError) as e:
                logger.warning(f"Failed to read statistics from {path}: {e}")

        buffers = list(self._buffers.values())
        stats.active_conversations = len(buffers)
        stats.total_messages += sum(len(b) for b in buffers)
        return stats

    # Paths

    def live_path(self, session_id: str) -> str:
        return os.path.join(self.sessions_dir, f"{session_id}{LIVE_SUFFIX}")

    def archive_dir(self, day: date) -> str:
        return os.path.join(
            self.conversations_dir, f"{day.year:04d}", f"{day.month:02d}", f"{day.day:02d}"
        )
