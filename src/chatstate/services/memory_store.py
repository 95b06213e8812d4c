"""Capacity-bounded, relevance-scored long-term memory."""

import itertools
import logging
import re
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple

from ..models.memory import (
    MAX_KEYWORDS,
    MemoryItem,
    MemoryStats,
    MemoryType,
    RetrievalResult,
    clamp_importance,
)
from .locks import KeyedLocks

logger = logging.getLogger(__name__)

# Phrases that make a sentence worth remembering.
EXTRACTION_MARKERS = (
    "我是", "我叫", "我的名字", "我喜欢", "我不喜欢", "我需要", "我想要",
    "重要", "记住", "提醒", "偏好", "习惯", "经常", "总是", "从不",
    "i am", "i'm", "my name is", "call me", "i like", "i love", "i don't like",
    "i dislike", "i hate", "i prefer", "i need", "i want", "important",
    "remember", "remind", "prefer", "habit", "often", "always", "never",
)

PREFERENCE_MARKERS = (
    "喜欢", "不喜欢", "偏好", "习惯",
    "like", "likes", "dislike", "love", "hate", "prefer", "habit", "favorite", "favourite",
)
FACT_MARKERS = ("我是", "我叫", "我的", "i am", "i'm", "my name", "my")
RELATIONSHIP_MARKERS = (
    "朋友", "家人", "同事",
    "friend", "friends", "family", "colleague", "colleagues", "coworker",
)

EMPHASIS_MARKERS = ("重要", "记住", "important", "remember")
SELF_REFERENCE_MARKERS = ("我", "i", "my", "me")

SENTENCE_SPLIT = re.compile(r"[。！？.!?\n]")
CLAUSE_SPLIT = re.compile(r"[，,；;]")
THINKING_BLOCK = re.compile(r"<think>.*?(?:</think>|$)", re.DOTALL)

MIN_SENTENCE_LENGTH = 10
MIN_CANDIDATE_LENGTH = 5
MAX_CANDIDATE_LENGTH = 200
BASE_IMPORTANCE = 5
LONG_CONTENT_LENGTH = 50


def _marker_pattern(markers: Iterable[str]) -> "re.Pattern[str]":
    # ASCII markers match whole words only; CJK markers match anywhere.
    parts = [rf"\b{re.escape(m)}\b" if m.isascii() else re.escape(m) for m in markers]
    return re.compile("|".join(parts), re.IGNORECASE)


_EXTRACTION = _marker_pattern(EXTRACTION_MARKERS)
_PREFERENCE = _marker_pattern(PREFERENCE_MARKERS)
_FACT = _marker_pattern(FACT_MARKERS)
_RELATIONSHIP = _marker_pattern(RELATIONSHIP_MARKERS)
_EMPHASIS = _marker_pattern(EMPHASIS_MARKERS)
_SELF_REFERENCE = _marker_pattern(SELF_REFERENCE_MARKERS)


def strip_thinking(text: str) -> str:
    """Drop ``<think>`` reasoning blocks, keeping the original if nothing remains."""
    if not text or "<think>" not in text:
        return text
    stripped = THINKING_BLOCK.sub("", text).replace("</think>", "").strip()
    return stripped or text


def extract_candidates(text: str) -> List[str]:
    """Split text into sentences and keep the ones that look worth remembering.

    Length bounds are counted in characters and apply to the whole sentence.
    A kept sentence with two or more marked clauses yields one candidate per
    marked clause, otherwise the sentence itself is the candidate.
    """
    if not text or not text.strip():
        return []

    candidates = []
    for raw_sentence in SENTENCE_SPLIT.split(text):
        sentence = raw_sentence.strip()
        if len(sentence) <= MIN_SENTENCE_LENGTH or not _EXTRACTION.search(sentence):
            continue
        if not MIN_CANDIDATE_LENGTH < len(sentence) < MAX_CANDIDATE_LENGTH:
            continue

        clauses = [c.strip() for c in CLAUSE_SPLIT.split(sentence) if c.strip()]
        marked = [c for c in clauses if _EXTRACTION.search(c)]
        candidates.extend(marked if len(marked) > 1 else [sentence])
    return candidates


def classify(content: str) -> MemoryType:
    """Tag content as preference, fact, relationship or event, in that order."""
    if _PREFERENCE.search(content):
        return MemoryType.PREFERENCE
    if _FACT.search(content):
        return MemoryType.FACT
    if _RELATIONSHIP.search(content):
        return MemoryType.RELATIONSHIP
    return MemoryType.EVENT


def score_importance(content: str) -> int:
    score = BASE_IMPORTANCE
    if _EMPHASIS.search(content):
        score += 2
    if _SELF_REFERENCE.search(content):
        score += 1
    if len(content) > LONG_CONTENT_LENGTH:
        score += 1
    return clamp_importance(score)


def extract_keywords(content: str) -> List[str]:
    """Distinct alphanumeric tokens longer than one character, first five kept."""
    cleaned = "".join(ch for ch in content if ch.isalnum() or ch.isspace())
    keywords: List[str] = []
    for word in cleaned.split():
        if len(word) > 1 and word not in keywords:
            keywords.append(word)
            if len(keywords) == MAX_KEYWORDS:
                break
    return keywords


def relevance_score(item: MemoryItem, query: str, now: Optional[datetime] = None) -> int:
    """Score how relevant a memory item is to a query.

    Substring match dominates, keyword overlap comes second, then importance,
    access frequency (capped at 5) and a recency bonus that decays to zero
    over ten days.
    """
    now = now or datetime.now()
    content = item.content.lower()
    lowered_query = (query or "").lower()

    score = 0
    if lowered_query in content:
        score += 10
    score += 5 * sum(1 for keyword in item.keywords if keyword.lower() in lowered_query)
    score += item.importance
    score += min(item.access_count, 5)
    days_since = max(0, (now - item.created_at).days)
    score += max(0, 10 - days_since)
    return score


class MemoryStore:
    """Per-session store of scored memory items."""

    def __init__(
        self,
        capacity: int = 1000,
        retrieval_limit: int = 5,
        importance_threshold: int = BASE_IMPORTANCE,
    ):
        self.capacity = capacity
        self.retrieval_limit = retrieval_limit
        self.importance_threshold = importance_threshold
        self._session_items: Dict[str, List[MemoryItem]] = {}
        self._index: Dict[str, MemoryItem] = {}
        self._evicted: Dict[str, int] = {}
        # insertion order, the last tie-break when ranking for eviction
        self._sequence: Dict[str, int] = {}
        self._counter = itertools.count()
        self._locks = KeyedLocks()

    def update(self, session_id: str, turn_text: str) -> List[MemoryItem]:
        """Extract memory items from a turn and store the important ones.

        Returns:
            The newly stored items.
        """
        content = strip_thinking(turn_text)
        stored = []
        for candidate in extract_candidates(content):
            item = MemoryItem(
                session_id=session_id,
                content=candidate,
                type=classify(candidate),
                importance=score_importance(candidate),
                keywords=tuple(extract_keywords(candidate)),
            )
            if item.importance < self.importance_threshold:
                continue
            self._store(item)
            stored.append(item)

        self._evict(session_id)
        return stored

    def add_item(self, item: MemoryItem) -> bool:
        """Store a pre-built item and apply the capacity limit."""
        if not item.active:
            logger.debug(f"Ignoring inactive memory {item.memory_id}")
            return False
        self._store(item)
        self._evict(item.session_id)
        return True

    def _store(self, item: MemoryItem) -> None:
        with self._locks(item.session_id):
            self._session_items.setdefault(item.session_id, []).append(item)
            self._index[item.memory_id] = item
            self._sequence[item.memory_id] = next(self._counter)
        logger.debug(f"Stored memory {item.memory_id}: {item.content[:50]}")

    def _evict(self, session_id: str) -> int:
        """Deactivate the lowest ranked items beyond capacity."""
        with self._locks(session_id):
            items = self._session_items.get(session_id)
            if not items or len(items) <= self.capacity:
                return 0

            ranked = sorted(items, key=self._rank_key, reverse=True)
            victims = {m.memory_id for m in ranked[self.capacity:]}
            kept = []
            for item in items:
                if item.memory_id in victims:
                    item.active = False
                    self._index.pop(item.memory_id, None)
                    self._sequence.pop(item.memory_id, None)
                else:
                    kept.append(item)
            self._session_items[session_id] = kept
            self._evicted[session_id] = self._evicted.get(session_id, 0) + len(victims)

        logger.info(f"Evicted {len(victims)} memories for session {session_id}")
        return len(victims)

    def _rank_key(self, item: MemoryItem) -> Tuple[int, datetime, int]:
        return item.importance, item.created_at, self._sequence.get(item.memory_id, 0)

    def retrieve_result(
        self, session_id: str, query: str, limit: Optional[int] = None
    ) -> RetrievalResult:
        """Rank active items against ``query`` and return the top ones."""
        limit = limit if limit is not None else self.retrieval_limit
        now = datetime.now()
        with self._locks(session_id):
            active = [m for m in self._session_items.get(session_id, []) if m.active]
            if not active:
                return RetrievalResult()

            # sorted() is stable, so equal scores keep insertion order
            ranked = sorted(active, key=lambda m: relevance_score(m, query, now), reverse=True)
            selected = ranked[:limit]
            for item in selected:
                item.mark_used(now)

        summary = "\n".join(f"- {item.content}" for item in selected)
        return RetrievalResult(items=selected, summary_text=summary)

    def retrieve(self, session_id: str, query: str) -> str:
        """Newline-joined digest of the most relevant memories, or an empty string."""
        return self.retrieve_result(session_id, query).summary_text

    def items(self, session_id: str) -> List[MemoryItem]:
        with self._locks(session_id):
            return [m for m in self._session_items.get(session_id, []) if m.active]

    def get(self, memory_id: str) -> Optional[MemoryItem]:
        return self._index.get(memory_id)

    def clear(self, session_id: str) -> int:
        """Drop every memory of a session. Returns the number removed."""
        with self._locks(session_id):
            items = self._session_items.pop(session_id, [])
            for item in items:
                self._index.pop(item.memory_id, None)
                self._sequence.pop(item.memory_id, None)
            self._evicted.pop(session_id, None)
        return len(items)

    def stats(self, session_id: str) -> MemoryStats:
        with self._locks(session_id):
            items = self._session_items.get(session_id, [])
            return MemoryStats(
                total=len(items),
                active=sum(1 for m in items if m.active),
                evicted=self._evicted.get(session_id, 0),
            )

    def session_count(self) -> int:
        return len(self._session_items)
