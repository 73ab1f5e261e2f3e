"""Online detection of repeated prompts.

Each newly indexed user message is compared against the persisted repeat
candidates and, failing a match, against a bounded cache of recent
embeddings. History is never re-scanned per message.
"""

import threading
from collections import OrderedDict
from collections.abc import Callable, Iterator
from dataclasses import dataclass, replace
from datetime import date, datetime, timezone
from uuid import uuid4

from prompt_patterns.config import TrackerConfig
from prompt_patterns.embedding import cosine_similarity
from prompt_patterns.logging import get_logger
from prompt_patterns.models import PatternSuggestion, RepeatCandidate
from prompt_patterns.skills import candidate_description, candidate_location, skill_name_from_prompt
from prompt_patterns.store import MessageStore, StoreError

logger = get_logger("tracker")

SuggestionListener = Callable[[PatternSuggestion], None]


def _local_now() -> datetime:
    return datetime.now().astimezone()


def running_average(current: float, new_value: float, count: int) -> float:
    """Fold new_value into a mean that now covers count values."""
    if count <= 0:
        return new_value
    return (current * (count - 1) + new_value) / count


@dataclass
class CachedEmbedding:
    message_id: int
    embedding: list[float]
    timestamp: datetime
    repo_path: str


class RecencyCache:
    """Fixed-capacity cache of recent embeddings, evicted oldest-first."""

    def __init__(self, capacity: int) -> None:
        if capacity < 1:
            raise ValueError(f"capacity must be positive, got {capacity}")
        self.capacity = capacity
        self._entries: OrderedDict[int, CachedEmbedding] = OrderedDict()

    def add(self, entry: CachedEmbedding) -> None:
        # Re-adding an id refreshes its position
        self._entries.pop(entry.message_id, None)
        self._entries[entry.message_id] = entry
        while len(self._entries) > self.capacity:
            self._entries.popitem(last=False)

    def get(self, message_id: int) -> CachedEmbedding | None:
        return self._entries.get(message_id)

    def clear(self) -> None:
        self._entries.clear()

    def __contains__(self, message_id: object) -> bool:
        return message_id in self._entries

    def __iter__(self) -> Iterator[CachedEmbedding]:
        return iter(list(self._entries.values()))

    def __len__(self) -> int:
        return len(self._entries)


class RepeatTracker:
    """Tracks repeated prompts and surfaces them as skill suggestions.

    Messages must be fed in the order they were indexed; the running
    averages and the recency cache depend on it. All state changes happen
    under one lock so dismissals and conversions may come from other
    threads.
    """

    def __init__(
        self,
        store: MessageStore,
        config: TrackerConfig | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self.config = config or TrackerConfig()
        self._clock = clock or _local_now
        self._lock = threading.RLock()
        self._cache = RecencyCache(self.config.cache_size)
        self._candidates: dict[str, RepeatCandidate] = {
            candidate.id: candidate for candidate in store.get_all_repeat_candidates()
        }
        self._pending: dict[str, PatternSuggestion] = {}
        self._listeners: list[SuggestionListener] = []
        self.notifications_today = 0
        self._last_notification_reset: date = self._clock().date()
        self._load_notification_state()

        logger.info("Loaded repeat candidates: count=%d", len(self._candidates))

    # Public API

    @property
    def candidates(self) -> list[RepeatCandidate]:
        with self._lock:
            return list(self._candidates.values())

    @property
    def pending_suggestions(self) -> list[PatternSuggestion]:
        with self._lock:
            return list(self._pending.values())

    @property
    def cache(self) -> RecencyCache:
        return self._cache

    def reload_candidates(self) -> None:
        """Re-read candidates from the store, dropping stale suggestions."""
        with self._lock:
            self._candidates = {
                candidate.id: candidate for candidate in self._store.get_all_repeat_candidates()
            }
            for candidate_id in list(self._pending):
                candidate = self._candidates.get(candidate_id)
                if candidate is None or candidate.dismissed:
                    del self._pending[candidate_id]

    def subscribe(self, listener: SuggestionListener) -> None:
        """Register a callable that receives each surfaced suggestion."""
        self._listeners.append(listener)

    def on_message_indexed(
        self,
        message_id: int,
        content: str,
        embedding: list[float],
        repo_path: str,
        timestamp: datetime,
    ) -> RepeatCandidate | None:
        """Process a newly indexed user message.

        Returns:
            The candidate created or updated by this message, if any
        """
        if len(content.split()) < self.config.min_word_count:
            return None
        if timestamp.tzinfo is None:
            timestamp = timestamp.replace(tzinfo=timezone.utc)

        suggestion = None
        with self._lock:
            candidate, similarity = self._find_matching_candidate(embedding)
            if candidate is not None:
                # Another process may have dismissed or converted it
                candidate = self._refresh_candidate(candidate)

            if candidate is not None:
                self._record_repeat(candidate, similarity, repo_path, timestamp)
            else:
                candidate = self._start_candidate(message_id, content, embedding, repo_path, timestamp)

            self._cache.add(CachedEmbedding(message_id, embedding, timestamp, repo_path))

            if candidate is not None and candidate.is_ready_to_surface(self.config.min_repeats_to_surface):
                suggestion = self._surface(candidate)

        if suggestion is not None:
            self._emit(suggestion)
        return candidate

    def dismiss_candidate(self, candidate_id: str) -> bool:
        """Dismiss a candidate; it can only resurface with fresh repeats."""
        with self._lock:
            candidate = self._candidates.get(candidate_id)
            if candidate is None:
                return False

            candidate.dismissed = True
            candidate.dismissed_at = self._clock().astimezone()
            candidate.repeat_count = 0
            self._save(candidate)
            self._pending.pop(candidate_id, None)

        logger.info("Dismissed candidate: id=%s", candidate_id)
        return True

    def mark_as_converted(self, candidate_id: str) -> bool:
        """Stop tracking a candidate that was turned into a skill."""
        with self._lock:
            candidate = self._candidates.pop(candidate_id, None)
            self._pending.pop(candidate_id, None)
            if candidate is None:
                return False
            try:
                self._store.delete_repeat_candidate(candidate_id)
            except StoreError:
                logger.exception("Failed to delete candidate: id=%s", candidate_id)

        logger.info("Converted candidate: id=%s", candidate_id)
        return True

    def get_suggestion(self, candidate_id: str) -> PatternSuggestion | None:
        with self._lock:
            return self._pending.get(candidate_id)

    def can_send_notification(self) -> bool:
        with self._lock:
            self._reset_daily_counter_if_needed()
            return self.notifications_today < self.config.max_notifications_per_day

    def record_notification_sent(self) -> None:
        with self._lock:
            self._reset_daily_counter_if_needed()
            self.notifications_today += 1
            try:
                self._store.save_notification_state(self._last_notification_reset, self.notifications_today)
            except StoreError:
                logger.exception("Failed to save notification counter")

    # Matching

    def _refresh_candidate(self, candidate: RepeatCandidate) -> RepeatCandidate | None:
        try:
            stored = self._store.get_repeat_candidate(candidate.id)
        except StoreError:
            logger.exception("Failed to re-read candidate, using cached copy: id=%s", candidate.id)
            return candidate

        if stored is None:
            logger.info("Candidate removed from store: id=%s", candidate.id)
            self._candidates.pop(candidate.id, None)
            self._pending.pop(candidate.id, None)
            return None

        if stored.dismissed:
            self._pending.pop(candidate.id, None)
        self._candidates[candidate.id] = stored
        return stored

    def _candidate_embedding(self, candidate: RepeatCandidate) -> list[float] | None:
        cached = self._cache.get(candidate.original_message_id)
        if cached is not None:
            return cached.embedding

        message = self._store.get_message(candidate.original_message_id)
        if message is not None:
            return message.embedding
        return None

    def _find_matching_candidate(self, embedding: list[float]) -> tuple[RepeatCandidate | None, float]:
        best: RepeatCandidate | None = None
        best_similarity = 0.0
        for candidate in self._candidates.values():
            candidate_embedding = self._candidate_embedding(candidate)
            if candidate_embedding is None:
                continue
            similarity = cosine_similarity(embedding, candidate_embedding)
            if similarity >= self.config.similarity_threshold and (best is None or similarity > best_similarity):
                best = candidate
                best_similarity = similarity
        return best, best_similarity

    def _find_similar_in_cache(self, embedding: list[float]) -> list[tuple[CachedEmbedding, float]]:
        similar = []
        for cached in self._cache:
            similarity = cosine_similarity(embedding, cached.embedding)
            if similarity >= self.config.similarity_threshold:
                similar.append((cached, similarity))
        return similar

    def _record_repeat(
        self,
        candidate: RepeatCandidate,
        similarity: float,
        repo_path: str,
        timestamp: datetime,
    ) -> None:
        candidate.repeat_count += 1
        candidate.last_seen_at = timestamp
        candidate.avg_similarity = running_average(
            candidate.avg_similarity, similarity, candidate.repeat_count
        )
        if repo_path not in candidate.repo_paths:
            candidate.repo_paths.append(repo_path)

        if candidate.should_resurface(self.config.resurface_min_repeats):
            candidate.dismissed = False
            candidate.dismissed_at = None
            logger.info("Candidate resurfaced: id=%s repeats=%d", candidate.id, candidate.repeat_count)

        self._save(candidate)

    def _start_candidate(
        self,
        message_id: int,
        content: str,
        embedding: list[float],
        repo_path: str,
        timestamp: datetime,
    ) -> RepeatCandidate | None:
        similar = self._find_similar_in_cache(embedding)
        if not similar:
            return None

        repo_paths = [repo_path]
        for cached, _ in similar:
            if cached.repo_path not in repo_paths:
                repo_paths.append(cached.repo_path)

        candidate = RepeatCandidate(
            id=str(uuid4()),
            original_message_id=message_id,
            content=content,
            repo_path=repo_path,
            repeat_count=len(similar) + 1,
            last_seen_at=timestamp,
            avg_similarity=sum(similarity for _, similarity in similar) / len(similar),
            repo_paths=repo_paths,
        )
        self._candidates[candidate.id] = candidate
        self._save(candidate)
        logger.info(
            "New repeat candidate: id=%s repeats=%d avg_similarity=%.3f",
            candidate.id,
            candidate.repeat_count,
            candidate.avg_similarity,
        )
        return candidate

    # Surfacing

    def _surface(self, candidate: RepeatCandidate) -> PatternSuggestion | None:
        if candidate.id in self._pending:
            return None

        original_message = self._store.get_message(candidate.original_message_id)
        if original_message is None:
            logger.warning(
                "Original message missing for candidate: id=%s message_id=%d",
                candidate.id,
                candidate.original_message_id,
            )
            return None

        if not self.can_send_notification():
            logger.info("Daily suggestion limit reached, holding candidate: id=%s", candidate.id)
            return None

        snapshot = replace(candidate, repo_paths=list(candidate.repo_paths))
        suggestion = PatternSuggestion(
            candidate=snapshot,
            original_message=original_message,
            suggested_skill_name=skill_name_from_prompt(candidate.content),
            suggested_description=candidate_description(candidate),
            suggested_location=candidate_location(candidate),
        )
        self._pending[candidate.id] = suggestion
        self.record_notification_sent()
        return suggestion

    def _emit(self, suggestion: PatternSuggestion) -> None:
        logger.info(
            "Pattern ready to surface: id=%s name=%s repeats=%d",
            suggestion.candidate.id,
            suggestion.suggested_skill_name,
            suggestion.candidate.repeat_count,
        )
        for listener in list(self._listeners):
            try:
                listener(suggestion)
            except Exception:
                logger.exception("Suggestion listener failed: id=%s", suggestion.candidate.id)

    def _load_notification_state(self) -> None:
        try:
            state = self._store.get_notification_state()
        except StoreError:
            logger.exception("Failed to read notification counter")
            return

        if state is not None and state[0] == self._last_notification_reset:
            self.notifications_today = state[1]

    def _reset_daily_counter_if_needed(self) -> None:
        today = self._clock().date()
        if today != self._last_notification_reset:
            self._last_notification_reset = today
            self.notifications_today = 0

    def _save(self, candidate: RepeatCandidate) -> None:
        try:
            self._store.save_repeat_candidate(candidate)
        except StoreError:
            logger.exception("Failed to save candidate: id=%s", candidate.id)
