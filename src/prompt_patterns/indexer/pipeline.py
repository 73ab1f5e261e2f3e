"""Incremental indexing of session transcripts into the message store."""

import threading
from collections.abc import Callable, Iterable

from prompt_patterns.embedding import EmbeddingService, EmbeddingUnavailableError
from prompt_patterns.indexer.sources import SessionSource
from prompt_patterns.indexer.transcript import compute_file_hash, parse_session_file
from prompt_patterns.logging import get_logger
from prompt_patterns.models import MessageRole
from prompt_patterns.store import MessageStore, StoreError
from prompt_patterns.tracker import RepeatTracker

logger = get_logger("indexer")

ProgressCallback = Callable[[int, int], None]


class TranscriptIndexer:
    """Embeds transcript turns and keeps the store in sync with the files.

    A file is re-processed only when its content hash changes. Turns of a
    changed file are upserted in place, so message ids stay stable, and
    rows whose turn left the file are deleted. Only turns not stored
    before reach the repeat tracker. The checkpoint is written last so an
    interrupted file is retried whole on the next run.
    """

    def __init__(
        self,
        store: MessageStore,
        embedder: EmbeddingService,
        tracker: RepeatTracker | None = None,
        progress_callback: ProgressCallback | None = None,
    ) -> None:
        self._store = store
        self._embedder = embedder
        self._tracker = tracker
        self._progress_callback = progress_callback
        self._run_lock = threading.Lock()
        self._shutdown = threading.Event()
        self.indexed_count = 0
        self.total_count = 0
        self.last_error: str | None = None

    @property
    def is_indexing(self) -> bool:
        return self._run_lock.locked()

    @property
    def progress(self) -> float:
        """Fraction of files processed in the current or last run."""
        if self.total_count == 0:
            return 0.0
        return self.indexed_count / self.total_count

    def request_shutdown(self) -> None:
        """Ask a running index pass to stop after the current file."""
        self._shutdown.set()

    def reset_shutdown(self) -> None:
        self._shutdown.clear()

    def is_shutdown_requested(self) -> bool:
        return self._shutdown.is_set()

    def index_all(self, sources: Iterable[SessionSource]) -> dict[str, int] | None:
        """Index every source that changed since its last checkpoint.

        Returns:
            Aggregate counts {"files", "skipped", "messages", "indexed",
            "failed"}, or None if another run is already in progress

        Raises:
            EmbeddingUnavailableError: If no embedding model is loaded
        """
        if not self._embedder.is_available:
            self.last_error = "Embedding model not available"
            raise EmbeddingUnavailableError(self.last_error)

        if not self._run_lock.acquire(blocking=False):
            logger.info("Indexing already running, skipping request")
            return None

        try:
            self.last_error = None
            source_list = list(sources)
            self.total_count = len(source_list)
            self.indexed_count = 0

            totals = {"files": 0, "skipped": 0, "messages": 0, "indexed": 0, "failed": 0}
            for source in source_list:
                if self.is_shutdown_requested():
                    break

                result = self.index_file(source)
                totals["files"] += 1
                totals["skipped"] += result["skipped"]
                totals["messages"] += result["messages"]
                totals["indexed"] += result["indexed"]
                totals["failed"] += result["failed"]

                self.indexed_count += 1
                if self._progress_callback is not None:
                    self._progress_callback(self.indexed_count, self.total_count)

            return totals
        finally:
            self._run_lock.release()

    def index_file(self, source: SessionSource) -> dict[str, int]:
        """Index a single session file if it changed.

        Returns:
            Dict with counts: {"skipped": 0 or 1, "messages": N,
            "indexed": M, "failed": K}
        """
        result = {"skipped": 0, "messages": 0, "indexed": 0, "failed": 0}
        file_key = str(source.path)

        try:
            file_hash = compute_file_hash(source.path)
        except OSError:
            logger.exception("Cannot read session file: path=%s", source.path)
            result["failed"] = 1
            return result

        if not self._store.needs_indexing(file_key, file_hash):
            result["skipped"] = 1
            return result

        try:
            parsed = parse_session_file(source.path, source.session_id, source.repo_path)
        except OSError:
            logger.exception("Error parsing file: path=%s", source.path)
            result["failed"] = 1
            return result

        result["messages"] = len(parsed.turns)
        if parsed.unparseable:
            logger.warning("Skipped malformed lines: path=%s count=%d", source.path, parsed.unparseable)

        try:
            known_uuids = self._store.get_message_uuids_for_session(source.session_id)
        except StoreError:
            logger.exception("Cannot read previous messages: session=%s", source.session_id)
            result["failed"] = 1
            return result

        # Only turns not seen in an earlier pass count as new prompts
        seen_uuids: set[str] = set()
        for turn in parsed.turns:
            is_new = turn.message_uuid not in known_uuids and turn.message_uuid not in seen_uuids
            seen_uuids.add(turn.message_uuid)

            embedding = self._embedder.embed(turn.content)
            if embedding is None:
                logger.debug("Could not embed turn, skipping: session=%s uuid=%s", turn.session_id, turn.message_uuid)
                continue

            try:
                message_id = self._store.upsert_message(
                    session_id=turn.session_id,
                    message_uuid=turn.message_uuid,
                    role=turn.role,
                    content=turn.content,
                    embedding=embedding,
                    repo_path=turn.repo_path,
                    timestamp=turn.timestamp,
                )
            except StoreError:
                logger.exception("Failed to index message: session=%s uuid=%s", turn.session_id, turn.message_uuid)
                result["failed"] += 1
                continue

            result["indexed"] += 1

            if self._tracker is not None and is_new and turn.role == MessageRole.USER.value:
                self._tracker.on_message_indexed(
                    message_id=message_id,
                    content=turn.content,
                    embedding=embedding,
                    repo_path=turn.repo_path,
                    timestamp=turn.timestamp,
                )

        try:
            removed = self._store.delete_messages_except(source.session_id, seen_uuids)
        except StoreError:
            logger.exception("Cannot remove vanished messages: session=%s", source.session_id)
            result["failed"] += 1
        else:
            if removed:
                logger.info("Removed vanished messages: session=%s count=%d", source.session_id, removed)

        if result["failed"]:
            # No checkpoint: the whole file is retried on the next run
            logger.warning("Incomplete index, will retry: path=%s failed=%d", source.path, result["failed"])
        else:
            try:
                self._store.mark_session_indexed(file_key, file_hash, result["indexed"])
            except StoreError:
                logger.exception("Failed to write checkpoint: path=%s", source.path)

        logger.info(
            "Indexed session: session=%s messages=%d indexed=%d failed=%d",
            source.session_id,
            result["messages"],
            result["indexed"],
            result["failed"],
        )
        return result
