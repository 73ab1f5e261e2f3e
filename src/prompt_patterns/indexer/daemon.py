"""Indexer daemon main loop for embedding transcripts and tracking repeats."""

import time
from dataclasses import dataclass
from pathlib import Path

from prompt_patterns.config import Config
from prompt_patterns.embedding import EmbeddingService, EmbeddingUnavailableError, create_embedding_service
from prompt_patterns.indexer.pipeline import TranscriptIndexer
from prompt_patterns.indexer.sources import discover_session_files
from prompt_patterns.logging import get_logger
from prompt_patterns.models import PatternSuggestion
from prompt_patterns.store import MessageStore
from prompt_patterns.tracker import RepeatTracker

logger = get_logger("indexer")


@dataclass
class IndexerServices:
    """Services owned by one indexer process."""

    store: MessageStore
    embedder: EmbeddingService
    tracker: RepeatTracker
    indexer: TranscriptIndexer

    def close(self) -> None:
        self.embedder.close()
        self.store.close()


def log_suggestion(suggestion: PatternSuggestion) -> None:
    """Default suggestion listener: record the suggestion in the log."""
    logger.info(
        "Suggested skill: name=%s location=%s repeats=%d content=%r",
        suggestion.suggested_skill_name,
        suggestion.suggested_location.value,
        suggestion.candidate.repeat_count,
        suggestion.candidate.content[:100],
    )


def create_services(config: Config) -> IndexerServices:
    """Construct store, embedder, tracker and indexer from configuration.

    Raises:
        StoreError: If the message store cannot be opened
    """
    store = MessageStore(config.store.db_path)
    embedder = create_embedding_service(config.embedding)
    tracker = RepeatTracker(store, config.tracker)
    tracker.subscribe(log_suggestion)
    indexer = TranscriptIndexer(store, embedder, tracker)
    return IndexerServices(store=store, embedder=embedder, tracker=tracker, indexer=indexer)


def run_index_cycle(
    indexer: TranscriptIndexer,
    projects_path: Path,
    tracker: RepeatTracker | None = None,
) -> dict[str, int] | None:
    """Discover session files and index the ones that changed.

    The tracker, if given, first reloads candidates so dismissals and
    conversions made by other processes are honoured.

    Returns:
        Aggregate counts from TranscriptIndexer.index_all, or None if a
        run was already in progress
    """
    if tracker is not None:
        tracker.reload_candidates()
    sources = discover_session_files(projects_path)
    return indexer.index_all(sources)


def run_indexer(config: Config, services: IndexerServices, interval_seconds: int | None = None) -> None:
    """Run the indexer daemon main loop.

    Repeats discovery and indexing on the configured interval until
    shutdown is requested on the indexer.

    Args:
        config: Application configuration
        services: Store, embedder, tracker and indexer to drive
        interval_seconds: Seconds between cycles (defaults to config)
    """
    if interval_seconds is None:
        interval_seconds = config.indexer.interval_seconds

    indexer = services.indexer
    projects_path = config.indexer.projects_path
    logger.info(
        "Starting indexer daemon: projects=%s db=%s interval=%ds",
        projects_path,
        config.store.db_path,
        interval_seconds,
    )

    while not indexer.is_shutdown_requested():
        try:
            totals = run_index_cycle(indexer, projects_path, services.tracker)
        except EmbeddingUnavailableError:
            logger.error("Embedding model not available, indexing disabled")
            break

        if totals is None:
            logger.debug("Cycle skipped: indexing already running")
        elif totals["files"] - totals["skipped"] > 0:
            logger.info(
                "Cycle complete: files=%d skipped=%d messages=%d indexed=%d failed=%d",
                totals["files"],
                totals["skipped"],
                totals["messages"],
                totals["indexed"],
                totals["failed"],
            )
        else:
            logger.debug("Cycle complete: no changed files")

        if indexer.is_shutdown_requested():
            break

        logger.debug("Waiting %ds until next cycle", interval_seconds)

        # Sleep in small increments to allow graceful shutdown
        sleep_remaining = float(interval_seconds)
        while sleep_remaining > 0 and not indexer.is_shutdown_requested():
            sleep_time = min(1.0, sleep_remaining)
            time.sleep(sleep_time)
            sleep_remaining -= sleep_time

    logger.info("Indexer daemon stopped")
