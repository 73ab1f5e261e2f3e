"""Semantic similarity search over indexed messages."""

import threading
from dataclasses import dataclass, field

from prompt_patterns.embedding import EmbeddingService, EmbeddingUnavailableError, find_similar
from prompt_patterns.logging import get_logger
from prompt_patterns.models import EmbeddedMessage
from prompt_patterns.store import MessageStore

logger = get_logger("search")

DEFAULT_LIMIT = 20
DEFAULT_THRESHOLD = 0.30


@dataclass
class SearchResult:
    message: EmbeddedMessage
    similarity: float
    match_percentage: int = field(init=False)

    def __post_init__(self) -> None:
        self.match_percentage = int(self.similarity * 100)


class SemanticSearch:
    """Finds stored messages most similar to a free-text query.

    Stored embeddings are loaded once and reused; call reload_cache()
    after an index run to pick up new messages.
    """

    def __init__(
        self,
        store: MessageStore,
        embedder: EmbeddingService,
        threshold: float = DEFAULT_THRESHOLD,
    ) -> None:
        self._store = store
        self._embedder = embedder
        self.threshold = threshold
        self._cache: list[tuple[int, list[float]]] | None = None
        self._cache_lock = threading.Lock()

    def reload_cache(self) -> None:
        with self._cache_lock:
            self._cache = None
        self._load_cache()

    def _load_cache(self) -> list[tuple[int, list[float]]]:
        with self._cache_lock:
            if self._cache is None:
                self._cache = self._store.get_all_embeddings()
                logger.debug("Loaded embedding cache: count=%d", len(self._cache))
            return self._cache

    def search(self, query: str, limit: int = DEFAULT_LIMIT) -> list[SearchResult]:
        """Return up to limit messages at or above the similarity floor.

        Raises:
            EmbeddingUnavailableError: If no embedding model is loaded
        """
        if not self._embedder.is_available:
            raise EmbeddingUnavailableError("Embedding model not available")

        query_embedding = self._embedder.embed(query)
        if query_embedding is None:
            return []

        similar = find_similar(query_embedding, self._load_cache(), limit=limit, threshold=self.threshold)

        results = []
        for message_id, similarity in similar:
            message = self._store.get_message(message_id)
            if message is not None:
                results.append(SearchResult(message=message, similarity=similarity))
        return results
