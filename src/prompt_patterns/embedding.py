"""Text embeddings and vector similarity.

The underlying embedding model is not safe for concurrent use, so every
call is funnelled through a single-worker executor. Callers on any thread
block until their own embedding is ready.
"""

import math
import os
import struct
from collections.abc import Iterable, Sequence
from concurrent.futures import ThreadPoolExecutor
from typing import Protocol

from prompt_patterns.config import EmbeddingConfig
from prompt_patterns.logging import get_logger

logger = get_logger("embedding")

DEFAULT_MAX_CHARS = 1000

_FLOAT_SIZE = struct.calcsize("<d")


class EmbeddingUnavailableError(RuntimeError):
    """Raised when an operation needs embeddings but no model is loaded."""


class EmbeddingBackend(Protocol):
    def embed(self, text: str) -> list[float]: ...


class FastEmbedBackend:
    """Local embedding backend using FastEmbed (ONNX Runtime)."""

    def __init__(self, model_name: str) -> None:
        os.environ.setdefault("TOKENIZERS_PARALLELISM", "false")
        os.environ.setdefault("HF_HUB_DISABLE_PROGRESS_BARS", "1")
        from fastembed import TextEmbedding

        self.model_name = model_name
        self._model = TextEmbedding(model_name=model_name)

    def embed(self, text: str) -> list[float]:
        result = list(self._model.embed([text]))
        return [float(value) for value in result[0].tolist()]


class EmbeddingService:
    """Serializes access to an embedding backend."""

    def __init__(self, backend: EmbeddingBackend | None, max_chars: int = DEFAULT_MAX_CHARS) -> None:
        self._backend = backend
        self.max_chars = max_chars
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="embedding")

    @property
    def is_available(self) -> bool:
        return self._backend is not None

    def preprocess_text(self, text: str) -> str:
        """Collapse whitespace and cap the text length."""
        processed = " ".join(text.split())
        if len(processed) > self.max_chars:
            processed = processed[: self.max_chars]
        return processed

    def embed(self, text: str) -> list[float] | None:
        """Embed text, returning None if it cannot be embedded.

        Blocks until the embedding worker has processed this request.
        """
        if self._backend is None:
            return None

        normalized = self.preprocess_text(text).lower()
        if not normalized:
            return None

        future = self._executor.submit(self._backend.embed, normalized)
        try:
            vector = future.result()
        except Exception:
            logger.warning("Embedding failed: chars=%d", len(normalized), exc_info=True)
            return None

        if not vector:
            return None
        return list(vector)

    def embed_batch(self, texts: Iterable[str]) -> list[list[float] | None]:
        return [self.embed(text) for text in texts]

    def close(self) -> None:
        self._executor.shutdown(wait=True)


def create_embedding_service(config: EmbeddingConfig) -> EmbeddingService:
    """Build an EmbeddingService from configuration.

    A disabled or unloadable model produces an unavailable service rather
    than an exception, so callers can report the condition themselves.
    """
    if not config.enabled:
        logger.info("Embeddings disabled by configuration")
        return EmbeddingService(None, max_chars=config.max_chars)

    try:
        backend = FastEmbedBackend(config.model)
    except Exception:
        logger.warning("Could not load embedding model: model=%s", config.model, exc_info=True)
        return EmbeddingService(None, max_chars=config.max_chars)

    logger.info("Loaded embedding model: model=%s", config.model)
    return EmbeddingService(backend, max_chars=config.max_chars)


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity in [-1, 1]; 0.0 for empty, mismatched or zero vectors."""
    if len(a) != len(b) or not a:
        return 0.0

    dot = 0.0
    norm_a = 0.0
    norm_b = 0.0
    for x, y in zip(a, b):
        dot += x * y
        norm_a += x * x
        norm_b += y * y

    denominator = math.sqrt(norm_a) * math.sqrt(norm_b)
    if denominator <= 0:
        return 0.0
    return dot / denominator


def cosine_distance(a: Sequence[float], b: Sequence[float]) -> float:
    return 1.0 - cosine_similarity(a, b)


def find_similar(
    query: Sequence[float],
    candidates: Iterable[tuple[int, Sequence[float]]],
    limit: int = 20,
    threshold: float = 0.0,
) -> list[tuple[int, float]]:
    """Return (id, similarity) pairs above threshold, most similar first."""
    results: list[tuple[int, float]] = []
    for candidate_id, embedding in candidates:
        similarity = cosine_similarity(query, embedding)
        if similarity >= threshold:
            results.append((candidate_id, similarity))

    results.sort(key=lambda item: item[1], reverse=True)
    return results[:limit]


def serialize_vector(vector: Sequence[float]) -> bytes:
    """Pack a vector as little-endian float64 for storage."""
    return struct.pack(f"<{len(vector)}d", *vector)


def deserialize_vector(data: bytes) -> list[float] | None:
    """Unpack a stored vector; None if the blob is empty or malformed."""
    if not data or len(data) % _FLOAT_SIZE != 0:
        return None
    count = len(data) // _FLOAT_SIZE
    return list(struct.unpack(f"<{count}d", data))
