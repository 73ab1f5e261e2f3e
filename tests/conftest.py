"""Shared fixtures: a deterministic embedding backend, a fixed clock and a store."""

import zlib
from collections.abc import Iterator
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from prompt_patterns.embedding import EmbeddingService
from prompt_patterns.store import MessageStore


class FakeBackend:
    """Deterministic embedding backend.

    Texts present in the table map to fixed vectors. Anything else gets a
    hashed bag-of-words vector, so texts sharing words are similar.
    """

    def __init__(self, table: dict[str, list[float]] | None = None, dim: int = 16) -> None:
        self.table = dict(table or {})
        self.dim = dim
        self.calls: list[str] = []

    def embed(self, text: str) -> list[float]:
        self.calls.append(text)
        if text in self.table:
            return list(self.table[text])

        vector = [0.0] * self.dim
        for word in text.split():
            vector[zlib.crc32(word.encode("utf-8")) % self.dim] += 1.0
        return vector


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def store(tmp_path: Path) -> Iterator[MessageStore]:
    """Provide a MessageStore in a temporary directory."""
    message_store = MessageStore(tmp_path / "state" / "transcript_index.sqlite")
    yield message_store
    message_store.close()


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def embedder(backend: FakeBackend) -> Iterator[EmbeddingService]:
    """Provide an EmbeddingService wrapping the fake backend."""
    service = EmbeddingService(backend)
    yield service
    service.close()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc))
