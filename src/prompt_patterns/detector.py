"""Batch detection and ranking of repeated user prompts.

Clustering is union-find over every pair of user messages whose cosine
similarity reaches the threshold. That makes clusters transitive: two
messages can share a cluster through a chain of intermediate matches
without being similar to each other. The pairwise pass is O(n^2) and is
meant for corpora up to roughly 10K user messages.
"""

import math
import re
import threading
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from uuid import uuid4

from prompt_patterns.config import DetectorConfig
from prompt_patterns.embedding import cosine_similarity
from prompt_patterns.logging import get_logger
from prompt_patterns.models import EmbeddedMessage, MessageVector
from prompt_patterns.store import MessageStore

logger = get_logger("detector")

RECENCY_WINDOW_DAYS = 30.0

TECHNICAL_TERMS = [
    "function", "class", "method", "api", "endpoint", "database",
    "error", "bug", "fix", "implement", "refactor", "test",
]
CODE_MARKERS = ["`", ".ts", ".swift", ".py", ".js"]
SUCCESS_TERMS = ["thanks", "perfect", "great", "worked", "awesome", "done", "solved"]
FAILURE_TERMS = ["doesn't work", "wrong", "error", "fix", "broken", "issue", "problem"]
LANGUAGE_TERMS = [
    "swift", "python", "javascript", "typescript", "rust", "go", "java",
    "react", "vue", "angular", "node", "django", "rails",
]
TOOL_TERMS = ["git", "npm", "pip", "cargo", "make", "docker", "kubectl", "terraform"]

_CAMEL_CASE = re.compile(r"[A-Z][a-z]+[A-Z]")
_SNAKE_CASE = re.compile(r"[a-z]+_[a-z]+")


@dataclass
class PatternMember:
    message: EmbeddedMessage
    similarity_to_representative: float

    @property
    def id(self) -> int:
        return self.message.id


@dataclass
class PatternScore:
    """Ranking signals for a detected pattern."""

    count: int
    session_diversity: int
    repo_diversity: int
    avg_similarity: float
    most_recent: datetime
    evaluated_at: datetime
    prompt_complexity: float = 0.5
    success_signal: float = 0.5
    context_specificity: float = 0.0
    burst_factor: float = 0.5

    @property
    def recency_bonus(self) -> float:
        days = (self.evaluated_at - self.most_recent).total_seconds() / 86400
        return max(0.0, 1.0 - days / RECENCY_WINDOW_DAYS)

    @property
    def composite_score(self) -> float:
        count_score = math.log(self.count + 1) * 2.0
        diversity_bonus = self.session_diversity * 0.5
        coherence_bonus = self.avg_similarity * 2.0
        complexity_bonus = self.prompt_complexity * 1.5
        success_bonus = self.success_signal * 1.0
        context_bonus = self.context_specificity * 0.5
        habitual_bonus = self.burst_factor * 0.5
        return (
            count_score
            + diversity_bonus
            + coherence_bonus
            + self.recency_bonus
            + complexity_bonus
            + success_bonus
            + context_bonus
            + habitual_bonus
        )


@dataclass
class DetectedPattern:
    """A cluster of similar user prompts from one detection run."""

    id: str
    representative: EmbeddedMessage
    members: list[PatternMember]
    score: PatternScore

    @property
    def count(self) -> int:
        return len(self.members)

    @property
    def session_count(self) -> int:
        return len({member.message.session_id for member in self.members})

    @property
    def repo_count(self) -> int:
        return len({member.message.repo_path for member in self.members})

    @property
    def preview(self) -> str:
        content = self.representative.content
        if len(content) <= 100:
            return content
        return content[:100] + "..."


class UnionFind:
    """Disjoint sets with path compression and union by rank."""

    def __init__(self, count: int) -> None:
        self._parent = list(range(count))
        self._rank = [0] * count

    def find(self, x: int) -> int:
        root = x
        while self._parent[root] != root:
            root = self._parent[root]
        while self._parent[x] != root:
            self._parent[x], x = root, self._parent[x]
        return root

    def union(self, x: int, y: int) -> None:
        root_x = self.find(x)
        root_y = self.find(y)
        if root_x == root_y:
            return

        if self._rank[root_x] < self._rank[root_y]:
            self._parent[root_x] = root_y
        elif self._rank[root_x] > self._rank[root_y]:
            self._parent[root_y] = root_x
        else:
            self._parent[root_y] = root_x
            self._rank[root_x] += 1

    def components(self) -> list[list[int]]:
        """Groups of indices, each in ascending order."""
        groups: dict[int, list[int]] = {}
        for i in range(len(self._parent)):
            groups.setdefault(self.find(i), []).append(i)
        return list(groups.values())


def cluster_vectors(vectors: list[list[float]], min_similarity: float) -> list[list[int]]:
    """Connected components of the similarity graph at min_similarity."""
    n = len(vectors)
    uf = UnionFind(n)
    for i in range(n):
        for j in range(i + 1, n):
            if cosine_similarity(vectors[i], vectors[j]) >= min_similarity:
                uf.union(i, j)
    return uf.components()


def find_medoid(vectors: list[list[float]]) -> int:
    """Index of the vector with the highest mean similarity to the others.

    Ties go to the earliest index.
    """
    if len(vectors) <= 1:
        return 0

    best_index = 0
    best_avg = -math.inf
    for i, vector in enumerate(vectors):
        total = sum(cosine_similarity(vector, other) for j, other in enumerate(vectors) if j != i)
        avg = total / (len(vectors) - 1)
        if avg > best_avg:
            best_avg = avg
            best_index = i
    return best_index


def average_pairwise_similarity(vectors: list[list[float]]) -> float:
    total = 0.0
    pairs = 0
    for i in range(len(vectors)):
        for j in range(i + 1, len(vectors)):
            total += cosine_similarity(vectors[i], vectors[j])
            pairs += 1
    return total / pairs if pairs else 1.0


# Scoring factors


def prompt_complexity(content: str) -> float:
    """0-1 score favouring 15-50 word prompts with specific details."""
    word_count = len(content.split())
    if word_count < 5:
        word_count_score = 0.2
    elif word_count < 15:
        word_count_score = 0.5
    elif word_count < 50:
        word_count_score = 1.0
    else:
        word_count_score = 0.8

    lowered = content.lower()
    specificity = 0.0

    technical_matches = sum(1 for term in TECHNICAL_TERMS if term in lowered)
    specificity += min(technical_matches * 0.1, 0.3)

    quote_matches = content.count('"') + content.count("'")
    specificity += min(quote_matches * 0.1, 0.2)

    if any(marker in content for marker in CODE_MARKERS):
        specificity += 0.2

    return min(word_count_score * 0.6 + specificity * 0.4, 1.0)


def success_signal(contents: list[str]) -> float:
    """0-1 lexical estimate of how well the prompts went; 0.5 is neutral."""
    indicators = 0.0
    for content in contents:
        lowered = content.lower()
        indicators += 0.1 * sum(1 for term in SUCCESS_TERMS if term in lowered)
        indicators -= 0.05 * sum(1 for term in FAILURE_TERMS if term in lowered)

    return max(0.0, min(1.0, 0.5 + indicators / max(1, len(contents))))


def context_specificity(content: str) -> float:
    """0-1 score for mentions of paths, languages, tools and identifiers."""
    lowered = content.lower()
    specificity = 0.0

    if "/" in content and ("." in content or "src/" in content or "lib/" in content):
        specificity += 0.3
    if any(term in lowered for term in LANGUAGE_TERMS):
        specificity += 0.15
    if any(term in lowered for term in TOOL_TERMS):
        specificity += 0.1
    if _CAMEL_CASE.search(content):
        specificity += 0.1
    if _SNAKE_CASE.search(content):
        specificity += 0.1

    return min(specificity, 1.0)


def burst_factor(timestamps: list[datetime]) -> float:
    """Low for prompts bunched into one hour, high for week-long habits."""
    if len(timestamps) < 2:
        return 0.5

    spread = (max(timestamps) - min(timestamps)).total_seconds()
    if spread < 3600:
        return 0.2

    days = spread / 86400
    if days >= 7:
        return 1.0
    if days >= 1:
        return 0.7
    return 0.4


class PatternDetector:
    """Re-clusters all indexed user prompts on request.

    Only one run may be in flight per detector; the result of a completed
    run replaces the previous pattern list.
    """

    def __init__(
        self,
        store: MessageStore,
        config: DetectorConfig | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self.config = config or DetectorConfig()
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._run_lock = threading.Lock()
        self.patterns: list[DetectedPattern] = []
        self.last_analyzed: datetime | None = None
        self.last_error: str | None = None

    @property
    def is_analyzing(self) -> bool:
        return self._run_lock.locked()

    def detect_patterns(
        self,
        min_similarity: float | None = None,
        min_cluster_size: int | None = None,
        max_patterns: int | None = None,
    ) -> list[DetectedPattern] | None:
        """Run a full detection.

        Returns:
            The ranked patterns, or None if another run is in progress
        """
        if not self._run_lock.acquire(blocking=False):
            logger.info("Pattern detection already running, skipping request")
            return None

        try:
            self.last_error = None
            patterns = self._perform_detection(
                self.config.min_similarity if min_similarity is None else min_similarity,
                self.config.min_cluster_size if min_cluster_size is None else min_cluster_size,
                self.config.max_patterns if max_patterns is None else max_patterns,
            )
            self.patterns = patterns
            self.last_analyzed = self._clock()
            return patterns
        except Exception as exc:
            self.last_error = f"Pattern detection failed: {exc}"
            raise
        finally:
            self._run_lock.release()

    def start_detection(self, **kwargs: float | int) -> threading.Thread:
        """Run detect_patterns on a background thread."""
        thread = threading.Thread(
            target=self._detect_in_background,
            kwargs=kwargs,
            name="pattern-detection",
            daemon=True,
        )
        thread.start()
        return thread

    def _detect_in_background(self, **kwargs: float | int) -> None:
        try:
            self.detect_patterns(**kwargs)
        except Exception:
            logger.exception("Background pattern detection failed")

    def patterns_for_repo(self, repo_path: str) -> list[DetectedPattern]:
        return [
            pattern
            for pattern in self.patterns
            if any(member.message.repo_path == repo_path for member in pattern.members)
        ]

    def clear_patterns(self) -> None:
        self.patterns = []
        self.last_analyzed = None

    def _perform_detection(
        self,
        min_similarity: float,
        min_cluster_size: int,
        max_patterns: int,
    ) -> list[DetectedPattern]:
        rows = self._store.get_user_message_embeddings()
        if len(rows) < max(min_cluster_size, 1):
            logger.info("Not enough user messages for detection: count=%d", len(rows))
            return []

        clusters = [
            cluster
            for cluster in cluster_vectors([row.embedding for row in rows], min_similarity)
            if len(cluster) >= min_cluster_size
        ]

        ids = [rows[index].id for cluster in clusters for index in cluster]
        messages_by_id = {message.id: message for message in self._store.get_messages_by_ids(ids)}

        now = self._clock()
        patterns = []
        for cluster in clusters:
            members_rows = [rows[index] for index in cluster if rows[index].id in messages_by_id]
            if len(members_rows) < max(min_cluster_size, 1):
                continue
            patterns.append(self._build_pattern(members_rows, messages_by_id, now))

        patterns.sort(key=lambda pattern: pattern.score.composite_score, reverse=True)
        logger.info(
            "Pattern detection complete: messages=%d clusters=%d patterns=%d",
            len(rows),
            len(clusters),
            min(len(patterns), max_patterns),
        )
        return patterns[:max_patterns]

    def _build_pattern(
        self,
        rows: list[MessageVector],
        messages_by_id: dict[int, EmbeddedMessage],
        now: datetime,
    ) -> DetectedPattern:
        vectors = [row.embedding for row in rows]
        medoid = rows[find_medoid(vectors)]
        representative = messages_by_id[medoid.id]

        members = sorted(
            (
                PatternMember(
                    message=messages_by_id[row.id],
                    similarity_to_representative=cosine_similarity(row.embedding, medoid.embedding),
                )
                for row in rows
            ),
            key=lambda member: member.similarity_to_representative,
            reverse=True,
        )

        score = PatternScore(
            count=len(members),
            session_diversity=len({row.session_id for row in rows}),
            repo_diversity=len({row.repo_path for row in rows}),
            avg_similarity=average_pairwise_similarity(vectors),
            most_recent=max(row.timestamp for row in rows),
            evaluated_at=now,
            prompt_complexity=prompt_complexity(representative.content),
            success_signal=success_signal([member.message.content for member in members]),
            context_specificity=context_specificity(representative.content),
            burst_factor=burst_factor([row.timestamp for row in rows]),
        )

        return DetectedPattern(
            id=str(uuid4()),
            representative=representative,
            members=members,
            score=score,
        )
