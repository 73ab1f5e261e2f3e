"""Canonical data models."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class MessageRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


class SkillLocation(str, Enum):
    """Where a suggested skill should be saved."""

    GLOBAL = "global"
    PROJECT = "project"


@dataclass
class EmbeddedMessage:
    """A transcript turn that has been embedded and persisted."""

    id: int
    session_id: str
    message_uuid: str
    role: str  # user, assistant
    content: str
    embedding: list[float]
    repo_path: str
    timestamp: datetime


@dataclass
class MessageVector:
    """Lightweight user-message row used for clustering."""

    id: int
    session_id: str
    repo_path: str
    timestamp: datetime
    embedding: list[float]


@dataclass
class IndexCheckpoint:
    """Bookkeeping for the last successful index of a source file."""

    source_file: str
    file_hash: str
    message_count: int
    last_indexed_at: datetime


@dataclass
class RepeatCandidate:
    """A prompt seen repeatedly, tracked as new messages are indexed."""

    id: str
    original_message_id: int
    content: str
    repo_path: str
    repeat_count: int
    last_seen_at: datetime
    avg_similarity: float
    dismissed: bool = False
    dismissed_at: datetime | None = None
    repo_paths: list[str] = field(default_factory=list)

    def is_ready_to_surface(self, min_repeats: int = 3) -> bool:
        return self.repeat_count >= min_repeats and not self.dismissed

    def should_resurface(self, min_repeats: int = 2) -> bool:
        """True once a dismissed candidate has collected fresh repeats."""
        if not self.dismissed or self.dismissed_at is None:
            return False
        return self.repeat_count >= min_repeats and self.last_seen_at > self.dismissed_at


@dataclass
class PatternSuggestion:
    """Payload emitted when a repeat candidate is ready to surface."""

    candidate: RepeatCandidate
    original_message: EmbeddedMessage
    suggested_skill_name: str
    suggested_description: str
    suggested_location: SkillLocation
