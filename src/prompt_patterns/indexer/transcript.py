"""Parser for Claude Code conversation transcripts.

Claude Code stores conversations as JSONL files at:
    ~/.claude/projects/<encoded-project-path>/<session-id>.jsonl

Each line is a JSON object with:
- type: "user", "assistant", "summary", "queue-operation", ...
- uuid: message identifier
- message.content: string or array of content blocks
- timestamp: ISO 8601 timestamp
- cwd: Working directory (project path)

Every line parses to exactly one event: a TranscriptTurn, an IgnoredEntry
for well-formed lines that are not conversation turns, or an
UnparseableLine. Callers skip everything that is not a turn.
"""

import hashlib
import json
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

from prompt_patterns.logging import get_logger
from prompt_patterns.models import MessageRole

logger = get_logger("transcript")

INDEXED_TYPES = {MessageRole.USER.value, MessageRole.ASSISTANT.value}

# Block types that are structured data or internal reasoning, not prompt text
SKIPPED_BLOCK_TYPES = {"tool_use", "tool_result", "thinking"}


@dataclass
class TranscriptTurn:
    """A user or assistant turn extracted from a transcript line."""

    message_uuid: str
    role: str
    content: str
    timestamp: datetime
    session_id: str
    repo_path: str


@dataclass
class IgnoredEntry:
    """A well-formed line that carries no indexable turn."""

    line_number: int
    reason: str


@dataclass
class UnparseableLine:
    """A line that is not valid JSON or not a JSON object."""

    line_number: int
    error: str


TranscriptEvent = TranscriptTurn | IgnoredEntry | UnparseableLine


@dataclass
class ParsedTranscript:
    """Result of parsing a whole session file."""

    turns: list[TranscriptTurn]
    ignored: int = 0
    unparseable: int = 0


def compute_file_hash(path: Path) -> str:
    """Compute SHA-256 hash of a file.

    Args:
        path: Path to file to hash

    Returns:
        Hex-encoded SHA-256 hash string
    """
    hasher = hashlib.sha256()
    with open(path, "rb") as f:
        # Read in chunks for memory efficiency with large files
        for chunk in iter(lambda: f.read(65536), b""):
            hasher.update(chunk)
    return hasher.hexdigest()


def parse_timestamp(timestamp_str: str | None) -> datetime | None:
    """Parse an ISO 8601 timestamp (e.g. "2026-01-26T00:38:34.590Z").

    Returns:
        Timezone-aware datetime, or None if missing or invalid
    """
    if not timestamp_str or not isinstance(timestamp_str, str):
        return None

    try:
        if timestamp_str.endswith("Z"):
            timestamp_str = timestamp_str[:-1] + "+00:00"
        parsed = datetime.fromisoformat(timestamp_str)
    except ValueError:
        return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def extract_content(content: str | list | None) -> str:
    """Extract prompt text from a message content field.

    Args:
        content: Either a string or array of content blocks

    Returns:
        Extracted text, stripped; empty if nothing indexable
    """
    if content is None:
        return ""

    if isinstance(content, str):
        return content.strip()

    if not isinstance(content, list):
        return ""

    text_parts: list[str] = []
    for block in content:
        if isinstance(block, str):
            text_parts.append(block)
            continue
        if not isinstance(block, dict):
            continue
        if block.get("type") in SKIPPED_BLOCK_TYPES:
            continue
        # "text" blocks and unknown block types that carry text
        text = block.get("text")
        if isinstance(text, str):
            text_parts.append(text)

    return "\n".join(text_parts).strip()


class TranscriptParser:
    """Turns Claude Code JSONL session files into transcript events."""

    def __init__(self, session_id: str, repo_path: str, fallback_timestamp: datetime) -> None:
        self.session_id = session_id
        self.repo_path = repo_path
        self.fallback_timestamp = fallback_timestamp
        self._sequence = 0

    def parse_line(self, line: str, line_number: int) -> TranscriptEvent:
        try:
            entry = json.loads(line)
        except json.JSONDecodeError as exc:
            return UnparseableLine(line_number=line_number, error=str(exc))

        if not isinstance(entry, dict):
            return UnparseableLine(line_number=line_number, error="not a JSON object")

        entry_type = entry.get("type")
        if entry_type not in INDEXED_TYPES:
            return IgnoredEntry(line_number=line_number, reason=f"type={entry_type}")

        message = entry.get("message")
        if isinstance(message, dict) and "content" in message:
            content = extract_content(message.get("content"))
        else:
            content = extract_content(entry.get("content"))

        if not content:
            return IgnoredEntry(line_number=line_number, reason="empty content")

        uuid = entry.get("uuid")
        if not isinstance(uuid, str) or not uuid:
            self._sequence += 1
            uuid = f"{entry_type}-{self._sequence}"

        timestamp = parse_timestamp(entry.get("timestamp")) or self.fallback_timestamp

        return TranscriptTurn(
            message_uuid=uuid,
            role=entry_type,
            content=content,
            timestamp=timestamp,
            session_id=self.session_id,
            repo_path=self.repo_path,
        )


def parse_session_file(path: Path, session_id: str, repo_path: str) -> ParsedTranscript:
    """Parse a session file into turns, in source order.

    Args:
        path: Path to the JSONL file
        session_id: Session identifier (filename without extension)
        repo_path: Repository the session belongs to

    Returns:
        ParsedTranscript with the turns and counts of skipped lines
    """
    fallback = datetime.fromtimestamp(path.stat().st_mtime, tz=timezone.utc)
    parser = TranscriptParser(session_id, repo_path, fallback)
    result = ParsedTranscript(turns=[])

    with open(path, encoding="utf-8", errors="replace") as f:
        for line_number, line in enumerate(f, start=1):
            line = line.strip()
            if not line:
                continue

            event = parser.parse_line(line, line_number)
            match event:
                case TranscriptTurn():
                    result.turns.append(event)
                case IgnoredEntry():
                    result.ignored += 1
                case UnparseableLine(error=error):
                    result.unparseable += 1
                    logger.debug("Skipping malformed line: path=%s line=%d error=%s", path, line_number, error)

    return result
