"""Tests for the Claude Code transcript parser."""

import hashlib
import json
import os
from datetime import datetime, timezone
from pathlib import Path

import pytest

from prompt_patterns.indexer.transcript import (
    IgnoredEntry,
    TranscriptParser,
    TranscriptTurn,
    UnparseableLine,
    compute_file_hash,
    extract_content,
    parse_session_file,
    parse_timestamp,
)

FALLBACK = datetime(2026, 1, 1, tzinfo=timezone.utc)


@pytest.fixture
def parser() -> TranscriptParser:
    return TranscriptParser("session-1", "/home/user/repo", FALLBACK)


def write_jsonl(path: Path, entries: list[dict | str]) -> Path:
    lines = [entry if isinstance(entry, str) else json.dumps(entry) for entry in entries]
    path.write_text("\n".join(lines) + "\n")
    return path


class TestExtractContent:
    """Tests for extract_content."""

    def test_string(self) -> None:
        assert extract_content("  hello  ") == "hello"

    def test_none(self) -> None:
        assert extract_content(None) == ""

    def test_text_blocks_joined(self) -> None:
        content = [
            {"type": "text", "text": "First part"},
            {"type": "text", "text": "Second part"},
        ]
        assert extract_content(content) == "First part\nSecond part"

    def test_skips_tool_and_thinking_blocks(self) -> None:
        """Structured and reasoning blocks should not contribute text."""
        content = [
            {"type": "thinking", "thinking": "hmm", "text": "secret"},
            {"type": "tool_use", "name": "Bash", "input": {"command": "ls"}},
            {"type": "tool_result", "content": "file.txt", "text": "output"},
            {"type": "text", "text": "Visible answer"},
        ]
        assert extract_content(content) == "Visible answer"

    def test_only_tool_blocks_is_empty(self) -> None:
        assert extract_content([{"type": "tool_result", "content": "x"}]) == ""

    def test_unexpected_type(self) -> None:
        assert extract_content({"text": "dict is not a block list"}) == ""


class TestParseTimestamp:
    """Tests for parse_timestamp."""

    def test_zulu_suffix(self) -> None:
        parsed = parse_timestamp("2026-01-26T00:38:34.590Z")
        assert parsed == datetime(2026, 1, 26, 0, 38, 34, 590000, tzinfo=timezone.utc)

    def test_offset(self) -> None:
        parsed = parse_timestamp("2026-01-26T02:00:00+02:00")
        assert parsed == datetime(2026, 1, 26, 0, 0, tzinfo=timezone.utc)

    def test_naive_assumed_utc(self) -> None:
        parsed = parse_timestamp("2026-01-26T00:00:00")
        assert parsed is not None
        assert parsed.tzinfo is not None

    @pytest.mark.parametrize("value", [None, "", "yesterday", 12345])
    def test_invalid(self, value: object) -> None:
        assert parse_timestamp(value) is None  # type: ignore[arg-type]


class TestParseLine:
    """Tests for TranscriptParser.parse_line."""

    def test_user_turn(self, parser: TranscriptParser) -> None:
        line = json.dumps({
            "type": "user",
            "uuid": "u-1",
            "timestamp": "2026-01-26T00:38:34Z",
            "message": {"role": "user", "content": "Run the test suite"},
        })

        event = parser.parse_line(line, 1)

        assert isinstance(event, TranscriptTurn)
        assert event.message_uuid == "u-1"
        assert event.role == "user"
        assert event.content == "Run the test suite"
        assert event.session_id == "session-1"
        assert event.repo_path == "/home/user/repo"
        assert event.timestamp == datetime(2026, 1, 26, 0, 38, 34, tzinfo=timezone.utc)

    def test_assistant_blocks(self, parser: TranscriptParser) -> None:
        line = json.dumps({
            "type": "assistant",
            "uuid": "a-1",
            "timestamp": "2026-01-26T00:38:40Z",
            "message": {"content": [{"type": "text", "text": "Done."}, {"type": "tool_use", "name": "Bash"}]},
        })

        event = parser.parse_line(line, 2)

        assert isinstance(event, TranscriptTurn)
        assert event.role == "assistant"
        assert event.content == "Done."

    def test_top_level_content_fallback(self, parser: TranscriptParser) -> None:
        """Entries without message.content should fall back to content."""
        line = json.dumps({"type": "user", "uuid": "u-2", "content": "Top level prompt"})
        event = parser.parse_line(line, 1)
        assert isinstance(event, TranscriptTurn)
        assert event.content == "Top level prompt"

    def test_missing_uuid_gets_sequence(self, parser: TranscriptParser) -> None:
        first = parser.parse_line(json.dumps({"type": "user", "content": "one"}), 1)
        second = parser.parse_line(json.dumps({"type": "assistant", "content": "two"}), 2)
        assert isinstance(first, TranscriptTurn)
        assert isinstance(second, TranscriptTurn)
        assert first.message_uuid == "user-1"
        assert second.message_uuid == "assistant-2"

    def test_missing_timestamp_uses_fallback(self, parser: TranscriptParser) -> None:
        event = parser.parse_line(json.dumps({"type": "user", "uuid": "u", "content": "hi"}), 1)
        assert isinstance(event, TranscriptTurn)
        assert event.timestamp == FALLBACK

    def test_other_types_ignored(self, parser: TranscriptParser) -> None:
        event = parser.parse_line(json.dumps({"type": "summary", "summary": "A session"}), 3)
        assert isinstance(event, IgnoredEntry)
        assert event.line_number == 3
        assert "summary" in event.reason

    def test_empty_content_ignored(self, parser: TranscriptParser) -> None:
        line = json.dumps({"type": "user", "uuid": "u", "message": {"content": [{"type": "tool_result"}]}})
        assert isinstance(parser.parse_line(line, 1), IgnoredEntry)

    def test_invalid_json(self, parser: TranscriptParser) -> None:
        event = parser.parse_line("{not json", 4)
        assert isinstance(event, UnparseableLine)
        assert event.line_number == 4

    def test_non_object(self, parser: TranscriptParser) -> None:
        assert isinstance(parser.parse_line("[1, 2, 3]", 1), UnparseableLine)


class TestParseSessionFile:
    """Tests for parse_session_file."""

    def test_mixed_file(self, tmp_path: Path) -> None:
        """Turns should be returned in order, with other lines counted."""
        path = write_jsonl(tmp_path / "abc.jsonl", [
            {"type": "summary", "summary": "title"},
            {"type": "user", "uuid": "u1", "timestamp": "2026-01-26T00:00:00Z", "message": {"content": "first prompt"}},
            "garbage line",
            {"type": "assistant", "uuid": "a1", "timestamp": "2026-01-26T00:00:05Z",
             "message": {"content": [{"type": "text", "text": "reply"}]}},
            {"type": "user", "uuid": "u2", "timestamp": "2026-01-26T00:01:00Z",
             "message": {"content": [{"type": "tool_result", "content": "ok"}]}},
        ])

        parsed = parse_session_file(path, "abc", "/repo")

        assert [turn.message_uuid for turn in parsed.turns] == ["u1", "a1"]
        assert parsed.ignored == 2
        assert parsed.unparseable == 1

    def test_blank_lines_skipped(self, tmp_path: Path) -> None:
        path = tmp_path / "s.jsonl"
        path.write_text('\n\n{"type": "user", "uuid": "u1", "content": "hello"}\n\n')
        parsed = parse_session_file(path, "s", "/repo")
        assert len(parsed.turns) == 1
        assert parsed.ignored == 0
        assert parsed.unparseable == 0

    def test_fallback_timestamp_is_file_mtime(self, tmp_path: Path) -> None:
        path = write_jsonl(tmp_path / "s.jsonl", [{"type": "user", "uuid": "u1", "content": "hello"}])
        mtime = datetime(2026, 2, 3, 4, 5, 6, tzinfo=timezone.utc).timestamp()
        os.utime(path, (mtime, mtime))

        parsed = parse_session_file(path, "s", "/repo")

        assert parsed.turns[0].timestamp == datetime(2026, 2, 3, 4, 5, 6, tzinfo=timezone.utc)


class TestComputeFileHash:
    """Tests for compute_file_hash."""

    def test_matches_sha256(self, tmp_path: Path) -> None:
        path = tmp_path / "f.jsonl"
        path.write_bytes(b"some content\n" * 10000)
        assert compute_file_hash(path) == hashlib.sha256(path.read_bytes()).hexdigest()

    def test_changes_with_content(self, tmp_path: Path) -> None:
        path = tmp_path / "f.jsonl"
        path.write_text("a")
        before = compute_file_hash(path)
        path.write_text("b")
        assert compute_file_hash(path) != before
