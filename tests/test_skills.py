"""Tests for skill naming and placement hints."""

from datetime import datetime, timezone

from prompt_patterns.detector import DetectedPattern, PatternMember, PatternScore
from prompt_patterns.models import EmbeddedMessage, RepeatCandidate, SkillLocation
from prompt_patterns.skills import (
    candidate_description,
    candidate_location,
    primary_repo_path,
    sanitize_skill_name,
    skill_name_from_prompt,
    suggest_description,
    suggest_location,
    suggest_skill_name,
)

TS = datetime(2026, 3, 1, tzinfo=timezone.utc)


def make_pattern(content: str, members: list[tuple[str, str]], pattern_id: str = "ABCDEF1234") -> DetectedPattern:
    """Build a pattern whose members have the given (session, repo) pairs."""
    messages = [
        EmbeddedMessage(i + 1, session, f"u{i}", "user", content, [1.0], repo, TS)
        for i, (session, repo) in enumerate(members)
    ]
    return DetectedPattern(
        id=pattern_id,
        representative=messages[0],
        members=[PatternMember(message, 1.0) for message in messages],
        score=PatternScore(
            count=len(messages),
            session_diversity=len({s for s, _ in members}),
            repo_diversity=len({r for _, r in members}),
            avg_similarity=1.0,
            most_recent=TS,
            evaluated_at=TS,
        ),
    )


def make_candidate(**kwargs) -> RepeatCandidate:
    values = dict(
        id="c1",
        original_message_id=1,
        content="Check the logs",
        repo_path="/repo/a",
        repeat_count=4,
        last_seen_at=TS,
        avg_similarity=0.9,
    )
    values.update(kwargs)
    return RepeatCandidate(**values)


class TestSkillNameFromPrompt:
    """Tests for skill_name_from_prompt."""

    def test_meaningful_words(self) -> None:
        """Short words are dropped and at most four are kept."""
        assert skill_name_from_prompt("Go to the PR and fix all of the lint errors") == "the-and-fix-all"

    def test_uses_first_fifty_characters(self) -> None:
        prompt = "x" * 48 + " important words after the cut"
        assert skill_name_from_prompt(prompt) == "x" * 48

    def test_fallback(self) -> None:
        assert skill_name_from_prompt("?? !! ok") == "repeated-prompt"


class TestSuggestSkillName:
    """Tests for suggest_skill_name."""

    def test_first_sentence(self) -> None:
        pattern = make_pattern("Run the full test suite. Then report failures.", [("s1", "/r")])
        assert suggest_skill_name(pattern) == "run-the-full-test-suite"

    def test_at_most_five_words(self) -> None:
        pattern = make_pattern("please carefully review every single changed file", [("s1", "/r")])
        assert suggest_skill_name(pattern) == "please-carefully-review-every-single"

    def test_fallback_to_id(self) -> None:
        pattern = make_pattern("?? what", [("s1", "/r")])
        assert suggest_skill_name(pattern) == "pattern-abcdef12"


class TestSuggestDescription:
    """Tests for suggest_description."""

    def test_counts(self) -> None:
        pattern = make_pattern("prompt", [("s1", "/a"), ("s2", "/b"), ("s2", "/a")])
        assert suggest_description(pattern) == "Pattern: 3 similar prompts, across 2 sessions, in 2 repositories"

    def test_single_session(self) -> None:
        pattern = make_pattern("prompt", [("s1", "/a"), ("s1", "/a")])
        assert suggest_description(pattern) == "Pattern: 2 similar prompts"

    def test_single_member(self) -> None:
        pattern = make_pattern("prompt", [("s1", "/a")])
        assert suggest_description(pattern) == "Saved from detected pattern"


class TestLocation:
    """Tests for placement hints."""

    def test_pattern_single_repo_is_project(self) -> None:
        pattern = make_pattern("prompt", [("s1", "/a"), ("s2", "/a")])
        assert suggest_location(pattern) == SkillLocation.PROJECT

    def test_pattern_many_repos_is_global(self) -> None:
        pattern = make_pattern("prompt", [("s1", "/a"), ("s2", "/b")])
        assert suggest_location(pattern) == SkillLocation.GLOBAL

    def test_candidate_location(self) -> None:
        assert candidate_location(make_candidate()) == SkillLocation.PROJECT
        assert candidate_location(make_candidate(repo_paths=["/repo/a"])) == SkillLocation.PROJECT
        assert candidate_location(make_candidate(repo_paths=["/repo/a", "/repo/b"])) == SkillLocation.GLOBAL

    def test_candidate_description(self) -> None:
        assert candidate_description(make_candidate()) == "Pattern: 4 similar prompts"


class TestSanitizeSkillName:
    """Tests for sanitize_skill_name."""

    def test_replaces_invalid_characters(self) -> None:
        assert sanitize_skill_name("My Skill Name") == "my-skill-name"
        assert sanitize_skill_name("skill@#$%name") == "skill-name"
        assert sanitize_skill_name("UPPERCASE") == "uppercase"

    def test_collapses_and_strips_dashes(self) -> None:
        assert sanitize_skill_name("--double--dashes--") == "double-dashes"
        assert sanitize_skill_name("../../etc/passwd") == "etc-passwd"

    def test_keeps_valid_names(self) -> None:
        assert sanitize_skill_name("already-valid") == "already-valid"
        assert sanitize_skill_name("snake_case_name") == "snake_case_name"

    def test_empty_falls_back(self) -> None:
        assert sanitize_skill_name("") == "skill"
        assert sanitize_skill_name("@#$%") == "skill"


class TestPrimaryRepoPath:
    """Tests for primary_repo_path."""

    def test_most_common_repo(self) -> None:
        pattern = make_pattern("prompt", [("s1", "/a"), ("s2", "/b"), ("s3", "/b")])
        assert primary_repo_path(pattern) == "/b"

    def test_single_repo(self) -> None:
        pattern = make_pattern("prompt", [("s1", "/a")])
        assert primary_repo_path(pattern) == "/a"
