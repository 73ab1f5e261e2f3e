"""Naming, description and placement hints for reusable skills.

The skill file format and where it is written belong to the consumer;
these helpers only propose values for it.
"""

import re
from collections import Counter
from typing import TYPE_CHECKING

from prompt_patterns.models import RepeatCandidate, SkillLocation

if TYPE_CHECKING:
    from prompt_patterns.detector import DetectedPattern

_NON_ALNUM = re.compile(r"[^0-9a-z]+")
_SENTENCE_END = re.compile(r"[.?!]")

_INVALID_NAME_CHARS = re.compile(r"[^\w-]+")
_DASH_RUN = re.compile(r"-{2,}")

DEFAULT_CANDIDATE_NAME = "repeated-prompt"
DEFAULT_SKILL_NAME = "skill"


def _words(text: str) -> list[str]:
    return [word for word in _NON_ALNUM.split(text.lower()) if word]


def sanitize_skill_name(name: str) -> str:
    """Make a user or model supplied name safe to use as an artifact name.

    Anything other than letters, digits, dashes and underscores becomes a
    dash, runs of dashes collapse, and edge dashes are stripped. Names
    with nothing left fall back to "skill".

    Examples:
        "My Skill Name"      -> "my-skill-name"
        "skill@#$%name"      -> "skill-name"
        "--double--dashes--" -> "double-dashes"
    """
    sanitized = _INVALID_NAME_CHARS.sub("-", name).lower()
    sanitized = _DASH_RUN.sub("-", sanitized).strip("-")
    return sanitized or DEFAULT_SKILL_NAME


def skill_name_from_prompt(content: str) -> str:
    """Kebab-case name from the first few meaningful words of a prompt."""
    words = [word for word in _words(content[:50]) if len(word) > 2][:4]
    if not words:
        return DEFAULT_CANDIDATE_NAME
    return sanitize_skill_name("-".join(words))


def suggest_skill_name(pattern: "DetectedPattern") -> str:
    """Kebab-case name from the first sentence of the representative prompt."""
    preview = pattern.representative.content[:50]
    match = _SENTENCE_END.search(preview)
    if match:
        preview = preview[: match.start()]

    name = "-".join(_words(preview)[:5])
    if not name:
        name = f"pattern-{pattern.id[:8]}"
    return sanitize_skill_name(name)


def primary_repo_path(pattern: "DetectedPattern") -> str | None:
    """The repository most members of a pattern came from."""
    counts = Counter(member.message.repo_path for member in pattern.members)
    if not counts:
        return None
    return counts.most_common(1)[0][0]


def suggest_description(pattern: "DetectedPattern") -> str:
    parts: list[str] = []
    if pattern.count > 1:
        parts.append(f"{pattern.count} similar prompts")
    if pattern.session_count > 1:
        parts.append(f"across {pattern.session_count} sessions")
    if pattern.repo_count > 1:
        parts.append(f"in {pattern.repo_count} repositories")

    if not parts:
        return "Saved from detected pattern"
    return "Pattern: " + ", ".join(parts)


def suggest_location(pattern: "DetectedPattern") -> SkillLocation:
    """Project-local when the pattern lives in a single repository."""
    return SkillLocation.PROJECT if pattern.repo_count <= 1 else SkillLocation.GLOBAL


def candidate_description(candidate: RepeatCandidate) -> str:
    return f"Pattern: {candidate.repeat_count} similar prompts"


def candidate_location(candidate: RepeatCandidate) -> SkillLocation:
    repos = set(candidate.repo_paths) or {candidate.repo_path}
    return SkillLocation.PROJECT if len(repos) <= 1 else SkillLocation.GLOBAL
