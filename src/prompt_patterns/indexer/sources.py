"""Source discovery for Claude Code session transcripts."""

from dataclasses import dataclass
from pathlib import Path
from urllib.parse import unquote

from prompt_patterns.logging import get_logger

logger = get_logger("sources")


@dataclass(frozen=True)
class SessionSource:
    """A transcript file together with its session and repository."""

    path: Path
    session_id: str
    repo_path: str


def decode_project_path(encoded: str) -> str:
    """Decode a repository path from a Claude Code project directory name.

    Handles percent-encoded names as well as the older dash encoding
    ("-home-user-repo" -> "/home/user/repo").
    """
    decoded = unquote(encoded)
    if decoded != encoded:
        return decoded

    if encoded.startswith("-"):
        return "/" + encoded[1:].replace("-", "/")

    return encoded


def discover_session_files(projects_path: Path) -> list[SessionSource]:
    """Discover Claude Code session files.

    Location: <projects_path>/<encoded-project>/**/*.jsonl

    Sub-agent transcripts (agent-*.jsonl) are skipped.

    Args:
        projects_path: Claude Code projects directory

    Returns:
        Sources sorted by path
    """
    if not projects_path.exists():
        return []

    sources: list[SessionSource] = []
    for project_dir in sorted(projects_path.iterdir()):
        if not project_dir.is_dir():
            continue

        repo_path = decode_project_path(project_dir.name)
        for path in sorted(project_dir.glob("**/*.jsonl")):
            if path.name.startswith("agent-"):
                continue
            sources.append(SessionSource(path=path, session_id=path.stem, repo_path=repo_path))

    logger.debug("Discovered session files: path=%s count=%d", projects_path, len(sources))
    return sources
