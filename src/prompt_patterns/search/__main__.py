"""CLI entry point for search and pattern inspection.

Allows searching indexed messages, detecting prompt patterns and
managing repeat candidates via command line.
"""

import sys
from datetime import datetime

import click

from prompt_patterns.config import Config, load_config
from prompt_patterns.detector import DetectedPattern, PatternDetector
from prompt_patterns.embedding import EmbeddingUnavailableError, create_embedding_service
from prompt_patterns.logging import setup_logging
from prompt_patterns.models import RepeatCandidate
from prompt_patterns.search.semantic import SearchResult, SemanticSearch
from prompt_patterns.skills import (
    primary_repo_path,
    sanitize_skill_name,
    skill_name_from_prompt,
    suggest_description,
    suggest_location,
    suggest_skill_name,
)
from prompt_patterns.store import MessageStore, StoreError
from prompt_patterns.tracker import RepeatTracker


def format_timestamp(ts: datetime) -> str:
    """Format timestamp for display."""
    return ts.astimezone().strftime("%Y-%m-%d %H:%M:%S")


def open_store(config: Config) -> MessageStore:
    try:
        return MessageStore(config.store.db_path)
    except StoreError as e:
        click.echo(f"Error opening message store: {e}", err=True)
        sys.exit(1)


def print_result(result: SearchResult, verbose: bool = False) -> None:
    """Print a message search hit."""
    message = result.message
    click.echo(
        f"\033[36m[{format_timestamp(message.timestamp)}]\033[0m "
        f"\033[32m{result.match_percentage}%\033[0m ({message.role})"
    )
    click.echo(f"Session: {message.session_id}")
    if verbose:
        click.echo(f"Repository: {message.repo_path}")

    click.echo(f"\n{message.content}\n")
    click.echo("-" * 40)


def print_pattern(rank: int, pattern: DetectedPattern, verbose: bool = False) -> None:
    """Print a detected pattern."""
    score = pattern.score
    click.echo(f"\033[1m#{rank} {suggest_skill_name(pattern)}\033[0m  score={score.composite_score:.2f}")
    click.echo(
        f"{suggest_description(pattern)} | suggested location: {suggest_location(pattern).value}"
    )
    click.echo(f"Preview: {pattern.preview}")
    if verbose:
        click.echo(f"Repository: {primary_repo_path(pattern)}")
        for member in pattern.members:
            click.echo(
                f"  {member.similarity_to_representative:.2f} "
                f"[{format_timestamp(member.message.timestamp)}] {member.message.content[:80]}"
            )
    click.echo("-" * 40)


def print_candidate(candidate: RepeatCandidate) -> None:
    """Print a repeat candidate."""
    status = "dismissed" if candidate.dismissed else "active"
    click.echo(
        f"\033[36m{candidate.id}\033[0m repeats={candidate.repeat_count} "
        f"avg_similarity={candidate.avg_similarity:.2f} {status}"
    )
    click.echo(f"Last seen: {format_timestamp(candidate.last_seen_at)} | Repository: {candidate.repo_path}")
    click.echo(f"{candidate.content[:200]}")
    click.echo("-" * 40)


@click.group()
def cli() -> None:
    """Search session history and inspect repeated prompts."""
    setup_logging("search", console=False)


@cli.command()
@click.argument("query")
@click.option("--limit", "-n", default=None, type=int, help="Number of results")
@click.option("--verbose", "-v", is_flag=True, help="Show more details")
def messages(query: str, limit: int | None, verbose: bool) -> None:
    """Search indexed messages by meaning."""
    config = load_config()
    store = open_store(config)
    embedder = create_embedding_service(config.embedding)
    search = SemanticSearch(store, embedder, threshold=config.search.threshold)

    try:
        results = search.search(query, limit=limit or config.search.limit)
    except EmbeddingUnavailableError as e:
        click.echo(f"Error searching messages: {e}", err=True)
        sys.exit(1)
    finally:
        embedder.close()
        store.close()

    click.echo(f"Found {len(results)} similar messages:\n")

    for result in results:
        print_result(result, verbose)


@cli.command()
@click.option("--min-similarity", type=float, default=None, help="Similarity needed to group prompts")
@click.option("--min-cluster-size", type=int, default=None, help="Smallest group reported")
@click.option("--limit", "-n", type=int, default=None, help="Number of patterns")
@click.option("--repo", help="Only patterns seen in this repository")
@click.option("--verbose", "-v", is_flag=True, help="Show pattern members")
def patterns(
    min_similarity: float | None,
    min_cluster_size: int | None,
    limit: int | None,
    repo: str | None,
    verbose: bool,
) -> None:
    """Detect and rank repeated prompt patterns."""
    config = load_config()
    store = open_store(config)
    detector = PatternDetector(store, config.detector)

    try:
        detected = detector.detect_patterns(
            min_similarity=min_similarity,
            min_cluster_size=min_cluster_size,
            max_patterns=limit,
        )
    except StoreError as e:
        click.echo(f"Error detecting patterns: {e}", err=True)
        sys.exit(1)
    finally:
        store.close()

    detected = detector.patterns_for_repo(repo) if repo else (detected or [])
    click.echo(f"Found {len(detected)} patterns:\n")

    for rank, pattern in enumerate(detected, start=1):
        print_pattern(rank, pattern, verbose)


@cli.command()
@click.option("--all", "show_all", is_flag=True, help="Include dismissed candidates")
def candidates(show_all: bool) -> None:
    """List repeat candidates tracked while indexing."""
    config = load_config()
    with open_store(config) as store:
        tracked = store.get_all_repeat_candidates()

    if not show_all:
        tracked = [candidate for candidate in tracked if not candidate.dismissed]
    tracked.sort(key=lambda candidate: candidate.repeat_count, reverse=True)

    click.echo(f"Found {len(tracked)} candidates:\n")
    for candidate in tracked:
        print_candidate(candidate)


@cli.command()
@click.argument("candidate_id")
def dismiss(candidate_id: str) -> None:
    """Dismiss a repeat candidate until it recurs."""
    config = load_config()
    with open_store(config) as store:
        found = RepeatTracker(store, config.tracker).dismiss_candidate(candidate_id)

    if not found:
        click.echo(f"No candidate with id {candidate_id}", err=True)
        sys.exit(1)
    click.echo(f"Dismissed {candidate_id}")


@cli.command()
@click.argument("candidate_id")
@click.option("--name", default=None, help="Name the skill was saved under")
def convert(candidate_id: str, name: str | None) -> None:
    """Stop tracking a candidate that was saved as a skill."""
    config = load_config()
    with open_store(config) as store:
        tracker = RepeatTracker(store, config.tracker)
        candidate = next((c for c in tracker.candidates if c.id == candidate_id), None)
        found = tracker.mark_as_converted(candidate_id)

    if not found or candidate is None:
        click.echo(f"No candidate with id {candidate_id}", err=True)
        sys.exit(1)

    skill_name = sanitize_skill_name(name) if name else skill_name_from_prompt(candidate.content)
    click.echo(f"Converted {candidate_id} as skill {skill_name}")


@cli.command()
def stats() -> None:
    """Show index statistics."""
    config = load_config()
    with open_store(config) as store:
        click.echo(f"Database: {store.database_path}")
        click.echo(f"Indexed sessions: {store.get_indexed_session_count()}")
        click.echo(f"Indexed messages: {store.get_message_count()}")
        click.echo(f"Repeat candidates: {len(store.get_all_repeat_candidates())}")


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
