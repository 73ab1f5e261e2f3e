"""Configuration loading and management."""

import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml


@dataclass
class StoreConfig:
    db_path: Path = field(
        default_factory=lambda: Path.home() / "prompt-patterns" / "state" / "transcript_index.sqlite"
    )


@dataclass
class EmbeddingConfig:
    enabled: bool = True
    model: str = "BAAI/bge-small-en-v1.5"
    max_chars: int = 1000


@dataclass
class IndexerConfig:
    projects_path: Path = field(default_factory=lambda: Path.home() / ".claude" / "projects")
    interval_seconds: int = 300


@dataclass
class TrackerConfig:
    similarity_threshold: float = 0.80
    min_repeats_to_surface: int = 3
    max_notifications_per_day: int = 2
    min_word_count: int = 5
    cache_size: int = 500
    resurface_min_repeats: int = 2


@dataclass
class DetectorConfig:
    min_similarity: float = 0.75
    min_cluster_size: int = 2
    max_patterns: int = 50


@dataclass
class SearchConfig:
    limit: int = 20
    threshold: float = 0.30


@dataclass
class Config:
    store: StoreConfig = field(default_factory=StoreConfig)
    embedding: EmbeddingConfig = field(default_factory=EmbeddingConfig)
    indexer: IndexerConfig = field(default_factory=IndexerConfig)
    tracker: TrackerConfig = field(default_factory=TrackerConfig)
    detector: DetectorConfig = field(default_factory=DetectorConfig)
    search: SearchConfig = field(default_factory=SearchConfig)


def expand_env_var(value: str) -> str:
    """Expand environment variables in string (e.g. ${VAR})."""
    if value.startswith("${") and value.endswith("}"):
        env_var = value[2:-1]
        return os.environ.get(env_var, value)
    return value


def expand_path(path_str: str) -> Path:
    """Expand ~ and environment variables in path."""
    return Path(os.path.expandvars(os.path.expanduser(path_str)))


def load_config(config_path: Path | None = None) -> Config:
    """Load configuration from YAML file."""
    if config_path is None:
        # Look for config in standard locations
        search_paths = [
            Path.cwd() / "config.yaml",
            Path.home() / ".config" / "prompt-patterns" / "config.yaml",
            Path("/etc/prompt-patterns/config.yaml"),
        ]
        for path in search_paths:
            if path.exists():
                config_path = path
                break

    if config_path is None or not config_path.exists():
        return Config()

    with open(config_path) as f:
        data = yaml.safe_load(f) or {}

    defaults = Config()

    store_data = data.get("store", {})
    store = StoreConfig(
        db_path=expand_path(store_data.get("db_path", str(defaults.store.db_path))),
    )

    embedding_data = data.get("embedding", {})
    embedding = EmbeddingConfig(
        enabled=embedding_data.get("enabled", True),
        model=expand_env_var(embedding_data.get("model", defaults.embedding.model)),
        max_chars=embedding_data.get("max_chars", defaults.embedding.max_chars),
    )

    indexer_data = data.get("indexer", {})
    indexer = IndexerConfig(
        projects_path=expand_path(indexer_data.get("projects_path", "~/.claude/projects")),
        interval_seconds=indexer_data.get("interval_seconds", defaults.indexer.interval_seconds),
    )

    tracker_data = data.get("tracker", {})
    tracker = TrackerConfig(
        similarity_threshold=tracker_data.get(
            "similarity_threshold", defaults.tracker.similarity_threshold
        ),
        min_repeats_to_surface=tracker_data.get(
            "min_repeats_to_surface", defaults.tracker.min_repeats_to_surface
        ),
        max_notifications_per_day=tracker_data.get(
            "max_notifications_per_day", defaults.tracker.max_notifications_per_day
        ),
        min_word_count=tracker_data.get("min_word_count", defaults.tracker.min_word_count),
        cache_size=tracker_data.get("cache_size", defaults.tracker.cache_size),
        resurface_min_repeats=tracker_data.get(
            "resurface_min_repeats", defaults.tracker.resurface_min_repeats
        ),
    )

    detector_data = data.get("detector", {})
    detector = DetectorConfig(
        min_similarity=detector_data.get("min_similarity", defaults.detector.min_similarity),
        min_cluster_size=detector_data.get("min_cluster_size", defaults.detector.min_cluster_size),
        max_patterns=detector_data.get("max_patterns", defaults.detector.max_patterns),
    )

    search_data = data.get("search", {})
    search = SearchConfig(
        limit=search_data.get("limit", defaults.search.limit),
        threshold=search_data.get("threshold", defaults.search.threshold),
    )

    return Config(
        store=store,
        embedding=embedding,
        indexer=indexer,
        tracker=tracker,
        detector=detector,
        search=search,
    )
