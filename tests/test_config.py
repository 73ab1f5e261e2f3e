"""Tests for configuration loading."""

from pathlib import Path

import pytest

from prompt_patterns.config import Config, expand_env_var, expand_path, load_config


class TestDefaults:
    """Tests for default configuration values."""

    def test_tracker_defaults(self) -> None:
        """Tracker defaults should match the documented thresholds."""
        config = Config()
        assert config.tracker.similarity_threshold == 0.80
        assert config.tracker.min_repeats_to_surface == 3
        assert config.tracker.max_notifications_per_day == 2
        assert config.tracker.min_word_count == 5
        assert config.tracker.cache_size == 500
        assert config.tracker.resurface_min_repeats == 2

    def test_detector_and_search_defaults(self) -> None:
        config = Config()
        assert config.detector.min_similarity == 0.75
        assert config.detector.min_cluster_size == 2
        assert config.detector.max_patterns == 50
        assert config.search.limit == 20
        assert config.search.threshold == 0.30

    def test_embedding_and_indexer_defaults(self) -> None:
        config = Config()
        assert config.embedding.enabled is True
        assert config.embedding.max_chars == 1000
        assert config.indexer.interval_seconds == 300
        assert config.indexer.projects_path == Path.home() / ".claude" / "projects"
        assert config.store.db_path.name == "transcript_index.sqlite"


class TestExpansion:
    """Tests for environment and path expansion helpers."""

    def test_expand_env_var(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """${VAR} should be replaced by the environment value."""
        monkeypatch.setenv("PP_MODEL", "custom/model")
        assert expand_env_var("${PP_MODEL}") == "custom/model"

    def test_expand_env_var_missing_keeps_value(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("PP_MISSING", raising=False)
        assert expand_env_var("${PP_MISSING}") == "${PP_MISSING}"

    def test_expand_env_var_plain_string(self) -> None:
        assert expand_env_var("plain") == "plain"

    def test_expand_path_home(self) -> None:
        assert expand_path("~/data") == Path.home() / "data"


class TestLoadConfig:
    """Tests for load_config."""

    def test_missing_file_returns_defaults(self, tmp_path: Path) -> None:
        """A path that does not exist should yield the defaults."""
        config = load_config(tmp_path / "nope.yaml")
        assert config == Config()

    def test_empty_file_returns_defaults(self, tmp_path: Path) -> None:
        path = tmp_path / "config.yaml"
        path.write_text("")
        config = load_config(path)
        assert config.tracker == Config().tracker
        assert config.detector == Config().detector

    def test_overrides(self, tmp_path: Path) -> None:
        """Values in the YAML file should override defaults section by section."""
        path = tmp_path / "config.yaml"
        path.write_text(
            f"""
store:
  db_path: {tmp_path}/index.sqlite
embedding:
  enabled: false
  max_chars: 200
indexer:
  projects_path: {tmp_path}/projects
  interval_seconds: 60
tracker:
  similarity_threshold: 0.9
  max_notifications_per_day: 5
detector:
  min_cluster_size: 3
search:
  limit: 5
"""
        )

        config = load_config(path)

        assert config.store.db_path == tmp_path / "index.sqlite"
        assert config.embedding.enabled is False
        assert config.embedding.max_chars == 200
        assert config.indexer.projects_path == tmp_path / "projects"
        assert config.indexer.interval_seconds == 60
        assert config.tracker.similarity_threshold == 0.9
        assert config.tracker.max_notifications_per_day == 5
        assert config.tracker.min_repeats_to_surface == 3
        assert config.detector.min_cluster_size == 3
        assert config.detector.min_similarity == 0.75
        assert config.search.limit == 5
        assert config.search.threshold == 0.30

    def test_searches_current_directory(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        """Without a path, config.yaml in the working directory should be used."""
        (tmp_path / "config.yaml").write_text("search:\n  limit: 7\n")
        monkeypatch.chdir(tmp_path)

        config = load_config()

        assert config.search.limit == 7
