"""Tests for config/loader.py module.

Covers:
- _load_yaml() function
- _deep_merge() function
- load_config() precedence
- get_db_path() function
"""

from __future__ import annotations

import os
from pathlib import Path
from unittest.mock import patch

import pytest

from codestrata.config.loader import _deep_merge, _load_yaml, get_db_path, load_config
from codestrata.config.models import CodestrataConfig
from codestrata.core.errors import ConfigError


def _write_repo_config(root: Path, content: str) -> None:
    config_dir = root / ".codestrata"
    config_dir.mkdir(parents=True, exist_ok=True)
    (config_dir / "config.yaml").write_text(content)


class TestLoadYaml:
    """Tests for _load_yaml function."""

    def test_returns_empty_dict_for_missing_file(self, tmp_path: Path) -> None:
        """Returns empty dict when file doesn't exist."""
        assert _load_yaml(tmp_path / "nonexistent.yaml") == {}

    def test_loads_valid_yaml(self, tmp_path: Path) -> None:
        yaml_file = tmp_path / "config.yaml"
        yaml_file.write_text("vectors:\n  batch_size: 10\n")

        assert _load_yaml(yaml_file) == {"vectors": {"batch_size": 10}}

    def test_returns_empty_for_empty_file(self, tmp_path: Path) -> None:
        yaml_file = tmp_path / "empty.yaml"
        yaml_file.write_text("")

        assert _load_yaml(yaml_file) == {}

    def test_raises_config_error_for_invalid_yaml(self, tmp_path: Path) -> None:
        """Raises ConfigError for invalid YAML syntax."""
        yaml_file = tmp_path / "invalid.yaml"
        yaml_file.write_text("logging:\n  level:\n    - invalid: [unclosed")

        with pytest.raises(ConfigError):
            _load_yaml(yaml_file)


class TestDeepMerge:
    """Tests for _deep_merge function."""

    def test_nested_merge(self) -> None:
        """Nested dicts are merged key by key."""
        base = {"vectors": {"batch_size": 10, "max_results": 5}}
        override = {"vectors": {"batch_size": 20}}

        assert _deep_merge(base, override) == {"vectors": {"batch_size": 20, "max_results": 5}}

    def test_override_replaces_non_dict(self) -> None:
        assert _deep_merge({"a": {"b": 1}}, {"a": 3}) == {"a": 3}

    def test_does_not_mutate_base(self) -> None:
        base = {"a": {"b": 1}}
        _deep_merge(base, {"a": {"b": 2}})

        assert base == {"a": {"b": 1}}


class TestLoadConfig:
    """Tests for load_config precedence."""

    def test_returns_default_config_when_no_files(self, tmp_path: Path) -> None:
        with patch("codestrata.config.loader.GLOBAL_CONFIG_PATH", tmp_path / "none.yaml"):
            config = load_config(tmp_path)

        assert isinstance(config, CodestrataConfig)
        assert config == CodestrataConfig()

    def test_user_embedding_dimension_applies_to_every_table(self, tmp_path: Path) -> None:
        """One dimension setting sizes all configured vector tables."""
        _write_repo_config(tmp_path, "embedding_dimension: 8\n")

        with patch("codestrata.config.loader.GLOBAL_CONFIG_PATH", tmp_path / "none.yaml"):
            config = load_config(tmp_path)

        assert config.vectors.tables == {"symbol_vectors": 8, "chunk_vectors": 8}

    def test_global_tables_sized_by_user_dimension(self, tmp_path: Path) -> None:
        """Table names come from the global file, size from the repo file."""
        global_file = tmp_path / "global.yaml"
        global_file.write_text(
            "vectors:\n  tables:\n    symbol_vectors: 384\n  default_table: symbol_vectors\n"
        )
        _write_repo_config(tmp_path, "embedding_dimension: 16\n")

        with patch("codestrata.config.loader.GLOBAL_CONFIG_PATH", global_file):
            config = load_config(tmp_path)

        assert config.vectors.tables == {"symbol_vectors": 16}

    def test_repo_default_does_not_override_global(self, tmp_path: Path) -> None:
        """Values the repo file leaves unset keep the global setting."""
        global_file = tmp_path / "global.yaml"
        global_file.write_text("logging:\n  level: DEBUG\n")
        _write_repo_config(tmp_path, "embedding_dimension: 16\n")

        with patch("codestrata.config.loader.GLOBAL_CONFIG_PATH", global_file):
            config = load_config(tmp_path)

        assert config.logging.level == "DEBUG"

    def test_env_vars_override_yaml(self, tmp_path: Path) -> None:
        _write_repo_config(tmp_path, "log_level: INFO\n")

        with (
            patch("codestrata.config.loader.GLOBAL_CONFIG_PATH", tmp_path / "none.yaml"),
            patch.dict(
                os.environ,
                {"CODESTRATA__LOGGING__LEVEL": "WARNING", "CODESTRATA__VECTORS__BATCH_SIZE": "7"},
            ),
        ):
            config = load_config(tmp_path)

        assert config.logging.level == "WARNING"
        assert config.vectors.batch_size == 7

    def test_kwargs_override_all(self, tmp_path: Path) -> None:
        with (
            patch("codestrata.config.loader.GLOBAL_CONFIG_PATH", tmp_path / "none.yaml"),
            patch.dict(os.environ, {"CODESTRATA__LOGGING__LEVEL": "WARNING"}),
        ):
            config = load_config(tmp_path, logging={"level": "ERROR"})

        assert config.logging.level == "ERROR"

    def test_raises_config_error_for_invalid_value(self, tmp_path: Path) -> None:
        with (
            patch("codestrata.config.loader.GLOBAL_CONFIG_PATH", tmp_path / "none.yaml"),
            pytest.raises(ConfigError) as exc_info,
        ):
            load_config(tmp_path, database={"busy_timeout_ms": -1})

        assert exc_info.value.details["field"].startswith("database")

    def test_raises_config_error_for_invalid_user_value(self, tmp_path: Path) -> None:
        _write_repo_config(tmp_path, "embedding_dimension: 0\n")

        with (
            patch("codestrata.config.loader.GLOBAL_CONFIG_PATH", tmp_path / "none.yaml"),
            pytest.raises(ConfigError),
        ):
            load_config(tmp_path)

    def test_raises_config_error_for_tight_cross_layer_threshold(self, tmp_path: Path) -> None:
        with (
            patch("codestrata.config.loader.GLOBAL_CONFIG_PATH", tmp_path / "none.yaml"),
            patch.dict(os.environ, {"CODESTRATA__RETRIEVAL__CROSS_LAYER_DISTANCE_THRESHOLD": "0.3"}),
            pytest.raises(ConfigError),
        ):
            load_config(tmp_path)


class TestGetDbPath:
    """Tests for get_db_path function."""

    def test_returns_default_path(self, tmp_path: Path) -> None:
        with patch("codestrata.config.loader.GLOBAL_CONFIG_PATH", tmp_path / "none.yaml"):
            path = get_db_path(tmp_path)

        assert path == tmp_path / ".codestrata" / "index.db"

    def test_respects_custom_index_path(self, tmp_path: Path) -> None:
        custom = tmp_path / "elsewhere"
        _write_repo_config(tmp_path, f"index_path: {custom}\n")

        with patch("codestrata.config.loader.GLOBAL_CONFIG_PATH", tmp_path / "none.yaml"):
            path = get_db_path(tmp_path)

        assert path == custom / "index.db"
