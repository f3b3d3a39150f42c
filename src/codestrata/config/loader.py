"""Configuration loading with pydantic-settings.

Supports loading configuration from multiple sources with precedence:
1. Direct kwargs (highest priority)
2. Environment variables (CODESTRATA__SECTION__KEY)
3. User config (.codestrata/config.yaml) - minimal user-facing options
4. Global config (~/.config/codestrata/config.yaml) - full nested structure
5. Built-in defaults (lowest priority)
"""

from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict

from codestrata.config.constants import INDEX_DIR_NAME
from codestrata.config.models import (
    CodestrataConfig,
    DatabaseConfig,
    IndexConfig,
    LimitsConfig,
    LoggingConfig,
    RetrievalConfig,
    VectorsConfig,
)
from codestrata.config.user_config import load_user_config
from codestrata.core.errors import ConfigError

GLOBAL_CONFIG_PATH = Path("~/.config/codestrata/config.yaml").expanduser()


def _load_yaml(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    try:
        with path.open() as f:
            return yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError.parse_error(str(path), str(e)) from e


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


class _YamlSource(PydanticBaseSettingsSource):
    """Settings source that reads from pre-loaded YAML config."""

    def __init__(self, settings_cls: type[BaseSettings], yaml_config: dict[str, Any]) -> None:
        super().__init__(settings_cls)
        self._yaml_config = yaml_config

    def get_field_value(
        self,
        field: Any,  # noqa: ARG002
        field_name: str,
    ) -> tuple[Any, str, bool]:
        val = self._yaml_config.get(field_name)
        return val, field_name, val is not None

    def __call__(self) -> dict[str, Any]:
        return self._yaml_config


def _make_settings_class(yaml_config: dict[str, Any]) -> type[BaseSettings]:
    """Create a Settings class with instance-based YAML source (thread-safe)."""

    class CodestrataSettings(BaseSettings):
        """Root config. Env vars: CODESTRATA__LOGGING__LEVEL, CODESTRATA__VECTORS__BATCH_SIZE, etc."""

        model_config = SettingsConfigDict(
            env_prefix="CODESTRATA__",
            env_nested_delimiter="__",
            case_sensitive=False,
        )

        logging: LoggingConfig = LoggingConfig()
        index: IndexConfig = IndexConfig()
        database: DatabaseConfig = DatabaseConfig()
        vectors: VectorsConfig = VectorsConfig()
        retrieval: RetrievalConfig = RetrievalConfig()
        limits: LimitsConfig = LimitsConfig()

        @classmethod
        def settings_customise_sources(
            cls,
            settings_cls: type[BaseSettings],
            init_settings: PydanticBaseSettingsSource,
            env_settings: PydanticBaseSettingsSource,
            dotenv_settings: PydanticBaseSettingsSource,  # noqa: ARG003
            file_secret_settings: PydanticBaseSettingsSource,  # noqa: ARG003
        ) -> tuple[PydanticBaseSettingsSource, ...]:
            # Precedence (first wins): init kwargs > env vars > yaml files
            return (init_settings, env_settings, _YamlSource(settings_cls, yaml_config))

    return CodestrataSettings


CodestrataSettings = _make_settings_class({})


def load_config(workspace_root: Path | None = None, **kwargs: Any) -> CodestrataConfig:
    """Load config: defaults < global yaml < user config < env vars < kwargs.

    Args:
        workspace_root: Workspace to load .codestrata/config.yaml from.
                        Defaults to current working directory.
        **kwargs: Override values (highest precedence).

    Returns:
        Fully resolved configuration object.

    Raises:
        ConfigError: On invalid YAML syntax or validation errors.
    """
    workspace_root = workspace_root or Path.cwd()
    user_config = load_user_config(workspace_root / INDEX_DIR_NAME / "config.yaml")

    global_config = _load_yaml(GLOBAL_CONFIG_PATH)

    # Only fields the user actually wrote override the global file
    yaml_config: dict[str, Any] = {}
    explicit = user_config.model_fields_set
    if "log_level" in explicit:
        yaml_config["logging"] = {"level": user_config.log_level}
    if "embedding_dimension" in explicit:
        table_names = global_config.get("vectors", {}).get("tables") or VectorsConfig().tables
        yaml_config["vectors"] = {
            "tables": {name: user_config.embedding_dimension for name in table_names}
        }
    if user_config.index_path:
        yaml_config["index"] = {"index_path": user_config.index_path}

    if global_config:
        yaml_config = _deep_merge(global_config, yaml_config)

    settings_cls = _make_settings_class(yaml_config)
    try:
        settings = settings_cls(**kwargs)
        config = CodestrataConfig.model_validate(settings.model_dump())
    except ValidationError as e:
        err = e.errors()[0]
        field = ".".join(str(loc) for loc in err["loc"])
        raise ConfigError.invalid_value(field, err.get("input"), err["msg"]) from e
    return config


def get_db_path(workspace_root: Path, config: CodestrataConfig | None = None) -> Path:
    """Get the SQLite database path for a workspace, respecting config.index.index_path."""
    config = config or load_config(workspace_root)
    if config.index.index_path:
        index_dir = Path(config.index.index_path)
    else:
        index_dir = workspace_root / INDEX_DIR_NAME
    return index_dir / config.index.db_filename
