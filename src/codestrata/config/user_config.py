"""Minimal user-facing configuration.

This module defines only the config fields that users should care about.
Everything else uses opinionated defaults.

User config is stored in .codestrata/config.yaml
"""

from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, Field, ValidationError

from codestrata.core.errors import ConfigError

LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]

# Default values - kept in sync with UserConfig defaults
DEFAULT_EMBEDDING_DIMENSION = 384
DEFAULT_LOG_LEVEL: LogLevel = "INFO"


class UserConfig(BaseModel):
    """User-facing configuration options."""

    embedding_dimension: int = Field(
        default=DEFAULT_EMBEDDING_DIMENSION,
        gt=0,
        description="Dimension of every vector table. Must match the embedding model. "
        "Changing it for an existing index requires clearing the index.",
    )
    log_level: LogLevel = Field(
        default=DEFAULT_LOG_LEVEL,
        description="Log level. DEBUG is very verbose.",
    )
    index_path: str | None = Field(
        default=None,
        description="Where index files are stored. Default: .codestrata/ in the workspace.",
    )


def write_user_config(path: Path, config: UserConfig | None = None) -> None:
    """Write user config file with helpful comments.

    Args:
        path: Path to write config.yaml
        config: Config values (uses defaults if None)
    """
    cfg = config or UserConfig()

    lines = [
        "# Codestrata Configuration",
        "",
        "# Embedding dimension for all vector tables (must match your embedding model).",
    ]
    if cfg.embedding_dimension != DEFAULT_EMBEDDING_DIMENSION:
        lines.append(f"embedding_dimension: {cfg.embedding_dimension}")
    else:
        lines.append(f"# embedding_dimension: {cfg.embedding_dimension}")
    lines.append("")

    lines.append("# Log level: DEBUG, INFO, WARNING, ERROR, CRITICAL")
    if cfg.log_level != DEFAULT_LOG_LEVEL:
        lines.append(f"log_level: {cfg.log_level}")
    else:
        lines.append(f"# log_level: {cfg.log_level}")
    lines.append("")

    if cfg.index_path:
        lines.append("# Index storage location")
        lines.append(f"index_path: {cfg.index_path}")
        lines.append("")

    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("\n".join(lines))


def load_user_config(path: Path) -> UserConfig:
    """Load user config from YAML file.

    Raises:
        ConfigError: On invalid YAML or invalid values.
    """
    if not path.exists():
        return UserConfig()
    try:
        with path.open() as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError.parse_error(str(path), str(e)) from e
    if not isinstance(data, dict):
        raise ConfigError.parse_error(str(path), "top-level value must be a mapping")
    try:
        return UserConfig(**data)
    except ValidationError as e:
        err = e.errors()[0]
        field = ".".join(str(loc) for loc in err["loc"])
        raise ConfigError.invalid_value(field, err.get("input"), err["msg"]) from e
