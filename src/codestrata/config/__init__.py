"""Config module exports."""

from codestrata.config.loader import CodestrataSettings, get_db_path, load_config
from codestrata.config.models import (
    CodestrataConfig,
    DatabaseConfig,
    IndexConfig,
    LimitsConfig,
    LoggingConfig,
    RetrievalConfig,
    VectorsConfig,
)

__all__ = [
    "load_config",
    "get_db_path",
    "CodestrataConfig",
    "CodestrataSettings",
    "DatabaseConfig",
    "IndexConfig",
    "LimitsConfig",
    "LoggingConfig",
    "RetrievalConfig",
    "VectorsConfig",
]
