"""Pydantic configuration models with env var support.

Configuration Hierarchy (highest to lowest precedence):
1. Direct kwargs to load_config()
2. Environment variables (CODESTRATA__SECTION__KEY)
3. Repo YAML (.codestrata/config.yaml)
4. Global YAML (~/.config/codestrata/config.yaml)
5. Built-in defaults (this file)

Environment Variable Format:
    CODESTRATA__<SECTION>__<KEY>=<VALUE>

Examples:
    CODESTRATA__LOGGING__LEVEL=DEBUG
    CODESTRATA__VECTORS__BATCH_SIZE=200
    CODESTRATA__RETRIEVAL__CROSS_LAYER_DISTANCE_THRESHOLD=0.9
"""

from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, field_validator, model_validator

LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


class LogOutputConfig(BaseModel):
    """Single logging output configuration."""

    format: Literal["json", "console"] = "console"
    destination: str = "stderr"  # stderr, stdout, or absolute file path
    level: LogLevel | None = None  # Inherits from parent if None

    @field_validator("destination")
    @classmethod
    def validate_destination(cls, v: str) -> str:
        if v in ("stderr", "stdout"):
            return v
        path = Path(v).expanduser()
        if not path.is_absolute():
            raise ValueError(f"File destination must be absolute path: {v}")
        return str(path)


class LoggingConfig(BaseModel):
    """Logging configuration.

    Env vars:
        CODESTRATA__LOGGING__LEVEL: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """

    level: LogLevel = Field(
        default="INFO",
        description="Root log level. DEBUG logs every stored vector and may impact performance.",
    )
    outputs: list[LogOutputConfig] = Field(default_factory=lambda: [LogOutputConfig()])


class IndexConfig(BaseModel):
    """Index storage configuration.

    Env vars:
        CODESTRATA__INDEX__INDEX_PATH: Override index storage location
    """

    index_path: str | None = Field(
        default=None,
        description="Override index storage location. Default: .codestrata/ in the workspace.",
    )
    db_filename: str = Field(
        default="index.db",
        description="SQLite database file name inside the index directory.",
    )


class DatabaseConfig(BaseModel):
    """Database connection configuration.

    Env vars:
        CODESTRATA__DATABASE__BUSY_TIMEOUT_MS: SQLite busy timeout
        CODESTRATA__DATABASE__MAX_RETRIES: Max retry attempts for locked DB
    """

    busy_timeout_ms: int = Field(
        default=30000,
        description="SQLite busy timeout (ms). How long to wait for locks. "
        "RISK: Too low causes failures under contention; too high delays errors.",
    )
    max_retries: int = Field(
        default=3,
        description="Max retry attempts when BEGIN IMMEDIATE reports a locked database.",
    )
    retry_base_delay_sec: float = Field(
        default=0.1,
        description="Base delay between retries (exponential backoff).",
    )
    retry_max_delay_sec: float = Field(
        default=2.0,
        description="Upper bound on a single backoff delay.",
    )

    @field_validator("busy_timeout_ms", "max_retries")
    @classmethod
    def validate_non_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError(f"Must be >= 0, got {v}")
        return v


class VectorsConfig(BaseModel):
    """Vector index configuration.

    One vec0 table per embedding kind. Dimensions are fixed at table creation;
    changing them for an existing database is a configuration error.

    Env vars:
        CODESTRATA__VECTORS__DEFAULT_TABLE: Table used when none is named
        CODESTRATA__VECTORS__BATCH_SIZE: Rows per transaction in store_batch
        CODESTRATA__VECTORS__MAX_RESULTS: Hard cap on k for nearest-neighbor queries
        CODESTRATA__VECTORS__DISTANCE_THRESHOLD: Default cosine distance cutoff
    """

    tables: dict[str, int] = Field(
        default_factory=lambda: {"symbol_vectors": 384, "chunk_vectors": 384},
        description="Vector table name -> embedding dimension.",
    )
    default_table: str = Field(
        default="symbol_vectors",
        description="Table used by store/search when no table is named.",
    )
    batch_size: int = Field(
        default=100,
        description="Rows committed per transaction by store_batch. "
        "TRADEOFF: Larger batches hold the write lock longer.",
    )
    max_results: int = Field(
        default=50,
        description="Hard cap on nearest-neighbor results per query.",
    )
    distance_threshold: float = Field(
        default=0.6,
        description="Default cosine distance cutoff (0 = identical, 2 = opposite).",
    )

    @field_validator("tables")
    @classmethod
    def validate_tables(cls, v: dict[str, int]) -> dict[str, int]:
        if not v:
            raise ValueError("At least one vector table is required")
        for name, dim in v.items():
            if not name.isidentifier():
                raise ValueError(f"Vector table name must be an identifier: {name}")
            if dim <= 0:
                raise ValueError(f"Dimension for '{name}' must be positive, got {dim}")
        return v

    @field_validator("batch_size", "max_results")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError(f"Must be positive, got {v}")
        return v

    @field_validator("distance_threshold")
    @classmethod
    def validate_threshold(cls, v: float) -> float:
        if not (0.0 <= v <= 2.0):
            raise ValueError(f"Cosine distance threshold must be within [0, 2], got {v}")
        return v

    @model_validator(mode="after")
    def validate_default_table(self) -> "VectorsConfig":
        if self.default_table not in self.tables:
            raise ValueError(f"default_table '{self.default_table}' is not a configured table")
        return self


class RetrievalConfig(BaseModel):
    """Hybrid retrieval weights and thresholds.

    Env vars:
        CODESTRATA__RETRIEVAL__NAME_WEIGHT
        CODESTRATA__RETRIEVAL__STRUCTURE_WEIGHT
        CODESTRATA__RETRIEVAL__SEMANTIC_WEIGHT
        CODESTRATA__RETRIEVAL__CROSS_LAYER_DISTANCE_THRESHOLD
    """

    name_weight: float = Field(default=0.3, ge=0.0, le=1.0)
    structure_weight: float = Field(default=0.3, ge=0.0, le=1.0)
    semantic_weight: float = Field(default=0.4, ge=0.0, le=1.0)
    structural_hit_score: float = Field(
        default=0.7,
        ge=0.0,
        le=1.0,
        description="Structure score for symbols found by name/full-text search.",
    )
    semantic_only_score: float = Field(
        default=0.3,
        ge=0.0,
        le=1.0,
        description="Structure score for symbols found only by vector search.",
    )
    semantic_fanout: int = Field(
        default=3,
        ge=1,
        description="Semantic candidates fetched per requested result.",
    )
    cross_layer_distance_threshold: float = Field(
        default=0.8,
        ge=0.0,
        le=2.0,
        description="Looser cosine cutoff for cross-layer concept search.",
    )

    @model_validator(mode="after")
    def validate_weights(self) -> "RetrievalConfig":
        total = self.name_weight + self.structure_weight + self.semantic_weight
        if abs(total - 1.0) > 1e-6:
            raise ValueError(f"Retrieval weights must sum to 1.0, got {total:.3f}")
        return self


class LimitsConfig(BaseModel):
    """Query limit defaults.

    See constants.py for hard maximums that cannot be exceeded.

    Env vars:
        CODESTRATA__LIMITS__NAME_SEARCH_DEFAULT
        CODESTRATA__LIMITS__SEARCH_DEFAULT
    """

    name_search_default: int = Field(
        default=50,
        description="Default cap for substring name lookups.",
    )
    search_default: int = Field(
        default=20,
        description="Default full-text and hybrid result count.",
    )


class CodestrataConfig(BaseModel):
    """Root configuration for Codestrata.

    All settings can be configured via:
    1. Environment variables: CODESTRATA__SECTION__KEY
    2. YAML config files (repo or global)
    3. Direct kwargs to load_config()
    """

    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    index: IndexConfig = Field(default_factory=IndexConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    vectors: VectorsConfig = Field(default_factory=VectorsConfig)
    retrieval: RetrievalConfig = Field(default_factory=RetrievalConfig)
    limits: LimitsConfig = Field(default_factory=LimitsConfig)

    @model_validator(mode="after")
    def validate_cross_layer_threshold(self) -> "CodestrataConfig":
        # Cross-layer cutoff is never tighter than the plain search cutoff
        cross_layer = self.retrieval.cross_layer_distance_threshold
        if cross_layer < self.vectors.distance_threshold:
            raise ValueError(
                f"retrieval.cross_layer_distance_threshold ({cross_layer}) must be >= "
                f"vectors.distance_threshold ({self.vectors.distance_threshold})"
            )
        return self
