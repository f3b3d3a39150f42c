"""Codestrata error types with typed error codes.

Error code ranges:
- 2xxx: Config
- 3xxx: Index (symbol store integrity)
- 4xxx: Vector engine
- 9xxx: Internal

Absence is never an error: read APIs return empty collections or None.
"""

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any


class ErrorCode(IntEnum):
    """Typed error codes for programmatic handling."""

    # Config (2xxx)
    CONFIG_PARSE_ERROR = 2001
    CONFIG_INVALID_VALUE = 2002
    CONFIG_MISSING_REQUIRED = 2003
    CONFIG_FILE_NOT_FOUND = 2004

    # Index (3xxx)
    FOREIGN_KEY_VIOLATION = 3001
    INTEGRITY_ERROR = 3002

    # Vector engine (4xxx)
    EXTENSION_UNAVAILABLE = 4001
    DIMENSION_MISMATCH = 4002

    # Internal (9xxx)
    INTERNAL_ERROR = 9001
    INTERNAL_TIMEOUT = 9002


@dataclass(eq=False)
class CodestrataError(Exception):
    """Base error with structured context for tool responses."""

    code: ErrorCode
    message: str
    retryable: bool = False
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def error_name(self) -> str:
        """String identifier for logging (e.g., 'FOREIGN_KEY_VIOLATION')."""
        return self.code.name

    def to_dict(self) -> dict[str, Any]:
        """Serialize for JSON responses."""
        return {
            "code": self.code.value,
            "error": self.error_name,
            "message": self.message,
            "retryable": self.retryable,
            "details": self.details,
        }

    def __str__(self) -> str:
        return f"[{self.code.value}] {self.error_name}: {self.message}"


class ConfigError(CodestrataError):
    """Configuration-related errors."""

    @classmethod
    def parse_error(cls, path: str, reason: str) -> "ConfigError":
        return cls(
            code=ErrorCode.CONFIG_PARSE_ERROR,
            message=f"Failed to parse config at {path}: {reason}",
            details={"path": path, "reason": reason},
        )

    @classmethod
    def invalid_value(cls, field: str, value: Any, reason: str) -> "ConfigError":
        return cls(
            code=ErrorCode.CONFIG_INVALID_VALUE,
            message=f"Invalid value for '{field}': {reason}",
            details={"field": field, "value": str(value), "reason": reason},
        )

    @classmethod
    def missing_required(cls, field: str) -> "ConfigError":
        return cls(
            code=ErrorCode.CONFIG_MISSING_REQUIRED,
            message=f"Missing required config field: {field}",
            details={"field": field},
        )


class ForeignKeyViolation(CodestrataError):
    """A referenced parent symbol or relationship endpoint does not exist.

    Signals a caller bug (extractor emitted a dangling reference). Never retried.
    """

    @classmethod
    def for_record(cls, table: str, reason: str, **details: Any) -> "ForeignKeyViolation":
        return cls(
            code=ErrorCode.FOREIGN_KEY_VIOLATION,
            message=f"Foreign key violation on '{table}': {reason}",
            details={"table": table, **details},
        )


class IndexIntegrityError(CodestrataError):
    """Non foreign-key constraint failure (uniqueness, check constraints)."""

    @classmethod
    def constraint(cls, table: str, reason: str) -> "IndexIntegrityError":
        return cls(
            code=ErrorCode.INTEGRITY_ERROR,
            message=f"Constraint failed on '{table}': {reason}",
            details={"table": table, "reason": reason},
        )


class ExtensionUnavailable(CodestrataError):
    """The vector engine extension is not loaded on the connection."""

    @classmethod
    def after_reload(cls, reason: str) -> "ExtensionUnavailable":
        return cls(
            code=ErrorCode.EXTENSION_UNAVAILABLE,
            message=f"Vector extension unavailable after reload: {reason}",
            details={"reason": reason},
        )

    @classmethod
    def load_failed(cls, reason: str) -> "ExtensionUnavailable":
        return cls(
            code=ErrorCode.EXTENSION_UNAVAILABLE,
            message=f"Failed to load vector extension: {reason}",
            details={"reason": reason},
        )


class DimensionMismatch(CodestrataError):
    """Vector length differs from the vector table's dimension."""

    @classmethod
    def for_table(cls, table: str, expected: int, actual: int) -> "DimensionMismatch":
        return cls(
            code=ErrorCode.DIMENSION_MISMATCH,
            message=f"Vector table '{table}' expects {expected} dimensions, got {actual}",
            details={"table": table, "expected": expected, "actual": actual},
        )


class InternalError(CodestrataError):
    """Internal/unexpected errors."""

    @classmethod
    def unexpected(cls, reason: str, **details: Any) -> "InternalError":
        return cls(
            code=ErrorCode.INTERNAL_ERROR,
            message=f"Internal error: {reason}",
            details=details,
        )
