"""Core module exports."""

from codestrata.core.errors import (
    CodestrataError,
    ConfigError,
    DimensionMismatch,
    ErrorCode,
    ExtensionUnavailable,
    ForeignKeyViolation,
    IndexIntegrityError,
    InternalError,
)
from codestrata.core.logging import (
    clear_request_id,
    configure_logging,
    get_logger,
    get_request_id,
    request_scope,
    set_request_id,
)

__all__ = [
    # Errors
    "CodestrataError",
    "ConfigError",
    "DimensionMismatch",
    "ErrorCode",
    "ExtensionUnavailable",
    "ForeignKeyViolation",
    "IndexIntegrityError",
    "InternalError",
    # Logging
    "clear_request_id",
    "configure_logging",
    "get_logger",
    "get_request_id",
    "request_scope",
    "set_request_id",
]
