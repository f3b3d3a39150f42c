"""Database layer for the index."""

from codestrata.index._internal.db.database import BulkWriter, Database, translate_integrity_error
from codestrata.index._internal.db.indexes import create_additional_indexes, drop_search_schema
from codestrata.index._internal.db.integrity import (
    IntegrityChecker,
    IntegrityIssue,
    IntegrityReport,
)

__all__ = [
    "Database",
    "BulkWriter",
    "translate_integrity_error",
    "create_additional_indexes",
    "drop_search_schema",
    "IntegrityChecker",
    "IntegrityIssue",
    "IntegrityReport",
]
