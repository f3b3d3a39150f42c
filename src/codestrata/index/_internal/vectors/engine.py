"""sqlite-vec engine helpers.

The vec0 module is a loadable extension: it must be loaded on every new
connection, and it can disappear from a connection that the pool recycled
or that was opened outside the engine's connect hook. Callers detect that
case with is_extension_missing_error() and reload once.
"""

from __future__ import annotations

import re
import sqlite3
from collections.abc import Sequence
from typing import Any

import numpy as np
import sqlite_vec
from sqlalchemy import text
from sqlalchemy.engine import Connection

from codestrata.core.errors import DimensionMismatch, ExtensionUnavailable

_DIMENSION_RE = re.compile(r"float\[(\d+)\]", re.IGNORECASE)

_MISSING_EXTENSION_MARKERS = ("no such module: vec0", "no such function: vec")


def load_vector_extension(dbapi_conn: Any) -> None:
    """Load sqlite-vec into a raw sqlite3 connection."""
    try:
        dbapi_conn.enable_load_extension(True)
        try:
            sqlite_vec.load(dbapi_conn)
        finally:
            dbapi_conn.enable_load_extension(False)
    except (AttributeError, sqlite3.Error) as e:
        # AttributeError: interpreter built without extension loading
        raise ExtensionUnavailable.load_failed(str(e)) from e


def is_extension_missing_error(error: BaseException) -> bool:
    """True when a failure means vec0 is not registered on the connection."""
    message = str(error).lower()
    return any(marker in message for marker in _MISSING_EXTENSION_MARKERS)


def reload_on_connection(conn: Connection) -> None:
    """Reload the extension on the DBAPI connection behind a SQLAlchemy connection."""
    dbapi_conn = conn.connection.dbapi_connection
    load_vector_extension(dbapi_conn)


def vec_table_ddl(table: str, dimension: int) -> str:
    return (
        f"CREATE VIRTUAL TABLE IF NOT EXISTS {table} "
        f"USING vec0(embedding float[{dimension}] distance_metric=cosine)"
    )


def existing_dimension(conn: Connection, table: str) -> int | None:
    """Dimension of an existing vec0 table, parsed from its DDL. None if absent."""
    row = conn.execute(
        text("SELECT sql FROM sqlite_master WHERE name = :name"),
        {"name": table},
    ).first()
    if row is None or row[0] is None:
        return None
    match = _DIMENSION_RE.search(row[0])
    return int(match.group(1)) if match else None


def serialize_vector(vector: Sequence[float] | np.ndarray, table: str, dimension: int) -> bytes:
    """Pack a vector as little-endian float32, checking its length."""
    arr = np.asarray(vector, dtype=np.float32).reshape(-1)
    if arr.shape[0] != dimension:
        raise DimensionMismatch.for_table(table, dimension, int(arr.shape[0]))
    return arr.tobytes()


def deserialize_vector(blob: bytes) -> list[float]:
    return np.frombuffer(blob, dtype=np.float32).tolist()
