"""Tests for sqlite-vec engine helpers."""

from __future__ import annotations

import sqlite3
from unittest.mock import MagicMock

import numpy as np
import pytest
from sqlalchemy import text
from sqlalchemy.exc import OperationalError

from codestrata.core.errors import DimensionMismatch, ExtensionUnavailable
from codestrata.index._internal.db import Database
from codestrata.index._internal.vectors.engine import (
    deserialize_vector,
    existing_dimension,
    is_extension_missing_error,
    load_vector_extension,
    serialize_vector,
    vec_table_ddl,
)


class TestIsExtensionMissingError:
    """Detection of the detached-extension failure."""

    @pytest.mark.parametrize(
        "message",
        ["no such module: vec0", "no such function: vec_distance_cosine"],
    )
    def test_matches_missing_extension(self, message: str) -> None:
        error = OperationalError("SELECT", {}, sqlite3.OperationalError(message))
        assert is_extension_missing_error(error) is True

    def test_ignores_other_errors(self) -> None:
        error = OperationalError("SELECT", {}, sqlite3.OperationalError("no such table: x"))
        assert is_extension_missing_error(error) is False


class TestLoadVectorExtension:
    def test_loads_into_plain_connection(self) -> None:
        conn = sqlite3.connect(":memory:")
        try:
            load_vector_extension(conn)
            version = conn.execute("SELECT vec_version()").fetchone()[0]
        finally:
            conn.close()
        assert version

    def test_missing_load_support_is_typed(self) -> None:
        """Interpreters without extension loading surface ExtensionUnavailable."""
        conn = MagicMock()
        conn.enable_load_extension.side_effect = AttributeError("enable_load_extension")

        with pytest.raises(ExtensionUnavailable):
            load_vector_extension(conn)


class TestSerialization:
    def test_round_trip_is_float32(self) -> None:
        blob = serialize_vector([0.5, -1.0, 2.0], "t", 3)

        assert len(blob) == 12
        assert deserialize_vector(blob) == [0.5, -1.0, 2.0]

    def test_accepts_numpy_arrays(self) -> None:
        blob = serialize_vector(np.arange(4, dtype=np.float64), "t", 4)
        assert deserialize_vector(blob) == [0.0, 1.0, 2.0, 3.0]

    def test_wrong_length_raises(self) -> None:
        with pytest.raises(DimensionMismatch) as exc_info:
            serialize_vector([1.0, 2.0], "symbol_vectors", 4)

        assert exc_info.value.details == {"table": "symbol_vectors", "expected": 4, "actual": 2}


class TestExistingDimension:
    def test_absent_table_is_none(self, temp_db: Database) -> None:
        with temp_db.engine.connect() as conn:
            assert existing_dimension(conn, "symbol_vectors") is None

    def test_reads_dimension_from_ddl(self, temp_db: Database) -> None:
        with temp_db.engine.connect() as conn:
            conn.execute(text(vec_table_ddl("symbol_vectors", 7)))
            conn.commit()
            assert existing_dimension(conn, "symbol_vectors") == 7
