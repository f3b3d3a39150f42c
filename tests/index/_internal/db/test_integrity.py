"""Tests for index integrity verification."""

from __future__ import annotations

import sqlite3

import numpy as np
from sqlalchemy import text

from codestrata.index._internal.db import Database
from codestrata.index._internal.db.integrity import (
    IntegrityChecker,
    IntegrityIssue,
    IntegrityReport,
)
from codestrata.index.models import SymbolRecord
from codestrata.index.store import SymbolStore
from codestrata.index.vectors import VectorIndex


class TestIntegrityIssue:
    """Tests for IntegrityIssue dataclass."""

    def test_integrity_issue_default_count(self) -> None:
        """IntegrityIssue defaults count to 1."""
        issue = IntegrityIssue(category="search_mismatch", table="code_search", message="x")
        assert issue.count == 1


class TestIntegrityReport:
    """Tests for IntegrityReport dataclass."""

    def test_integrity_report_defaults(self) -> None:
        """IntegrityReport starts with passed=True and empty issues."""
        report = IntegrityReport(passed=True)
        assert report.passed is True
        assert report.issues == []
        assert report.symbols_checked == 0

    def test_add_issue_marks_failed(self) -> None:
        report = IntegrityReport(passed=True)
        report.add_issue(IntegrityIssue(category="fk_violation", table="types", message="x"))
        assert report.passed is False
        assert len(report.issues) == 1


class TestIntegrityChecker:
    """Tests for IntegrityChecker against a real database."""

    def test_clean_store_passes(self, store: SymbolStore, temp_db: Database, make_symbol) -> None:
        store.upsert_symbol(make_symbol("a"))
        store.upsert_symbol(make_symbol("b", parent_id="a"))

        report = IntegrityChecker(temp_db).verify()

        assert report.passed is True
        assert report.symbols_checked == 2
        assert report.search_rows == 2

    def test_detects_foreign_key_violation(self, temp_db: Database) -> None:
        """Rows written with foreign keys disabled are reported per table."""
        conn = sqlite3.connect(str(temp_db.db_path))
        try:
            conn.execute(
                "INSERT INTO relationships(from_symbol_id, to_symbol_id, kind, file_path, "
                "line_number, confidence) VALUES ('ghost', 'ghost2', 'calls', '/a.py', 1, 1.0)"
            )
            conn.commit()
        finally:
            conn.close()

        report = IntegrityChecker(temp_db).verify()

        assert report.passed is False
        fk = [issue for issue in report.issues if issue.category == "fk_violation"]
        assert fk
        assert all(issue.table == "relationships" for issue in fk)

    def test_detects_search_mismatch(self, store: SymbolStore, temp_db: Database, make_symbol) -> None:
        store.upsert_symbol(make_symbol("a"))
        with temp_db.engine.begin() as conn:
            conn.execute(text("DELETE FROM code_search"))

        report = IntegrityChecker(temp_db).verify()

        assert [issue.category for issue in report.issues] == ["search_mismatch"]

    def test_detects_unmapped_vector(
        self, temp_db: Database, vector_index: VectorIndex
    ) -> None:
        blob = np.zeros(4, dtype=np.float32).tobytes()
        with temp_db.engine.begin() as conn:
            conn.execute(
                text("INSERT INTO symbol_vectors(rowid, embedding) VALUES (99, :v)"), {"v": blob}
            )

        report = IntegrityChecker(temp_db, vector_index.tables).verify()

        assert report.vectors_checked == 1
        unmapped = [issue for issue in report.issues if issue.category == "unmapped_vector"]
        assert len(unmapped) == 1
        assert unmapped[0].table == "symbol_vectors"

    def test_mapped_vectors_pass(
        self,
        store: SymbolStore,
        temp_db: Database,
        vector_index: VectorIndex,
        make_symbol,
    ) -> None:
        symbol: SymbolRecord = make_symbol("a")
        store.upsert_symbol(symbol)
        vector_index.store_embedding("a", [1.0, 0.0, 0.0, 0.0])

        report = IntegrityChecker(temp_db, vector_index.tables).verify()

        assert report.passed is True
        assert report.vectors_checked == 1
