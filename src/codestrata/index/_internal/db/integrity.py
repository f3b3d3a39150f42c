"""Index integrity verification.

Integrity checks:
1. Foreign key violations (PRAGMA foreign_key_check)
2. Full-text rows out of sync with symbols
3. Vector rows whose integer key has no id mapping

Stale id mappings (symbol gone, vector kept) are expected after file
clearing and are reported by SymbolIdMap.audit() instead.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from sqlalchemy import text

if TYPE_CHECKING:
    from collections.abc import Iterable

    from codestrata.index._internal.db.database import Database


@dataclass
class IntegrityIssue:
    """A single integrity issue detected."""

    category: str  # 'fk_violation', 'search_mismatch', 'unmapped_vector'
    table: str | None
    message: str
    count: int = 1


@dataclass
class IntegrityReport:
    """Result of integrity verification."""

    passed: bool
    issues: list[IntegrityIssue] = field(default_factory=list)
    symbols_checked: int = 0
    search_rows: int = 0
    vectors_checked: int = 0

    def add_issue(self, issue: IntegrityIssue) -> None:
        """Add an issue and mark as failed."""
        self.issues.append(issue)
        self.passed = False


class IntegrityChecker:
    """Verifies consistency between relational tables, FTS5 and vec0 tables.

    Usage::

        checker = IntegrityChecker(db, vector_tables=["symbol_vectors"])
        report = checker.verify()
    """

    def __init__(self, db: Database, vector_tables: Iterable[str] = ()) -> None:
        self._db = db
        self._vector_tables = list(vector_tables)

    def verify(self) -> IntegrityReport:
        """Run all integrity checks and return report."""
        report = IntegrityReport(passed=True)

        self._check_foreign_keys(report)
        self._check_search_sync(report)
        self._check_vector_mappings(report)

        return report

    def _check_foreign_keys(self, report: IntegrityReport) -> None:
        with self._db.session() as session:
            rows = session.execute(text("PRAGMA foreign_key_check")).all()

        # Row shape: (table, rowid, parent, fkid)
        per_table = Counter((row[0], row[2]) for row in rows)
        for (table, parent), count in sorted(per_table.items()):
            report.add_issue(
                IntegrityIssue(
                    category="fk_violation",
                    table=table,
                    message=f"rows in {table} referencing missing {parent}",
                    count=count,
                )
            )

    def _check_search_sync(self, report: IntegrityReport) -> None:
        with self._db.session() as session:
            symbol_count = session.execute(text("SELECT COUNT(*) FROM symbols")).scalar() or 0
            search_count = session.execute(text("SELECT COUNT(*) FROM code_search")).scalar() or 0
            missing = (
                session.execute(
                    text("""
                        SELECT COUNT(*) FROM symbols s
                        WHERE NOT EXISTS (SELECT 1 FROM code_search c WHERE c.rowid = s.rowid)
                    """)
                ).scalar()
                or 0
            )

        report.symbols_checked = symbol_count
        report.search_rows = search_count

        if missing or search_count != symbol_count:
            report.add_issue(
                IntegrityIssue(
                    category="search_mismatch",
                    table="code_search",
                    message=f"code_search has {search_count} rows for {symbol_count} symbols",
                    count=max(missing, abs(search_count - symbol_count)),
                )
            )

    def _check_vector_mappings(self, report: IntegrityReport) -> None:
        if not self._vector_tables:
            return
        with self._db.session() as session:
            for table in self._vector_tables:
                total = session.execute(text(f"SELECT COUNT(*) FROM {table}")).scalar() or 0
                report.vectors_checked += total
                unmapped = (
                    session.execute(
                        text(f"""
                            SELECT COUNT(*) FROM {table} v
                            WHERE v.rowid NOT IN (SELECT integer_id FROM symbol_id_mapping)
                        """)
                    ).scalar()
                    or 0
                )
                if unmapped:
                    report.add_issue(
                        IntegrityIssue(
                            category="unmapped_vector",
                            table=table,
                            message=f"vectors in {table} with no id mapping",
                            count=unmapped,
                        )
                    )


__all__ = [
    "IntegrityChecker",
    "IntegrityIssue",
    "IntegrityReport",
]
