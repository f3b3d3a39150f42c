"""Symbol store: durable storage of symbols, relationships, types and bindings.

Every mutation runs in one BEGIN IMMEDIATE transaction. Constraint
failures are translated into typed errors and never retried.

Cascade model (SQLite foreign keys, ON DELETE CASCADE):
- Deleting a symbol deletes its child symbols, its type info, every
  relationship touching it and every binding it is the source of
- Bindings targeting a deleted symbol keep their source, target becomes NULL
- FTS rows follow symbols through triggers

Id mappings and vectors are not cascaded; see VectorIndex.prune_orphans().
"""

from __future__ import annotations

import re
import time
from collections.abc import Generator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Literal

import structlog
from sqlalchemy import func, insert, text
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, or_, select

from codestrata.config.constants import NAME_SEARCH_MAX_LIMIT, SEARCH_MAX_LIMIT
from codestrata.config.models import LimitsConfig
from codestrata.core.errors import IndexIntegrityError
from codestrata.index._internal.db import Database, translate_integrity_error
from codestrata.index.models import (
    Binding,
    BindingRecord,
    FileInfo,
    FileRecord,
    Relationship,
    RelationshipKind,
    RelationshipRecord,
    Symbol,
    SymbolRecord,
    TypeInfo,
    TypeInfoRecord,
    WorkspaceInfo,
    WorkspaceRecord,
    encode_metadata,
)

if TYPE_CHECKING:
    from sqlalchemy.engine import Connection

log = structlog.get_logger()

Direction = Literal["outgoing", "incoming", "both"]

_TOKEN_RE = re.compile(r"\w+", re.UNICODE)


# ============================================================================
# Result types
# ============================================================================


@dataclass
class ClearResult:
    """What clear_file_data removed directly (cascades not counted)."""

    file_path: str
    symbols_deleted: int = 0
    relationships_deleted: int = 0
    file_record_deleted: bool = False


@dataclass
class ReplaceResult:
    """Outcome of replacing one file's extracted data."""

    cleared: ClearResult
    symbols: int = 0
    relationships: int = 0
    types: int = 0
    bindings: int = 0


@dataclass
class Reference:
    """A reference to a symbol, located at its originating symbol."""

    relationship_id: int
    kind: str
    from_symbol_id: str
    from_name: str
    file_path: str
    start_line: int
    start_column: int
    occurrence_file: str
    line_number: int
    confidence: float


@dataclass
class StoreStats:
    """Row counts across the store."""

    symbols: int = 0
    files: int = 0
    relationships: int = 0
    types: int = 0
    bindings: int = 0
    workspaces: int = 0


def build_match_expression(query: str) -> str | None:
    """Turn free text into a safe FTS5 MATCH expression.

    Each word becomes a quoted prefix term, so operators and punctuation in
    user input are never interpreted as query syntax.
    """
    tokens = _TOKEN_RE.findall(query)
    if not tokens:
        return None
    return " ".join(f'"{token}"*' for token in tokens)


def _upsert(model: type[Any], row: dict[str, Any], key: str) -> Any:
    stmt = sqlite_insert(model.__table__).values(**row)
    return stmt.on_conflict_do_update(
        index_elements=[key],
        set_={name: stmt.excluded[name] for name in row if name != key},
    )


def _clear_paths(conn: Session | Connection, path: str, prefix: bool = False) -> ClearResult:
    """Delete everything recorded for one path (or every path under a prefix)."""
    if prefix:
        where = "(file_path = :p OR substr(file_path, 1, length(:dir)) = :dir)"
        file_where = "(path = :p OR substr(path, 1, length(:dir)) = :dir)"
    else:
        where = "file_path = :p"
        file_where = "path = :p"
    params = {"p": path, "dir": path.rstrip("/") + "/"}

    rels = conn.execute(text(f"DELETE FROM relationships WHERE {where}"), params)
    syms = conn.execute(text(f"DELETE FROM symbols WHERE {where}"), params)
    # Triggers already dropped these; rows written outside the triggers are caught here
    conn.execute(text(f"DELETE FROM code_search WHERE {where}"), params)
    files = conn.execute(text(f"DELETE FROM files WHERE {file_where}"), params)

    return ClearResult(
        file_path=path,
        symbols_deleted=int(syms.rowcount),
        relationships_deleted=int(rels.rowcount),
        file_record_deleted=files.rowcount > 0,
    )


class SymbolStore:
    """Single source of truth for code entities and their relations.

    Usage::

        store = SymbolStore(db)
        store.upsert_symbol(record)
        store.find_symbol_at_position("/src/a.ts", 12, 4)
    """

    def __init__(self, db: Database, limits: LimitsConfig | None = None) -> None:
        self._db = db
        self._limits = limits or LimitsConfig()

    @contextmanager
    def _write(self, table: str, **details: Any) -> Generator[Session, None, None]:
        try:
            with self._db.immediate_transaction() as session:
                yield session
        except IntegrityError as e:
            raise translate_integrity_error(e, table, **details) from e

    # =========================================================================
    # Writes
    # =========================================================================

    def upsert_symbol(self, record: SymbolRecord) -> None:
        """Insert or update a symbol in place.

        Raises:
            ForeignKeyViolation: parent_id does not reference an existing symbol.
        """
        with self._write("symbols", symbol_id=record.id, parent_id=record.parent_id) as session:
            session.execute(_upsert(Symbol, record.to_row(), "id"))

    def insert_relationship(self, record: RelationshipRecord) -> int:
        """Append a relationship, returning its id.

        Raises:
            ForeignKeyViolation: Either endpoint is missing.
        """
        with self._write(
            "relationships",
            from_symbol_id=record.from_symbol_id,
            to_symbol_id=record.to_symbol_id,
        ) as session:
            result = session.execute(insert(Relationship.__table__).values(**record.to_row()))
            rel_id = result.inserted_primary_key[0]
        return int(rel_id)

    def upsert_type_info(self, record: TypeInfoRecord) -> None:
        """Replace type info for a symbol (latest write wins)."""
        with self._write("types", symbol_id=record.symbol_id) as session:
            session.execute(_upsert(TypeInfo, record.to_row(), "symbol_id"))

    def insert_binding(self, record: BindingRecord) -> int:
        """Append a cross-language binding, returning its id."""
        with self._write("bindings", source_symbol_id=record.source_symbol_id) as session:
            result = session.execute(insert(Binding.__table__).values(**record.to_row()))
            binding_id = result.inserted_primary_key[0]
        return int(binding_id)

    def upsert_file_record(self, record: FileInfo) -> None:
        """Insert or replace the freshness record for a path."""
        with self._write("files", path=record.path) as session:
            session.execute(_upsert(FileRecord, record.to_row(), "path"))

    def clear_file_data(self, path: str) -> ClearResult:
        """Atomically delete every row recorded for a file."""
        with self._write("symbols", file_path=path) as session:
            result = _clear_paths(session, path)
        log.debug(
            "file_cleared",
            path=path,
            symbols=result.symbols_deleted,
            relationships=result.relationships_deleted,
        )
        return result

    def replace_file_data(
        self,
        file: FileInfo,
        symbols: Sequence[SymbolRecord],
        relationships: Sequence[RelationshipRecord] = (),
        types: Sequence[TypeInfoRecord] = (),
        bindings: Sequence[BindingRecord] = (),
    ) -> ReplaceResult:
        """Clear a file and write its fresh extraction in one transaction.

        Foreign keys are checked at commit, so records may arrive in any
        order (children before parents). A dangling reference aborts the
        whole replacement and the previous data stays intact.
        """
        for symbol in symbols:
            if symbol.file_path != file.path:
                raise IndexIntegrityError.constraint(
                    "symbols",
                    f"symbol {symbol.id} belongs to {symbol.file_path}, not {file.path}",
                )

        try:
            with self._db.bulk_writer(defer_foreign_keys=True) as writer:
                cleared = _clear_paths(writer.conn, file.path)
                writer.upsert_many(Symbol, [s.to_row() for s in symbols], ["id"])
                writer.insert_many(Relationship, [r.to_row() for r in relationships])
                writer.upsert_many(TypeInfo, [t.to_row() for t in types], ["symbol_id"])
                writer.insert_many(Binding, [b.to_row() for b in bindings])
                writer.upsert_many(FileRecord, [file.to_row()], ["path"])
        except IntegrityError as e:
            raise translate_integrity_error(e, "symbols", file_path=file.path) from e

        log.debug(
            "file_data_replaced",
            path=file.path,
            symbols=len(symbols),
            relationships=len(relationships),
        )
        return ReplaceResult(
            cleared=cleared,
            symbols=len(symbols),
            relationships=len(relationships),
            types=len(types),
            bindings=len(bindings),
        )

    # =========================================================================
    # Point reads
    # =========================================================================

    def get_symbol(self, symbol_id: str) -> SymbolRecord | None:
        with self._db.session() as session:
            row = session.get(Symbol, symbol_id)
            return SymbolRecord.from_row(row) if row is not None else None

    def get_symbols(self, symbol_ids: Sequence[str]) -> list[SymbolRecord]:
        """Fetch symbols in the order given. Missing ids are skipped."""
        if not symbol_ids:
            return []
        with self._db.session() as session:
            rows = session.exec(select(Symbol).where(col(Symbol.id).in_(list(symbol_ids)))).all()
            by_id = {row.id: SymbolRecord.from_row(row) for row in rows}
        return [by_id[sid] for sid in dict.fromkeys(symbol_ids) if sid in by_id]

    def get_children(self, parent_id: str) -> list[SymbolRecord]:
        with self._db.session() as session:
            stmt = (
                select(Symbol)
                .where(Symbol.parent_id == parent_id)
                .order_by(col(Symbol.start_line), col(Symbol.start_column), col(Symbol.id))
            )
            return [SymbolRecord.from_row(row) for row in session.exec(stmt).all()]

    def get_symbols_in_file(self, path: str) -> list[SymbolRecord]:
        with self._db.session() as session:
            stmt = (
                select(Symbol)
                .where(Symbol.file_path == path)
                .order_by(col(Symbol.start_line), col(Symbol.start_column), col(Symbol.id))
            )
            return [SymbolRecord.from_row(row) for row in session.exec(stmt).all()]

    def get_type_info(self, symbol_id: str) -> TypeInfoRecord | None:
        with self._db.session() as session:
            row = session.get(TypeInfo, symbol_id)
            return TypeInfoRecord.from_row(row) if row is not None else None

    def get_bindings(self, symbol_id: str) -> list[BindingRecord]:
        """Bindings where the symbol is source or target."""
        with self._db.session() as session:
            stmt = (
                select(Binding)
                .where(
                    or_(Binding.source_symbol_id == symbol_id, Binding.target_symbol_id == symbol_id)
                )
                .order_by(col(Binding.id))
            )
            return [BindingRecord.from_row(row) for row in session.exec(stmt).all()]

    def get_relationships(
        self, symbol_id: str, direction: Direction = "both"
    ) -> list[RelationshipRecord]:
        with self._db.session() as session:
            stmt = select(Relationship)
            if direction == "outgoing":
                stmt = stmt.where(Relationship.from_symbol_id == symbol_id)
            elif direction == "incoming":
                stmt = stmt.where(Relationship.to_symbol_id == symbol_id)
            else:
                stmt = stmt.where(
                    or_(
                        Relationship.from_symbol_id == symbol_id,
                        Relationship.to_symbol_id == symbol_id,
                    )
                )
            stmt = stmt.order_by(col(Relationship.id))
            return [RelationshipRecord.from_row(row) for row in session.exec(stmt).all()]

    def get_relationships_among(self, symbol_ids: Sequence[str]) -> list[RelationshipRecord]:
        """Relationships whose endpoints are both in the given set."""
        ids = list(dict.fromkeys(symbol_ids))
        if not ids:
            return []
        with self._db.session() as session:
            stmt = (
                select(Relationship)
                .where(col(Relationship.from_symbol_id).in_(ids))
                .where(col(Relationship.to_symbol_id).in_(ids))
                .order_by(col(Relationship.id))
            )
            return [RelationshipRecord.from_row(row) for row in session.exec(stmt).all()]

    def get_file_record(self, path: str) -> FileInfo | None:
        with self._db.session() as session:
            row = session.get(FileRecord, path)
            return FileInfo.from_row(row) if row is not None else None

    def is_file_unchanged(self, path: str, content_hash: str) -> bool:
        """True when the stored record for path carries the same hash."""
        record = self.get_file_record(path)
        return record is not None and record.hash == content_hash

    # =========================================================================
    # Queries
    # =========================================================================

    def find_symbol_at_position(self, file_path: str, line: int, column: int) -> SymbolRecord | None:
        """Innermost symbol whose span contains (line, column).

        Among containing spans the fewest lines wins, then the fewest bytes
        when byte offsets are known, then the smallest
        (end_line - start_line) * (end_column - start_column), then the lower id.
        """
        sql = text("""
            SELECT id FROM symbols
            WHERE file_path = :file
              AND (start_line < :line OR (start_line = :line AND start_column <= :col))
              AND (end_line > :line OR (end_line = :line AND end_column >= :col))
            ORDER BY end_line - start_line,
                     end_byte <= start_byte,
                     end_byte - start_byte,
                     (end_line - start_line) * (end_column - start_column),
                     id
            LIMIT 1
        """)
        with self._db.session() as session:
            symbol_id = session.execute(
                sql, {"file": file_path, "line": line, "col": column}
            ).scalar()
            if symbol_id is None:
                return None
            row = session.get(Symbol, symbol_id)
            return SymbolRecord.from_row(row) if row is not None else None

    def find_symbols_by_name(self, substring: str, limit: int | None = None) -> list[SymbolRecord]:
        """Case-sensitive substring match on name, ordered by name."""
        if limit is None:
            limit = self._limits.name_search_default
        if limit <= 0:
            return []
        limit = min(limit, NAME_SEARCH_MAX_LIMIT)
        with self._db.session() as session:
            stmt = (
                select(Symbol)
                .where(func.instr(Symbol.name, substring) > 0)
                .order_by(col(Symbol.name), col(Symbol.id))
                .limit(limit)
            )
            return [SymbolRecord.from_row(row) for row in session.exec(stmt).all()]

    def find_references(self, symbol_id: str) -> list[Reference]:
        """Calls, uses and references targeting a symbol, with their origin."""
        kinds = sorted(kind.value for kind in RelationshipKind.reference_kinds())
        stmt = (
            select(Relationship, Symbol)
            .join(Symbol, col(Symbol.id) == col(Relationship.from_symbol_id))
            .where(Relationship.to_symbol_id == symbol_id)
            .where(col(Relationship.kind).in_(kinds))
            .order_by(col(Symbol.file_path), col(Symbol.start_line), col(Relationship.id))
        )
        with self._db.session() as session:
            return [
                Reference(
                    relationship_id=rel.id or 0,
                    kind=rel.kind,
                    from_symbol_id=sym.id,
                    from_name=sym.name,
                    file_path=sym.file_path,
                    start_line=sym.start_line,
                    start_column=sym.start_column,
                    occurrence_file=rel.file_path,
                    line_number=rel.line_number,
                    confidence=rel.confidence,
                )
                for rel, sym in session.exec(stmt).all()
            ]

    def search_symbols(self, query: str, limit: int | None = None) -> list[SymbolRecord]:
        """Full-text search over name, signature and doc comment, best first."""
        expression = build_match_expression(query)
        if expression is None:
            return []
        if limit is None:
            limit = self._limits.search_default
        if limit <= 0:
            return []
        limit = min(limit, SEARCH_MAX_LIMIT)
        sql = text("""
            SELECT s.id FROM code_search
            JOIN symbols s ON s.rowid = code_search.rowid
            WHERE code_search MATCH :q
            ORDER BY code_search.rank, s.id
            LIMIT :limit
        """)
        with self._db.session() as session:
            ids = [row[0] for row in session.execute(sql, {"q": expression, "limit": limit})]
        return self.get_symbols(ids)

    def get_stats(self) -> StoreStats:
        with self._db.session() as session:

            def _count(model: type[Any]) -> int:
                return int(session.exec(select(func.count()).select_from(model)).one())

            return StoreStats(
                symbols=_count(Symbol),
                files=_count(FileRecord),
                relationships=_count(Relationship),
                types=_count(TypeInfo),
                bindings=_count(Binding),
                workspaces=_count(WorkspaceRecord),
            )

    # =========================================================================
    # Workspaces
    # =========================================================================

    def record_workspace(self, path: str, metadata: dict[str, Any] | None = None) -> None:
        """Create or touch a workspace record."""
        row = {
            "path": path,
            "last_indexed": time.time(),
            "metadata_json": encode_metadata(metadata),
        }
        with self._write("workspaces", path=path) as session:
            session.execute(_upsert(WorkspaceRecord, row, "path"))

    def update_workspace_stats(self, path: str, symbol_count: int, file_count: int) -> None:
        row = {
            "path": path,
            "last_indexed": time.time(),
            "symbol_count": symbol_count,
            "file_count": file_count,
        }
        with self._write("workspaces", path=path) as session:
            session.execute(_upsert(WorkspaceRecord, row, "path"))

    def get_workspaces(self) -> list[WorkspaceInfo]:
        with self._db.session() as session:
            rows = session.exec(select(WorkspaceRecord).order_by(col(WorkspaceRecord.path))).all()
            return [WorkspaceInfo.from_row(row) for row in rows]

    def remove_workspace(self, path: str) -> ClearResult:
        """Delete a workspace record and every file recorded under its path."""
        with self._write("workspaces", path=path) as session:
            result = _clear_paths(session, path, prefix=True)
            session.execute(text("DELETE FROM workspaces WHERE path = :p"), {"p": path})
        log.info(
            "workspace_removed",
            path=path,
            symbols=result.symbols_deleted,
            relationships=result.relationships_deleted,
        )
        return result
