"""Database engine and bulk writer.

This module provides:
- Database: Connection manager with WAL mode, foreign keys and sqlite-vec
- BulkWriter: Core SQL batch writes inside a single BEGIN IMMEDIATE transaction
- immediate_transaction: serializable ORM session with lock-acquisition retry
- Integrity error translation into typed errors

The hybrid pattern:
- Use ORM sessions for reads and single-record writes
- Use BulkWriter for per-file replacement and vector batches
"""

from __future__ import annotations

import time
from collections.abc import Callable, Generator
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Any

import structlog
from sqlalchemy import event, text
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlmodel import Session, SQLModel, create_engine

from codestrata.config.models import DatabaseConfig
from codestrata.core.errors import (
    CodestrataError,
    ForeignKeyViolation,
    IndexIntegrityError,
    InternalError,
)
from codestrata.index._internal.db.indexes import create_additional_indexes, drop_search_schema
from codestrata.index._internal.vectors.engine import load_vector_extension

if TYPE_CHECKING:
    from sqlalchemy import Engine
    from sqlalchemy.engine import Connection

logger = structlog.get_logger()


def _is_database_locked_error(error: Exception) -> bool:
    """Check if error is a SQLite database locked error."""
    error_str = str(error).lower()
    return "database is locked" in error_str or "database is busy" in error_str


def translate_integrity_error(error: IntegrityError, table: str, **details: Any) -> CodestrataError:
    """Map a driver IntegrityError onto the typed error hierarchy."""
    reason = str(error.orig) if error.orig is not None else str(error)
    if "foreign key" in reason.lower():
        return ForeignKeyViolation.for_record(table, reason, **details)
    return IndexIntegrityError.constraint(table, reason)


class Database:
    """SQLite connection manager with WAL mode for concurrent access.

    Every pooled connection gets foreign keys enabled and the sqlite-vec
    extension loaded. Writers serialize through BEGIN IMMEDIATE with
    exponential backoff while the lock is contended.
    """

    def __init__(
        self,
        db_path: Path,
        config: DatabaseConfig | None = None,
        load_vectors: bool = True,
    ) -> None:
        self.db_path = db_path
        self.config = config or DatabaseConfig()
        self.load_vectors = load_vectors
        self.engine = self._create_engine()

    def _create_engine(self) -> Engine:
        engine = create_engine(
            f"sqlite:///{self.db_path}",
            connect_args={"check_same_thread": False},
            pool_pre_ping=True,
        )
        event.listen(
            engine,
            "connect",
            _make_connect_listener(self.config.busy_timeout_ms, self.load_vectors),
        )
        return engine

    def create_all(self) -> None:
        """Create all tables, search schema and secondary indexes."""
        SQLModel.metadata.create_all(self.engine)
        create_additional_indexes(self.engine)

    def drop_all(self) -> None:
        """Drop all relational tables and the search schema. Use with caution."""
        drop_search_schema(self.engine)
        SQLModel.metadata.drop_all(self.engine)

    def dispose(self) -> None:
        """Close every pooled connection."""
        self.engine.dispose()

    @contextmanager
    def session(self) -> Generator[Session, None, None]:
        """ORM session for reads."""
        with Session(self.engine) as session:
            yield session

    @contextmanager
    def immediate_transaction(
        self,
        max_retries: int | None = None,
    ) -> Generator[Session, None, None]:
        """
        Session with BEGIN IMMEDIATE for serializable writes.

        Only lock acquisition is retried. Once the body runs, any error
        rolls back and propagates.

        The session commits on successful exit and rolls back on exception.

        Args:
            max_retries: Override configured max retries
        """
        session = self._begin(
            lambda s: s.execute(text("BEGIN IMMEDIATE")),
            lambda: Session(self.engine),
            max_retries,
        )
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    @contextmanager
    def bulk_writer(self, defer_foreign_keys: bool = False) -> Generator[BulkWriter, None, None]:
        """
        Bulk writer over one BEGIN IMMEDIATE transaction.

        Args:
            defer_foreign_keys: Check foreign keys at commit instead of per
                statement, so a batch may list children before parents.

        Commits on successful exit, rolls back on exception.
        """
        conn = self._begin(
            lambda c: c.execute(text("BEGIN IMMEDIATE")),
            self.engine.connect,
            None,
        )
        writer = BulkWriter(conn)
        try:
            if defer_foreign_keys:
                conn.execute(text("PRAGMA defer_foreign_keys = ON"))
            yield writer
            writer.commit()
        except Exception:
            writer.rollback()
            raise
        finally:
            writer.close()

    def _begin(
        self,
        begin: Callable[[Any], Any],
        factory: Callable[[], Any],
        max_retries: int | None,
    ) -> Any:
        retries = max_retries if max_retries is not None else self.config.max_retries
        for attempt in range(retries + 1):  # +1 for initial attempt
            handle = factory()
            try:
                begin(handle)
                return handle
            except OperationalError as e:
                handle.close()
                if _is_database_locked_error(e) and attempt < retries:
                    delay = min(
                        self.config.retry_base_delay_sec * (2**attempt),
                        self.config.retry_max_delay_sec,
                    )
                    logger.warning(
                        "sqlite_busy_retry",
                        attempt=attempt + 1,
                        max_retries=retries,
                        delay_sec=delay,
                    )
                    time.sleep(delay)
                    continue
                raise
        raise InternalError.unexpected("lock acquisition loop exhausted", retries=retries)

    def checkpoint(self, mode: str = "PASSIVE") -> None:
        """Run WAL checkpoint.

        Args:
            mode: PASSIVE (default), FULL, RESTART, or TRUNCATE
        """
        valid_modes = {"PASSIVE", "FULL", "RESTART", "TRUNCATE"}
        if mode.upper() not in valid_modes:
            raise ValueError(f"Invalid checkpoint mode: {mode}. Must be one of {valid_modes}")

        with self.engine.connect() as conn:
            conn.execute(text(f"PRAGMA wal_checkpoint({mode.upper()})"))
            logger.debug("wal_checkpoint_completed", mode=mode)


def _make_connect_listener(busy_timeout_ms: int, load_vectors: bool) -> Callable[[Any, Any], None]:
    def _configure_connection(dbapi_conn: Any, _connection_record: Any) -> None:
        """Configure SQLite for concurrent access and load sqlite-vec."""
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute(f"PRAGMA busy_timeout={int(busy_timeout_ms)}")
        cursor.execute("PRAGMA synchronous=NORMAL")  # Safe with WAL
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.execute("PRAGMA cache_size=-64000")  # 64MB cache
        cursor.close()
        if load_vectors:
            load_vector_extension(dbapi_conn)

    return _configure_connection


class BulkWriter:
    """Batch writes using Core SQL, bypassing ORM overhead."""

    def __init__(self, conn: Connection) -> None:
        self.conn = conn

    def insert_many(self, model_class: type[SQLModel], records: list[dict[str, Any]]) -> int:
        """Bulk insert records into table, returning count inserted."""
        if not records:
            return 0

        table = model_class.__table__  # type: ignore[attr-defined]
        self.conn.execute(table.insert(), records)
        return len(records)

    def upsert_many(
        self,
        model_class: type[SQLModel],
        records: list[dict[str, Any]],
        conflict_columns: list[str],
    ) -> int:
        """Insert or update on conflict, returning count processed.

        Uses ON CONFLICT DO UPDATE rather than REPLACE so existing rows keep
        their identity and dependent rows are not cascaded away.
        """
        if not records:
            return 0

        table = model_class.__table__  # type: ignore[attr-defined]
        stmt = sqlite_insert(table)
        update_columns = [c for c in records[0] if c not in conflict_columns]
        stmt = stmt.on_conflict_do_update(
            index_elements=conflict_columns,
            set_={col: stmt.excluded[col] for col in update_columns},
        )
        self.conn.execute(stmt, records)
        return len(records)

    def delete_where(
        self,
        model_class: type[SQLModel],
        condition: str,
        params: dict[str, Any],
    ) -> int:
        """Bulk delete rows matching condition, returning count affected."""
        table = model_class.__table__  # type: ignore[attr-defined]
        sql = f"DELETE FROM {table.name} WHERE {condition}"
        result = self.conn.execute(text(sql), params)
        return int(result.rowcount)

    def execute(self, sql: str, params: dict[str, Any] | list[dict[str, Any]] | None = None) -> Any:
        """Execute raw SQL inside the writer's transaction."""
        return self.conn.execute(text(sql), params or {})

    def commit(self) -> None:
        """Commit the current transaction."""
        self.conn.commit()

    def rollback(self) -> None:
        """Rollback the current transaction."""
        self.conn.rollback()

    def close(self) -> None:
        """Close the connection."""
        self.conn.close()
