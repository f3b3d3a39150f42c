"""Vector index over sqlite-vec vec0 tables.

One fixed-dimension embedding per symbol per table. Symbols are addressed
by string id; vec0 rows by integer rowid. SymbolIdMap translates between
the two inside the writer's transaction.

Distances are cosine distances in [0, 2]; distance_to_confidence() is the
only conversion to a [0, 1] score.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, TypeVar

import numpy as np
import structlog
from sqlalchemy import text
from sqlalchemy.exc import OperationalError

from codestrata.config.constants import KNN_MAX_K
from codestrata.config.models import VectorsConfig
from codestrata.core.errors import ConfigError, DimensionMismatch, ExtensionUnavailable
from codestrata.index._internal.db import Database
from codestrata.index._internal.vectors.engine import (
    deserialize_vector,
    existing_dimension,
    is_extension_missing_error,
    reload_on_connection,
    serialize_vector,
    vec_table_ddl,
)
from codestrata.index._internal.vectors.idmap import MappingAudit, SymbolIdMap

if TYPE_CHECKING:
    from sqlalchemy.engine import Connection

log = structlog.get_logger()

T = TypeVar("T")

Vector = Sequence[float] | np.ndarray


def distance_to_confidence(distance: float) -> float:
    """Map cosine distance [0, 2] onto confidence [0, 1], clamped."""
    return max(0.0, min(1.0, 1.0 - distance / 2.0))


@dataclass
class VectorHit:
    """One nearest-neighbor result."""

    symbol_id: str  # Raw integer id as text when orphaned
    integer_id: int
    distance: float
    confidence: float
    orphaned: bool = False


@dataclass
class VectorStats:
    """Per-table vector counts and sizes."""

    counts: dict[str, int] = field(default_factory=dict)
    dimensions: dict[str, int] = field(default_factory=dict)
    mappings: int = 0
    estimated_bytes: int = 0

    @property
    def total_vectors(self) -> int:
        return sum(self.counts.values())


class VectorIndex:
    """Nearest-neighbor storage and search keyed by symbol id.

    Usage::

        vectors = VectorIndex(db, config.vectors)
        vectors.initialize()
        vectors.store_embedding("sym-1", embedding)
        hits = vectors.search(query_embedding, limit=10)
    """

    def __init__(
        self,
        db: Database,
        config: VectorsConfig | None = None,
        id_map: SymbolIdMap | None = None,
    ) -> None:
        self._db = db
        self._config = config or VectorsConfig()
        self._id_map = id_map or SymbolIdMap()

    @property
    def tables(self) -> dict[str, int]:
        return dict(self._config.tables)

    def initialize(self) -> None:
        """Create configured vec0 tables.

        Raises:
            DimensionMismatch: An existing table was created with another dimension.
        """
        with self._db.engine.connect() as conn:
            for table, dimension in self._config.tables.items():
                existing = existing_dimension(conn, table)
                if existing is not None and existing != dimension:
                    raise DimensionMismatch.for_table(table, existing, dimension)
                ddl = text(vec_table_ddl(table, dimension))
                self._with_extension(conn, lambda: conn.execute(ddl))
            conn.commit()
        log.debug("vector_tables_ready", tables=self._config.tables)

    def _table(self, table: str | None) -> tuple[str, int]:
        name = table or self._config.default_table
        if name not in self._config.tables:
            raise ConfigError.invalid_value("vectors.table", name, "not a configured vector table")
        return name, self._config.tables[name]

    def _with_extension(self, conn: Connection, operation: Callable[[], T]) -> T:
        """Run operation, reloading sqlite-vec once if it went missing."""
        try:
            return operation()
        except OperationalError as e:
            if not is_extension_missing_error(e):
                raise
            log.warning("vector_extension_detached", error=str(e.orig))
            reload_on_connection(conn)
            log.info("vector_extension_reloaded")
        try:
            return operation()
        except OperationalError as e:
            if is_extension_missing_error(e):
                raise ExtensionUnavailable.after_reload(str(e.orig)) from e
            raise

    # =========================================================================
    # Writes
    # =========================================================================

    def get_or_create_integer_id(self, symbol_id: str) -> int:
        """Integer key for a symbol id, assigned once under the write lock."""
        with self._db.immediate_transaction() as session:
            return self._id_map.get_or_create(session, symbol_id)

    def _put(self, conn: Connection, table: str, integer_id: int, blob: bytes) -> None:
        params = {"id": integer_id, "v": blob}
        exists = conn.execute(
            text(f"SELECT rowid FROM {table} WHERE rowid = :id"), {"id": integer_id}
        ).first()
        if exists is None:
            conn.execute(text(f"INSERT INTO {table}(rowid, embedding) VALUES (:id, :v)"), params)
        else:
            conn.execute(text(f"UPDATE {table} SET embedding = :v WHERE rowid = :id"), params)

    def store_embedding(self, symbol_id: str, vector: Vector, table: str | None = None) -> int:
        """Insert or overwrite the embedding for a symbol. Returns its integer id.

        Raises:
            DimensionMismatch: Vector length differs from the table dimension.
        """
        name, dimension = self._table(table)
        blob = serialize_vector(vector, name, dimension)
        with self._db.immediate_transaction() as session:
            conn = session.connection()
            integer_id = self._id_map.get_or_create(session, symbol_id)
            self._with_extension(conn, lambda: self._put(conn, name, integer_id, blob))
        log.debug("embedding_stored", symbol_id=symbol_id, table=name, integer_id=integer_id)
        return integer_id

    def store_batch(
        self,
        entries: Iterable[tuple[str, Vector]],
        table: str | None = None,
    ) -> int:
        """Store many embeddings, one transaction per batch_size chunk.

        Every vector is validated before the first chunk is written.
        Returns the number of embeddings stored.
        """
        name, dimension = self._table(table)
        packed = [(sid, serialize_vector(vec, name, dimension)) for sid, vec in entries]
        batch_size = self._config.batch_size

        for start in range(0, len(packed), batch_size):
            chunk = packed[start : start + batch_size]
            with self._db.immediate_transaction() as session:
                conn = session.connection()
                for symbol_id, blob in chunk:
                    integer_id = self._id_map.get_or_create(session, symbol_id)
                    self._with_extension(
                        conn,
                        lambda i=integer_id, b=blob: self._put(conn, name, i, b),  # type: ignore[misc]
                    )
            log.debug("vector_batch_stored", table=name, offset=start, size=len(chunk))

        return len(packed)

    def delete_embedding(self, symbol_id: str) -> bool:
        """Remove a symbol's vectors from every table and drop its mapping."""
        with self._db.immediate_transaction() as session:
            conn = session.connection()
            integer_id = self._id_map.remove(session, symbol_id)
            if integer_id is None:
                return False
            for table in self._config.tables:
                self._with_extension(
                    conn,
                    lambda t=table: conn.execute(  # type: ignore[misc]
                        text(f"DELETE FROM {t} WHERE rowid = :id"), {"id": integer_id}
                    ),
                )
        return True

    def clear_all(self) -> None:
        """Delete every vector in every table and every id mapping."""
        with self._db.immediate_transaction() as session:
            conn = session.connection()
            for table, dimension in self._config.tables.items():
                conn.execute(text(f"DROP TABLE IF EXISTS {table}"))
                ddl = text(vec_table_ddl(table, dimension))
                self._with_extension(conn, lambda d=ddl: conn.execute(d))  # type: ignore[misc]
            removed = self._id_map.clear(session)
        log.info("vectors_cleared", mappings=removed)

    def prune_orphans(self) -> int:
        """Drop vectors and mappings whose symbol no longer exists.

        Also drops vector rows that have no mapping at all. Returns the
        number of vector rows removed.
        """
        removed = 0
        with self._db.immediate_transaction() as session:
            conn = session.connection()
            stale = [
                row[0]
                for row in conn.execute(
                    text("""
                        SELECT m.symbol_id FROM symbol_id_mapping m
                        WHERE NOT EXISTS (SELECT 1 FROM symbols s WHERE s.id = m.symbol_id)
                    """)
                )
            ]
            for table in self._config.tables:
                # Rows without a mapping to a live symbol
                doomed = self._with_extension(
                    conn,
                    lambda t=table: [  # type: ignore[misc]
                        row[0]
                        for row in conn.execute(
                            text(f"""
                                SELECT rowid FROM {t}
                                WHERE rowid NOT IN (
                                    SELECT m.integer_id FROM symbol_id_mapping m
                                    JOIN symbols s ON s.id = m.symbol_id
                                )
                            """)
                        )
                    ],
                )
                for integer_id in doomed:
                    conn.execute(text(f"DELETE FROM {table} WHERE rowid = :id"), {"id": integer_id})
                removed += len(doomed)
            for symbol_id in stale:
                self._id_map.remove(session, symbol_id)
        log.info("vector_orphans_pruned", vectors=removed, mappings=len(stale))
        return removed

    # =========================================================================
    # Reads
    # =========================================================================

    def _knn(self, conn: Connection, table: str, blob: bytes, k: int) -> list[tuple[int, float]]:
        rows = conn.execute(
            text(f"""
                SELECT rowid, distance FROM {table}
                WHERE embedding MATCH :q AND k = :k
                ORDER BY distance
            """),
            {"q": blob, "k": k},
        ).all()
        return [(int(row[0]), float(row[1])) for row in rows]

    def search(
        self,
        query_vector: Vector,
        limit: int = 10,
        distance_threshold: float | None = None,
        table: str | None = None,
    ) -> list[VectorHit]:
        """Nearest neighbors by ascending cosine distance within the threshold.

        Rows whose integer id has no mapping are still returned, flagged
        orphaned, with the raw integer as their symbol id.
        """
        name, dimension = self._table(table)
        blob = serialize_vector(query_vector, name, dimension)
        threshold = (
            self._config.distance_threshold if distance_threshold is None else distance_threshold
        )
        k = min(limit, self._config.max_results, KNN_MAX_K)
        if k <= 0:
            return []

        with self._db.session() as session:
            conn = session.connection()
            rows = self._with_extension(conn, lambda: self._knn(conn, name, blob, k))
            kept = [(rowid, distance) for rowid, distance in rows if distance <= threshold]
            mapped = self._id_map.resolve(session, [rowid for rowid, _ in kept])

        hits = [
            VectorHit(
                symbol_id=mapped.get(rowid, str(rowid)),
                integer_id=rowid,
                distance=distance,
                confidence=distance_to_confidence(distance),
                orphaned=rowid not in mapped,
            )
            for rowid, distance in kept
        ]
        orphans = sum(1 for hit in hits if hit.orphaned)
        if orphans:
            log.warning("vector_search_orphans", table=name, count=orphans)
        return hits

    def get_embedding(self, symbol_id: str, table: str | None = None) -> list[float] | None:
        name, _ = self._table(table)
        with self._db.session() as session:
            integer_id = self._id_map.lookup(session, symbol_id)
            if integer_id is None:
                return None
            conn = session.connection()
            row = self._with_extension(
                conn,
                lambda: conn.execute(
                    text(f"SELECT embedding FROM {name} WHERE rowid = :id"), {"id": integer_id}
                ).first(),
            )
        return deserialize_vector(row[0]) if row is not None else None

    def count(self, table: str | None = None) -> int:
        name, _ = self._table(table)
        with self._db.session() as session:
            conn = session.connection()
            return int(
                self._with_extension(
                    conn, lambda: conn.execute(text(f"SELECT COUNT(*) FROM {name}")).scalar_one()
                )
            )

    def get_stats(self) -> VectorStats:
        stats = VectorStats(dimensions=dict(self._config.tables))
        for table, dimension in self._config.tables.items():
            stats.counts[table] = self.count(table)
            stats.estimated_bytes += stats.counts[table] * dimension * 4  # float32
        with self._db.session() as session:
            stats.mappings = self._id_map.count(session)
        return stats

    def audit(self) -> MappingAudit:
        with self._db.session() as session:
            return self._id_map.audit(session, self._config.tables)
