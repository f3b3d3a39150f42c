"""High-level entry point for the index.

CodeIndex owns one database and the components built on it: the symbol
store, the vector index and the hybrid retriever. State is per instance,
with an explicit open()/close() lifecycle, so several indexes can live in
one process (one per workspace, one per test).

The embedding model is an external collaborator typed by the Embedder
protocol. Without one, the semantic path is skipped.
"""

from __future__ import annotations

import time
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from types import TracebackType
from typing import Protocol

import structlog

from codestrata.config.loader import get_db_path, load_config
from codestrata.config.models import CodestrataConfig
from codestrata.core.errors import ConfigError, InternalError
from codestrata.core.logging import request_scope
from codestrata.index._internal.db import Database, IntegrityChecker, IntegrityReport
from codestrata.index.hybrid import CrossLayerResult, ExplorationResult, HybridResult, HybridRetriever
from codestrata.index.models import (
    BindingRecord,
    FileInfo,
    RelationshipRecord,
    SymbolRecord,
    TypeInfoRecord,
)
from codestrata.index.store import ClearResult, StoreStats, SymbolStore
from codestrata.index.vectors import Vector, VectorIndex, VectorStats

log = structlog.get_logger()

# Widens an entity name so the embedding lands near its DTOs, tables and types
_ENTITY_QUERY_TEMPLATE = "{name} entity data model DTO class interface table"


def exploration_text(query: str, language: str | None = None, pattern: str | None = None) -> str:
    """Query text embedded for explore(), widened by optional context."""
    text = f"{language} {query}" if language else query
    if pattern:
        text = f"{text} {pattern} pattern"
    return text


class Embedder(Protocol):
    """Turns text into a fixed-dimension embedding."""

    def embed(self, text: str) -> Sequence[float]: ...


def symbol_text(symbol: SymbolRecord) -> str:
    """Text embedded for a symbol."""
    parts = [symbol.kind, symbol.name, symbol.signature, symbol.doc_comment]
    return " ".join(part for part in parts if part)


@dataclass
class IndexFileResult:
    """Result of indexing one file."""

    path: str
    skipped: bool
    symbols: int = 0
    relationships: int = 0
    embeddings: int = 0
    duration_seconds: float = 0.0


@dataclass
class IndexStats:
    """Combined store and vector statistics."""

    store: StoreStats
    vectors: VectorStats


class CodeIndex:
    """
    Symbol store, vector index and retriever behind one lifecycle.

    Usage::

        with CodeIndex(db_path, config, embedder=model) as index:
            index.index_file(file_info, symbols, relationships)
            results = index.search("UserService")
    """

    def __init__(
        self,
        db_path: Path,
        config: CodestrataConfig | None = None,
        embedder: Embedder | None = None,
    ) -> None:
        self.db_path = db_path
        self.config = config or CodestrataConfig()
        self.embedder = embedder

        self._db: Database | None = None
        self._store: SymbolStore | None = None
        self._vectors: VectorIndex | None = None
        self._retriever: HybridRetriever | None = None

    @classmethod
    def for_workspace(
        cls,
        workspace_root: Path,
        config: CodestrataConfig | None = None,
        embedder: Embedder | None = None,
    ) -> CodeIndex:
        """Index stored at the workspace's configured location."""
        config = config or load_config(workspace_root)
        return cls(get_db_path(workspace_root, config), config, embedder)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def open(self) -> None:
        """Create the schema and vector tables if needed and wire components.

        Raises:
            ExtensionUnavailable: sqlite-vec could not be loaded.
            DimensionMismatch: Stored vector tables disagree with config.
        """
        if self._db is not None:
            return
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        db = Database(self.db_path, self.config.database)
        try:
            db.create_all()
            vectors = VectorIndex(db, self.config.vectors)
            vectors.initialize()
        except Exception:
            db.dispose()
            raise

        self._db = db
        self._vectors = vectors
        self._store = SymbolStore(db, self.config.limits)
        self._retriever = HybridRetriever(
            self._store, vectors, self.config.retrieval, self.config.limits
        )
        log.info("index_opened", path=str(self.db_path), vector_tables=self.config.vectors.tables)

    def close(self) -> None:
        """Release all connections. Safe to call twice."""
        if self._db is None:
            return
        self._db.dispose()
        self._db = None
        self._store = None
        self._vectors = None
        self._retriever = None
        log.info("index_closed", path=str(self.db_path))

    def __enter__(self) -> CodeIndex:
        self.open()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    @property
    def is_open(self) -> bool:
        return self._db is not None

    @property
    def db(self) -> Database:
        if self._db is None:
            raise InternalError.unexpected("index is not open", path=str(self.db_path))
        return self._db

    @property
    def store(self) -> SymbolStore:
        if self._store is None:
            raise InternalError.unexpected("index is not open", path=str(self.db_path))
        return self._store

    @property
    def vectors(self) -> VectorIndex:
        if self._vectors is None:
            raise InternalError.unexpected("index is not open", path=str(self.db_path))
        return self._vectors

    @property
    def retriever(self) -> HybridRetriever:
        if self._retriever is None:
            raise InternalError.unexpected("index is not open", path=str(self.db_path))
        return self._retriever

    # =========================================================================
    # Indexing
    # =========================================================================

    def index_file(
        self,
        file: FileInfo,
        symbols: Sequence[SymbolRecord],
        relationships: Sequence[RelationshipRecord] = (),
        types: Sequence[TypeInfoRecord] = (),
        bindings: Sequence[BindingRecord] = (),
        *,
        force: bool = False,
    ) -> IndexFileResult:
        """Replace one file's extracted data and embed its symbols.

        Skipped when the stored hash matches, unless force is set.
        """
        with request_scope():
            return self._index_file(file, symbols, relationships, types, bindings, force)

    def _index_file(
        self,
        file: FileInfo,
        symbols: Sequence[SymbolRecord],
        relationships: Sequence[RelationshipRecord],
        types: Sequence[TypeInfoRecord],
        bindings: Sequence[BindingRecord],
        force: bool,
    ) -> IndexFileResult:
        start = time.monotonic()
        if not force and self.store.is_file_unchanged(file.path, file.hash):
            log.debug("file_unchanged", path=file.path)
            return IndexFileResult(path=file.path, skipped=True)

        replaced = self.store.replace_file_data(file, symbols, relationships, types, bindings)

        embedded = 0
        if self.embedder is not None and symbols:
            embedder = self.embedder
            embedded = self.vectors.store_batch(
                (symbol.id, embedder.embed(symbol_text(symbol))) for symbol in symbols
            )

        result = IndexFileResult(
            path=file.path,
            skipped=False,
            symbols=replaced.symbols,
            relationships=replaced.relationships,
            embeddings=embedded,
            duration_seconds=time.monotonic() - start,
        )
        log.debug(
            "file_indexed",
            path=file.path,
            symbols=result.symbols,
            embeddings=embedded,
            duration_ms=round(result.duration_seconds * 1000, 2),
        )
        return result

    def remove_file(self, path: str) -> ClearResult:
        """Forget a file. Its vectors stay until prune_vectors()."""
        return self.store.clear_file_data(path)

    def prune_vectors(self) -> int:
        return self.vectors.prune_orphans()

    # =========================================================================
    # Retrieval
    # =========================================================================

    def _embed(self, text: str) -> Vector | None:
        if self.embedder is None:
            return None
        return self.embedder.embed(text)

    def search(self, query: str, limit: int | None = None) -> list[HybridResult]:
        """Hybrid search. Structural only when no embedder is configured."""
        with request_scope():
            return self.retriever.search(query, self._embed(query), limit)

    def find_cross_layer_entity(
        self,
        entity_name: str,
        limit: int = 20,
        query_vector: Vector | None = None,
    ) -> CrossLayerResult:
        """Cross-layer representations of a concept.

        Raises:
            ConfigError: Neither query_vector nor an embedder was supplied.
        """
        vector = query_vector
        if vector is None:
            vector = self._embed(_ENTITY_QUERY_TEMPLATE.format(name=entity_name))
        if vector is None:
            raise ConfigError.missing_required("embedder")
        with request_scope():
            return self.retriever.find_cross_layer_entity(entity_name, vector, limit)

    def explore(
        self,
        query: str,
        limit: int = 15,
        *,
        language: str | None = None,
        pattern: str | None = None,
    ) -> ExplorationResult:
        """Search plus pattern and relationship summary.

        language and pattern widen only the embedded text; name and full-text
        matching use the bare query.
        """
        vector = self._embed(exploration_text(query, language, pattern))
        with request_scope():
            return self.retriever.explore(query, vector, limit)

    # =========================================================================
    # Maintenance
    # =========================================================================

    def get_stats(self) -> IndexStats:
        return IndexStats(store=self.store.get_stats(), vectors=self.vectors.get_stats())

    def verify(self) -> IntegrityReport:
        """Check foreign keys, full-text sync and vector mappings."""
        report = IntegrityChecker(self.db, self.config.vectors.tables).verify()
        if not report.passed:
            log.warning(
                "integrity_check_failed",
                issues=[issue.category for issue in report.issues],
            )
        return report
