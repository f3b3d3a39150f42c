"""Shared fixtures for index tests."""

from __future__ import annotations

import tempfile
from collections.abc import Callable, Generator
from pathlib import Path
from typing import TYPE_CHECKING, Any

import pytest

from codestrata.config.models import VectorsConfig
from codestrata.index.models import FileInfo, SymbolRecord

if TYPE_CHECKING:
    from codestrata.index._internal.db import Database
    from codestrata.index.store import SymbolStore
    from codestrata.index.vectors import VectorIndex

DIM = 4


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory(ignore_cleanup_errors=True) as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def temp_db(temp_dir: Path) -> Generator[Database, None, None]:
    """Create a temporary database with schema."""
    from codestrata.index._internal.db import Database

    db = Database(temp_dir / "test.db")
    db.create_all()
    yield db
    db.dispose()


@pytest.fixture
def vectors_config() -> VectorsConfig:
    """Two small tables so test vectors stay readable."""
    return VectorsConfig(
        tables={"symbol_vectors": DIM, "chunk_vectors": DIM},
        batch_size=2,
        max_results=50,
    )


@pytest.fixture
def store(temp_db: Database) -> SymbolStore:
    from codestrata.index.store import SymbolStore

    return SymbolStore(temp_db)


@pytest.fixture
def vector_index(temp_db: Database, vectors_config: VectorsConfig) -> VectorIndex:
    from codestrata.index.vectors import VectorIndex

    index = VectorIndex(temp_db, vectors_config)
    index.initialize()
    return index


@pytest.fixture
def make_symbol() -> Callable[..., SymbolRecord]:
    """Factory for symbols with a sensible one-line span."""

    def _make(
        symbol_id: str,
        name: str | None = None,
        file_path: str = "/src/a.ts",
        **overrides: Any,
    ) -> SymbolRecord:
        fields: dict[str, Any] = {
            "id": symbol_id,
            "name": name or symbol_id,
            "kind": "function",
            "language": "typescript",
            "file_path": file_path,
            "start_line": 1,
            "start_column": 0,
            "end_column": 10,
        }
        fields.update(overrides)
        fields.setdefault("end_line", fields["start_line"])
        return SymbolRecord(**fields)

    return _make


@pytest.fixture
def make_file() -> Callable[..., FileInfo]:
    def _make(path: str = "/src/a.ts", content_hash: str = "h1") -> FileInfo:
        return FileInfo(
            path=path,
            language="typescript",
            last_modified=1700000000.0,
            size=120,
            hash=content_hash,
        )

    return _make
