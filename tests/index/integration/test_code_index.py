"""Integration tests for CodeIndex.

Exercises the full path:
extracted records → SymbolStore + VectorIndex → HybridRetriever
"""

from __future__ import annotations

from pathlib import Path
from unittest.mock import patch

import pytest

from codestrata.config.models import CodestrataConfig, VectorsConfig
from codestrata.core.errors import ConfigError, DimensionMismatch, InternalError
from codestrata.core.logging import get_request_id
from codestrata.index.models import (
    FileInfo,
    RelationshipKind,
    RelationshipRecord,
    SearchMethod,
    SymbolRecord,
)
from codestrata.index.ops import CodeIndex, exploration_text, symbol_text

pytestmark = pytest.mark.integration


def _file(path: str, content_hash: str = "h1") -> FileInfo:
    return FileInfo(
        path=path, language="typescript", last_modified=1.0, size=100, hash=content_hash
    )


def _symbol(symbol_id: str, name: str, path: str, kind: str = "class", **extra: object) -> SymbolRecord:
    fields: dict[str, object] = {
        "id": symbol_id,
        "name": name,
        "kind": kind,
        "language": "typescript",
        "file_path": path,
        "start_line": 1,
        "start_column": 0,
        "end_line": 20,
        "end_column": 1,
    }
    fields.update(extra)
    return SymbolRecord(**fields)


def _index_user_feature(index: CodeIndex) -> None:
    index.index_file(
        _file("/src/api/dto/user_dto.ts"),
        [_symbol("dto", "UserDto", "/src/api/dto/user_dto.ts", kind="interface")],
    )
    index.index_file(
        _file("/src/domain/user.ts"),
        [_symbol("model", "User", "/src/domain/user.ts")],
    )
    index.index_file(
        _file("/src/data/user_repository.ts"),
        [
            _symbol("repo", "UserRepository", "/src/data/user_repository.ts"),
            _symbol(
                "find",
                "findUser",
                "/src/data/user_repository.ts",
                kind="method",
                parent_id="repo",
                start_line=3,
                end_line=5,
            ),
        ],
        [
            RelationshipRecord(
                from_symbol_id="repo",
                to_symbol_id="model",
                kind=RelationshipKind.USES,
                file_path="/src/data/user_repository.ts",
                line_number=1,
            )
        ],
    )
    index.index_file(
        _file("/web/components/order_list.tsx"),
        [_symbol("orders", "OrderList", "/web/components/order_list.tsx")],
    )


class TestLifecycle:
    def test_open_creates_database(self, tmp_path: Path, index_config: CodestrataConfig) -> None:
        db_path = tmp_path / "nested" / "index.db"
        index = CodeIndex(db_path, index_config)

        index.open()
        try:
            assert index.is_open
            assert db_path.exists()
        finally:
            index.close()
        index.close()

        assert not index.is_open

    def test_components_unavailable_when_closed(
        self, tmp_path: Path, index_config: CodestrataConfig
    ) -> None:
        index = CodeIndex(tmp_path / "index.db", index_config)

        with pytest.raises(InternalError):
            _ = index.store

    def test_reopen_with_other_dimension_fails(
        self, tmp_path: Path, index_config: CodestrataConfig
    ) -> None:
        db_path = tmp_path / "index.db"
        with CodeIndex(db_path, index_config):
            pass
        resized = CodestrataConfig(
            vectors=VectorsConfig(tables={"symbol_vectors": 8, "chunk_vectors": 8})
        )
        index = CodeIndex(db_path, resized)

        with pytest.raises(DimensionMismatch):
            index.open()
        assert not index.is_open

    def test_for_workspace_uses_index_dir(
        self, tmp_path: Path, index_config: CodestrataConfig
    ) -> None:
        index = CodeIndex.for_workspace(tmp_path, index_config)

        assert index.db_path == tmp_path / ".codestrata" / "index.db"


class TestIndexFile:
    def test_indexes_symbols_and_embeddings(self, code_index: CodeIndex) -> None:
        result = code_index.index_file(
            _file("/src/domain/user.ts"),
            [_symbol("model", "User", "/src/domain/user.ts", doc_comment="A user account")],
        )

        assert result.skipped is False
        assert (result.symbols, result.embeddings) == (1, 1)
        assert code_index.vectors.get_embedding("model") is not None

    def test_unchanged_file_skipped(self, code_index: CodeIndex, embedder) -> None:
        symbols = [_symbol("model", "User", "/src/domain/user.ts")]
        code_index.index_file(_file("/src/domain/user.ts"), symbols)
        calls = len(embedder.calls)

        again = code_index.index_file(_file("/src/domain/user.ts"), symbols)
        forced = code_index.index_file(_file("/src/domain/user.ts"), symbols, force=True)

        assert again.skipped is True
        assert forced.skipped is False
        assert len(embedder.calls) == calls + 1

    def test_symbol_text_includes_signature(self) -> None:
        symbol = _symbol("s", "load", "/a.ts", kind="function", signature="load(): void")
        assert symbol_text(symbol) == "function load load(): void"

    def test_remove_then_prune(self, code_index: CodeIndex) -> None:
        _index_user_feature(code_index)

        cleared = code_index.remove_file("/src/data/user_repository.ts")
        pruned = code_index.prune_vectors()

        assert cleared.symbols_deleted == 2
        assert pruned == 2
        assert code_index.store.get_symbol("model") is not None
        assert code_index.verify().passed


class TestRetrieval:
    def test_search_fuses_structural_and_semantic(self, code_index: CodeIndex) -> None:
        _index_user_feature(code_index)

        results = code_index.search("UserRepository")

        assert results[0].symbol_id == "repo"
        assert results[0].search_method is SearchMethod.HYBRID
        assert "orders" not in {r.symbol_id for r in results}

    def test_search_without_embedder_is_structural(
        self, tmp_path: Path, index_config: CodestrataConfig
    ) -> None:
        with CodeIndex(tmp_path / "plain.db", index_config) as index:
            index.index_file(
                _file("/src/domain/user.ts"), [_symbol("model", "User", "/src/domain/user.ts")]
            )

            results = index.search("User")

        assert [r.symbol_id for r in results] == ["model"]
        assert results[0].search_method is SearchMethod.STRUCTURAL

    def test_cross_layer_entity(self, code_index: CodeIndex) -> None:
        _index_user_feature(code_index)

        result = code_index.find_cross_layer_entity("User")

        ids = {hit.symbol.id for hit in result.symbols}
        assert {"dto", "model", "repo"} <= ids
        assert "orders" not in ids
        assert {"api", "domain", "data"} <= set(result.layers)
        assert result.architectural_pattern == "Layered Architecture"

    def test_cross_layer_requires_vector_or_embedder(
        self, tmp_path: Path, index_config: CodestrataConfig
    ) -> None:
        with CodeIndex(tmp_path / "plain.db", index_config) as index:
            with pytest.raises(ConfigError):
                index.find_cross_layer_entity("User")

            result = index.find_cross_layer_entity("User", query_vector=[1.0, 0.0, 0.0, 0.0])

        assert result.symbols == []

    def test_explore(self, code_index: CodeIndex) -> None:
        _index_user_feature(code_index)

        result = code_index.explore("User")

        assert "Repository Pattern" in result.patterns
        assert ("repo", "model") in {(r.from_symbol_id, r.to_symbol_id) for r in result.relationships}

    def test_explore_context_widens_embedded_text_only(
        self, code_index: CodeIndex, embedder
    ) -> None:
        _index_user_feature(code_index)

        result = code_index.explore("User", language="typescript", pattern="repository")

        assert embedder.calls[-1] == "typescript User repository pattern"
        assert exploration_text("User") == "User"
        # Name matching still sees the bare query
        assert {"model", "repo"} <= {r.symbol_id for r in result.overview}

    def test_zero_limit_returns_nothing(self, code_index: CodeIndex) -> None:
        _index_user_feature(code_index)

        assert code_index.search("User", limit=0) == []
        assert code_index.store.find_symbols_by_name("User", limit=0) == []
        assert code_index.store.search_symbols("User", limit=0) == []

    def test_operations_bind_request_id(self, code_index: CodeIndex) -> None:
        _index_user_feature(code_index)
        seen: list[str | None] = []
        search = code_index.retriever.search

        def recording_search(*args: object, **kwargs: object) -> object:
            seen.append(get_request_id())
            return search(*args, **kwargs)

        with patch.object(code_index.retriever, "search", side_effect=recording_search):
            code_index.search("User")

        assert seen and seen[0] is not None
        assert get_request_id() is None


class TestMaintenance:
    def test_stats_and_verify(self, code_index: CodeIndex) -> None:
        _index_user_feature(code_index)

        stats = code_index.get_stats()
        report = code_index.verify()

        assert stats.store.symbols == 5
        assert stats.store.files == 4
        assert stats.store.relationships == 1
        assert stats.vectors.counts["symbol_vectors"] == 5
        assert report.passed is True
        assert report.vectors_checked == 5
