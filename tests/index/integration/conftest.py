"""Shared fixtures for integration tests."""

from __future__ import annotations

from collections.abc import Generator, Sequence
from pathlib import Path

import pytest

from codestrata.config.models import CodestrataConfig, VectorsConfig
from codestrata.index.ops import CodeIndex


class KeywordEmbedder:
    """Deterministic 4-dimension embedder keyed on a few words.

    Texts mentioning users land near one axis, orders near another, so
    nearest-neighbor results are predictable.
    """

    AXES = ("user", "order", "render", "config")

    def __init__(self) -> None:
        self.calls: list[str] = []

    def embed(self, text: str) -> Sequence[float]:
        self.calls.append(text)
        lowered = text.lower()
        vector = [1.0 if axis in lowered else 0.0 for axis in self.AXES]
        if not any(vector):
            vector[-1] = 0.5
        return vector


@pytest.fixture
def index_config() -> CodestrataConfig:
    return CodestrataConfig(
        vectors=VectorsConfig(tables={"symbol_vectors": 4, "chunk_vectors": 4}),
    )


@pytest.fixture
def embedder() -> KeywordEmbedder:
    return KeywordEmbedder()


@pytest.fixture
def code_index(
    tmp_path: Path, index_config: CodestrataConfig, embedder: KeywordEmbedder
) -> Generator[CodeIndex, None, None]:
    with CodeIndex(tmp_path / "idx" / "index.db", index_config, embedder) as index:
        yield index
