"""Hybrid retrieval: structural and semantic results fused into one ranking.

Scoring:
    hybrid = w_name * name + w_structure * structure + w_semantic * semantic

- name: name_similarity(symbol name, query)
- structure: flat score, higher when the structural path found the symbol
- semantic: distance_to_confidence(cosine distance), 0 when not a neighbor

Weights come from RetrievalConfig and sum to 1, so every term in [0, 1]
keeps the total in [0, 1].
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field

import numpy as np
import structlog
from rapidfuzz.distance import Levenshtein

from codestrata.config.constants import SEARCH_MAX_LIMIT
from codestrata.config.models import LimitsConfig, RetrievalConfig
from codestrata.index.layers import (
    cross_layer_recommendations,
    detect_architectural_pattern,
    detect_code_patterns,
    detect_layer,
    exploration_recommendations,
    layer_distribution,
)
from codestrata.index.models import Layer, RelationshipRecord, SearchMethod, SymbolRecord
from codestrata.index.store import SymbolStore
from codestrata.index.vectors import Vector, VectorHit, VectorIndex

log = structlog.get_logger()


def name_similarity(a: str, b: str) -> float:
    """Case-insensitive name similarity in [0, 1].

    Exact match is 1.0, containment either way is 0.8, anything else is
    the normalized Levenshtein similarity (1 - distance / len(longer)).
    """
    left, right = a.lower(), b.lower()
    if left == right:
        return 1.0
    if left in right or right in left:
        return 0.8
    return Levenshtein.normalized_similarity(left, right)


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, value))


# ============================================================================
# Result types
# ============================================================================


@dataclass
class HybridResult:
    """A ranked symbol with the component scores that produced its rank."""

    symbol: SymbolRecord
    hybrid_score: float
    name_score: float
    structure_score: float
    semantic_score: float
    semantic_distance: float | None
    layer: Layer
    search_method: SearchMethod

    @property
    def symbol_id(self) -> str:
        return self.symbol.id


@dataclass
class CrossLayerHit:
    """One representation of a concept in some layer."""

    symbol: SymbolRecord
    layer: Layer
    distance: float
    confidence: float


@dataclass
class CrossLayerResult:
    """A concept's representations across architectural layers."""

    entity_name: str
    symbols: list[CrossLayerHit] = field(default_factory=list)
    layers: dict[str, int] = field(default_factory=dict)
    total_confidence: float = 0.0
    architectural_pattern: str = "Custom Architecture"
    recommendations: list[str] = field(default_factory=list)


@dataclass
class ExplorationResult:
    """Overview of the code around a query."""

    query: str
    overview: list[HybridResult] = field(default_factory=list)
    patterns: list[str] = field(default_factory=list)
    relationships: list[RelationshipRecord] = field(default_factory=list)
    recommendations: list[str] = field(default_factory=list)


# ============================================================================
# Retriever
# ============================================================================


class HybridRetriever:
    """Fuses SymbolStore and VectorIndex results."""

    def __init__(
        self,
        store: SymbolStore,
        vectors: VectorIndex,
        config: RetrievalConfig | None = None,
        limits: LimitsConfig | None = None,
    ) -> None:
        self._store = store
        self._vectors = vectors
        self._config = config or RetrievalConfig()
        self._limits = limits or LimitsConfig()

    def score(self, name: float, structure: float, semantic: float) -> float:
        cfg = self._config
        return _clamp(
            cfg.name_weight * _clamp(name)
            + cfg.structure_weight * _clamp(structure)
            + cfg.semantic_weight * _clamp(semantic)
        )

    def fuse(
        self,
        query: str,
        structural: Sequence[SymbolRecord],
        semantic: Sequence[tuple[VectorHit, SymbolRecord]],
        limit: int,
    ) -> list[HybridResult]:
        """Rank the union of both result sets. Pure: no store access.

        Order is descending hybrid score, then ascending symbol id.
        """
        structural_by_id: dict[str, SymbolRecord] = {}
        for symbol in structural:
            structural_by_id.setdefault(symbol.id, symbol)

        # Semantic hits arrive nearest first; keep the nearest per symbol
        semantic_by_id: dict[str, tuple[VectorHit, SymbolRecord]] = {}
        for hit, symbol in semantic:
            semantic_by_id.setdefault(symbol.id, (hit, symbol))

        results: list[HybridResult] = []
        for symbol_id in structural_by_id.keys() | semantic_by_id.keys():
            pair = semantic_by_id.get(symbol_id)
            if symbol_id in structural_by_id:
                symbol = structural_by_id[symbol_id]
            else:
                symbol = semantic_by_id[symbol_id][1]
            name_score = name_similarity(symbol.name, query)

            if symbol_id in structural_by_id:
                structure_score = self._config.structural_hit_score
                method = SearchMethod.HYBRID if pair else SearchMethod.STRUCTURAL
            else:
                structure_score = self._config.semantic_only_score
                method = SearchMethod.SEMANTIC

            semantic_score = pair[0].confidence if pair else 0.0
            results.append(
                HybridResult(
                    symbol=symbol,
                    hybrid_score=self.score(name_score, structure_score, semantic_score),
                    name_score=name_score,
                    structure_score=structure_score,
                    semantic_score=semantic_score,
                    semantic_distance=pair[0].distance if pair else None,
                    layer=detect_layer(symbol.file_path),
                    search_method=method,
                )
            )

        results.sort(key=lambda r: (-r.hybrid_score, r.symbol.id))
        return results[:limit]

    def _structural(self, query: str, limit: int) -> list[SymbolRecord]:
        if not query.strip():
            return []
        by_name = self._store.find_symbols_by_name(query, limit)
        by_text = self._store.search_symbols(query, limit)
        seen: dict[str, SymbolRecord] = {}
        for symbol in [*by_name, *by_text]:
            seen.setdefault(symbol.id, symbol)
        return list(seen.values())

    def _semantic(
        self,
        query_vector: Vector,
        limit: int,
        distance_threshold: float | None = None,
    ) -> list[tuple[VectorHit, SymbolRecord]]:
        """Vector neighbors paired with their live symbols.

        Orphaned hits and hits whose symbol was deleted are dropped.
        """
        hits = self._vectors.search(query_vector, limit, distance_threshold=distance_threshold)
        live = [hit for hit in hits if not hit.orphaned]
        symbols = {s.id: s for s in self._store.get_symbols([hit.symbol_id for hit in live])}
        dropped = len(hits) - sum(1 for hit in live if hit.symbol_id in symbols)
        if dropped:
            log.debug("semantic_hits_dropped", count=dropped)
        return [(hit, symbols[hit.symbol_id]) for hit in live if hit.symbol_id in symbols]

    def search(
        self,
        query: str,
        query_vector: Vector | None = None,
        limit: int | None = None,
        structural: Sequence[SymbolRecord] | None = None,
    ) -> list[HybridResult]:
        """Structural + semantic search fused into one ranking.

        Args:
            query: Text matched against names and the full-text index.
            query_vector: Embedding of the query. None skips the semantic path.
            limit: Max results (defaults to limits.search_default).
            structural: Pre-computed structural hits; skips the store lookup.
        """
        if limit is None:
            limit = self._limits.search_default
        if limit <= 0:
            return []
        limit = min(limit, SEARCH_MAX_LIMIT)
        structural_hits = list(structural) if structural is not None else self._structural(query, limit)

        semantic_hits: list[tuple[VectorHit, SymbolRecord]] = []
        if query_vector is not None and np.asarray(query_vector).size > 0:
            semantic_hits = self._semantic(query_vector, limit * self._config.semantic_fanout)

        results = self.fuse(query, structural_hits, semantic_hits, limit)
        log.debug(
            "hybrid_search_complete",
            query=query,
            results=len(results),
            hybrid=sum(1 for r in results if r.search_method is SearchMethod.HYBRID),
            structural=sum(1 for r in results if r.search_method is SearchMethod.STRUCTURAL),
            semantic=sum(1 for r in results if r.search_method is SearchMethod.SEMANTIC),
        )
        return results

    def find_cross_layer_entity(
        self,
        entity_name: str,
        query_vector: Vector,
        limit: int = 20,
    ) -> CrossLayerResult:
        """Representations of one concept across layers, by semantic proximity."""
        pairs = self._semantic(
            query_vector,
            limit * 2,
            distance_threshold=self._config.cross_layer_distance_threshold,
        )[:limit]

        hits = [
            CrossLayerHit(
                symbol=symbol,
                layer=detect_layer(symbol.file_path),
                distance=hit.distance,
                confidence=hit.confidence,
            )
            for hit, symbol in pairs
        ]
        total = sum(h.confidence for h in hits) / len(hits) if hits else 0.0
        distribution = layer_distribution(h.layer for h in hits)

        result = CrossLayerResult(
            entity_name=entity_name,
            symbols=hits,
            layers=distribution,
            total_confidence=total,
            architectural_pattern=detect_architectural_pattern(distribution),
            recommendations=cross_layer_recommendations(len(hits), distribution, total),
        )
        log.debug(
            "cross_layer_search_complete",
            entity=entity_name,
            hits=len(hits),
            layers=len(distribution),
        )
        return result

    def explore(
        self,
        query: str,
        query_vector: Vector | None = None,
        limit: int = 15,
    ) -> ExplorationResult:
        """Search, then describe the patterns and relationships in the results."""
        overview = self.search(query, query_vector, limit)
        patterns = detect_code_patterns(
            (r.symbol.name, r.symbol.kind, r.layer) for r in overview
        )
        relationships = self._store.get_relationships_among([r.symbol_id for r in overview])
        has_semantic = any(r.search_method is SearchMethod.SEMANTIC for r in overview)
        return ExplorationResult(
            query=query,
            overview=overview,
            patterns=patterns,
            relationships=relationships,
            recommendations=exploration_recommendations(patterns, has_semantic),
        )
