"""Architectural layer classification and pattern labels.

Everything here is a keyword heuristic: a ranking signal, not ground truth.
Unmatched paths are Layer.UNKNOWN and unmatched distributions get the
generic "Custom Architecture" label, never an empty one.
"""

from __future__ import annotations

import re
from collections import Counter
from collections.abc import Iterable, Mapping
from pathlib import PurePosixPath

from codestrata.index.models import Layer, SymbolKind

CUSTOM_ARCHITECTURE = "Custom Architecture"

# Ordered: the first layer whose keywords hit the path wins
_LAYER_KEYWORDS: list[tuple[Layer, frozenset[str]]] = [
    (Layer.FRONTEND, frozenset({
        "frontend", "client", "clients", "ui", "web", "views", "components", "pages",
    })),
    (Layer.API, frozenset({
        "api", "apis", "controller", "controllers", "endpoint", "endpoints", "routes",
    })),
    (Layer.DOMAIN, frozenset({
        "domain", "model", "models", "entity", "entities",
    })),
    (Layer.DATA, frozenset({
        "data", "repository", "repositories", "dal", "persistence",
    })),
    (Layer.DATABASE, frozenset({
        "database", "db", "sql", "migration", "migrations", "schema",
    })),
    (Layer.INFRASTRUCTURE, frozenset({
        "infrastructure", "infra", "config", "configs", "deploy",
    })),
]

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")
_WORD_SPLIT = re.compile(r"[^a-z0-9]+")

_PATTERN_ORDER = (
    "Data Transfer Object",
    "Repository Pattern",
    "Service Layer",
    "Controller Pattern",
    "Interface Segregation",
    "Domain Model",
)

_NAME_PATTERNS = {
    "dto": "Data Transfer Object",
    "repository": "Repository Pattern",
    "service": "Service Layer",
    "controller": "Controller Pattern",
}


def _path_words(path: str) -> set[str]:
    """Split a path into lowercase words on separators and camelCase boundaries."""
    return {w for w in _WORD_SPLIT.split(_CAMEL_BOUNDARY.sub(" ", path).lower()) if w}


def detect_layer(file_path: str | None) -> Layer:
    """Classify a file path into one architectural layer."""
    if not file_path:
        return Layer.UNKNOWN

    words = _path_words(file_path)
    for layer, keywords in _LAYER_KEYWORDS:
        if words & keywords:
            return layer

    # Extension hints for files whose directories say nothing
    suffix = PurePosixPath(file_path).suffix.lower()
    if suffix == ".sql":
        return Layer.DATABASE
    if suffix == ".cs" and "dto" in file_path.lower():
        return Layer.API
    if suffix in (".ts", ".tsx") and "interface" in file_path.lower():
        return Layer.FRONTEND
    return Layer.UNKNOWN


def layer_distribution(layers: Iterable[Layer | str]) -> dict[str, int]:
    """Count hits per layer, keyed by layer value."""
    return dict(Counter(Layer(layer).value for layer in layers))


def detect_architectural_pattern(distribution: Mapping[str, int]) -> str:
    present = {name for name, count in distribution.items() if count > 0}
    if {Layer.FRONTEND.value, Layer.API.value, Layer.DOMAIN.value} <= present:
        return "Clean Architecture"
    if {Layer.API.value, Layer.DOMAIN.value, Layer.DATA.value} <= present:
        return "Layered Architecture"
    return CUSTOM_ARCHITECTURE


def cross_layer_recommendations(
    hit_count: int,
    distribution: Mapping[str, int],
    total_confidence: float,
) -> list[str]:
    """Suggestions for filling gaps in a concept's cross-layer coverage."""
    recommendations: list[str] = []
    if hit_count == 0:
        recommendations.append(
            "No representations found; consider creating DTOs for this entity"
        )
        return recommendations
    if not distribution.get(Layer.FRONTEND.value) and distribution.get(Layer.API.value):
        recommendations.append("Add frontend types or interfaces for this entity")
    if not distribution.get(Layer.DATABASE.value) and distribution.get(Layer.DOMAIN.value):
        recommendations.append("Add a database table or schema for this entity")
    if total_confidence < 0.5:
        recommendations.append("Low confidence; review naming consistency across layers")
    if len(distribution) == 1:
        recommendations.append(
            "Single layer detected; consider expanding to other architectural layers"
        )
    return recommendations


def detect_code_patterns(entries: Iterable[tuple[str, str, Layer | str]]) -> list[str]:
    """Name well-known patterns among (name, kind, layer) triples."""
    found: set[str] = set()
    for name, kind, layer in entries:
        lowered = name.lower()
        for needle, pattern in _NAME_PATTERNS.items():
            if needle in lowered:
                found.add(pattern)
        if kind == SymbolKind.INTERFACE.value:
            found.add("Interface Segregation")
        if Layer(layer) is Layer.DOMAIN:
            found.add("Domain Model")
    return [pattern for pattern in _PATTERN_ORDER if pattern in found]


def exploration_recommendations(patterns: Iterable[str], has_semantic_hits: bool) -> list[str]:
    pattern_set = set(patterns)
    recommendations: list[str] = []
    if "Repository Pattern" in pattern_set:
        recommendations.append("Explore repository implementations and their interfaces")
    if "Data Transfer Object" in pattern_set:
        recommendations.append("Check DTO mappings and validation rules")
    if has_semantic_hits:
        recommendations.append("Use semantic search to find conceptually similar code")
    return recommendations
