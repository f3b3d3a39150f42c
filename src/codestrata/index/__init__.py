"""Index module - symbol store, vector index and hybrid retrieval.

This module provides:
- Symbol store: symbols, relationships, types, bindings, files, workspaces,
  FTS5 full-text search, per-file cascading deletes
- Vector index: sqlite-vec vec0 tables keyed through a string/integer id map
- Hybrid retrieval: weighted fusion of structural and semantic results,
  architectural layer classification, cross-layer concept mapping

Public API is in `codestrata.index.ops`:
- CodeIndex: Lifecycle owner for all components
- IndexFileResult, IndexStats: Result types

Internal implementations are in `codestrata.index._internal/`.
"""

from codestrata.index.models import (
    Binding,
    BindingKind,
    BindingRecord,
    FileInfo,
    FileRecord,
    Layer,
    Relationship,
    RelationshipKind,
    RelationshipRecord,
    SearchMethod,
    StoreMeta,
    Symbol,
    SymbolIdMapping,
    SymbolKind,
    SymbolRecord,
    TypeInfo,
    TypeInfoRecord,
    Visibility,
    WorkspaceInfo,
    WorkspaceRecord,
)
from codestrata.index._internal.db import BulkWriter, Database, create_additional_indexes
from codestrata.index.store import ClearResult, Reference, ReplaceResult, StoreStats, SymbolStore
from codestrata.index.vectors import VectorHit, VectorIndex, VectorStats, distance_to_confidence
from codestrata.index.hybrid import (
    CrossLayerHit,
    CrossLayerResult,
    ExplorationResult,
    HybridResult,
    HybridRetriever,
    name_similarity,
)
from codestrata.index.layers import detect_layer
from codestrata.index.ops import CodeIndex, Embedder, IndexFileResult, IndexStats

__all__ = [
    # Public API (ops.py)
    "CodeIndex",
    "Embedder",
    "IndexFileResult",
    "IndexStats",
    # Components
    "SymbolStore",
    "VectorIndex",
    "HybridRetriever",
    # Database
    "Database",
    "BulkWriter",
    "create_additional_indexes",
    # Results
    "ClearResult",
    "CrossLayerHit",
    "CrossLayerResult",
    "ExplorationResult",
    "HybridResult",
    "Reference",
    "ReplaceResult",
    "StoreStats",
    "VectorHit",
    "VectorStats",
    # Functions
    "detect_layer",
    "distance_to_confidence",
    "name_similarity",
    # Enums
    "BindingKind",
    "Layer",
    "RelationshipKind",
    "SearchMethod",
    "SymbolKind",
    "Visibility",
    # Tables
    "Binding",
    "FileRecord",
    "Relationship",
    "StoreMeta",
    "Symbol",
    "SymbolIdMapping",
    "TypeInfo",
    "WorkspaceRecord",
    # Records
    "BindingRecord",
    "FileInfo",
    "RelationshipRecord",
    "SymbolRecord",
    "TypeInfoRecord",
    "WorkspaceInfo",
]
