"""Configuration constants.

This module contains truly constant values that should NOT be user-configurable.

For configurable values, see models.py (VectorsConfig, RetrievalConfig, etc.).
"""

# =============================================================================
# Query Maximums
# =============================================================================

SEARCH_MAX_LIMIT = 100
"""Maximum results for full-text and hybrid search queries."""

NAME_SEARCH_MAX_LIMIT = 1000
"""Maximum results for substring name lookups."""

KNN_MAX_K = 4096
"""Largest k the vec0 engine accepts for a single KNN query."""

# =============================================================================
# Schema
# =============================================================================

SCHEMA_VERSION = 1
"""Relational schema version, stored in store_meta."""

METADATA_VERSION = 1
"""Version stamped into every stored metadata map under METADATA_VERSION_KEY."""

METADATA_VERSION_KEY = "_v"

INDEX_DIR_NAME = ".codestrata"
