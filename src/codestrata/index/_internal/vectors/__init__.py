"""Vector engine adapter: sqlite-vec loading and the string/integer id map."""

from codestrata.index._internal.vectors.engine import (
    is_extension_missing_error,
    load_vector_extension,
)
from codestrata.index._internal.vectors.idmap import MappingAudit, SymbolIdMap

__all__ = [
    "MappingAudit",
    "SymbolIdMap",
    "is_extension_missing_error",
    "load_vector_extension",
]
