"""SQLModel definitions for the symbol store and vector id mapping.

Single source of truth for all table schemas.

Architecture:
- Relational tables: symbols, relationships, types, bindings, files, workspaces
- Full-text: FTS5 table `code_search` (DDL in _internal/db/indexes.py)
- Vectors: vec0 virtual tables keyed by the integer ids in `symbol_id_mapping`

The symbol ownership tree is a flat table plus an index on parent_id.
Children are always a query, never a stored list.

Metadata maps are stored as JSON text stamped with METADATA_VERSION so
readers can evolve their interpretation per version.
"""

import json
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field as PydanticField, field_validator, model_validator
from sqlalchemy import Column, ForeignKey, Integer, String
from sqlmodel import Field, SQLModel

from codestrata.config.constants import METADATA_VERSION, METADATA_VERSION_KEY

# ============================================================================
# ENUMS
# ============================================================================


class SymbolKind(str, Enum):
    """Common symbol kinds. Stored as text; extractors may emit others."""

    FUNCTION = "function"
    METHOD = "method"
    CONSTRUCTOR = "constructor"
    CLASS = "class"
    INTERFACE = "interface"
    STRUCT = "struct"
    TRAIT = "trait"
    ENUM = "enum"
    ENUM_MEMBER = "enum_member"
    PROPERTY = "property"
    FIELD = "field"
    VARIABLE = "variable"
    CONSTANT = "constant"
    TYPE = "type"
    MODULE = "module"
    NAMESPACE = "namespace"
    IMPORT = "import"
    EXPORT = "export"


class Visibility(str, Enum):
    """Declared visibility."""

    PUBLIC = "public"
    PRIVATE = "private"
    PROTECTED = "protected"
    INTERNAL = "internal"


class RelationshipKind(str, Enum):
    """Directed edge kinds between symbols."""

    CALLS = "calls"
    EXTENDS = "extends"
    IMPLEMENTS = "implements"
    USES = "uses"
    RETURNS = "returns"
    CONTAINS = "contains"
    IMPORTS = "imports"
    REFERENCES = "references"
    OVERRIDES = "overrides"
    INSTANTIATES = "instantiates"

    @classmethod
    def reference_kinds(cls) -> "frozenset[RelationshipKind]":
        """Kinds that count as a reference to the target symbol."""
        return frozenset({cls.CALLS, cls.USES, cls.REFERENCES})


class BindingKind(str, Enum):
    """Cross-language binding kinds."""

    FFI = "ffi"
    REST_API = "rest_api"
    GRPC = "grpc"
    GRAPHQL = "graphql"
    WEBSOCKET = "websocket"
    MESSAGE_QUEUE = "message_queue"


class Layer(str, Enum):
    """Architectural layer of a file (heuristic)."""

    FRONTEND = "frontend"
    API = "api"
    DOMAIN = "domain"
    DATA = "data"
    DATABASE = "database"
    INFRASTRUCTURE = "infrastructure"
    UNKNOWN = "unknown"


class SearchMethod(str, Enum):
    """Which retrieval path produced a hybrid result."""

    STRUCTURAL = "structural"
    SEMANTIC = "semantic"
    HYBRID = "hybrid"


# ============================================================================
# METADATA ENCODING
# ============================================================================


def encode_metadata(metadata: dict[str, Any] | None) -> str | None:
    """Serialize a metadata map with its schema version stamp."""
    if not metadata:
        return None
    payload = {METADATA_VERSION_KEY: METADATA_VERSION, **metadata}
    return json.dumps(payload, sort_keys=True)


def decode_metadata(raw: str | None) -> dict[str, Any]:
    """Parse stored metadata, dropping the version stamp."""
    if not raw:
        return {}
    data: dict[str, Any] = json.loads(raw)
    data.pop(METADATA_VERSION_KEY, None)
    return data


def _decode_list(raw: str | None) -> list[str]:
    if not raw:
        return []
    result: list[str] = json.loads(raw)
    return result


def _enum_value(v: Any) -> Any:
    return v.value if isinstance(v, Enum) else v


# ============================================================================
# TABLES
# ============================================================================


class Symbol(SQLModel, table=True):
    """A named code entity with a source span."""

    __tablename__ = "symbols"

    id: str = Field(primary_key=True)
    name: str = Field(index=True)
    kind: str = Field(index=True)
    language: str = Field(index=True)
    file_path: str = Field(index=True)
    start_line: int
    start_column: int
    end_line: int
    end_column: int
    start_byte: int = 0
    end_byte: int = 0
    signature: str | None = None
    doc_comment: str | None = None
    visibility: str | None = None
    parent_id: str | None = Field(
        default=None,
        sa_column=Column(
            String, ForeignKey("symbols.id", ondelete="CASCADE"), index=True, nullable=True
        ),
    )
    metadata_json: str | None = None


class Relationship(SQLModel, table=True):
    """Directed, kinded edge between two symbols."""

    __tablename__ = "relationships"

    id: int | None = Field(default=None, primary_key=True)
    from_symbol_id: str = Field(
        sa_column=Column(
            String, ForeignKey("symbols.id", ondelete="CASCADE"), index=True, nullable=False
        )
    )
    to_symbol_id: str = Field(
        sa_column=Column(
            String, ForeignKey("symbols.id", ondelete="CASCADE"), index=True, nullable=False
        )
    )
    kind: str = Field(index=True)
    file_path: str = Field(index=True)  # Where the occurrence was recorded
    line_number: int
    confidence: float = 1.0  # 1.0 syntactic, lower when inferred
    metadata_json: str | None = None


class TypeInfo(SQLModel, table=True):
    """Resolved type for a symbol. At most one row per symbol."""

    __tablename__ = "types"

    symbol_id: str = Field(
        sa_column=Column(
            String, ForeignKey("symbols.id", ondelete="CASCADE"), primary_key=True
        )
    )
    resolved_type: str
    generic_params_json: str | None = None
    constraints_json: str | None = None
    is_inferred: bool = False
    language: str = Field(index=True)
    metadata_json: str | None = None


class Binding(SQLModel, table=True):
    """Cross-language call edge (FFI, REST, gRPC, ...)."""

    __tablename__ = "bindings"

    id: int | None = Field(default=None, primary_key=True)
    source_symbol_id: str = Field(
        sa_column=Column(
            String, ForeignKey("symbols.id", ondelete="CASCADE"), index=True, nullable=False
        )
    )
    # A binding belongs to its source; losing the target only unresolves it
    target_symbol_id: str | None = Field(
        default=None,
        sa_column=Column(
            String, ForeignKey("symbols.id", ondelete="SET NULL"), index=True, nullable=True
        ),
    )
    binding_kind: str = Field(index=True)
    source_language: str
    target_language: str | None = None
    endpoint: str | None = None
    metadata_json: str | None = None


class FileRecord(SQLModel, table=True):
    """Freshness marker for incremental re-indexing. One row per path."""

    __tablename__ = "files"

    path: str = Field(primary_key=True)
    language: str
    last_modified: float
    size: int
    hash: str
    parse_time_ms: float | None = None


class WorkspaceRecord(SQLModel, table=True):
    """Coarse indexing progress per workspace root."""

    __tablename__ = "workspaces"

    path: str = Field(primary_key=True)
    last_indexed: float | None = None
    symbol_count: int = 0
    file_count: int = 0
    metadata_json: str | None = None


class SymbolIdMapping(SQLModel, table=True):
    """Bijection between string symbol ids and vec0 integer row keys.

    Deliberately not a foreign key: vectors outlive file clearing.
    """

    __tablename__ = "symbol_id_mapping"

    symbol_id: str = Field(primary_key=True)
    integer_id: int = Field(
        sa_column=Column(Integer, unique=True, index=True, nullable=False)
    )


class StoreMeta(SQLModel, table=True):
    """Key/value store metadata (schema_version, metadata_version)."""

    __tablename__ = "store_meta"

    key: str = Field(primary_key=True)
    value: str


# ============================================================================
# RECORDS (Pydantic only, for data transfer at the API boundary)
# ============================================================================


class SymbolRecord(BaseModel):
    """Symbol as produced by extractors and returned by queries."""

    id: str = PydanticField(min_length=1)
    name: str
    kind: str
    language: str
    file_path: str
    start_line: int = PydanticField(ge=0)
    start_column: int = PydanticField(ge=0)
    end_line: int = PydanticField(ge=0)
    end_column: int = PydanticField(ge=0)
    start_byte: int = PydanticField(default=0, ge=0)
    end_byte: int = PydanticField(default=0, ge=0)
    signature: str | None = None
    doc_comment: str | None = None
    visibility: str | None = None
    parent_id: str | None = None
    metadata: dict[str, Any] = PydanticField(default_factory=dict)

    _normalize_enums = field_validator("kind", "visibility", mode="before")(_enum_value)

    @model_validator(mode="after")
    def validate_span(self) -> "SymbolRecord":
        if self.end_line < self.start_line:
            raise ValueError(
                f"Symbol {self.id}: end_line {self.end_line} < start_line {self.start_line}"
            )
        if self.end_byte < self.start_byte:
            raise ValueError(
                f"Symbol {self.id}: end_byte {self.end_byte} < start_byte {self.start_byte}"
            )
        if self.parent_id == self.id:
            raise ValueError(f"Symbol {self.id} cannot be its own parent")
        return self

    def to_row(self) -> dict[str, Any]:
        row = self.model_dump(exclude={"metadata"})
        row["metadata_json"] = encode_metadata(self.metadata)
        return row

    @classmethod
    def from_row(cls, row: Symbol) -> "SymbolRecord":
        return cls(
            id=row.id,
            name=row.name,
            kind=row.kind,
            language=row.language,
            file_path=row.file_path,
            start_line=row.start_line,
            start_column=row.start_column,
            end_line=row.end_line,
            end_column=row.end_column,
            start_byte=row.start_byte,
            end_byte=row.end_byte,
            signature=row.signature,
            doc_comment=row.doc_comment,
            visibility=row.visibility,
            parent_id=row.parent_id,
            metadata=decode_metadata(row.metadata_json),
        )

    @property
    def search_content(self) -> str:
        """Text indexed alongside the name in the full-text index."""
        return " ".join(part for part in (self.signature, self.doc_comment) if part)


class RelationshipRecord(BaseModel):
    """Relationship as produced by extractors."""

    id: int | None = None
    from_symbol_id: str
    to_symbol_id: str
    kind: str
    file_path: str
    line_number: int = PydanticField(ge=0)
    confidence: float = PydanticField(default=1.0, ge=0.0, le=1.0)
    metadata: dict[str, Any] = PydanticField(default_factory=dict)

    _normalize_enums = field_validator("kind", mode="before")(_enum_value)

    def to_row(self) -> dict[str, Any]:
        row = self.model_dump(exclude={"metadata", "id"})
        row["metadata_json"] = encode_metadata(self.metadata)
        return row

    @classmethod
    def from_row(cls, row: Relationship) -> "RelationshipRecord":
        return cls(
            id=row.id,
            from_symbol_id=row.from_symbol_id,
            to_symbol_id=row.to_symbol_id,
            kind=row.kind,
            file_path=row.file_path,
            line_number=row.line_number,
            confidence=row.confidence,
            metadata=decode_metadata(row.metadata_json),
        )


class TypeInfoRecord(BaseModel):
    """Resolved type information for one symbol."""

    symbol_id: str
    resolved_type: str
    generic_params: list[str] = PydanticField(default_factory=list)
    constraints: list[str] = PydanticField(default_factory=list)
    is_inferred: bool = False
    language: str
    metadata: dict[str, Any] = PydanticField(default_factory=dict)

    def to_row(self) -> dict[str, Any]:
        return {
            "symbol_id": self.symbol_id,
            "resolved_type": self.resolved_type,
            "generic_params_json": json.dumps(self.generic_params) if self.generic_params else None,
            "constraints_json": json.dumps(self.constraints) if self.constraints else None,
            "is_inferred": self.is_inferred,
            "language": self.language,
            "metadata_json": encode_metadata(self.metadata),
        }

    @classmethod
    def from_row(cls, row: TypeInfo) -> "TypeInfoRecord":
        return cls(
            symbol_id=row.symbol_id,
            resolved_type=row.resolved_type,
            generic_params=_decode_list(row.generic_params_json),
            constraints=_decode_list(row.constraints_json),
            is_inferred=row.is_inferred,
            language=row.language,
            metadata=decode_metadata(row.metadata_json),
        )


class BindingRecord(BaseModel):
    """Cross-language binding as produced by extractors."""

    id: int | None = None
    source_symbol_id: str
    target_symbol_id: str | None = None
    binding_kind: str
    source_language: str
    target_language: str | None = None
    endpoint: str | None = None
    metadata: dict[str, Any] = PydanticField(default_factory=dict)

    _normalize_enums = field_validator("binding_kind", mode="before")(_enum_value)

    def to_row(self) -> dict[str, Any]:
        row = self.model_dump(exclude={"metadata", "id"})
        row["metadata_json"] = encode_metadata(self.metadata)
        return row

    @classmethod
    def from_row(cls, row: Binding) -> "BindingRecord":
        return cls(
            id=row.id,
            source_symbol_id=row.source_symbol_id,
            target_symbol_id=row.target_symbol_id,
            binding_kind=row.binding_kind,
            source_language=row.source_language,
            target_language=row.target_language,
            endpoint=row.endpoint,
            metadata=decode_metadata(row.metadata_json),
        )


class FileInfo(BaseModel):
    """File freshness record."""

    path: str = PydanticField(min_length=1)
    language: str
    last_modified: float
    size: int = PydanticField(ge=0)
    hash: str
    parse_time_ms: float | None = None

    def to_row(self) -> dict[str, Any]:
        return self.model_dump()

    @classmethod
    def from_row(cls, row: FileRecord) -> "FileInfo":
        return cls(
            path=row.path,
            language=row.language,
            last_modified=row.last_modified,
            size=row.size,
            hash=row.hash,
            parse_time_ms=row.parse_time_ms,
        )


class WorkspaceInfo(BaseModel):
    """Workspace progress record."""

    path: str
    last_indexed: float | None = None
    symbol_count: int = 0
    file_count: int = 0
    metadata: dict[str, Any] = PydanticField(default_factory=dict)

    @classmethod
    def from_row(cls, row: WorkspaceRecord) -> "WorkspaceInfo":
        return cls(
            path=row.path,
            last_indexed=row.last_indexed,
            symbol_count=row.symbol_count,
            file_count=row.file_count,
            metadata=decode_metadata(row.metadata_json),
        )
