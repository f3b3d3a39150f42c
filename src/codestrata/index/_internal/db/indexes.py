"""Search schema and additional index creation.

These complement the basic indexes defined in SQLModel Field() declarations:
- Composite indexes for common query patterns
- The FTS5 `code_search` table and the triggers that keep it in sync with
  `symbols` (rowid of the search row = rowid of the symbol row)
- store_meta version rows

Database.create_all() calls create_additional_indexes().
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import text

from codestrata.config.constants import METADATA_VERSION, SCHEMA_VERSION

if TYPE_CHECKING:
    from sqlalchemy import Engine


ADDITIONAL_INDEXES = [
    # Position lookup scans one file's spans
    "CREATE INDEX IF NOT EXISTS idx_symbols_file_span ON symbols(file_path, start_line, end_line)",
    # find_references filters on target then kind
    "CREATE INDEX IF NOT EXISTS idx_relationships_to_kind ON relationships(to_symbol_id, kind)",
    "CREATE INDEX IF NOT EXISTS idx_bindings_source_kind ON bindings(source_symbol_id, binding_kind)",
]

_SYMBOL_CONTENT = "trim(coalesce({row}.signature, '') || ' ' || coalesce({row}.doc_comment, ''))"

SEARCH_SCHEMA = [
    """
    CREATE VIRTUAL TABLE IF NOT EXISTS code_search USING fts5(
        symbol_id UNINDEXED,
        name,
        content,
        file_path UNINDEXED,
        tokenize='porter ascii'
    )
    """,
    f"""
    CREATE TRIGGER IF NOT EXISTS symbols_search_insert AFTER INSERT ON symbols BEGIN
        INSERT INTO code_search(rowid, symbol_id, name, content, file_path)
        VALUES (new.rowid, new.id, new.name, {_SYMBOL_CONTENT.format(row="new")}, new.file_path);
    END
    """,
    f"""
    CREATE TRIGGER IF NOT EXISTS symbols_search_update AFTER UPDATE ON symbols BEGIN
        DELETE FROM code_search WHERE rowid = old.rowid;
        INSERT INTO code_search(rowid, symbol_id, name, content, file_path)
        VALUES (new.rowid, new.id, new.name, {_SYMBOL_CONTENT.format(row="new")}, new.file_path);
    END
    """,
    """
    CREATE TRIGGER IF NOT EXISTS symbols_search_delete AFTER DELETE ON symbols BEGIN
        DELETE FROM code_search WHERE rowid = old.rowid;
    END
    """,
]

SEARCH_TRIGGERS = ["symbols_search_insert", "symbols_search_update", "symbols_search_delete"]


def create_additional_indexes(engine: Engine) -> None:
    """
    Create composite indexes, the full-text schema and version rows.

    Idempotent: safe to call on every open.
    """
    with engine.connect() as conn:
        for sql in ADDITIONAL_INDEXES:
            conn.execute(text(sql))
        for sql in SEARCH_SCHEMA:
            conn.execute(text(sql))
        conn.execute(
            text("INSERT OR IGNORE INTO store_meta(key, value) VALUES (:k, :v)"),
            [
                {"k": "schema_version", "v": str(SCHEMA_VERSION)},
                {"k": "metadata_version", "v": str(METADATA_VERSION)},
            ],
        )
        conn.commit()


def drop_search_schema(engine: Engine) -> None:
    """Drop triggers, the full-text table and additional indexes (for testing/reset)."""
    index_names = [
        "idx_symbols_file_span",
        "idx_relationships_to_kind",
        "idx_bindings_source_kind",
    ]
    with engine.connect() as conn:
        for name in SEARCH_TRIGGERS:
            conn.execute(text(f"DROP TRIGGER IF EXISTS {name}"))
        conn.execute(text("DROP TABLE IF EXISTS code_search"))
        for name in index_names:
            conn.execute(text(f"DROP INDEX IF EXISTS {name}"))
        conn.commit()
