"""Bijection between string symbol ids and vec0 integer row keys.

vec0 tables key rows by integer rowid. Symbol ids are strings. This map is
the only place that translation happens, so it can be audited or rebuilt
without touching the vector engine.

Integer assignment is `MAX(integer_id) + 1` inside the caller's
transaction. Callers must hold a write transaction (BEGIN IMMEDIATE) so
that two writers can never read the same maximum.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field

from sqlalchemy import delete, func, text
from sqlmodel import Session, col, select

from codestrata.index.models import SymbolIdMapping

_RESOLVE_CHUNK = 500


@dataclass
class MappingAudit:
    """Result of auditing the id map against symbols and vector tables."""

    mappings: int
    max_integer_id: int
    stale_mappings: int  # Mapped symbol no longer in the store
    unmapped_vectors: dict[str, int] = field(default_factory=dict)
    duplicate_integer_ids: int = 0

    @property
    def consistent(self) -> bool:
        """Stale mappings are expected; unmapped vectors and duplicates are not."""
        return self.duplicate_integer_ids == 0 and not any(self.unmapped_vectors.values())


class SymbolIdMap:
    """String id <-> integer id adapter over the symbol_id_mapping table."""

    def get_or_create(self, session: Session, symbol_id: str) -> int:
        """Return the integer id for symbol_id, assigning the next one if new."""
        existing = self.lookup(session, symbol_id)
        if existing is not None:
            return existing

        next_id = session.execute(
            text("SELECT COALESCE(MAX(integer_id), 0) + 1 FROM symbol_id_mapping")
        ).scalar_one()
        session.add(SymbolIdMapping(symbol_id=symbol_id, integer_id=int(next_id)))
        session.flush()
        return int(next_id)

    def lookup(self, session: Session, symbol_id: str) -> int | None:
        stmt = select(SymbolIdMapping.integer_id).where(SymbolIdMapping.symbol_id == symbol_id)
        return session.exec(stmt).first()

    def resolve(self, session: Session, integer_ids: Iterable[int]) -> dict[int, str]:
        """Map integer ids back to symbol ids. Unknown ids are absent from the result."""
        ids = list(dict.fromkeys(integer_ids))
        resolved: dict[int, str] = {}
        for start in range(0, len(ids), _RESOLVE_CHUNK):
            chunk = ids[start : start + _RESOLVE_CHUNK]
            stmt = select(SymbolIdMapping.integer_id, SymbolIdMapping.symbol_id).where(
                col(SymbolIdMapping.integer_id).in_(chunk)
            )
            resolved.update({int_id: sym_id for int_id, sym_id in session.exec(stmt).all()})
        return resolved

    def count(self, session: Session) -> int:
        return session.exec(select(func.count()).select_from(SymbolIdMapping)).one()

    def clear(self, session: Session) -> int:
        result = session.execute(delete(SymbolIdMapping))
        return int(result.rowcount)

    def remove(self, session: Session, symbol_id: str) -> int | None:
        """Drop one mapping, returning the integer id it held."""
        integer_id = self.lookup(session, symbol_id)
        if integer_id is not None:
            session.execute(
                delete(SymbolIdMapping).where(col(SymbolIdMapping.symbol_id) == symbol_id)
            )
        return integer_id

    def audit(self, session: Session, vector_tables: Iterable[str] = ()) -> MappingAudit:
        mappings = self.count(session)
        max_id = session.execute(
            text("SELECT COALESCE(MAX(integer_id), 0) FROM symbol_id_mapping")
        ).scalar_one()
        stale = session.execute(
            text("""
                SELECT COUNT(*) FROM symbol_id_mapping m
                WHERE NOT EXISTS (SELECT 1 FROM symbols s WHERE s.id = m.symbol_id)
            """)
        ).scalar_one()
        duplicates = session.execute(
            text("""
                SELECT COUNT(*) FROM (
                    SELECT integer_id FROM symbol_id_mapping
                    GROUP BY integer_id HAVING COUNT(*) > 1
                )
            """)
        ).scalar_one()
        unmapped = {
            table: int(
                session.execute(
                    text(f"""
                        SELECT COUNT(*) FROM {table}
                        WHERE rowid NOT IN (SELECT integer_id FROM symbol_id_mapping)
                    """)
                ).scalar_one()
            )
            for table in vector_tables
        }
        return MappingAudit(
            mappings=int(mappings),
            max_integer_id=int(max_id),
            stale_mappings=int(stale),
            unmapped_vectors=unmapped,
            duplicate_integer_ids=int(duplicates),
        )
