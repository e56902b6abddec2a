from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional, Set, Tuple

from sqlalchemy import insert, literal, or_, select, update
from sqlalchemy.orm import Session

from .discovery import ExternalReference
from .logs import getLogger
from .records import Entity, RecordType, primary_key_name, record_type_key

logger = getLogger(__name__)


# ---------------------------------------------------------------------------
# Existence queries
# ---------------------------------------------------------------------------


class SqlExistenceQuery:
    """
    Existence query against an SQLAlchemy session.

    One SELECT per call: the identity column plus every candidate field,
    filtered by ``f1 IN (...) OR f2 IN (...)``.
    """

    def __init__(self, session: Session) -> None:
        self._session = session

    def __call__(
        self,
        record_type: RecordType,
        candidates: Mapping[str, Set[Any]],
    ) -> List[Mapping[str, Any]]:
        pk = primary_key_name(record_type)
        fields = [f for f, values in candidates.items() if values]
        if not fields:
            return []

        columns = [record_type.c[pk], *(record_type.c[f] for f in fields if f != pk)]
        conditions = [record_type.c[f].in_(sorted(candidates[f], key=str)) for f in fields]
        stmt = select(*columns).where(or_(*conditions))

        result = self._session.execute(stmt)
        rows = list(result.mappings())
        logger.debug("%s: %d existing record(s) matched", record_type_key(record_type), len(rows))
        return rows


# ---------------------------------------------------------------------------
# Unit of work
# ---------------------------------------------------------------------------


class SqlUnitOfWork:
    """
    Unit of work writing one batch through an SQLAlchemy session.

    - Entities are written in registration order (dependency order).
    - Relationship fields are filled from the parent's identity right
      before the child is written.
    - External references are resolved by selecting the identity of the
      target record carrying the external-id value.
    - The batch is one transaction: any failure rolls the session back,
      restores the pending entities to their state before the commit and
      propagates.
    """

    def __init__(self, session: Session) -> None:
        self._session = session
        self._pending: List[Tuple[Entity, bool]] = []
        self._relationships: Dict[int, List[Tuple[str, Entity]]] = {}
        self._references: Dict[int, List[ExternalReference]] = {}

    def register_new(self, entity: Entity) -> None:
        self._pending.append((entity, True))

    def register_dirty(self, entity: Entity) -> None:
        self._pending.append((entity, False))

    def register_relationship(self, entity: Entity, field: str, parent: Entity) -> None:
        self._relationships.setdefault(id(entity), []).append((field, parent))

    def register_reference(self, entity: Entity, reference: ExternalReference) -> None:
        self._references.setdefault(id(entity), []).append(reference)

    def commit(self) -> None:
        # identities and foreign keys stamped during a failed batch name rows
        # that were rolled back; put the entities back as they were
        snapshots = [(entity, entity.as_dict()) for entity, _ in self._pending]
        try:
            for entity, is_new in self._pending:
                self._resolve_relationships(entity)
                if is_new:
                    self._insert(entity)
                else:
                    self._update(entity)
            self._session.commit()
        except Exception:
            self._session.rollback()
            for entity, values in snapshots:
                entity.restore(values)
            raise
        logger.info("Committed %d record(s)", len(self._pending))
        self._pending.clear()
        self._relationships.clear()
        self._references.clear()

    def _resolve_relationships(self, entity: Entity) -> None:
        for field, parent in self._relationships.get(id(entity), ()):
            entity.set(field, parent.identity)
        for reference in self._references.get(id(entity), ()):
            identity = self._lookup_external_id(reference)
            if identity is not None:
                entity.set(reference.field, identity)

    def _lookup_external_id(self, reference: ExternalReference) -> Optional[Any]:
        target = reference.target_type
        pk = primary_key_name(target)
        stmt = select(target.c[pk]).where(
            target.c[reference.ext_id_field] == literal(reference.value)
        )
        return self._session.execute(stmt).scalars().first()

    def _insert(self, entity: Entity) -> None:
        table = entity.record_type
        values = {k: v for k, v in entity.as_dict().items() if k != entity.identity_field or v is not None}
        result = self._session.execute(insert(table).values(**values))
        if entity.identity is None:
            entity.identity = result.inserted_primary_key[0]

    def _update(self, entity: Entity) -> None:
        table = entity.record_type
        values = {k: v for k, v in entity.as_dict().items() if k != entity.identity_field}
        if not values:
            return
        pk = entity.identity_field
        self._session.execute(
            update(table).where(table.c[pk] == literal(entity.identity)).values(**values)
        )


def load_records(session: Session, record_type: RecordType) -> List[Mapping[str, Any]]:
    """All rows of one record type as mappings (handy for assertions)."""
    result = session.execute(select(record_type))
    return list(result.mappings())

