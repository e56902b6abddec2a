from __future__ import annotations

import itertools
import uuid
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Union, TYPE_CHECKING

import pandas as pd

from .config import MockSettings
from .logs import getLogger
from .records import Entity, RecordType, record_type_key

if TYPE_CHECKING:
    from .builder import Builder
    from .discovery import DiscoveryGraph

logger = getLogger(__name__)

IdFactory = Callable[[], Any]

_SEQUENCE = itertools.count(1)


def uuid_ids() -> Any:
    return str(uuid.uuid4())


def sequence_ids(prefix: str = "MOCK", width: int = 12) -> IdFactory:
    """
    Identities of the form <prefix><counter>. The counter is shared by every
    factory in the process, so identities never repeat across stores.
    """
    def _next() -> str:
        return f"{prefix}{next(_SEQUENCE):0{width}d}"
    return _next


def id_factory_from_settings(settings: MockSettings) -> IdFactory:
    if settings.id_strategy == "sequence":
        return sequence_ids(settings.id_prefix, settings.id_width)
    return uuid_ids


class MockStore:
    """
    In-memory stand-in for persisted state.

    - One collection per record type (keyed by table name), holding Entity
      objects; the same Entity is never stored twice.
    - Synthetic identities come from ``id_factory``.
    - Relationship fields are backfilled from the DiscoveryGraph's relation
      maps and external references.
    """

    def __init__(self, id_factory: Optional[IdFactory] = None) -> None:
        self._id_factory: IdFactory = id_factory or uuid_ids
        self._records: Dict[str, List[Entity]] = {}

    # ------------------------------------------------------------------ #
    # Identities
    # ------------------------------------------------------------------ #
    def generate_id(self, entity: Entity) -> Any:
        if entity.identity is None:
            entity.identity = self._id_factory()
        return entity.identity

    def generate_ids(self, builders: Iterable["Builder"]) -> None:
        for builder in builders:
            self.generate_id(builder.entity)

    # ------------------------------------------------------------------ #
    # Relationships
    # ------------------------------------------------------------------ #
    def generate_relationships(
        self,
        discovery: "DiscoveryGraph",
        builders: Optional[Sequence["Builder"]] = None,
    ) -> None:
        """
        Set every relationship field to its target's identity.

        Parent relations copy the parent's identity. External references
        scan the sibling builders of the target type for a matching
        external-id value; without a match the field is left unset.
        """
        builders = list(builders) if builders is not None else discovery.builders()
        siblings: Dict[str, List["Builder"]] = {}
        for builder in builders:
            siblings.setdefault(record_type_key(builder.record_type), []).append(builder)

        for builder in builders:
            for field, parent in discovery.parents_of(builder).items():
                builder.entity.set(field, parent.identity)

            for field, reference in discovery.references_of(builder).items():
                match = next(
                    (s for s in siblings.get(reference.target_key, ()) if reference.matches(s)),
                    None,
                )
                if match is None:
                    logger.debug(
                        "No %s with %s=%r for %r",
                        reference.target_key, reference.ext_id_field, reference.value, builder,
                    )
                    continue
                builder.entity.set(field, match.identity)

    # ------------------------------------------------------------------ #
    # Storage
    # ------------------------------------------------------------------ #
    def store(self, entities: Union[Entity, Iterable[Entity]]) -> None:
        if isinstance(entities, Entity):
            entities = [entities]
        for entity in entities:
            collection = self._records.setdefault(entity.type_key, [])
            if any(e is entity for e in collection):
                continue
            collection.append(entity)

    def ingest(self, builders: Iterable["Builder"]) -> None:
        """Give every builder an identity and store its entity."""
        builders = list(builders)
        self.generate_ids(builders)
        self.store(b.entity for b in builders)

    def retrieve(self, record_type: Union[RecordType, str]) -> Optional[List[Entity]]:
        collection = self._records.get(record_type_key(record_type))
        if collection is None:
            return None
        return list(collection)

    def retrieve_by_filter(
        self,
        record_type: Union[RecordType, str],
        filters: Mapping[str, Any],
    ) -> Optional[List[Entity]]:
        """
        Entities whose fields equal every value in ``filters`` (compared as
        strings). None when the type is unknown or nothing matches.
        """
        collection = self._records.get(record_type_key(record_type))
        if collection is None:
            return None

        wanted = {field: str(value) for field, value in filters.items()}
        matches = [
            e for e in collection
            if all(str(e.get(field)) == value for field, value in wanted.items())
        ]
        return matches or None

    def record_types(self) -> List[str]:
        return list(self._records)

    def to_frame(self, record_type: Union[RecordType, str]) -> pd.DataFrame:
        """Stored records of one type as a DataFrame (empty when none)."""
        rows = [e.as_dict() for e in self._records.get(record_type_key(record_type), ())]
        if not rows:
            return pd.DataFrame()
        return pd.DataFrame(rows)

    def __len__(self) -> int:
        return sum(len(c) for c in self._records.values())

    def __repr__(self) -> str:
        return f"MockStore(types={len(self._records)}, records={len(self)})"
