from __future__ import annotations

from dataclasses import dataclass
from typing import (
    Any,
    Callable,
    Dict,
    FrozenSet,
    Iterable,
    List,
    Mapping,
    Optional,
    Set,
    Tuple,
    TYPE_CHECKING,
)

from .logs import getLogger
from .records import (
    InvalidRelationshipField,
    RecordType,
    TypeKey,
    primary_key_name,
    record_type_key,
    relationship_target,
)

if TYPE_CHECKING:
    # Only needed for type checking; avoids import cycles at runtime.
    from .builder import Builder

logger = getLogger(__name__)

DiscoveryKey = Tuple[TypeKey, str, Any]

# (record_type, {field: candidate values}) -> rows holding the identity column
# and the watched fields of every matching record.
ExistenceQuery = Callable[[RecordType, Mapping[str, Set[Any]]], Iterable[Mapping[str, Any]]]


@dataclass(frozen=True, slots=True)
class ExternalReference:
    """
    Relationship expressed through a target's external-id value instead of
    its identity. Resolved when the records are committed or mocked.
    """

    field: str
    target_type: RecordType
    ext_id_field: str
    value: Any

    @property
    def target_key(self) -> TypeKey:
        return record_type_key(self.target_type)

    def matches(self, builder: "Builder") -> bool:
        """Whether ``builder`` is a record this reference points at."""
        if record_type_key(builder.record_type) != self.target_key:
            return False
        return builder.entity.get(self.ext_id_field) == self.value


class DiscoveryGraph:
    """
    Per-session index of builders by watched field values, plus the relation
    maps that tie builders to their parents.

    Responsibilities:

    - Track which fields of which record types are watched ("discoverable").
    - Map each (record type, field, value) to the first builder that assigned
      it, so later builders can find it instead of creating a duplicate.
    - Stamp identities of records that already exist in the backing store,
      using one batched existence query per record type.
    - Hold parent relations (child builder -> field -> parent builder),
      external-id references and the sync rules that mirror relations
      between builders.
    """

    def __init__(self) -> None:
        self._fields: Dict[TypeKey, Set[str]] = {}
        self._types: Dict[TypeKey, RecordType] = {}
        self._keys: Dict[DiscoveryKey, "Builder"] = {}
        self._values: Dict[TypeKey, Dict[str, Set[Any]]] = {}
        self._builders: Dict[TypeKey, List["Builder"]] = {}

        self._parents: Dict["Builder", Dict[str, "Builder"]] = {}
        self._references: Dict["Builder", Dict[str, ExternalReference]] = {}
        self._sync_rules: Dict[Tuple["Builder", str], List[Tuple["Builder", str]]] = {}

    # ------------------------------------------------------------------ #
    # Watched fields
    # ------------------------------------------------------------------ #
    def set_discoverable_field(self, record_type: RecordType, field: str) -> None:
        """
        Watch ``field`` on ``record_type``. Idempotent.

        Values already assigned on tracked builders are indexed in the order
        the builders were created, so the first-seen rule still holds.
        """
        key = record_type_key(record_type)
        watched = self._fields.setdefault(key, set())
        self._types.setdefault(key, record_type)
        if field in watched:
            return
        watched.add(field)
        logger.debug("Watching %s.%s for discovery", key, field)

        for builder in self._builders.get(key, ()):
            if field in builder.entity:
                self._index(builder, field, builder.entity.get(field))

    def is_discoverable(self, record_type: RecordType, field: str) -> bool:
        return field in self._fields.get(record_type_key(record_type), ())

    def discoverable_fields(self, record_type: RecordType) -> FrozenSet[str]:
        return frozenset(self._fields.get(record_type_key(record_type), ()))

    # ------------------------------------------------------------------ #
    # Builder registration
    # ------------------------------------------------------------------ #
    def track(self, builder: "Builder") -> None:
        key = record_type_key(builder.record_type)
        self._types.setdefault(key, builder.record_type)
        self._builders.setdefault(key, []).append(builder)

    def builders(self, record_type: Optional[RecordType] = None) -> List["Builder"]:
        """Tracked builders in creation order, optionally of one record type."""
        if record_type is not None:
            return list(self._builders.get(record_type_key(record_type), ()))
        return [b for group in self._builders.values() for b in group]

    def record(self, builder: "Builder", field: str, value: Any) -> None:
        """Called on every field assignment; indexes watched fields only."""
        if field in self._fields.get(record_type_key(builder.record_type), ()):
            self._index(builder, field, value)

    def release(self, builder: "Builder", field: str, value: Any) -> None:
        """
        Drop the key for ``value`` if it currently points at ``builder``.

        The key passes to the next builder (in creation order) still holding
        the same value; the value stops being a lookup candidate only when
        none is left.
        """
        type_key = record_type_key(builder.record_type)
        key = (type_key, field, value)
        if self._keys.get(key) is not builder:
            return
        del self._keys[key]

        for other in self._builders.get(type_key, ()):
            if other is not builder and field in other.entity and other.entity.get(field) == value:
                self._keys[key] = other
                return
        self._values.get(type_key, {}).get(field, set()).discard(value)

    def reregister(self, builder: "Builder") -> None:
        """
        Claim every watched value of ``builder`` for ``builder``, replacing
        whichever builder was registered first under the same key.
        """
        type_key = record_type_key(builder.record_type)
        for field in self._fields.get(type_key, ()):
            value = builder.entity.get(field)
            if value is None:
                continue
            self._keys[(type_key, field, value)] = builder
            self._values.setdefault(type_key, {}).setdefault(field, set()).add(value)

    def _index(self, builder: "Builder", field: str, value: Any) -> None:
        if value is None:
            return
        type_key = record_type_key(builder.record_type)
        self._values.setdefault(type_key, {}).setdefault(field, set()).add(value)
        # first-seen wins
        self._keys.setdefault((type_key, field, value), builder)

    # ------------------------------------------------------------------ #
    # Lookup
    # ------------------------------------------------------------------ #
    def discover(self, record_type: RecordType, field: str, value: Any) -> Optional["Builder"]:
        """Exact-match lookup of the builder registered under (type, field, value)."""
        return self._keys.get((record_type_key(record_type), field, value))

    def resolve_preexisting(self, existence_query: ExistenceQuery) -> int:
        """
        Stamp identities of records that already exist in the backing store.

        One existence query per record type that has at least one watched
        value. A returned identity is only stamped on a builder whose
        identity is unset and whose field value equals the returned value
        exactly. Returns the number of builders stamped.
        """
        stamped = 0
        for type_key, by_field in self._values.items():
            candidates = {f: set(v) for f, v in by_field.items() if v}
            if not candidates:
                continue

            record_type = self._types[type_key]
            pk = primary_key_name(record_type)
            logger.debug(
                "Existence query for %s on fields %s", type_key, sorted(candidates)
            )

            for row in existence_query(record_type, candidates):
                identity = row[pk]
                for field in candidates:
                    if field not in row:
                        continue
                    value = row[field]
                    builder = self._keys.get((type_key, field, value))
                    if builder is None or builder.identity is not None:
                        continue
                    if field not in builder.entity or builder.entity.get(field) != value:
                        continue
                    builder.entity.identity = identity
                    stamped += 1

        logger.info("Resolved %d pre-existing record(s)", stamped)
        return stamped

    # ------------------------------------------------------------------ #
    # Relations
    # ------------------------------------------------------------------ #
    def set_parent(self, source: "Builder", field: str, parent: "Builder") -> None:
        """
        Make ``parent`` the parent of ``source`` through ``field``.

        The last relation registered for a field wins: a different previous
        parent (or external reference) on the same field is dropped, and the
        previous parent chain leaves the commit set unless another registered
        builder still depends on it.
        """
        target = relationship_target(source.record_type, field)
        if record_type_key(parent.record_type) != record_type_key(target):
            raise InvalidRelationshipField(
                source.record_type,
                field,
                f"points at {record_type_key(target)}, "
                f"got a {record_type_key(parent.record_type)} builder",
            )

        relations = self._parents.setdefault(source, {})
        previous = relations.get(field)
        relations[field] = parent
        self._references.get(source, {}).pop(field, None)

        if previous is not None and previous is not parent:
            self._release_chain(previous)
        if source.registered:
            parent.register_including_parents()

        if previous is not parent:
            logger.debug(
                "Parent of %s.%s set to %r",
                record_type_key(source.record_type), field, parent,
            )
            self._fire_sync_rules(source, field, parent)

    def set_reference(
        self,
        source: "Builder",
        field: str,
        ext_id_field: str,
        value: Any,
    ) -> RecordType:
        """
        Relate ``source`` through ``field`` to whichever record of the target
        type carries ``value`` in its external-id field ``ext_id_field``.

        Returns the target record type derived from the relationship field.
        """
        target = relationship_target(source.record_type, field)
        if ext_id_field not in target.c:
            raise InvalidRelationshipField(
                source.record_type,
                field,
                f"{record_type_key(target)} has no field {ext_id_field!r}",
            )

        self._references.setdefault(source, {})[field] = ExternalReference(
            field=field,
            target_type=target,
            ext_id_field=ext_id_field,
            value=value,
        )

        previous = self._parents.get(source, {}).pop(field, None)
        if previous is not None:
            self._release_chain(previous)
        return target

    def sync_on_change(
        self,
        source: "Builder",
        source_field: str,
        target: "Builder",
        target_field: str,
    ) -> None:
        """
        Mirror future parent changes of (source, source_field) onto
        (target, target_field).
        """
        rules = self._sync_rules.setdefault((source, source_field), [])
        if (target, target_field) not in rules:
            rules.append((target, target_field))

    def _fire_sync_rules(self, source: "Builder", field: str, parent: "Builder") -> None:
        for target, target_field in self._sync_rules.get((source, field), ()):
            if self._parents.get(target, {}).get(target_field) is parent:
                continue
            self.set_parent(target, target_field, parent)

    def _release_chain(self, builder: "Builder") -> None:
        if builder.registered and not self.has_registered_dependents(builder):
            builder.unregister_including_parents()

    # ------------------------------------------------------------------ #
    # Introspection
    # ------------------------------------------------------------------ #
    def parents_of(self, builder: "Builder") -> Dict[str, "Builder"]:
        return dict(self._parents.get(builder, {}))

    def references_of(self, builder: "Builder") -> Dict[str, ExternalReference]:
        return dict(self._references.get(builder, {}))

    def has_registered_dependents(self, builder: "Builder") -> bool:
        """
        Whether some registered builder has ``builder`` as a parent or
        references it by external id.
        """
        for child, relations in self._parents.items():
            if child is builder or not child.registered:
                continue
            if any(p is builder for p in relations.values()):
                return True

        for child, references in self._references.items():
            if child is builder or not child.registered:
                continue
            if any(ref.matches(builder) for ref in references.values()):
                return True
        return False

    def __repr__(self) -> str:
        watched = sum(len(f) for f in self._fields.values())
        return (
            f"DiscoveryGraph(types={len(self._types)}, watched_fields={watched}, "
            f"keys={len(self._keys)}, relations={len(self._parents)})"
        )
