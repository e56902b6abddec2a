from __future__ import annotations

from typing import Any, Callable, List, Mapping, Optional, Union, TYPE_CHECKING

from .logs import getLogger
from .records import Entity, RecordType, is_setup_type, record_type_key

if TYPE_CHECKING:
    from .discovery import ExistenceQuery
    from .mock import MockStore
    from .session import BuildSession
    from .unit_of_work import UnitOfWorkFactory

logger = getLogger(__name__)


class Builder:
    """
    Producer of one record plus its relationships.

    A Builder belongs to exactly one BuildSession and owns exactly one
    Entity. Field assignments are reported to the session's DiscoveryGraph
    so that watched values become lookup keys; relations to other builders
    are kept in the DiscoveryGraph as well.

    A builder is "registered" while it is part of the commit set. Replacing
    a parent unregisters the superseded parent chain.
    """

    def __init__(
        self,
        session: "BuildSession",
        record_type: RecordType,
        *,
        setup: Optional[bool] = None,
        **values: Any,
    ) -> None:
        self._session = session
        self._entity = Entity(record_type)
        self._setup = is_setup_type(record_type) if setup is None else bool(setup)
        self._registered = True

        session.add(self)
        for field, value in values.items():
            self.set(field, value)

    # ------------------------------------------------------------------ #
    # Accessors
    # ------------------------------------------------------------------ #
    @property
    def session(self) -> "BuildSession":
        return self._session

    @property
    def entity(self) -> Entity:
        return self._entity

    @property
    def record_type(self) -> RecordType:
        return self._entity.record_type

    @property
    def identity(self) -> Any:
        return self._entity.identity

    @property
    def is_setup(self) -> bool:
        return self._setup

    @property
    def registered(self) -> bool:
        return self._registered

    # ------------------------------------------------------------------ #
    # Fields and relations
    # ------------------------------------------------------------------ #
    def set(self, field: str, value: Any) -> Builder:
        discovery = self._session.discovery
        if field in self._entity:
            previous = self._entity.get(field)
            if previous != value:
                discovery.release(self, field, previous)
        self._entity.set(field, value)
        discovery.record(self, field, value)
        return self

    def get(self, field: str, default: Any = None) -> Any:
        return self._entity.get(field, default)

    def set_parent(self, field: str, parent: Builder) -> Builder:
        self._session.discovery.set_parent(self, field, parent)
        return self

    def set_reference(self, field: str, ext_id_field: str, value: Any) -> Builder:
        self._session.discovery.set_reference(self, field, ext_id_field, value)
        return self

    def reregister(self) -> Builder:
        """Claim this builder's watched values, even if another builder had them first."""
        self._session.discovery.reregister(self)
        return self

    # ------------------------------------------------------------------ #
    # Commit set membership
    # ------------------------------------------------------------------ #
    def register_including_parents(self) -> None:
        for builder in self._chain():
            builder._registered = True

    def unregister_including_parents(self) -> None:
        """
        Leave the commit set, taking along every ancestor that no other
        registered builder still depends on.
        """
        discovery = self._session.discovery
        self._registered = False
        pending: List[Builder] = list(discovery.parents_of(self).values())
        while pending:
            parent = pending.pop()
            if not parent._registered or discovery.has_registered_dependents(parent):
                continue
            parent._registered = False
            pending.extend(discovery.parents_of(parent).values())

    def _chain(self) -> List[Builder]:
        discovery = self._session.discovery
        seen: List[Builder] = []
        pending: List[Builder] = [self]
        while pending:
            builder = pending.pop()
            if any(builder is s for s in seen):
                continue
            seen.append(builder)
            pending.extend(discovery.parents_of(builder).values())
        return seen

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #
    def build(self) -> Builder:
        return self

    def persist(
        self,
        unit_of_work_factory: "UnitOfWorkFactory",
        existence_query: Optional["ExistenceQuery"] = None,
    ) -> List[Builder]:
        return self._session.persist(unit_of_work_factory, existence_query)

    def mock(self) -> "MockStore":
        return self._session.mock()

    def __repr__(self) -> str:
        return f"{type(self).__name__}({record_type_key(self.record_type)}, identity={self.identity!r})"


Producer = Union[Callable[[], Mapping[str, Any]], Any]


class ProxyBuilder(Builder):
    """
    Builder standing in for a producer that lives outside this codebase.

    ``producer`` is either a zero-argument callable returning a mapping of
    field values, or an object whose ``build()`` returns such a mapping. The
    produced values are reclaimed into this builder's entity on the first
    ``build()``, which persist and mock trigger for every builder.
    """

    def __init__(
        self,
        session: "BuildSession",
        record_type: RecordType,
        producer: Producer,
        *,
        setup: Optional[bool] = None,
        **values: Any,
    ) -> None:
        super().__init__(session, record_type, setup=setup, **values)
        self._producer = producer
        self._reclaimed = False

    def build(self) -> Builder:
        if self._reclaimed:
            return self
        produce = self._producer if callable(self._producer) else self._producer.build
        produced = produce()
        for field, value in produced.items():
            self.set(field, value)
        self._reclaimed = True
        logger.debug("Reclaimed %d field(s) into %r", len(produced), self)
        return self
