"""
Composition of builders into named, reusable scenarios.

- Narrative : a fixed persona that always builds the same conceptual record.
- Relation  : declarative link from a narrator's field to another narrative's
              record, found through discovery at build time.
- Narrator  : a narrative plus its repeat count and relations.
- Story     : a tree of narrators and related sub-stories.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, ClassVar, Dict, FrozenSet, List, Optional, Sequence, Tuple, Type, TYPE_CHECKING

from .builder import Builder
from .logs import getLogger
from .records import RecordType, is_external_id, record_type_key
from .session import BuildSession

if TYPE_CHECKING:
    from .discovery import ExistenceQuery
    from .mock import MockStore
    from .unit_of_work import UnitOfWorkFactory

logger = getLogger(__name__)


# ---------------------------------------------------------------------------
# Narratives and their static metadata
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class NarrativeMeta:
    record_type: RecordType
    discoverable: FrozenSet[str]


_REGISTRY: Dict[type, NarrativeMeta] = {}


def narrative_meta(narrative: type) -> Optional[NarrativeMeta]:
    """Metadata registered for a Narrative class, or None if it declares no record type."""
    return _REGISTRY.get(narrative)


class Narrative(ABC):
    """
    Base class for personas.

    Subclasses declare ``record_type`` (and optionally the ``discoverable``
    fields other narratives will look them up by) and implement ``tell``.
    The metadata is registered once, when the subclass is defined.
    """

    record_type: ClassVar[Optional[RecordType]] = None
    discoverable: ClassVar[Tuple[str, ...]] = ()

    def __init_subclass__(cls, **kwargs: Any) -> None:
        super().__init_subclass__(**kwargs)
        record_type = getattr(cls, "record_type", None)
        if record_type is None:
            return
        _REGISTRY[cls] = NarrativeMeta(
            record_type=record_type,
            discoverable=frozenset(cls.discoverable),
        )

    @abstractmethod
    def tell(self, session: BuildSession) -> Builder:
        """Build (or find) the record this persona stands for."""


# ---------------------------------------------------------------------------
# Relations and narrators
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Relation:
    """
    Link ``source_field`` of the narrator's record to the record of
    ``target`` whose ``target_field`` equals ``target_value``.

    When no such record was built in the session the relation is skipped,
    unless ``build_missing`` asks for a fresh target to be built.
    """

    source_field: str
    target: Type[Narrative]
    target_field: str
    target_value: Any
    build_missing: bool = False


@dataclass(slots=True)
class Narrator:
    """Runtime handle on one narrative: how often to tell it and how it relates."""

    narrative: Type[Narrative]
    count: int = 1
    relations: Sequence[Relation] = field(default_factory=tuple)

    @property
    def standalone(self) -> bool:
        return not self.relations

    def build(self, session: BuildSession) -> Builder:
        builder = self.narrative().tell(session)
        if self.standalone:
            return builder

        for relation in self.relations:
            self._relate(session, builder, relation)
        return builder

    def _relate(self, session: BuildSession, builder: Builder, relation: Relation) -> None:
        meta = narrative_meta(relation.target)
        if meta is None:
            logger.warning(
                "%s: relation target %s declares no record type; skipped",
                self.narrative.__name__, relation.target.__name__,
            )
            return

        target = session.discovery.discover(
            meta.record_type, relation.target_field, relation.target_value
        )
        if target is None:
            if not relation.build_missing:
                logger.debug(
                    "%s: no %s with %s=%r; relation skipped",
                    self.narrative.__name__, record_type_key(meta.record_type),
                    relation.target_field, relation.target_value,
                )
                return
            target = relation.target().tell(session)

        if is_external_id(meta.record_type, relation.target_field):
            builder.set_reference(relation.source_field, relation.target_field, relation.target_value)
        else:
            builder.set_parent(relation.source_field, target)


# ---------------------------------------------------------------------------
# Stories
# ---------------------------------------------------------------------------


class Story:
    """
    Tree of narrators and related sub-stories.

    Declare ``narrators`` and ``stories`` as class attributes of a subclass,
    or pass them to the constructor. Building a story builds its related
    stories first (they provide relationship targets), then the standalone
    narrators, then the narrators carrying relations.
    """

    narrators: ClassVar[Sequence[Narrator]] = ()
    stories: ClassVar[Sequence["Story"]] = ()

    def __init__(
        self,
        narrators: Optional[Sequence[Narrator]] = None,
        stories: Optional[Sequence["Story"]] = None,
    ) -> None:
        self._narrators: List[Narrator] = list(narrators if narrators is not None else type(self).narrators)
        self._stories: List[Story] = list(stories if stories is not None else type(self).stories)

    def initialize(self, session: BuildSession) -> None:
        """
        Make every field that a relation in this tree looks up discoverable,
        along with the discoverable fields each narrative declares.
        Runs once per session.
        """
        if not session.mark_initialized(self):
            return

        for story in self._stories:
            story.initialize(session)

        discovery = session.discovery
        for narrator in self._narrators:
            own = narrative_meta(narrator.narrative)
            if own is not None:
                for name in own.discoverable:
                    discovery.set_discoverable_field(own.record_type, name)

            for relation in narrator.relations:
                meta = narrative_meta(relation.target)
                if meta is None:
                    logger.warning(
                        "Cannot resolve the record type of %s for %s.%s; relation left unmapped",
                        relation.target.__name__,
                        narrator.narrative.__name__,
                        relation.source_field,
                    )
                    continue
                discovery.set_discoverable_field(meta.record_type, relation.target_field)

    def build(self, session: Optional[BuildSession] = None) -> Optional[Builder]:
        """Build the whole tree and return the first builder produced (the prime)."""
        session = session or BuildSession()
        self.initialize(session)

        prime: Optional[Builder] = None
        for story in self._stories:
            built = story.build(session)
            if prime is None:
                prime = built

        for narrator in self._ordered_narrators():
            for _ in range(narrator.count):
                builder = narrator.build(session)
                if prime is None:
                    prime = builder
        return prime

    def _ordered_narrators(self) -> List[Narrator]:
        standalone = [n for n in self._narrators if n.standalone]
        related = [n for n in self._narrators if not n.standalone]
        return standalone + related

    def persist(
        self,
        unit_of_work_factory: "UnitOfWorkFactory",
        existence_query: Optional["ExistenceQuery"] = None,
    ) -> List[Builder]:
        prime = self.build()
        if prime is None:
            return []
        return prime.persist(unit_of_work_factory, existence_query)

    def mock(self) -> Optional["MockStore"]:
        prime = self.build()
        if prime is None:
            return None
        return prime.mock()

    def __repr__(self) -> str:
        return f"{type(self).__name__}(narrators={len(self._narrators)}, stories={len(self._stories)})"
