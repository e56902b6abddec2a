from __future__ import annotations

from typing import Any, List, Optional, Set, TYPE_CHECKING

from .config import AppSettings, get_settings
from .dependency import DependencyGraph
from .discovery import DiscoveryGraph, ExistenceQuery
from .logs import getLogger
from .mock import MockStore, id_factory_from_settings
from .records import record_type_key

if TYPE_CHECKING:
    from .builder import Builder
    from .unit_of_work import UnitOfWorkFactory

logger = getLogger(__name__)


class BuildSession:
    """
    Context of one build/persist/mock invocation.

    Owns the DiscoveryGraph and every Builder created against it. A session
    is single-owner and sequential; overlapping builds must each use their
    own session.
    """

    def __init__(self, settings: Optional[AppSettings] = None) -> None:
        self.settings = settings or get_settings()
        self.discovery = DiscoveryGraph()
        self._builders: List["Builder"] = []
        self._initialized: Set[int] = set()

    # ------------------------------------------------------------------ #
    # Builders
    # ------------------------------------------------------------------ #
    def add(self, builder: "Builder") -> None:
        self._builders.append(builder)
        self.discovery.track(builder)

    def builders(self) -> List["Builder"]:
        return list(self._builders)

    def committable(self) -> List["Builder"]:
        return [b for b in self._builders if b.registered]

    def mark_initialized(self, owner: Any) -> bool:
        """Record that ``owner`` ran its one-time setup; False if it already had."""
        if id(owner) in self._initialized:
            return False
        self._initialized.add(id(owner))
        return True

    # ------------------------------------------------------------------ #
    # Ordering
    # ------------------------------------------------------------------ #
    def dependency_graph(self) -> DependencyGraph:
        """
        Dependency graph over the record types of the committable builders.

        Relations between rows of the same type add no edge; such rows are
        written in build order.
        """
        graph = DependencyGraph()
        for builder in self.committable():
            child = record_type_key(builder.record_type)
            graph.node(child)
            for parent in self.discovery.parents_of(builder).values():
                parent_key = record_type_key(parent.record_type)
                if parent_key != child:
                    graph.edge(child, parent_key)
            for reference in self.discovery.references_of(builder).values():
                if reference.target_key != child:
                    graph.edge(child, reference.target_key)
        return graph

    def batches(self) -> List[List["Builder"]]:
        """
        Committable builders as [setup batch, data batch], each in dependency
        order. Empty batches are left out.
        """
        order = {t: i for i, t in enumerate(self.dependency_graph().sort_topologically())}
        committable = self.committable()
        position = {id(b): i for i, b in enumerate(committable)}

        def _key(builder: "Builder") -> tuple[int, int]:
            return order[record_type_key(builder.record_type)], position[id(builder)]

        setup = sorted((b for b in committable if b.is_setup), key=_key)
        data = sorted((b for b in committable if not b.is_setup), key=_key)
        return [batch for batch in (setup, data) if batch]

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #
    def build_all(self) -> None:
        # build() may create further builders, hence the growing index walk.
        i = 0
        while i < len(self._builders):
            self._builders[i].build()
            i += 1

    def persist(
        self,
        unit_of_work_factory: "UnitOfWorkFactory",
        existence_query: Optional[ExistenceQuery] = None,
    ) -> List["Builder"]:
        """
        Write every committable builder through one unit of work per batch.

        Returns the builders in the order they were committed.
        """
        self.build_all()
        if existence_query is not None:
            self.discovery.resolve_preexisting(existence_query)

        committed: List["Builder"] = []
        for batch in self.batches():
            uow = unit_of_work_factory()
            for builder in batch:
                entity = builder.entity
                if entity.identity is None:
                    uow.register_new(entity)
                else:
                    uow.register_dirty(entity)
                for field, parent in self.discovery.parents_of(builder).items():
                    uow.register_relationship(entity, field, parent.entity)
                for reference in self.discovery.references_of(builder).values():
                    uow.register_reference(entity, reference)
            uow.commit()
            committed.extend(batch)

        logger.info(
            "Persisted %d record(s) of %d type(s)",
            len(committed),
            len({record_type_key(b.record_type) for b in committed}),
        )
        return committed

    def mock(self, store: Optional[MockStore] = None) -> MockStore:
        """Replicate the committable builders in memory instead of writing them."""
        self.build_all()
        store = store or MockStore(id_factory_from_settings(self.settings.mock))

        builders = self.committable()
        store.ingest(builders)
        store.generate_relationships(self.discovery, builders)

        logger.info("Mocked %d record(s)", len(builders))
        return store

    def __repr__(self) -> str:
        return f"BuildSession(builders={len(self._builders)}, committable={len(self.committable())})"
