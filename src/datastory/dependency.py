from __future__ import annotations

from collections import deque
from typing import Deque, Dict, Hashable, Iterable, List, Set

from .errors import DatastoryError
from .logs import getLogger

logger = getLogger(__name__)


class CyclicDependency(DatastoryError):
    """The record types cannot be ordered because their relations form a cycle."""

    def __init__(self, unresolved: Iterable[Hashable]) -> None:
        self.unresolved = sorted(unresolved, key=str)
        super().__init__(
            f"Cyclic dependency between record types: {', '.join(map(str, self.unresolved))}"
        )


class DependencyGraph:
    """
    Directed graph over record types.

    Structure:
      - Nodes are hashable type tokens (table names).
      - An edge (child, parent) means "child must be written after parent".
      - Adjacency is kept as child -> set of parents, plus the reverse
        index parent -> set of children for draining.
    """

    __slots__ = ("_parents", "_children")

    def __init__(self) -> None:
        self._parents: Dict[Hashable, Set[Hashable]] = {}
        self._children: Dict[Hashable, Set[Hashable]] = {}

    # ------------------------------------------------------------------ #
    # Construction
    # ------------------------------------------------------------------ #
    def node(self, record_type: Hashable) -> DependencyGraph:
        self._parents.setdefault(record_type, set())
        self._children.setdefault(record_type, set())
        return self

    def edge(self, child: Hashable, parent: Hashable) -> DependencyGraph:
        self.node(child)
        self.node(parent)
        self._parents[child].add(parent)
        self._children[parent].add(child)
        return self

    # ------------------------------------------------------------------ #
    # Structural accessors
    # ------------------------------------------------------------------ #
    def nodes(self) -> List[Hashable]:
        return list(self._parents)

    def parents(self, record_type: Hashable) -> Set[Hashable]:
        return set(self._parents[record_type])

    def children(self, record_type: Hashable) -> Set[Hashable]:
        return set(self._children[record_type])

    def as_dict(self) -> Dict[Hashable, List[Hashable]]:
        """Adjacency (child -> sorted parents), for inspection and serialization."""
        return {n: sorted(p, key=str) for n, p in self._parents.items()}

    def __len__(self) -> int:
        return len(self._parents)

    def __contains__(self, record_type: object) -> bool:
        return record_type in self._parents

    # ------------------------------------------------------------------ #
    # Ordering
    # ------------------------------------------------------------------ #
    def sort_topologically(self) -> List[Hashable]:
        """
        Order the nodes so that every parent precedes all of its children
        (Kahn's algorithm).

        Raises CyclicDependency when no node is free of parents or when a
        cycle prevents the queue from draining every node.
        """
        indegree = {n: len(p) for n, p in self._parents.items()}
        ready: Deque[Hashable] = deque(n for n, d in indegree.items() if d == 0)

        if self._parents and not ready:
            raise CyclicDependency(self._parents)

        result: List[Hashable] = []
        while ready:
            current = ready.popleft()
            result.append(current)
            for child in self._children[current]:
                indegree[child] -= 1
                if indegree[child] == 0:
                    ready.append(child)

        if len(result) < len(self._parents):
            raise CyclicDependency(n for n, d in indegree.items() if d > 0)

        logger.debug("Dependency order: %s", result)
        return result

    def __repr__(self) -> str:
        edges = sum(len(p) for p in self._parents.values())
        return f"DependencyGraph(nodes={len(self._parents)}, edges={edges})"
