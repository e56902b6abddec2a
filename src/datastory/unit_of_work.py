"""Unit-of-work protocol consumed by BuildSession.persist."""

from __future__ import annotations

from typing import Callable, Protocol

from .discovery import ExternalReference
from .records import Entity


class UnitOfWork(Protocol):
    """
    Transactional writer for one commit batch.

    Entities are registered in dependency order; ``commit`` performs the
    write and stamps identities on newly inserted entities.
    """

    def register_new(self, entity: Entity) -> None:
        """Insert ``entity`` on commit."""

    def register_dirty(self, entity: Entity) -> None:
        """Update the already-persisted ``entity`` on commit."""

    def register_relationship(self, entity: Entity, field: str, parent: Entity) -> None:
        """Fill ``entity.field`` with the identity of ``parent`` on commit."""

    def register_reference(self, entity: Entity, reference: ExternalReference) -> None:
        """Fill ``entity.<reference.field>`` by looking up the external id on commit."""

    def commit(self) -> None:
        """Write every registered entity in registration order."""


UnitOfWorkFactory = Callable[[], UnitOfWork]
