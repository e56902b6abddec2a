"""
datastory
=========

Relationship-aware fixture records for relational data stores.

Public API:

- Builder / ProxyBuilder : producers of one record each.
- BuildSession           : per-invocation context owning the discovery graph.
- DiscoveryGraph         : deduplication by watched field values.
- DependencyGraph        : topological write ordering of record types.
- MockStore              : in-memory, identity-bearing replica.
- Narrative, Narrator,
  Relation, Story        : composition of builders into named scenarios.
"""

try:
    from ._version import version as __version__  # populated by setuptools-scm
except ModuleNotFoundError:
    __version__ = "0.0.0"

from .builder import Builder, ProxyBuilder
from .dependency import CyclicDependency, DependencyGraph
from .discovery import DiscoveryGraph, ExternalReference
from .errors import DatastoryError
from .mock import MockStore
from .records import Entity, InvalidRecordType, InvalidRelationshipField
from .session import BuildSession
from .story import Narrative, Narrator, Relation, Story

__all__ = [
    "__version__",
    "Builder",
    "ProxyBuilder",
    "BuildSession",
    "CyclicDependency",
    "DatastoryError",
    "DependencyGraph",
    "DiscoveryGraph",
    "Entity",
    "ExternalReference",
    "InvalidRecordType",
    "InvalidRelationshipField",
    "MockStore",
    "Narrative",
    "Narrator",
    "Relation",
    "Story",
]
