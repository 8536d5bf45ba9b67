"""Polytrack - registry, discovery, querying and caching of polymorphic associations."""

from polytrack.cache import QueryCache
from polytrack.config import PolytrackConfig, load_config
from polytrack.context import PolytrackContext
from polytrack.core import (
    InvalidTarget,
    PolytrackError,
    UnknownAssociation,
    configure_logging,
)
from polytrack.discovery import DiscoveryEngine
from polytrack.events import ChangeKind, CacheInvalidated, InvalidationReason, RegistryChanged
from polytrack.query import BatchExecutor, PolymorphicQuery, QueryBuilder
from polytrack.registry import (
    AssociationRegistry,
    FileConfigStore,
    MemoryConfigStore,
    Provenance,
    SqlConfigStore,
)
from polytrack.source import InMemoryDataSource, SqlDataSource

__version__ = "0.1.0"

__all__ = [
    "AssociationRegistry",
    "BatchExecutor",
    "CacheInvalidated",
    "ChangeKind",
    "DiscoveryEngine",
    "FileConfigStore",
    "InMemoryDataSource",
    "InvalidTarget",
    "InvalidationReason",
    "MemoryConfigStore",
    "PolymorphicQuery",
    "PolytrackConfig",
    "PolytrackContext",
    "PolytrackError",
    "Provenance",
    "QueryBuilder",
    "QueryCache",
    "RegistryChanged",
    "SqlConfigStore",
    "SqlDataSource",
    "UnknownAssociation",
    "configure_logging",
    "load_config",
]
