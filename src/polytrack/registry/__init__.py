"""Association registry: models, persistence and operations."""

from polytrack.registry.models import (
    Association,
    Provenance,
    RegistryConfiguration,
    TargetMetadata,
    ValidationIssue,
    ValidationReport,
)
from polytrack.registry.ops import AssociationRegistry
from polytrack.registry.stores import (
    ConfigStore,
    FileConfigStore,
    MemoryConfigStore,
    RegistrySnapshot,
    SqlConfigStore,
    store_for_path,
)

__all__ = [
    "Association",
    "AssociationRegistry",
    "ConfigStore",
    "FileConfigStore",
    "MemoryConfigStore",
    "Provenance",
    "RegistryConfiguration",
    "RegistrySnapshot",
    "SqlConfigStore",
    "TargetMetadata",
    "ValidationIssue",
    "ValidationReport",
    "store_for_path",
]
