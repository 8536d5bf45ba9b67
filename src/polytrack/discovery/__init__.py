"""Discovery of target kinds and new polymorphic associations."""

from polytrack.discovery.engine import DiscoveryEngine, model_to_target_kind, shannon_diversity
from polytrack.discovery.models import (
    ApplyReport,
    ConfidenceLevel,
    DiscoveryResult,
    DiscoverySource,
    FieldAnalysis,
    ProposedAssociation,
    ProposedTarget,
    TypeUsageStats,
)

__all__ = [
    "ApplyReport",
    "ConfidenceLevel",
    "DiscoveryEngine",
    "DiscoveryResult",
    "DiscoverySource",
    "FieldAnalysis",
    "ProposedAssociation",
    "ProposedTarget",
    "TypeUsageStats",
    "model_to_target_kind",
    "shannon_diversity",
]
