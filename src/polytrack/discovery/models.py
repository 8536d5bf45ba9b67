"""Discovery result types. All transient; nothing here is persisted."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from polytrack.core.errors import PolytrackError
from polytrack.registry.models import Provenance, utc_now


class DiscoverySource(str, Enum):
    NAMING_PATTERN = "naming-pattern"
    SCHEMA_DEFINITION = "schema-definition"
    FIELD_STATISTICS = "field-statistics"

    @property
    def provenance(self) -> Provenance:
        """Provenance recorded on targets applied from this source."""
        if self is DiscoverySource.FIELD_STATISTICS:
            return Provenance.RUNTIME
        return Provenance.GENERATED


class ConfidenceLevel(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @classmethod
    def from_score(cls, score: float) -> ConfidenceLevel:
        if score >= 0.8:
            return cls.HIGH
        if score >= 0.5:
            return cls.MEDIUM
        return cls.LOW


@dataclass(frozen=True)
class ProposedTarget:
    target_kind: str
    display_name: str
    relationship_name: str | None = None


@dataclass
class DiscoveryResult:
    """Proposed targets for one association from one discovery source."""

    association: str
    targets: list[ProposedTarget]
    confidence: float
    source: DiscoverySource
    prevalidated: bool = False
    discovered_at: datetime = field(default_factory=utc_now)
    table: str | None = None
    field: str | None = None

    @property
    def level(self) -> ConfidenceLevel:
        return ConfidenceLevel.from_score(self.confidence)


@dataclass
class FieldAnalysis:
    """Statistics for one (table, field) and the confidence derived from them."""

    table: str
    field: str
    total_records: int
    frequencies: dict[str, int]
    has_type_name: bool = False
    has_type_values: bool = False
    has_reasonable_variety: bool = False
    is_well_distributed: bool = False
    confidence: float = 0.0

    @property
    def distinct_values(self) -> list[str]:
        return list(self.frequencies)


@dataclass
class ProposedAssociation:
    """A polymorphic field not yet in the registry."""

    name: str
    source_table: str
    discriminator_field: str
    foreign_id_field: str
    targets: dict[str, str]  # discriminator value -> inferred target kind
    confidence: float


@dataclass
class TypeUsageStats:
    total: int
    by_type: dict[str, int]
    most_used: str | None
    least_used: str | None
    diversity: float  # Shannon index, bits


@dataclass
class ApplyReport:
    """What an apply call did. Failures are collected, never dropped."""

    applied: list[tuple[str, str]] = field(default_factory=list)
    skipped: list[tuple[str, str]] = field(default_factory=list)
    failures: list[PolytrackError] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures

    def merge(self, other: ApplyReport) -> None:
        self.applied.extend(other.applied)
        self.skipped.extend(other.skipped)
        self.failures.extend(other.failures)

    def to_dict(self) -> dict[str, Any]:
        return {
            "applied": [list(pair) for pair in self.applied],
            "skipped": [list(pair) for pair in self.skipped],
            "failures": [f.to_dict() for f in self.failures],
        }
