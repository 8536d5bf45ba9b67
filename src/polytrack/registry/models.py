"""Registry data model.

Associations and their target metadata are pydantic models so the whole
configuration round-trips through JSON/YAML persistence unchanged. The
registry never hands out its live objects; callers get deep copies.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Literal

from pydantic import BaseModel, Field

from polytrack.config.constants import CONFIG_VERSION, GENERATED_BY


def utc_now() -> datetime:
    return datetime.now(UTC)


class Provenance(str, Enum):
    """How a target registration was established."""

    GENERATED = "generated"
    MANUAL = "manual"
    RUNTIME = "runtime"


class TargetMetadata(BaseModel):
    """One entity kind legally fillable into an association's slot."""

    target_kind: str  # collection identifier, e.g. "jobs"
    display_name: str  # model name stored in the discriminator field, e.g. "Job"
    discovered_at: datetime
    last_verified_at: datetime
    active: bool = True
    provenance: Provenance = Provenance.MANUAL


class Association(BaseModel):
    """A named polymorphic relationship slot with a fixed field pair."""

    name: str
    discriminator_field: str
    foreign_id_field: str
    source_table: str | None = None
    description: str = ""
    targets: dict[str, TargetMetadata] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    def target_kinds(self, *, include_inactive: bool = False) -> list[str]:
        return [
            kind for kind, meta in self.targets.items() if include_inactive or meta.active
        ]

    def kind_for_value(self, discriminator_value: str) -> str | None:
        """Map a stored discriminator value back to its target kind."""
        for kind, meta in self.targets.items():
            if meta.display_name == discriminator_value:
                return kind
        return None


class RegistryConfiguration(BaseModel):
    """All associations plus global metadata."""

    associations: dict[str, Association] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    config_version: str = CONFIG_VERSION
    total_associations: int = 0
    total_targets: int = 0
    generated_by: str = GENERATED_BY

    def touch(self, now: datetime) -> None:
        """Refresh aggregate counts and the update timestamp."""
        self.updated_at = now
        self.total_associations = len(self.associations)
        self.total_targets = sum(len(a.targets) for a in self.associations.values())


Severity = Literal["error", "warning"]


@dataclass(frozen=True)
class ValidationIssue:
    association: str
    message: str
    severity: Severity
    target: str | None = None

    def to_dict(self) -> dict[str, str | None]:
        return {
            "association": self.association,
            "target": self.target,
            "message": self.message,
            "severity": self.severity,
        }


@dataclass
class ValidationReport:
    """Structural health of a registry. Errors are hard failures, warnings advisory."""

    validated_at: datetime
    errors: list[ValidationIssue] = field(default_factory=list)
    warnings: list[ValidationIssue] = field(default_factory=list)
    total_checked: int = 0
    failed_checks: int = 0

    @property
    def valid(self) -> bool:
        return not self.errors

    @property
    def passed_checks(self) -> int:
        return self.total_checked - self.failed_checks

    def to_dict(self) -> dict[str, object]:
        return {
            "valid": self.valid,
            "errors": [e.to_dict() for e in self.errors],
            "warnings": [w.to_dict() for w in self.warnings],
            "metadata": {
                "validated_at": self.validated_at.isoformat(),
                "total_checked": self.total_checked,
                "passed_checks": self.passed_checks,
                "failed_checks": self.failed_checks,
            },
        }
