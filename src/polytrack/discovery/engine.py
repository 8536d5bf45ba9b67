"""DiscoveryEngine - proposes target kinds for polymorphic associations.

Three discovery paths:
1. Naming patterns: relationship names like ``loggableJob`` for a registered
   association ``loggable`` propose ``Job`` -> ``jobs``.
2. Schema definitions: declarations like ``loggableJob: one(`` in schema text.
3. Field statistics: distinct-value distributions read from the data source,
   scored with a weighted confidence heuristic.

The engine never mutates the registry except through ``apply_discoveries``
and ``apply_association``.
"""

from __future__ import annotations

import math
import re
from collections.abc import Iterable, Sequence
from typing import TYPE_CHECKING

import structlog

from polytrack.config.constants import (
    ASSOCIATION_NAME_PATTERN,
    ID_FIELD_FALLBACKS,
    TARGET_KIND_PATTERN,
    TYPE_FIELD_PATTERN,
    TYPE_VALUE_PATTERN,
    UNBOUNDED_VARIETY_CAP,
    WEIGHT_DISTRIBUTION,
    WEIGHT_TYPE_FIELD,
    WEIGHT_TYPE_VALUES,
    WEIGHT_VARIETY,
)
from polytrack.config.models import DiscoveryConfig
from polytrack.core.background import IntervalTask
from polytrack.core.errors import DiscoveryError, PolytrackError
from polytrack.core.logging import request_scope
from polytrack.discovery.models import (
    ApplyReport,
    DiscoveryResult,
    DiscoverySource,
    FieldAnalysis,
    ProposedAssociation,
    ProposedTarget,
    TypeUsageStats,
)

if TYPE_CHECKING:
    from polytrack.registry.models import RegistryConfiguration
    from polytrack.registry.ops import AssociationRegistry
    from polytrack.source.base import DataSource

logger = structlog.get_logger(__name__)

_TYPE_SUFFIX = re.compile(r"_?(type|kind|class|category)$", re.IGNORECASE)
_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])|(?<=[A-Z])(?=[A-Z][a-z])")
_IRREGULAR_PLURALS = {"person": "people", "child": "children"}


def model_to_target_kind(model_name: str) -> str:
    """``ContactMethod`` -> ``contact_methods``, ``Company`` -> ``companies``."""
    words = _CAMEL_BOUNDARY.sub("_", model_name).lower().split("_")
    last = words[-1]
    if last in _IRREGULAR_PLURALS:
        last = _IRREGULAR_PLURALS[last]
    elif last.endswith("y") and len(last) > 1 and last[-2] not in "aeiou":
        last = last[:-1] + "ies"
    elif last.endswith(("s", "x", "ch", "sh")):
        last += "es"
    else:
        last += "s"
    words[-1] = last
    return "_".join(w for w in words if w)


def shannon_diversity(counts: Iterable[int]) -> float:
    counts = [c for c in counts if c > 0]
    total = sum(counts)
    if total == 0:
        return 0.0
    return -sum((c / total) * math.log2(c / total) for c in counts)


class DiscoveryEngine:
    """Finds target kinds and new associations; applies accepted ones."""

    def __init__(
        self,
        registry: AssociationRegistry,
        source: DataSource | None = None,
        config: DiscoveryConfig | None = None,
    ) -> None:
        self.registry = registry
        self.source = source
        self.config = config or DiscoveryConfig()
        self._periodic: IntervalTask | None = None
        self.last_report: ApplyReport | None = None

    # ------------------------------------------------------------------
    # Naming and schema patterns
    # ------------------------------------------------------------------

    def discover_from_naming_patterns(self, names: Iterable[str]) -> list[DiscoveryResult]:
        names = list(names)
        results = []
        for association in self.registry.association_names():
            pattern = re.compile(rf"^{re.escape(association)}([A-Z][A-Za-z0-9]*)$")
            targets = _unique_targets(
                (match.group(1), name)
                for name in names
                if (match := pattern.match(name))
            )
            if targets:
                results.append(
                    self._pattern_result(association, targets, DiscoverySource.NAMING_PATTERN)
                )

        logger.debug("discovery_naming_complete", names=len(names), results=len(results))
        return results

    def discover_from_schema_text(self, text: str) -> list[DiscoveryResult]:
        """Scan relationship declarations of the form ``<association><Model>: one(``."""
        results = []
        for association in self.registry.association_names():
            pattern = re.compile(rf"\b{re.escape(association)}([A-Z]\w*)\s*:\s*one\(")
            targets = _unique_targets(
                (match.group(1), f"{association}{match.group(1)}")
                for match in pattern.finditer(text)
            )
            if targets:
                results.append(
                    self._pattern_result(association, targets, DiscoverySource.SCHEMA_DEFINITION)
                )

        logger.debug("discovery_schema_complete", results=len(results))
        return results

    def _pattern_result(
        self, association: str, targets: list[ProposedTarget], source: DiscoverySource
    ) -> DiscoveryResult:
        return DiscoveryResult(
            association=association,
            targets=targets,
            confidence=self.config.naming_confidence,
            source=source,
            prevalidated=True,
        )

    # ------------------------------------------------------------------
    # Field statistics
    # ------------------------------------------------------------------

    def analyze_field(self, table: str, field: str) -> FieldAnalysis:
        """Score how likely ``table.field`` is a discriminator.

        Raises:
            DiscoveryError: The data source is missing or failed.
        """
        if self.source is None:
            raise DiscoveryError.field_failed(table, field, "no data source configured")
        try:
            distinct = self.source.list_distinct_values(table, field)
        except Exception as e:
            raise DiscoveryError.field_failed(table, field, str(e)) from e

        frequencies: dict[str, int] = {}
        for value, count in distinct:
            if isinstance(value, str) and value:
                frequencies[value] = frequencies.get(value, 0) + int(count)

        analysis = FieldAnalysis(
            table=table,
            field=field,
            total_records=sum(frequencies.values()),
            frequencies=frequencies,
        )
        if len(frequencies) < 2:
            return analysis

        cfg = self.config
        analysis.has_type_name = bool(TYPE_FIELD_PATTERN.search(field))
        analysis.has_type_values = all(TYPE_VALUE_PATTERN.match(v) for v in frequencies)
        analysis.has_reasonable_variety = cfg.min_variety <= len(frequencies) <= cfg.max_variety
        analysis.is_well_distributed = (
            max(frequencies.values()) / analysis.total_records <= cfg.dominance_ratio
        )

        score = (
            WEIGHT_TYPE_FIELD * analysis.has_type_name
            + WEIGHT_TYPE_VALUES * analysis.has_type_values
            + WEIGHT_VARIETY * analysis.has_reasonable_variety
            + WEIGHT_DISTRIBUTION * analysis.is_well_distributed
        )
        if not analysis.has_reasonable_variety:
            score = min(score, UNBOUNDED_VARIETY_CAP)
        analysis.confidence = round(min(score, 1.0), 4)
        return analysis

    def discover_types(self, threshold: float | None = None) -> list[DiscoveryResult]:
        """Statistical discovery over registered associations, then every table.

        Results below ``threshold`` (default ``discovery.min_confidence``) are
        discarded. Sorted by descending confidence.
        """
        if self.source is None:
            logger.warning("discovery_no_source")
            return []
        threshold = self.config.min_confidence if threshold is None else threshold
        results: list[DiscoveryResult] = []
        processed: set[tuple[str, str]] = set()

        for name in self.registry.association_names():
            assoc = self.registry.get_association(name)
            if assoc is None or not assoc.source_table:
                continue
            key = (assoc.source_table, assoc.discriminator_field)
            processed.add(key)
            analysis = self._safe_analyze(*key)
            if analysis is not None and analysis.confidence >= threshold:
                targets = [
                    ProposedTarget(assoc.kind_for_value(v) or model_to_target_kind(v), v)
                    for v in analysis.frequencies
                ]
                results.append(self._statistics_result(name, targets, analysis))

        for table, field, analysis in self._scan(skip=processed):
            if analysis.confidence < threshold:
                continue
            name = _association_name(table, field)
            if name is None:
                continue
            targets = [ProposedTarget(model_to_target_kind(v), v) for v in analysis.frequencies]
            results.append(self._statistics_result(name, targets, analysis))

        results.sort(key=lambda r: r.confidence, reverse=True)
        logger.info("discovery_types_complete", results=len(results), threshold=threshold)
        return results

    def _statistics_result(
        self, association: str, targets: list[ProposedTarget], analysis: FieldAnalysis
    ) -> DiscoveryResult:
        return DiscoveryResult(
            association=association,
            targets=targets,
            confidence=analysis.confidence,
            source=DiscoverySource.FIELD_STATISTICS,
            prevalidated=analysis.confidence >= self.config.auto_apply_confidence,
            table=analysis.table,
            field=analysis.field,
        )

    def detect_new_associations(
        self, current_config: RegistryConfiguration | None = None
    ) -> list[ProposedAssociation]:
        """Polymorphic fields not yet registered, with an inferable foreign id."""
        if self.source is None:
            logger.warning("discovery_no_source")
            return []
        config = current_config if current_config is not None else self.registry.snapshot()
        registered = {
            (a.source_table, a.discriminator_field)
            for a in config.associations.values()
            if a.source_table
        }

        proposals = []
        for table, field, analysis in self._scan(skip=registered):
            if analysis.confidence < self.config.auto_apply_confidence:
                continue
            name = _association_name(table, field)
            if name is None:
                continue
            id_field = self._infer_id_field(table, field)
            if id_field is None:
                logger.debug("discovery_no_id_field", table=table, field=field)
                continue
            proposals.append(
                ProposedAssociation(
                    name=name,
                    source_table=table,
                    discriminator_field=field,
                    foreign_id_field=id_field,
                    targets={v: model_to_target_kind(v) for v in analysis.frequencies},
                    confidence=analysis.confidence,
                )
            )

        proposals.sort(key=lambda p: p.confidence, reverse=True)
        logger.info("discovery_new_associations", count=len(proposals))
        return proposals

    def type_usage_stats(self, table: str, field: str) -> TypeUsageStats:
        analysis = self.analyze_field(table, field)
        ranked = sorted(analysis.frequencies.items(), key=lambda kv: kv[1], reverse=True)
        return TypeUsageStats(
            total=analysis.total_records,
            by_type=dict(ranked),
            most_used=ranked[0][0] if ranked else None,
            least_used=ranked[-1][0] if ranked else None,
            diversity=shannon_diversity(analysis.frequencies.values()),
        )

    def _scan(self, skip: set[tuple[str, str]]) -> Iterable[tuple[str, str, FieldAnalysis]]:
        assert self.source is not None
        for table in self.source.list_tables():
            try:
                fields = self.source.list_fields(table)
            except Exception as e:
                logger.warning("discovery_table_failed", table=table, error=str(e))
                continue
            for field in fields:
                if (table, field) in skip:
                    continue
                analysis = self._safe_analyze(table, field)
                if analysis is not None:
                    yield table, field, analysis

    def _safe_analyze(self, table: str, field: str) -> FieldAnalysis | None:
        try:
            return self.analyze_field(table, field)
        except DiscoveryError as e:
            logger.warning("discovery_field_failed", table=table, field=field, error=str(e))
            return None

    def _infer_id_field(self, table: str, type_field: str) -> str | None:
        assert self.source is not None
        fields = self.source.list_fields(table)
        prefix = _TYPE_SUFFIX.sub("", type_field)
        candidates = [f"{prefix}_id", f"{prefix}id"] if prefix else []
        candidates.extend(ID_FIELD_FALLBACKS)
        for candidate in candidates:
            if candidate in fields:
                return candidate
        for name in fields:
            if name.lower().endswith("id") and name.lower() != "id" and name != type_field:
                return name
        return None

    # ------------------------------------------------------------------
    # Applying
    # ------------------------------------------------------------------

    def apply_discoveries(
        self, results: Sequence[DiscoveryResult], auto_apply: bool = False
    ) -> ApplyReport:
        """Add valid targets that are prevalidated (or all valid ones with ``auto_apply``)."""
        report = ApplyReport()
        for result in results:
            provenance = result.source.provenance
            for target in result.targets:
                pair = (result.association, target.target_kind)
                if not TARGET_KIND_PATTERN.match(target.target_kind):
                    report.failures.append(
                        DiscoveryError.invalid_target(result.association, target.target_kind)
                    )
                    continue
                if not (result.prevalidated or auto_apply):
                    report.skipped.append(pair)
                    continue
                try:
                    self.registry.add_target(
                        result.association, target.target_kind, target.display_name, provenance
                    )
                except PolytrackError as e:
                    report.failures.append(e)
                    continue
                report.applied.append(pair)

        logger.info(
            "discovery_applied",
            applied=len(report.applied),
            skipped=len(report.skipped),
            failed=len(report.failures),
        )
        return report

    def apply_association(self, proposal: ProposedAssociation) -> ApplyReport:
        """Register a proposed association with its real field names, then its targets."""
        report = ApplyReport()
        try:
            self.registry.register_association(
                proposal.name,
                discriminator_field=proposal.discriminator_field,
                foreign_id_field=proposal.foreign_id_field,
                source_table=proposal.source_table,
            )
        except PolytrackError as e:
            report.failures.append(e)
            return report

        result = DiscoveryResult(
            association=proposal.name,
            targets=[ProposedTarget(kind, value) for value, kind in proposal.targets.items()],
            confidence=proposal.confidence,
            source=DiscoverySource.FIELD_STATISTICS,
            prevalidated=True,
            table=proposal.source_table,
            field=proposal.discriminator_field,
        )
        report.merge(self.apply_discoveries([result]))
        return report

    # ------------------------------------------------------------------
    # Periodic re-discovery
    # ------------------------------------------------------------------

    def run_once(
        self, relationship_names: Sequence[str] | None = None, auto_apply: bool = False
    ) -> ApplyReport:
        with request_scope():
            results = []
            if relationship_names:
                results.extend(self.discover_from_naming_patterns(relationship_names))
            if self.source is not None:
                results.extend(self.discover_types())
            self.last_report = self.apply_discoveries(results, auto_apply=auto_apply)
        return self.last_report

    def start_periodic(
        self,
        interval: float,
        relationship_names: Sequence[str] | None = None,
        auto_apply: bool = False,
    ) -> None:
        self.stop()
        names = list(relationship_names) if relationship_names else None
        self._periodic = IntervalTask(
            name="discovery",
            interval_sec=interval,
            fn=lambda: self.run_once(names, auto_apply),
        )
        self._periodic.start()
        logger.info("discovery_periodic_started", interval_sec=interval)

    def stop(self) -> None:
        if self._periodic is not None:
            self._periodic.stop()
            self._periodic = None

    @property
    def is_running(self) -> bool:
        return self._periodic is not None and self._periodic.is_running


def _unique_targets(matches: Iterable[tuple[str, str]]) -> list[ProposedTarget]:
    seen: dict[str, ProposedTarget] = {}
    for model_name, relationship in matches:
        kind = model_to_target_kind(model_name)
        seen.setdefault(kind, ProposedTarget(kind, model_name, relationship))
    return list(seen.values())


def _association_name(table: str, field: str) -> str | None:
    """``loggable_type`` -> ``loggable``; a bare ``type`` falls back to the table."""
    prefix = _TYPE_SUFFIX.sub("", field)
    name = _CAMEL_BOUNDARY.sub("_", prefix or table).lower()
    return name if ASSOCIATION_NAME_PATTERN.match(name) else None
