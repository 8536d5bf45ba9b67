"""Immutable values produced by the query builder."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal

from polytrack.query.plan import Condition, Ordering

AggregateFunction = Literal["count", "sum", "avg", "min", "max"]
AGGREGATE_FUNCTIONS: frozenset[str] = frozenset({"count", "sum", "avg", "min", "max"})

JoinStrategy = Literal["single", "batch"]


@dataclass(frozen=True)
class AggregationSpec:
    fields: tuple[str, ...]
    functions: tuple[str, ...]
    group_by_target: bool = False

    def canonical(self) -> dict[str, Any]:
        return {
            "fields": sorted(self.fields),
            "functions": sorted(self.functions),
            "group_by_target": self.group_by_target,
        }


@dataclass(frozen=True)
class QueryRequest:
    """A fully validated polymorphic query.

    ``target_filter`` is the caller's explicit restriction (None means all
    valid kinds); ``resolved_kinds`` is what the query actually covers after
    consulting the registry at build time.
    """

    association: str
    source_table: str
    discriminator_field: str
    foreign_id_field: str
    resolved_kinds: tuple[str, ...]
    discriminator_values: tuple[str, ...]
    target_filter: tuple[str, ...] | None = None
    include_inactive: bool = False
    conditions: tuple[Condition, ...] = ()
    order_by: tuple[Ordering, ...] = ()
    limit: int | None = None
    offset: int | None = None
    eager_load: bool = False
    aggregation: AggregationSpec | None = None

    @property
    def unrestricted(self) -> bool:
        return self.target_filter is None

    def canonical(self) -> dict[str, Any]:
        """Order-independent representation used for cache keys.

        The resolved kinds are part of the key so a query built before a
        registry change never shares an entry with one built after it.
        """
        return {
            "association": self.association,
            "targets": sorted(self.target_filter) if self.target_filter is not None else None,
            "kinds": sorted(self.resolved_kinds),
            "include_inactive": self.include_inactive,
            "conditions": sorted((c.canonical() for c in self.conditions), key=repr),
            "order_by": [[o.field, o.direction] for o in self.order_by],
            "limit": self.limit,
            "offset": self.offset,
            "eager_load": self.eager_load,
            "aggregation": self.aggregation.canonical() if self.aggregation else None,
        }


@dataclass(frozen=True)
class PlanAnalysis:
    source_table: str
    association: str
    target_kinds: tuple[str, ...]
    estimated_cost: int
    join_strategy: JoinStrategy
    hints: tuple[str, ...] = field(default_factory=tuple)
