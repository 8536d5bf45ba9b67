"""Fluent construction and execution of polymorphic queries.

Usage::

    query = (
        QueryBuilder(registry, source, "loggable")
        .for_targets(["jobs", "tasks"])
        .where("action", "created")
        .order_by("created_at", "desc")
        .limit(50)
        .build()
    )
    rows = query.execute(timeout=2.0)

Target kinds are checked against the registry in ``build()``. The resulting
``PolymorphicQuery`` carries an immutable ``QueryRequest`` and can be executed
repeatedly, directly or through ``QueryCache.execute``.
"""

from __future__ import annotations

import contextvars
import copy
import time
from collections.abc import Iterable
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeoutError
from typing import TYPE_CHECKING, Any

import structlog

from polytrack.config.constants import (
    BATCH_JOIN_THRESHOLD,
    COST_PER_AGGREGATE_FIELD,
    COST_PER_EAGER_TARGET,
    COST_PER_TARGET,
)
from polytrack.config.models import QueryConfig
from polytrack.core.errors import InvalidTarget, QueryError
from polytrack.query.aggregation import aggregate_rows, make_spec
from polytrack.query.models import PlanAnalysis, QueryRequest
from polytrack.query.plan import Condition, Direction, Ordering, QueryPlan, normalize_operator

if TYPE_CHECKING:
    from polytrack.registry.ops import AssociationRegistry
    from polytrack.source.base import DataSource

logger = structlog.get_logger(__name__)

_MISSING = object()
TARGET_KEY = "target"


class PolymorphicQuery:
    """A built query bound to its data source."""

    def __init__(
        self,
        request: QueryRequest,
        source: DataSource,
        config: QueryConfig | None = None,
        batch_size: int | None = None,
    ) -> None:
        self.request = request
        self.source = source
        self.config = config or QueryConfig()
        self.batch_size = batch_size

    @property
    def association(self) -> str:
        return self.request.association

    @property
    def plan(self) -> QueryPlan:
        req = self.request
        scope = Condition(req.discriminator_field, "in", req.discriminator_values)
        return QueryPlan(
            table=req.source_table,
            conditions=(scope, *req.conditions),
            order_by=req.order_by,
            limit=req.limit,
            offset=req.offset,
        )

    def execute(self, timeout: float | None = None) -> list[dict[str, Any]]:
        """Run the query.

        Args:
            timeout: Seconds to wait. Falls back to ``query.default_timeout_sec``;
                None waits indefinitely.

        Raises:
            QueryError: QUERY_TIMEOUT if the fetch did not finish in time.
        """
        if timeout is None:
            timeout = self.config.default_timeout_sec
        if timeout is None:
            return self._run()

        ctx = contextvars.copy_context()
        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="polytrack-query")
        try:
            future = executor.submit(ctx.run, self._run)
            try:
                return future.result(timeout=timeout)
            except FuturesTimeoutError as e:
                future.cancel()
                logger.warning(
                    "query_timeout", association=self.association, timeout_sec=timeout
                )
                raise QueryError.timeout(self.association, timeout) from e
        finally:
            # Abandon a hung fetch rather than block the caller on it
            executor.shutdown(wait=False)

    def count(self) -> int:
        """Total matching rows, ignoring limit and offset."""
        plan = self.plan
        unpaged = QueryPlan(table=plan.table, conditions=plan.conditions, order_by=())
        return len(self.source.run_query(unpaged))

    def analyze(self) -> PlanAnalysis:
        req = self.request
        kinds = req.resolved_kinds
        cost = len(kinds) * COST_PER_TARGET
        strategy = "single"
        hints: list[str] = []

        if req.eager_load:
            cost += len(kinds) * COST_PER_EAGER_TARGET
            if len(kinds) > BATCH_JOIN_THRESHOLD:
                strategy = "batch"
                hints.append("Consider batching queries for a large number of target kinds")

        if req.aggregation is not None:
            cost += len(req.aggregation.fields) * COST_PER_AGGREGATE_FIELD
            if req.aggregation.group_by_target:
                hints.append(
                    f"Grouping by target kind benefits from an index on '{req.discriminator_field}'"
                )

        if self.batch_size is not None and self.batch_size > self.config.large_batch_threshold:
            hints.append("Large batch sizes may cause memory pressure, consider smaller batches")

        if req.unrestricted and len(kinds) > self.config.restrict_hint_threshold:
            hints.append("Consider restricting target kinds to improve performance")

        return PlanAnalysis(
            source_table=req.source_table,
            association=req.association,
            target_kinds=kinds,
            estimated_cost=cost,
            join_strategy=strategy,
            hints=tuple(hints),
        )

    def _run(self) -> list[dict[str, Any]]:
        start = time.perf_counter()
        req = self.request
        rows = self.source.run_query(self.plan)
        if req.eager_load:
            self._attach_targets(rows)
        if req.aggregation is not None:
            rows = aggregate_rows(rows, req.aggregation, req.discriminator_field)

        logger.debug(
            "query_executed",
            association=req.association,
            target_kinds=list(req.resolved_kinds),
            rows=len(rows),
            duration_ms=round((time.perf_counter() - start) * 1000, 2),
        )
        return rows

    def _attach_targets(self, rows: list[dict[str, Any]]) -> None:
        """Merge each row's target record under ``target`` (None when missing)."""
        req = self.request
        disc, fid = req.discriminator_field, req.foreign_id_field
        kind_by_value = dict(zip(req.discriminator_values, req.resolved_kinds, strict=True))

        ids_by_value: dict[str, set[Any]] = {}
        for row in rows:
            value, target_id = row.get(disc), row.get(fid)
            if value in kind_by_value and target_id is not None:
                ids_by_value.setdefault(value, set()).add(target_id)

        found: dict[tuple[str, Any], dict[str, Any]] = {}
        for value, ids in ids_by_value.items():
            plan = QueryPlan(
                table=kind_by_value[value],
                conditions=(Condition("id", "in", tuple(sorted(ids, key=repr))),),
            )
            for record in self.source.run_query(plan):
                found[(value, record.get("id"))] = record

        for row in rows:
            row[TARGET_KEY] = found.get((row.get(disc), row.get(fid)))


class QueryBuilder:
    """Fluent builder for a single association."""

    def __init__(
        self,
        registry: AssociationRegistry,
        source: DataSource,
        association: str,
        config: QueryConfig | None = None,
    ) -> None:
        self.registry = registry
        self.source = source
        self.association = association
        self.config = config or QueryConfig()

        self._targets: list[str] | None = None
        self._include_inactive = False
        self._conditions: list[Condition] = []
        # None as the field means "order by the discriminator"
        self._order_by: list[tuple[str | None, Direction]] = []
        self._limit: int | None = None
        self._offset: int | None = None
        self._batch_size: int | None = None
        self._eager = False
        self._aggregation: tuple[tuple[str, ...], tuple[str, ...], bool] | None = None

    def copy(self) -> QueryBuilder:
        return copy.deepcopy(self, {id(self.registry): self.registry, id(self.source): self.source})

    # ------------------------------------------------------------------
    # Fluent setters
    # ------------------------------------------------------------------

    def for_targets(self, kinds: Iterable[str]) -> QueryBuilder:
        self._targets = list(dict.fromkeys(kinds))
        return self

    def for_target(self, kind: str) -> QueryBuilder:
        return self.for_targets([kind])

    def include_inactive(self, include: bool = True) -> QueryBuilder:
        self._include_inactive = include
        return self

    def where(self, field: str, op_or_value: Any, value: Any = _MISSING) -> QueryBuilder:
        """``where(field, value)`` for equality, ``where(field, op, value)`` otherwise."""
        if value is _MISSING:
            op, value = "eq", op_or_value
        else:
            op = normalize_operator(field, op_or_value)
        if op == "in":
            if isinstance(value, (str, bytes)) or not isinstance(value, Iterable):
                raise QueryError.invalid_condition(field, op)
            value = tuple(value)
        self._conditions.append(Condition(field, op, value))
        return self

    def order_by(self, field: str, direction: Direction = "asc") -> QueryBuilder:
        self._order_by.append((field, _direction(direction)))
        return self

    def order_by_target(self, direction: Direction = "asc") -> QueryBuilder:
        self._order_by.append((None, _direction(direction)))
        return self

    def limit(self, n: int) -> QueryBuilder:
        if n < 0:
            raise ValueError(f"limit must be non-negative, got {n}")
        self._limit = n
        return self

    def offset(self, n: int) -> QueryBuilder:
        if n < 0:
            raise ValueError(f"offset must be non-negative, got {n}")
        self._offset = n
        return self

    def batched(self, size: int) -> QueryBuilder:
        """Limit to ``size`` rows; plan analysis flags oversized batches."""
        self._batch_size = size
        return self.limit(size)

    def with_targets(self, eager: bool = True) -> QueryBuilder:
        self._eager = eager
        return self

    def aggregate(
        self,
        fields: Iterable[str],
        functions: Iterable[str],
        group_by_target: bool = False,
    ) -> QueryBuilder:
        self._aggregation = (tuple(fields), tuple(functions), group_by_target)
        return self

    # ------------------------------------------------------------------
    # Terminal operations
    # ------------------------------------------------------------------

    def build(self) -> PolymorphicQuery:
        """Validate against the registry and freeze into a query.

        Raises:
            UnknownAssociation: The association is not registered.
            InvalidTarget: A requested kind is unregistered, or inactive
                without ``include_inactive()``.
            MalformedAggregation: Unknown function or empty field/function list.
            QueryError: The association has no source table.
        """
        assoc = self.registry.require_association(self.association)
        valid = assoc.target_kinds(include_inactive=self._include_inactive)

        if self._targets is None:
            resolved = tuple(valid)
        else:
            for kind in self._targets:
                if kind in valid:
                    continue
                if kind in assoc.targets:
                    raise InvalidTarget.inactive(self.association, kind)
                raise InvalidTarget.not_registered(self.association, kind)
            resolved = tuple(self._targets)

        if not assoc.source_table:
            raise QueryError.missing_source_table(self.association)

        aggregation = make_spec(*self._aggregation) if self._aggregation is not None else None

        request = QueryRequest(
            association=self.association,
            source_table=assoc.source_table,
            discriminator_field=assoc.discriminator_field,
            foreign_id_field=assoc.foreign_id_field,
            resolved_kinds=resolved,
            discriminator_values=tuple(assoc.targets[k].display_name for k in resolved),
            target_filter=tuple(self._targets) if self._targets is not None else None,
            include_inactive=self._include_inactive,
            conditions=tuple(self._conditions),
            order_by=tuple(
                Ordering(field or assoc.discriminator_field, direction)
                for field, direction in self._order_by
            ),
            limit=self._limit,
            offset=self._offset,
            eager_load=self._eager,
            aggregation=aggregation,
        )
        return PolymorphicQuery(request, self.source, self.config, batch_size=self._batch_size)

    def execute(self, timeout: float | None = None) -> list[dict[str, Any]]:
        return self.build().execute(timeout=timeout)

    def analyze(self) -> PlanAnalysis:
        return self.build().analyze()


def _direction(direction: str) -> Direction:
    lowered = direction.lower()
    if lowered not in ("asc", "desc"):
        raise ValueError(f"direction must be 'asc' or 'desc', got {direction!r}")
    return lowered  # type: ignore[return-value]
