"""In-process aggregation over fetched rows.

Output keys are ``<field>_<function>``. Grouped output adds ``target_type``
holding the discriminator value the group was partitioned on.
"""

from __future__ import annotations

import math
from collections.abc import Iterable, Sequence
from numbers import Real
from typing import Any

import structlog

from polytrack.core.errors import MalformedAggregation
from polytrack.query.models import AGGREGATE_FUNCTIONS, AggregationSpec

logger = structlog.get_logger(__name__)

UNKNOWN_GROUP = "unknown"


def make_spec(
    fields: Iterable[str],
    functions: Iterable[str],
    group_by_target: bool = False,
) -> AggregationSpec:
    """Validate and freeze an aggregation request.

    Raises:
        MalformedAggregation: Empty field/function lists or unknown functions.
    """
    fields = tuple(fields)
    functions = tuple(fn.lower() for fn in functions)
    if not fields:
        raise MalformedAggregation.empty("field")
    if not functions:
        raise MalformedAggregation.empty("function")
    for fn in functions:
        if fn not in AGGREGATE_FUNCTIONS:
            raise MalformedAggregation.unknown_function(fn)
    return AggregationSpec(fields=fields, functions=functions, group_by_target=group_by_target)


def _as_number(value: Any) -> float | int | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Real):
        if isinstance(value, float) and math.isnan(value):
            return None
        return value  # type: ignore[return-value]
    if isinstance(value, str):
        try:
            parsed = float(value)
        except ValueError:
            return None
        return None if math.isnan(parsed) else parsed
    return None


def numeric_values(rows: Sequence[dict[str, Any]], field: str) -> list[float | int]:
    values = []
    skipped = 0
    for row in rows:
        raw = row.get(field)
        number = _as_number(raw)
        if number is None:
            if raw is not None:
                skipped += 1
            continue
        values.append(number)
    if skipped:
        logger.debug("aggregation_non_numeric_skipped", field=field, skipped=skipped)
    return values


def compute(rows: Sequence[dict[str, Any]], field: str, function: str) -> float | int | None:
    """One aggregate. ``avg``/``min``/``max`` are None when nothing numeric remains."""
    if function == "count":
        return len(rows)
    values = numeric_values(rows, field)
    if function == "sum":
        return sum(values)
    if not values:
        return None
    if function == "avg":
        return sum(values) / len(values)
    if function == "min":
        return min(values)
    if function == "max":
        return max(values)
    raise MalformedAggregation.unknown_function(function)


def _aggregate_group(rows: Sequence[dict[str, Any]], spec: AggregationSpec) -> dict[str, Any]:
    return {
        f"{field}_{fn}": compute(rows, field, fn) for field in spec.fields for fn in spec.functions
    }


def aggregate_rows(
    rows: Sequence[dict[str, Any]],
    spec: AggregationSpec,
    discriminator_field: str,
) -> list[dict[str, Any]]:
    if not spec.group_by_target:
        return [_aggregate_group(rows, spec)]

    groups: dict[str, list[dict[str, Any]]] = {}
    for row in rows:
        groups.setdefault(row.get(discriminator_field) or UNKNOWN_GROUP, []).append(row)

    return [
        {"target_type": value, **_aggregate_group(members, spec)}
        for value, members in groups.items()
    ]
