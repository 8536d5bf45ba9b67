"""Executable query plans handed to a data source.

A plan is a single-table fetch: conjunctive conditions, ordering, and an
optional limit/offset window. Plans are plain frozen values so that every
data source can interpret them the same way.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Literal

from polytrack.core.errors import QueryError

Operator = Literal["eq", "ne", "in", "lt", "lte", "gt", "gte"]
Direction = Literal["asc", "desc"]

OPERATORS: frozenset[str] = frozenset({"eq", "ne", "in", "lt", "lte", "gt", "gte"})

_OP_ALIASES = {
    "=": "eq",
    "==": "eq",
    "!=": "ne",
    "<": "lt",
    "<=": "lte",
    ">": "gt",
    ">=": "gte",
}


def normalize_operator(field: str, op: str) -> str:
    """Map symbolic operators to their names and reject unknown ones."""
    name = _OP_ALIASES.get(op, op)
    if name not in OPERATORS:
        raise QueryError.invalid_condition(field, op)
    return name


@dataclass(frozen=True)
class Condition:
    field: str
    op: str
    value: Any

    def matches(self, row: dict[str, Any]) -> bool:
        """Evaluate against an in-memory row. Missing fields never match."""
        if self.field not in row:
            return False
        actual = row[self.field]
        if self.op == "eq":
            return bool(actual == self.value)
        if self.op == "ne":
            return bool(actual != self.value)
        if self.op == "in":
            return actual in self.value
        if actual is None:
            return False
        try:
            if self.op == "lt":
                return bool(actual < self.value)
            if self.op == "lte":
                return bool(actual <= self.value)
            if self.op == "gt":
                return bool(actual > self.value)
            if self.op == "gte":
                return bool(actual >= self.value)
        except TypeError:
            return False
        raise QueryError.invalid_condition(self.field, self.op)

    def canonical(self) -> list[Any]:
        value = sorted(self.value, key=repr) if self.op == "in" else self.value
        return [self.field, self.op, value]


@dataclass(frozen=True)
class Ordering:
    field: str
    direction: Direction = "asc"

    @property
    def descending(self) -> bool:
        return self.direction == "desc"


@dataclass(frozen=True)
class QueryPlan:
    """One fetch against one table."""

    table: str
    conditions: tuple[Condition, ...] = ()
    order_by: tuple[Ordering, ...] = ()
    limit: int | None = None
    offset: int | None = None
