"""Data-access boundary used by discovery and query execution."""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

from polytrack.query.plan import QueryPlan


@runtime_checkable
class DataSource(Protocol):
    """Read-only access to the underlying record store."""

    def run_query(self, plan: QueryPlan) -> list[dict[str, Any]]:
        """Execute a single-table plan and return matching rows as dicts."""
        ...

    def list_distinct_values(self, table: str, field: str) -> list[tuple[Any, int]]:
        """Distinct non-null values of ``field`` with their record counts."""
        ...

    def list_tables(self) -> list[str]: ...

    def list_fields(self, table: str) -> list[str]: ...
