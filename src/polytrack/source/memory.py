"""In-memory data source backed by lists of dicts."""

from __future__ import annotations

import copy
import threading
from collections import Counter
from collections.abc import Iterable
from typing import Any

from polytrack.query.plan import QueryPlan


class InMemoryDataSource:
    """Tables of plain dict rows.

    ``query_count`` counts ``run_query`` calls so callers can observe cache
    behavior.
    """

    def __init__(self, tables: dict[str, Iterable[dict[str, Any]]] | None = None) -> None:
        self._tables: dict[str, list[dict[str, Any]]] = {
            name: [dict(row) for row in rows] for name, rows in (tables or {}).items()
        }
        self._lock = threading.Lock()
        self.query_count = 0

    def insert(self, table: str, *rows: dict[str, Any]) -> None:
        with self._lock:
            self._tables.setdefault(table, []).extend(dict(row) for row in rows)

    def run_query(self, plan: QueryPlan) -> list[dict[str, Any]]:
        with self._lock:
            self.query_count += 1
            rows = list(self._tables.get(plan.table, ()))

        rows = [row for row in rows if all(c.matches(row) for c in plan.conditions)]
        # Stable sorts applied last-key-first; None values always sort last
        for ordering in reversed(plan.order_by):
            present = [r for r in rows if r.get(ordering.field) is not None]
            missing = [r for r in rows if r.get(ordering.field) is None]
            present.sort(key=lambda r: r[ordering.field], reverse=ordering.descending)
            rows = present + missing

        start = plan.offset or 0
        end = start + plan.limit if plan.limit is not None else None
        return copy.deepcopy(rows[start:end])

    def list_distinct_values(self, table: str, field: str) -> list[tuple[Any, int]]:
        if table not in self._tables:
            raise KeyError(f"Unknown table: {table}")
        counts = Counter(
            row[field] for row in self._tables[table] if row.get(field) is not None
        )
        return counts.most_common()

    def list_tables(self) -> list[str]:
        return list(self._tables)

    def list_fields(self, table: str) -> list[str]:
        if table not in self._tables:
            raise KeyError(f"Unknown table: {table}")
        fields: dict[str, None] = {}
        for row in self._tables[table]:
            fields.update(dict.fromkeys(row))
        return list(fields)
