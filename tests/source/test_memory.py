"""Tests for InMemoryDataSource."""

from __future__ import annotations

import pytest

from polytrack.query.plan import Condition, Ordering, QueryPlan
from polytrack.source.base import DataSource
from polytrack.source.memory import InMemoryDataSource


class TestRunQuery:
    """Plan interpretation."""

    def test_satisfies_protocol(self, source: InMemoryDataSource) -> None:
        assert isinstance(source, DataSource)

    def test_conditions_are_conjunctive(self, source: InMemoryDataSource) -> None:
        plan = QueryPlan(
            table="activity_logs",
            conditions=(
                Condition("loggable_type", "in", ("Job", "Task")),
                Condition("action", "eq", "created"),
            ),
        )

        rows = source.run_query(plan)

        assert [r["id"] for r in rows] == [1, 3]

    @pytest.mark.parametrize(
        ("op", "value", "expected"),
        [
            ("ne", "Job", [3, 4]),
            ("lt", 5, [3]),
            ("lte", 5, [1, 3]),
            ("gt", 5, [2]),
            ("gte", 5, [1, 2]),
        ],
    )
    def test_comparison_operators(
        self, source: InMemoryDataSource, op: str, value: object, expected: list[int]
    ) -> None:
        field = "loggable_type" if op == "ne" else "duration"
        plan = QueryPlan(table="activity_logs", conditions=(Condition(field, op, value),))

        assert [r["id"] for r in source.run_query(plan)] == expected

    def test_order_limit_offset(self, source: InMemoryDataSource) -> None:
        plan = QueryPlan(
            table="activity_logs",
            order_by=(Ordering("duration", "desc"),),
            limit=2,
            offset=1,
        )

        assert [r["id"] for r in source.run_query(plan)] == [1, 3]

    def test_nulls_sort_last(self, source: InMemoryDataSource) -> None:
        plan = QueryPlan(table="activity_logs", order_by=(Ordering("duration"),))

        assert [r["id"] for r in source.run_query(plan)] == [3, 1, 2, 4]

    def test_rows_are_copies(self, source: InMemoryDataSource) -> None:
        source.run_query(QueryPlan(table="jobs"))[0]["title"] = "changed"

        assert source.run_query(QueryPlan(table="jobs"))[0]["title"] == "Install"

    def test_unknown_table_is_empty(self, source: InMemoryDataSource) -> None:
        assert source.run_query(QueryPlan(table="nope")) == []

    def test_query_count(self, source: InMemoryDataSource) -> None:
        source.run_query(QueryPlan(table="jobs"))
        source.run_query(QueryPlan(table="tasks"))

        assert source.query_count == 2


class TestIntrospection:
    def test_distinct_values_with_counts(self, source: InMemoryDataSource) -> None:
        values = dict(source.list_distinct_values("activity_logs", "loggable_type"))

        assert values == {"Job": 2, "Task": 1, "Client": 1}

    def test_distinct_values_skip_nulls(self, source: InMemoryDataSource) -> None:
        values = dict(source.list_distinct_values("activity_logs", "duration"))

        assert None not in values

    def test_tables_and_fields(self, source: InMemoryDataSource) -> None:
        assert source.list_tables() == ["activity_logs", "jobs", "tasks", "clients"]
        assert source.list_fields("jobs") == ["id", "title"]

    def test_unknown_table_fields_raise(self, source: InMemoryDataSource) -> None:
        with pytest.raises(KeyError):
            source.list_fields("nope")

    def test_insert(self) -> None:
        src = InMemoryDataSource()
        src.insert("jobs", {"id": 1}, {"id": 2})

        assert len(src.run_query(QueryPlan(table="jobs"))) == 2
