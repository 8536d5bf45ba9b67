"""Tests for SqlDataSource against SQLite."""

from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path

import pytest
from sqlalchemy import Column, Engine, Integer, MetaData, String, Table, create_engine

from polytrack.query.plan import Condition, Ordering, QueryPlan
from polytrack.source.sql import SqlDataSource


@pytest.fixture
def engine(tmp_path: Path, activity_data: dict[str, list[dict]]) -> Iterator[Engine]:
    eng = create_engine(f"sqlite:///{tmp_path / 'data.db'}")
    metadata = MetaData()
    tables = {
        "activity_logs": Table(
            "activity_logs",
            metadata,
            Column("id", Integer, primary_key=True),
            Column("action", String),
            Column("loggable_type", String),
            Column("loggable_id", Integer),
            Column("duration", Integer, nullable=True),
        ),
        "jobs": Table(
            "jobs", metadata, Column("id", Integer, primary_key=True), Column("title", String)
        ),
        "tasks": Table(
            "tasks", metadata, Column("id", Integer, primary_key=True), Column("title", String)
        ),
        "clients": Table(
            "clients", metadata, Column("id", Integer, primary_key=True), Column("name", String)
        ),
    }
    metadata.create_all(eng)
    with eng.begin() as conn:
        for name, rows in activity_data.items():
            conn.execute(tables[name].insert(), rows)
    yield eng
    eng.dispose()


@pytest.fixture
def sql_source(engine: Engine) -> SqlDataSource:
    return SqlDataSource(engine)


class TestSqlRunQuery:
    """Plans translate to SELECT statements."""

    def test_in_and_eq(self, sql_source: SqlDataSource) -> None:
        plan = QueryPlan(
            table="activity_logs",
            conditions=(
                Condition("loggable_type", "in", ("Job", "Task")),
                Condition("action", "eq", "created"),
            ),
            order_by=(Ordering("id"),),
        )

        rows = sql_source.run_query(plan)

        assert [r["id"] for r in rows] == [1, 3]
        assert rows[0]["loggable_type"] == "Job"

    def test_empty_in_matches_nothing(self, sql_source: SqlDataSource) -> None:
        plan = QueryPlan(table="activity_logs", conditions=(Condition("loggable_type", "in", ()),))

        assert sql_source.run_query(plan) == []

    def test_order_limit_offset(self, sql_source: SqlDataSource) -> None:
        plan = QueryPlan(
            table="activity_logs",
            order_by=(Ordering("duration", "desc"),),
            limit=2,
            offset=1,
        )

        assert [r["id"] for r in sql_source.run_query(plan)] == [1, 3]

    def test_unknown_column_matches_nothing(self, sql_source: SqlDataSource) -> None:
        plan = QueryPlan(table="jobs", conditions=(Condition("missing", "eq", 1),))

        assert sql_source.run_query(plan) == []

    def test_unknown_table_is_empty(self, sql_source: SqlDataSource) -> None:
        assert sql_source.run_query(QueryPlan(table="nope")) == []

    def test_unknown_table_fields_raise(self, sql_source: SqlDataSource) -> None:
        with pytest.raises(KeyError):
            sql_source.list_fields("nope")


class TestSqlIntrospection:
    def test_distinct_values(self, sql_source: SqlDataSource) -> None:
        values = dict(sql_source.list_distinct_values("activity_logs", "loggable_type"))

        assert values == {"Job": 2, "Task": 1, "Client": 1}

    def test_tables_and_fields(self, sql_source: SqlDataSource) -> None:
        assert set(sql_source.list_tables()) == {"activity_logs", "jobs", "tasks", "clients"}
        assert sql_source.list_fields("jobs") == ["id", "title"]
