"""SQL data source over SQLAlchemy Core.

Tables are reflected lazily and cached per instance. Plans translate to a
single ``SELECT`` with ``WHERE``/``ORDER BY``/``LIMIT``/``OFFSET``.
"""

from __future__ import annotations

import threading
from typing import Any

import structlog
from sqlalchemy import Column, Engine, MetaData, Table, func, inspect, select
from sqlalchemy.exc import NoSuchTableError
from sqlalchemy.sql.elements import ColumnElement

from polytrack.core.errors import QueryError
from polytrack.query.plan import Condition, QueryPlan

logger = structlog.get_logger(__name__)


def _clause(column: Column[Any], condition: Condition) -> ColumnElement[bool]:
    op, value = condition.op, condition.value
    if op == "eq":
        return column.is_(None) if value is None else column == value
    if op == "ne":
        return column.is_not(None) if value is None else column != value
    if op == "in":
        return column.in_(list(value))
    if op == "lt":
        return column < value
    if op == "lte":
        return column <= value
    if op == "gt":
        return column > value
    if op == "gte":
        return column >= value
    raise QueryError.invalid_condition(condition.field, op)


class SqlDataSource:
    """Reads records through an existing SQLAlchemy engine."""

    def __init__(self, engine: Engine) -> None:
        self.engine = engine
        self._metadata = MetaData()
        self._tables: dict[str, Table] = {}
        self._lock = threading.Lock()

    def _table(self, name: str) -> Table:
        with self._lock:
            table = self._tables.get(name)
            if table is None:
                try:
                    table = Table(name, self._metadata, autoload_with=self.engine)
                except NoSuchTableError as e:
                    raise KeyError(f"Unknown table: {name}") from e
                self._tables[name] = table
            return table

    def run_query(self, plan: QueryPlan) -> list[dict[str, Any]]:
        try:
            table = self._table(plan.table)
        except KeyError:
            logger.debug("sql_source_unknown_table", table=plan.table)
            return []
        stmt = select(table)

        for condition in plan.conditions:
            if condition.field not in table.c:
                # Missing columns never match, same as the in-memory source
                return []
            stmt = stmt.where(_clause(table.c[condition.field], condition))
        for ordering in plan.order_by:
            if ordering.field not in table.c:
                continue
            column = table.c[ordering.field]
            stmt = stmt.order_by(
                column.desc().nulls_last() if ordering.descending else column.asc().nulls_last()
            )
        if plan.limit is not None:
            stmt = stmt.limit(plan.limit)
        if plan.offset:
            stmt = stmt.offset(plan.offset)

        with self.engine.connect() as conn:
            rows = [dict(row) for row in conn.execute(stmt).mappings()]
        logger.debug("sql_source_query", table=plan.table, rows=len(rows))
        return rows

    def list_distinct_values(self, table: str, field: str) -> list[tuple[Any, int]]:
        tbl = self._table(table)
        column = tbl.c[field]
        count = func.count().label("n")
        stmt = (
            select(column, count)
            .where(column.is_not(None))
            .group_by(column)
            .order_by(count.desc())
        )
        with self.engine.connect() as conn:
            return [(row[0], int(row[1])) for row in conn.execute(stmt)]

    def list_tables(self) -> list[str]:
        return list(inspect(self.engine).get_table_names())

    def list_fields(self, table: str) -> list[str]:
        return [c.name for c in self._table(table).columns]
