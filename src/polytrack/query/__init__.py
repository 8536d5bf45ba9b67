"""Polymorphic query construction, execution and plan analysis."""

from polytrack.query.aggregation import aggregate_rows, make_spec
from polytrack.query.batch import BatchExecutor, TargetResult
from polytrack.query.builder import PolymorphicQuery, QueryBuilder
from polytrack.query.models import AggregationSpec, PlanAnalysis, QueryRequest
from polytrack.query.plan import Condition, Ordering, QueryPlan

__all__ = [
    "AggregationSpec",
    "BatchExecutor",
    "Condition",
    "Ordering",
    "PlanAnalysis",
    "PolymorphicQuery",
    "QueryBuilder",
    "QueryPlan",
    "QueryRequest",
    "TargetResult",
    "aggregate_rows",
    "make_spec",
]
