"""Concurrent per-kind execution of a query template."""

from __future__ import annotations

import contextvars
from collections.abc import Iterable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any

import structlog

from polytrack.core.errors import PolytrackError
from polytrack.query.builder import PolymorphicQuery, QueryBuilder

logger = structlog.get_logger(__name__)


@dataclass
class TargetResult:
    """Outcome for one target kind. ``error`` is set instead of raising."""

    rows: list[dict[str, Any]] = field(default_factory=list)
    count: int | None = None
    error: Exception | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class BatchExecutor:
    """Runs one query per target kind on a thread pool.

    The template builder supplies everything except the target filter. A
    failure for one kind is recorded on its ``TargetResult`` and never
    cancels the others.
    """

    def __init__(self, template: QueryBuilder, max_workers: int | None = None) -> None:
        self.template = template
        self.max_workers = max_workers or template.config.batch_max_workers

    def execute_for_targets(
        self,
        kinds: Iterable[str],
        with_counts: bool = False,
        timeout: float | None = None,
    ) -> dict[str, TargetResult]:
        """Execute for each kind concurrently.

        Raises:
            InvalidTarget: Any kind is not valid. Checked before anything runs.
        """
        queries: dict[str, PolymorphicQuery] = {
            kind: self.template.copy().for_target(kind).build() for kind in dict.fromkeys(kinds)
        }
        if not queries:
            return {}

        results: dict[str, TargetResult] = {}
        workers = min(self.max_workers, len(queries))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="polytrack-batch") as pool:
            futures = {
                kind: pool.submit(contextvars.copy_context().run, query.execute, timeout)
                for kind, query in queries.items()
            }
            for kind, future in futures.items():
                try:
                    rows = future.result()
                except PolytrackError as e:
                    logger.warning("batch_target_failed", kind=kind, error=str(e))
                    results[kind] = TargetResult(error=e)
                    continue
                except Exception as e:
                    logger.exception("batch_target_failed", kind=kind)
                    results[kind] = TargetResult(error=e)
                    continue
                results[kind] = TargetResult(rows=rows, count=len(rows) if with_counts else None)

        logger.debug(
            "batch_executed",
            association=self.template.association,
            kinds=list(queries),
            failed=[k for k, r in results.items() if not r.ok],
        )
        return results
