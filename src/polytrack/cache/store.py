"""QueryCache - per-process memoization of polymorphic query results.

Thread-safe in-memory cache keyed by the sha256 of a canonical request.

Entry lifecycle: absent -> pending (one in-flight fetch per key) -> present
-> expired or evicted -> absent.

Limits:
- ``max_entries`` and ``memory_limit_mb`` bound the cache; least recently
  accessed entries are evicted in rounds of max(1, 10% of capacity).
- Results larger than ``max_entry_bytes`` (or the whole memory limit) are
  returned but not stored.

Invalidation is triggered by registry changes (subscribed at construction),
explicit ``invalidate`` calls, TTL expiry and memory pressure. Every removal
other than single-entry LRU bookkeeping is announced as ``CacheInvalidated``.

Cache failures never fail a query: ``execute`` falls back to running the
query directly.
"""

from __future__ import annotations

import copy
import threading
import time
from collections import OrderedDict
from collections.abc import Callable, Iterable
from concurrent.futures import Future
from concurrent.futures import TimeoutError as FuturesTimeoutError
from typing import TYPE_CHECKING, Any

import structlog

from polytrack.cache.keys import cache_key, estimate_size
from polytrack.cache.models import CacheEntry, CacheMetrics, WarmingStats
from polytrack.config.constants import EVICTION_FRACTION
from polytrack.config.models import CacheConfig
from polytrack.core.background import IntervalTask
from polytrack.core.errors import CacheError, QueryError
from polytrack.events import (
    CacheInvalidated,
    CacheListener,
    InvalidationReason,
    RegistryChanged,
    notify,
)

if TYPE_CHECKING:
    from polytrack.query.builder import PolymorphicQuery
    from polytrack.query.models import QueryRequest
    from polytrack.registry.ops import AssociationRegistry

logger = structlog.get_logger(__name__)

Rows = list[dict[str, Any]]


class QueryCache:
    """Result cache for built polymorphic queries."""

    def __init__(
        self,
        config: CacheConfig | None = None,
        registry: AssociationRegistry | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config or CacheConfig()
        self._clock = clock
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._inflight: dict[str, Future[Rows]] = {}
        self._lock = threading.RLock()
        self._listeners: list[CacheListener] = []
        self._sweeper: IntervalTask | None = None

        self._hits = 0
        self._misses = 0
        self._evictions = 0
        self._invalidations = 0
        self._bytes = 0
        self._query_time_total = 0.0
        self._query_time_count = 0
        self._warming = WarmingStats()

        self._registry = registry
        if registry is not None:
            registry.subscribe(self._on_registry_changed)

    @property
    def memory_limit_bytes(self) -> int:
        return int(self.config.memory_limit_mb * 1024 * 1024)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, request: QueryRequest) -> bool:
        return cache_key(request) in self._entries

    def __enter__(self) -> QueryCache:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def ttl_for(self, association: str, override: float | None = None) -> float:
        if override is not None:
            return override
        return self.config.association_ttl_sec.get(association, self.config.default_ttl_sec)

    # ------------------------------------------------------------------
    # Get / set
    # ------------------------------------------------------------------

    def get(self, request: QueryRequest) -> Rows | None:
        """Cached rows for ``request``, or None on a miss. Returns a copy."""
        return self._get_by_key(cache_key(request))

    def _get_by_key(self, key: str) -> Rows | None:
        expired: CacheEntry | None = None
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                logger.debug("cache_miss", key=key[:12])
                return None

            now = self._clock()
            if entry.is_expired(now):
                self._remove(key)
                self._misses += 1
                expired = entry
            else:
                try:
                    rows = copy.deepcopy(entry.rows)
                except Exception as e:
                    err = CacheError.corrupt_entry(key, str(e))
                    logger.warning("cache_corrupt_entry", key=key[:12], error=str(err))
                    self._remove(key)
                    self._misses += 1
                    return None
                entry.hit_count += 1
                entry.last_accessed = now
                self._entries.move_to_end(key)
                self._hits += 1
                logger.debug("cache_hit", key=key[:12], association=entry.association)
                return rows

        logger.debug("cache_expired", key=key[:12], association=expired.association)
        self._announce(InvalidationReason.TTL_EXPIRE, [expired])
        return None

    def set(
        self,
        request: QueryRequest,
        rows: Rows,
        duration: float = 0.0,
        ttl: float | None = None,
    ) -> bool:
        """Store rows for ``request``. Returns False if the result was too large."""
        key = cache_key(request)
        size = estimate_size(rows)
        # A single entry may never exceed the whole memory budget
        limit = min(self.config.max_entry_bytes, self.memory_limit_bytes)
        if size > limit:
            logger.info("cache_entry_too_large", key=key[:12], bytes=size, limit=limit)
            return False

        now = self._clock()
        entry = CacheEntry(
            key=key,
            rows=copy.deepcopy(rows),
            association=request.association,
            target_kinds=request.resolved_kinds,
            unrestricted=request.unrestricted,
            created_at=now,
            expires_at=now + self.ttl_for(request.association, ttl),
            last_accessed=now,
            query_duration=duration,
            size_bytes=size,
        )

        with self._lock:
            self._remove(key)
            evicted = self._make_room(size)
            self._entries[key] = entry
            self._bytes += size
            self._query_time_total += duration
            self._query_time_count += 1

        if evicted:
            logger.info("cache_evicted", count=len(evicted), reason="memory-pressure")
            self._announce(InvalidationReason.MEMORY_PRESSURE, evicted)
        return True

    def _make_room(self, incoming: int) -> list[CacheEntry]:
        """Evict LRU entries in rounds until one more entry of ``incoming`` bytes fits."""
        batch = max(1, int(self.config.max_entries * EVICTION_FRACTION))
        evicted: list[CacheEntry] = []
        while self._entries and (
            len(self._entries) + 1 > self.config.max_entries
            or self._bytes + incoming > self.memory_limit_bytes
        ):
            for _ in range(min(batch, len(self._entries))):
                key = next(iter(self._entries))
                evicted.append(self._remove(key))  # type: ignore[arg-type]
                self._evictions += 1
        return evicted

    def _remove(self, key: str) -> CacheEntry | None:
        entry = self._entries.pop(key, None)
        if entry is not None:
            self._bytes -= entry.size_bytes
        return entry

    # ------------------------------------------------------------------
    # Execute-through
    # ------------------------------------------------------------------

    def execute(
        self,
        query: PolymorphicQuery,
        timeout: float | None = None,
        ttl: float | None = None,
    ) -> Rows:
        """Cached rows for ``query``, running it on a miss.

        Concurrent misses on one key share a single fetch. If that fetch
        fails, waiters run the miss path themselves.

        Raises:
            QueryError: The fetch timed out. Nothing is cached.
        """
        request = query.request
        try:
            key = cache_key(request)
        except Exception:
            logger.exception("cache_key_failed", association=request.association)
            return query.execute(timeout=timeout)

        while True:
            try:
                cached = self._get_by_key(key)
            except Exception:
                logger.exception("cache_read_failed", key=key[:12])
                return query.execute(timeout=timeout)
            if cached is not None:
                return cached

            with self._lock:
                pending = self._inflight.get(key)
                if pending is None:
                    pending = Future()
                    self._inflight[key] = pending
                    owner = True
                else:
                    owner = False

            if owner:
                return self._fetch(query, key, pending, timeout, ttl)

            try:
                shared = pending.result(timeout=timeout)
            except FuturesTimeoutError as e:
                raise QueryError.timeout(request.association, timeout or 0.0) from e
            except Exception:
                logger.debug("cache_shared_fetch_failed", key=key[:12])
                continue
            return copy.deepcopy(shared)

    def _fetch(
        self,
        query: PolymorphicQuery,
        key: str,
        pending: Future[Rows],
        timeout: float | None,
        ttl: float | None,
    ) -> Rows:
        start = time.perf_counter()
        try:
            rows = query.execute(timeout=timeout)
        except BaseException as e:
            with self._lock:
                self._inflight.pop(key, None)
            pending.set_exception(e)
            raise
        duration = time.perf_counter() - start

        try:
            self.set(query.request, rows, duration=duration, ttl=ttl)
        except Exception:
            logger.exception("cache_write_failed", key=key[:12])
        finally:
            with self._lock:
                self._inflight.pop(key, None)
            pending.set_result(copy.deepcopy(rows))
        return rows

    # ------------------------------------------------------------------
    # Invalidation
    # ------------------------------------------------------------------

    def invalidate(
        self,
        associations: Iterable[str] | None = None,
        target_kinds: Iterable[str] | None = None,
        keys: Iterable[str] | None = None,
        all: bool = False,  # noqa: A002
        reason: InvalidationReason = InvalidationReason.MANUAL,
    ) -> int:
        """Remove entries matching any criterion. Returns how many were removed."""
        assoc_set = set(associations or ())
        kind_set = set(target_kinds or ())
        key_set = set(keys or ())

        with self._lock:
            doomed = [
                key
                for key, entry in self._entries.items()
                if all
                or key in key_set
                or entry.association in assoc_set
                or kind_set.intersection(entry.target_kinds)
            ]
            removed = [e for e in (self._remove(k) for k in doomed) if e is not None]

        if removed:
            logger.info("cache_invalidated", reason=reason.value, count=len(removed))
            self._announce(reason, removed)
        return len(removed)

    def clear(self) -> int:
        return self.invalidate(all=True)

    def _on_registry_changed(self, event: RegistryChanged) -> None:
        with self._lock:
            doomed = [
                key
                for key, entry in self._entries.items()
                if entry.association == event.association
                and (entry.unrestricted or event.target_kind in entry.target_kinds)
            ]
            removed = [e for e in (self._remove(k) for k in doomed) if e is not None]

        if removed:
            logger.info(
                "cache_invalidated",
                reason=InvalidationReason.REGISTRY_CHANGE.value,
                association=event.association,
                target_kind=event.target_kind,
                change=event.kind.value,
                count=len(removed),
            )
            self._announce(InvalidationReason.REGISTRY_CHANGE, removed)

    def sweep_expired(self) -> int:
        now = self._clock()
        with self._lock:
            doomed = [key for key, entry in self._entries.items() if entry.is_expired(now)]
            removed = [e for e in (self._remove(k) for k in doomed) if e is not None]

        if removed:
            logger.debug("cache_swept", count=len(removed))
            self._announce(InvalidationReason.TTL_EXPIRE, removed)
        return len(removed)

    def _announce(self, reason: InvalidationReason, entries: list[CacheEntry]) -> None:
        with self._lock:
            self._invalidations += len(entries)
            listeners = list(self._listeners)
        event = CacheInvalidated(
            reason=reason,
            keys=tuple(e.key for e in entries),
            associations=tuple(sorted({e.association for e in entries})),
            target_kinds=tuple(sorted({k for e in entries for k in e.target_kinds})),
        )
        notify(listeners, event)

    def on_invalidation(self, listener: CacheListener) -> None:
        with self._lock:
            self._listeners.append(listener)

    def remove_invalidation_listener(self, listener: CacheListener) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    # ------------------------------------------------------------------
    # Warming, metrics, lifecycle
    # ------------------------------------------------------------------

    def warm(
        self,
        queries: Iterable[PolymorphicQuery | tuple[PolymorphicQuery, int]],
        ttl: float | None = None,
    ) -> WarmingStats:
        """Pre-populate, highest priority first. Failures are logged and counted."""
        prioritized = [q if isinstance(q, tuple) else (q, 0) for q in queries]
        prioritized.sort(key=lambda pair: pair[1], reverse=True)

        for query, _priority in prioritized:
            try:
                if query.request in self:
                    with self._lock:
                        self._warming.warming_hits += 1
                    continue
                self.execute(query, ttl=ttl)
            except Exception as e:
                logger.warning("cache_warm_failed", association=query.association, error=str(e))
                with self._lock:
                    self._warming.failed += 1
                continue
            with self._lock:
                self._warming.warmed_queries += 1

        with self._lock:
            self._warming.last_warmed = time.time()
            logger.info(
                "cache_warmed",
                warmed=self._warming.warmed_queries,
                already_cached=self._warming.warming_hits,
                failed=self._warming.failed,
            )
            return copy.copy(self._warming)

    def metrics(self) -> CacheMetrics:
        with self._lock:
            avg = self._query_time_total / self._query_time_count if self._query_time_count else 0.0
            return CacheMetrics(
                hits=self._hits,
                misses=self._misses,
                entries=len(self._entries),
                estimated_bytes=self._bytes,
                evictions=self._evictions,
                invalidations=self._invalidations,
                average_query_time=avg,
                warming=copy.copy(self._warming),
            )

    def start_sweeper(self, interval: float | None = None) -> None:
        if self._sweeper is not None and self._sweeper.is_running:
            return
        self._sweeper = IntervalTask(
            name="cache-sweeper",
            interval_sec=interval if interval is not None else self.config.sweep_interval_sec,
            fn=self.sweep_expired,
        )
        self._sweeper.start()

    def close(self) -> None:
        """Stop the sweeper and detach from the registry. Entries are kept."""
        if self._sweeper is not None:
            self._sweeper.stop()
            self._sweeper = None
        if self._registry is not None:
            self._registry.unsubscribe(self._on_registry_changed)
            self._registry = None
