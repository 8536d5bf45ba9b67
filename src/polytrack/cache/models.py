"""Cache entry and metrics types."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass
class CacheEntry:
    """One memoized result. Replaced wholesale on refresh."""

    key: str
    rows: list[dict[str, Any]]
    association: str
    target_kinds: tuple[str, ...]
    unrestricted: bool
    created_at: float
    expires_at: float
    last_accessed: float
    query_duration: float = 0.0
    size_bytes: int = 0
    hit_count: int = 0

    @property
    def result_count(self) -> int:
        return len(self.rows)

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


@dataclass
class WarmingStats:
    warmed_queries: int = 0
    warming_hits: int = 0  # already cached when warming reached them
    failed: int = 0
    last_warmed: float | None = None


@dataclass(frozen=True)
class CacheMetrics:
    """Point-in-time snapshot of cache counters."""

    hits: int
    misses: int
    entries: int
    estimated_bytes: int
    evictions: int
    invalidations: int
    average_query_time: float
    warming: WarmingStats = field(default_factory=WarmingStats)

    @property
    def hit_ratio(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total else 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "hit_ratio": round(self.hit_ratio, 4),
            "entries": self.entries,
            "estimated_bytes": self.estimated_bytes,
            "evictions": self.evictions,
            "invalidations": self.invalidations,
            "average_query_time": self.average_query_time,
            "warming": {
                "warmed_queries": self.warming.warmed_queries,
                "warming_hits": self.warming.warming_hits,
                "failed": self.warming.failed,
                "last_warmed": self.warming.last_warmed,
            },
        }
