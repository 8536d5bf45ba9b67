"""Query result cache."""

from polytrack.cache.keys import cache_key, canonical_request, estimate_size
from polytrack.cache.models import CacheEntry, CacheMetrics, WarmingStats
from polytrack.cache.store import QueryCache

__all__ = [
    "CacheEntry",
    "CacheMetrics",
    "QueryCache",
    "WarmingStats",
    "cache_key",
    "canonical_request",
    "estimate_size",
]
