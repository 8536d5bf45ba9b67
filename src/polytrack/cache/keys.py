"""Canonical cache keys for query requests."""

from __future__ import annotations

import hashlib
import json
from typing import Any

from polytrack.query.models import QueryRequest

_COMPACT = (",", ":")


def canonical_request(request: QueryRequest) -> str:
    """Byte-stable JSON for a request. Logically equal requests serialize equally."""
    return json.dumps(request.canonical(), sort_keys=True, separators=_COMPACT, default=str)


def cache_key(request: QueryRequest) -> str:
    return hashlib.sha256(canonical_request(request).encode("utf-8")).hexdigest()


def estimate_size(rows: Any) -> int:
    """Serialized size in bytes. A rough footprint, not RSS."""
    return len(json.dumps(rows, separators=_COMPACT, default=str).encode("utf-8"))
