"""Change notifications emitted by the registry and the query cache.

Listeners are plain callables registered on the emitting instance. Delivery
is synchronous and in emission order; a listener that raises is logged and
skipped.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from enum import Enum
from typing import TypeVar

import structlog

logger = structlog.get_logger(__name__)


class ChangeKind(str, Enum):
    """What happened to a target kind."""

    ADDED = "added"
    REMOVED = "removed"
    DEACTIVATED = "deactivated"
    ACTIVATED = "activated"


class InvalidationReason(str, Enum):
    DATA_CHANGE = "data-change"
    REGISTRY_CHANGE = "registry-change"
    TTL_EXPIRE = "ttl-expire"
    MANUAL = "manual"
    MEMORY_PRESSURE = "memory-pressure"


@dataclass(frozen=True)
class RegistryChanged:
    association: str
    target_kind: str
    kind: ChangeKind
    timestamp: float = field(default_factory=time.time)


@dataclass(frozen=True)
class CacheInvalidated:
    reason: InvalidationReason
    keys: tuple[str, ...]
    associations: tuple[str, ...] = ()
    target_kinds: tuple[str, ...] = ()
    timestamp: float = field(default_factory=time.time)


RegistryListener = Callable[[RegistryChanged], None]
CacheListener = Callable[[CacheInvalidated], None]

E = TypeVar("E")


def notify(listeners: Iterable[Callable[[E], None]], event: E) -> None:
    """Deliver ``event`` to each listener, isolating listener failures."""
    for listener in listeners:
        try:
            listener(event)
        except Exception:
            logger.exception("event_listener_failed", event_type=type(event).__name__)
