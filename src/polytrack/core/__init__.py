"""Core module exports."""

from polytrack.core.background import IntervalTask
from polytrack.core.errors import (
    CacheError,
    ConfigError,
    DiscoveryError,
    ErrorCode,
    InternalError,
    InvalidTarget,
    MalformedAggregation,
    PersistenceError,
    PolytrackError,
    QueryError,
    RegistryError,
    UnknownAssociation,
)
from polytrack.core.logging import (
    clear_request_id,
    configure_logging,
    get_logger,
    get_request_id,
    request_scope,
    set_request_id,
)

__all__ = [
    # Errors
    "CacheError",
    "ConfigError",
    "DiscoveryError",
    "ErrorCode",
    "InternalError",
    "InvalidTarget",
    "MalformedAggregation",
    "PersistenceError",
    "PolytrackError",
    "QueryError",
    "RegistryError",
    "UnknownAssociation",
    # Logging
    "clear_request_id",
    "configure_logging",
    "get_logger",
    "get_request_id",
    "request_scope",
    "set_request_id",
    # Background
    "IntervalTask",
]
