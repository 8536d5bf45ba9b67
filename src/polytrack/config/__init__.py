"""Config module exports."""

from polytrack.config.loader import load_config
from polytrack.config.models import (
    CacheConfig,
    DiscoveryConfig,
    LoggingConfig,
    LogOutputConfig,
    PolytrackConfig,
    QueryConfig,
    RegistryConfig,
)

__all__ = [
    "load_config",
    "CacheConfig",
    "DiscoveryConfig",
    "LoggingConfig",
    "LogOutputConfig",
    "PolytrackConfig",
    "QueryConfig",
    "RegistryConfig",
]
