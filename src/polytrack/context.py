"""Application context wiring the registry, discovery, queries and cache."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

import structlog

from polytrack.cache.store import QueryCache
from polytrack.config.models import PolytrackConfig
from polytrack.core.logging import request_scope
from polytrack.discovery.engine import DiscoveryEngine
from polytrack.query.batch import BatchExecutor
from polytrack.query.builder import QueryBuilder
from polytrack.registry.ops import AssociationRegistry
from polytrack.registry.stores import ConfigStore, store_for_path

if TYPE_CHECKING:
    from polytrack.source.base import DataSource

logger = structlog.get_logger(__name__)


@dataclass
class PolytrackContext:
    """One registry, one cache and the engines that share them."""

    config: PolytrackConfig
    registry: AssociationRegistry
    source: DataSource
    discovery: DiscoveryEngine
    cache: QueryCache

    @classmethod
    def create(
        cls,
        source: DataSource,
        config: PolytrackConfig | None = None,
        store: ConfigStore | None = None,
    ) -> PolytrackContext:
        """Wire everything together and load the registry.

        Args:
            source: Data source for discovery and query execution
            config: Loaded configuration (defaults when None)
            store: Registry store; derived from ``registry.config_path`` when None
        """
        config = config or PolytrackConfig()
        if store is None:
            store = store_for_path(config.registry.config_path, config.registry.keep_backups)

        registry = AssociationRegistry(store)
        registry.initialize()
        ctx = cls(
            config=config,
            registry=registry,
            source=source,
            discovery=DiscoveryEngine(registry, source, config.discovery),
            cache=QueryCache(config.cache, registry=registry),
        )
        logger.info("polytrack_context_created", associations=len(registry.association_names()))
        return ctx

    def query(self, association: str) -> QueryBuilder:
        return QueryBuilder(self.registry, self.source, association, self.config.query)

    def batch(self, template: QueryBuilder | str) -> BatchExecutor:
        if isinstance(template, str):
            template = self.query(template)
        return BatchExecutor(template)

    def execute(self, builder: QueryBuilder, timeout: float | None = None) -> list[dict]:
        """Build and run through the cache under one request ID."""
        with request_scope():
            return self.cache.execute(builder.build(), timeout=timeout)

    def close(self) -> None:
        self.discovery.stop()
        self.cache.close()
