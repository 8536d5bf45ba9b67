"""Data sources for discovery and query execution."""

from polytrack.source.base import DataSource
from polytrack.source.memory import InMemoryDataSource
from polytrack.source.sql import SqlDataSource

__all__ = ["DataSource", "InMemoryDataSource", "SqlDataSource"]
