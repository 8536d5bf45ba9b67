"""Root conftest.py for test configuration.

Ensures local src/ directory takes priority over any installed packages, and
provides the shared registry / data source / cache fixtures.
"""

import sys
from collections.abc import Iterator
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

# Insert local src directory at the beginning of sys.path
# This ensures that the local polytrack package is used, not any installed one
_src_dir = Path(__file__).parent.parent / "src"
if str(_src_dir) not in sys.path:
    sys.path.insert(0, str(_src_dir))

# Force reimport of polytrack modules if already imported
for module_name in list(sys.modules.keys()):
    if module_name.startswith("polytrack"):
        del sys.modules[module_name]

from polytrack.cache.store import QueryCache  # noqa: E402
from polytrack.registry.ops import AssociationRegistry  # noqa: E402
from polytrack.source.memory import InMemoryDataSource  # noqa: E402


class FakeClock:
    """Manually advanced monotonic clock for TTL tests."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeDateClock:
    """Manually advanced UTC clock for registry timestamps."""

    def __init__(self) -> None:
        self.now = datetime(2025, 1, 1, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


def activity_rows() -> dict[str, list[dict]]:
    return {
        "activity_logs": [
            {
                "id": 1,
                "action": "created",
                "loggable_type": "Job",
                "loggable_id": 10,
                "duration": 5,
            },
            {
                "id": 2,
                "action": "updated",
                "loggable_type": "Job",
                "loggable_id": 11,
                "duration": 7,
            },
            {
                "id": 3,
                "action": "created",
                "loggable_type": "Task",
                "loggable_id": 20,
                "duration": 3,
            },
            {
                "id": 4,
                "action": "deleted",
                "loggable_type": "Client",
                "loggable_id": 30,
                "duration": None,
            },
        ],
        "jobs": [
            {"id": 10, "title": "Install"},
            {"id": 11, "title": "Repair"},
        ],
        "tasks": [
            {"id": 20, "title": "Call back"},
        ],
        "clients": [
            {"id": 30, "name": "Acme"},
        ],
    }


@pytest.fixture
def activity_data() -> dict[str, list[dict]]:
    return activity_rows()


@pytest.fixture
def source() -> InMemoryDataSource:
    return InMemoryDataSource(activity_rows())


@pytest.fixture
def registry() -> AssociationRegistry:
    """Registry with ``loggable`` over activity_logs targeting jobs and tasks."""
    reg = AssociationRegistry()
    reg.register_association("loggable", source_table="activity_logs")
    reg.add_target("loggable", "jobs", "Job")
    reg.add_target("loggable", "tasks", "Task")
    return reg


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def date_clock() -> FakeDateClock:
    return FakeDateClock()


@pytest.fixture
def cache(registry: AssociationRegistry, clock: FakeClock) -> Iterator[QueryCache]:
    qc = QueryCache(registry=registry, clock=clock)
    yield qc
    qc.close()
