"""Tests for registry persistence stores."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
import yaml

from polytrack.core.errors import ErrorCode, PersistenceError
from polytrack.registry.models import RegistryConfiguration
from polytrack.registry.ops import AssociationRegistry
from polytrack.registry.stores import (
    FileConfigStore,
    MemoryConfigStore,
    SqlConfigStore,
    store_for_path,
)


def _populated(*kinds: str) -> RegistryConfiguration:
    registry = AssociationRegistry()
    registry.register_association("loggable", source_table="activity_logs")
    for kind in kinds:
        registry.add_target("loggable", kind, kind[:-1].title())
    return registry.snapshot()


class TestMemoryConfigStore:
    def test_empty_load_returns_none(self) -> None:
        assert MemoryConfigStore().load() is None

    def test_load_returns_independent_copy(self) -> None:
        store = MemoryConfigStore(_populated("jobs"))

        loaded = store.load()
        loaded.associations.clear()

        assert "loggable" in store.load().associations


class TestFileConfigStore:
    """JSON/YAML file persistence with backups."""

    @pytest.mark.parametrize("name", ["registry.json", "registry.yaml"])
    def test_save_then_load(self, tmp_path: Path, name: str) -> None:
        # Given
        store = FileConfigStore(tmp_path / name)
        config = _populated("jobs", "tasks")

        # When
        store.save(config)
        loaded = store.load()

        # Then
        assert loaded == config
        assert loaded.associations["loggable"].target_kinds() == ["jobs", "tasks"]

    def test_yaml_suffix_writes_yaml(self, tmp_path: Path) -> None:
        path = tmp_path / "registry.yml"
        FileConfigStore(path).save(_populated("jobs"))

        data = yaml.safe_load(path.read_text())
        assert data["config_version"] == "1.0.0"
        assert data["generated_by"] == "polytrack"

    def test_missing_file_returns_none(self, tmp_path: Path) -> None:
        assert FileConfigStore(tmp_path / "absent.json").load() is None

    def test_backups_rotate(self, tmp_path: Path) -> None:
        store = FileConfigStore(tmp_path / "registry.json", keep_backups=2)

        store.save(_populated("jobs"))
        store.save(_populated("jobs", "tasks"))
        store.save(_populated("jobs", "tasks", "clients"))

        assert store.backup_path(1).exists()
        assert store.backup_path(2).exists()
        assert not store.backup_path(3).exists()
        newest_backup = json.loads(store.backup_path(1).read_text())
        assert newest_backup["total_targets"] == 2

    def test_corrupt_file_restores_from_backup(self, tmp_path: Path) -> None:
        # Given
        path = tmp_path / "registry.json"
        store = FileConfigStore(path)
        store.save(_populated("jobs"))
        store.save(_populated("jobs", "tasks"))
        path.write_text("{not json")

        # When
        loaded = store.load()

        # Then - newest backup holds the first save
        assert loaded.total_targets == 1

    def test_corrupt_file_without_backup_raises(self, tmp_path: Path) -> None:
        path = tmp_path / "registry.json"
        path.write_text("[]")

        with pytest.raises(PersistenceError) as exc_info:
            FileConfigStore(path, keep_backups=0).load()

        assert exc_info.value.code == ErrorCode.PERSISTENCE_LOAD_FAILED

    def test_registry_round_trip_through_file(self, tmp_path: Path) -> None:
        path = tmp_path / "registry.json"
        first = AssociationRegistry(FileConfigStore(path))
        first.initialize()
        first.add_target("loggable", "jobs", "Job")
        first.deactivate_target("loggable", "jobs")

        second = AssociationRegistry(FileConfigStore(path))
        second.initialize()

        assert second.get_valid_targets("loggable") == []
        assert second.get_valid_targets("loggable", include_inactive=True) == ["jobs"]


class TestSqlConfigStore:
    """SQLite snapshot persistence."""

    def test_empty_database_returns_none(self, tmp_path: Path) -> None:
        assert SqlConfigStore(tmp_path / "registry.db").load() is None

    def test_latest_snapshot_wins(self, tmp_path: Path) -> None:
        store = SqlConfigStore(tmp_path / "registry.db")

        store.save(_populated("jobs"))
        store.save(_populated("jobs", "tasks"))

        loaded = store.load()
        assert loaded.total_targets == 2

    def test_old_snapshots_pruned(self, tmp_path: Path) -> None:
        store = SqlConfigStore(tmp_path / "registry.db", keep_snapshots=2)

        for _ in range(4):
            store.save(_populated("jobs"))

        assert store.snapshot_count() == 2

    def test_requires_path_or_engine(self) -> None:
        with pytest.raises(ValueError):
            SqlConfigStore()


class TestStoreForPath:
    @pytest.mark.parametrize(
        ("name", "expected"),
        [
            ("registry.db", SqlConfigStore),
            ("registry.sqlite", SqlConfigStore),
            ("registry.json", FileConfigStore),
            ("registry.yaml", FileConfigStore),
        ],
    )
    def test_suffix_selects_store(self, tmp_path: Path, name: str, expected: type) -> None:
        assert isinstance(store_for_path(tmp_path / name), expected)

    def test_none_is_memory(self) -> None:
        assert isinstance(store_for_path(None), MemoryConfigStore)
