"""Persistence backends for the registry configuration.

Every store implements ``ConfigStore``: ``load()`` returns the saved
configuration or None when nothing has been saved yet, ``save()`` replaces it.
Both raise ``PersistenceError`` on failure.

- MemoryConfigStore: process-local, for tests and ephemeral registries
- FileConfigStore: JSON or YAML file (by suffix) with rotating backups
- SqlConfigStore: append-only snapshots in a SQLite table via SQLModel
"""

from __future__ import annotations

import json
import os
import shutil
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any, Protocol

import structlog
import yaml
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import event
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Field, Session, SQLModel, col, create_engine, select

from polytrack.core.errors import PersistenceError
from polytrack.registry.models import RegistryConfiguration, utc_now

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = structlog.get_logger(__name__)


class ConfigStore(Protocol):
    """Load/save boundary for ``RegistryConfiguration``."""

    def load(self) -> RegistryConfiguration | None: ...

    def save(self, config: RegistryConfiguration) -> None: ...


class MemoryConfigStore:
    """Keeps the serialized configuration in memory."""

    def __init__(self, initial: RegistryConfiguration | None = None) -> None:
        self._payload: str | None = initial.model_dump_json() if initial else None
        self.save_count = 0

    def load(self) -> RegistryConfiguration | None:
        if self._payload is None:
            return None
        return RegistryConfiguration.model_validate_json(self._payload)

    def save(self, config: RegistryConfiguration) -> None:
        self._payload = config.model_dump_json()
        self.save_count += 1


_YAML_SUFFIXES = frozenset({".yaml", ".yml"})


class FileConfigStore:
    """Configuration file with ``keep_backups`` rotating copies.

    A corrupt primary file falls back to the newest readable backup.
    """

    def __init__(self, path: Path, keep_backups: int = 3) -> None:
        self.path = Path(path)
        self.keep_backups = keep_backups

    @property
    def is_yaml(self) -> bool:
        return self.path.suffix.lower() in _YAML_SUFFIXES

    def backup_path(self, n: int) -> Path:
        return self.path.with_name(f"{self.path.name}.bak.{n}")

    def load(self) -> RegistryConfiguration | None:
        if not self.path.exists():
            return None
        try:
            return self._read(self.path)
        except (OSError, ValueError, yaml.YAMLError, PydanticValidationError) as e:
            logger.warning("registry_config_corrupt", path=str(self.path), error=str(e))
            restored = self._restore_from_backup()
            if restored is not None:
                return restored
            raise PersistenceError.load_failed(str(self.path), str(e)) from e

    def save(self, config: RegistryConfiguration) -> None:
        data = config.model_dump(mode="json")
        if self.is_yaml:
            content = yaml.safe_dump(data, default_flow_style=False, sort_keys=False)
        else:
            content = json.dumps(data, indent=2)

        tmp = self.path.with_name(f".{self.path.name}.tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self._rotate_backups()
            tmp.write_text(content, encoding="utf-8")
            os.replace(tmp, self.path)
        except OSError as e:
            raise PersistenceError.save_failed(str(self.path), str(e)) from e

        logger.debug("registry_config_saved", path=str(self.path), bytes=len(content))

    def _read(self, path: Path) -> RegistryConfiguration:
        text = path.read_text(encoding="utf-8")
        data: Any = yaml.safe_load(text) if self.is_yaml else json.loads(text)
        if not isinstance(data, dict):
            raise ValueError("configuration root must be a mapping")
        return RegistryConfiguration.model_validate(data)

    def _rotate_backups(self) -> None:
        if self.keep_backups <= 0 or not self.path.exists():
            return
        for n in range(self.keep_backups - 1, 0, -1):
            older = self.backup_path(n)
            if older.exists():
                os.replace(older, self.backup_path(n + 1))
        shutil.copy2(self.path, self.backup_path(1))

    def _restore_from_backup(self) -> RegistryConfiguration | None:
        for n in range(1, self.keep_backups + 1):
            candidate = self.backup_path(n)
            if not candidate.exists():
                continue
            try:
                config = self._read(candidate)
            except (OSError, ValueError, yaml.YAMLError, PydanticValidationError):
                continue
            logger.warning("registry_config_restored_from_backup", backup=str(candidate))
            return config
        return None


class RegistrySnapshot(SQLModel, table=True):
    """One saved registry configuration."""

    __tablename__ = "polytrack_registry_snapshots"

    id: int | None = Field(default=None, primary_key=True)
    saved_at: datetime = Field(default_factory=utc_now, index=True)
    config_version: str
    total_associations: int = 0
    total_targets: int = 0
    payload: str


def _configure_pragmas(dbapi_conn: Any, _connection_record: Any) -> None:
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA busy_timeout=30000")
    cursor.close()


class SqlConfigStore:
    """Snapshots the configuration into a SQLite table.

    ``load()`` returns the newest snapshot; ``keep_snapshots`` older rows are
    retained for audit and pruned beyond that.
    """

    def __init__(
        self,
        db_path: Path | None = None,
        *,
        engine: Engine | None = None,
        keep_snapshots: int = 10,
    ) -> None:
        if engine is None:
            if db_path is None:
                raise ValueError("SqlConfigStore needs a db_path or an engine")
            engine = create_engine(
                f"sqlite:///{db_path}",
                connect_args={"check_same_thread": False},
                pool_pre_ping=True,
            )
            event.listen(engine, "connect", _configure_pragmas)
        self.engine = engine
        self.keep_snapshots = keep_snapshots
        table = RegistrySnapshot.__table__  # type: ignore[attr-defined]
        SQLModel.metadata.create_all(self.engine, tables=[table])

    @property
    def location(self) -> str:
        return str(self.engine.url)

    def load(self) -> RegistryConfiguration | None:
        try:
            with Session(self.engine) as session:
                row = session.exec(
                    select(RegistrySnapshot).order_by(col(RegistrySnapshot.id).desc()).limit(1)
                ).first()
        except SQLAlchemyError as e:
            raise PersistenceError.load_failed(self.location, str(e)) from e
        if row is None:
            return None
        try:
            return RegistryConfiguration.model_validate_json(row.payload)
        except PydanticValidationError as e:
            raise PersistenceError.load_failed(self.location, str(e)) from e

    def save(self, config: RegistryConfiguration) -> None:
        snapshot = RegistrySnapshot(
            config_version=config.config_version,
            total_associations=config.total_associations,
            total_targets=config.total_targets,
            payload=config.model_dump_json(),
        )
        try:
            with Session(self.engine) as session:
                session.add(snapshot)
                session.commit()
                self._prune(session)
        except SQLAlchemyError as e:
            raise PersistenceError.save_failed(self.location, str(e)) from e

    def snapshot_count(self) -> int:
        with Session(self.engine) as session:
            return len(session.exec(select(RegistrySnapshot.id)).all())

    def _prune(self, session: Session) -> None:
        if self.keep_snapshots <= 0:
            return
        stale = session.exec(
            select(RegistrySnapshot)
            .order_by(col(RegistrySnapshot.id).desc())
            .offset(self.keep_snapshots)
        ).all()
        for row in stale:
            session.delete(row)
        if stale:
            session.commit()


_SQLITE_SUFFIXES = frozenset({".db", ".sqlite", ".sqlite3"})


def store_for_path(path: Path | str | None, keep_backups: int = 3) -> ConfigStore:
    """Pick a store from the configured path: SQLite by suffix, else a file, else memory."""
    if path is None:
        return MemoryConfigStore()
    path = Path(path).expanduser()
    if path.suffix.lower() in _SQLITE_SUFFIXES:
        path.parent.mkdir(parents=True, exist_ok=True)
        return SqlConfigStore(path, keep_snapshots=max(keep_backups, 1))
    return FileConfigStore(path, keep_backups=keep_backups)
