"""AssociationRegistry - authoritative configuration of polymorphic associations.

Concurrency model:
- Writers are serialized by a single re-entrant lock.
- The configuration is copy-on-write: every mutation edits a deep copy and
  swaps it in with one reference assignment, so readers always see a complete
  snapshot without taking the lock.
- Change events are delivered synchronously while the write lock is held,
  so listeners observe mutations in the order they were applied.

Each mutation is saved after the in-memory swap, still under the write
lock, so the store always holds the latest snapshot. A failing save raises
``PersistenceError`` but the in-memory change stands for this process.
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from datetime import datetime

import structlog

from polytrack.config.constants import (
    ASSOCIATION_NAME_PATTERN,
    FIELD_NAME_PATTERN,
    TARGET_KIND_PATTERN,
)
from polytrack.core.errors import RegistryError, UnknownAssociation
from polytrack.events import ChangeKind, RegistryChanged, RegistryListener, notify
from polytrack.registry.models import (
    Association,
    Provenance,
    RegistryConfiguration,
    TargetMetadata,
    ValidationIssue,
    ValidationReport,
    utc_now,
)
from polytrack.registry.stores import ConfigStore

logger = structlog.get_logger(__name__)


class AssociationRegistry:
    """Registry of associations and their valid target kinds."""

    def __init__(
        self,
        store: ConfigStore | None = None,
        *,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._clock = clock
        self._config = RegistryConfiguration(created_at=clock(), updated_at=clock())
        self._lock = threading.RLock()
        self._listeners: list[RegistryListener] = []
        self._initialized = store is None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def initialize(self) -> None:
        """Load the configuration from the store, creating an empty one if absent."""
        with self._lock:
            if self._initialized:
                return
            assert self._store is not None
            loaded = self._store.load()
            if loaded is None:
                logger.info("registry_config_not_found_creating_default")
                self._store.save(self._config)
            else:
                self._config = loaded
            self._initialized = True

        logger.info(
            "registry_initialized",
            associations=self._config.total_associations,
            targets=self._config.total_targets,
        )

    def subscribe(self, listener: RegistryListener) -> None:
        with self._lock:
            self._listeners.append(listener)

    def unsubscribe(self, listener: RegistryListener) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    # ------------------------------------------------------------------
    # Reads (lock-free on the current snapshot)
    # ------------------------------------------------------------------

    def snapshot(self) -> RegistryConfiguration:
        """Deep copy of the current configuration."""
        return self._config.model_copy(deep=True)

    def association_names(self) -> list[str]:
        return list(self._config.associations)

    def get_association(self, association: str) -> Association | None:
        found = self._config.associations.get(association)
        return found.model_copy(deep=True) if found is not None else None

    def require_association(self, association: str) -> Association:
        found = self.get_association(association)
        if found is None:
            raise UnknownAssociation.for_name(association)
        return found

    def get_valid_targets(self, association: str, *, include_inactive: bool = False) -> list[str]:
        """Target kinds of ``association`` in registration order.

        Raises:
            UnknownAssociation: If the association is not registered.
        """
        found = self._config.associations.get(association)
        if found is None:
            raise UnknownAssociation.for_name(association)
        return found.target_kinds(include_inactive=include_inactive)

    def get_target_metadata(self, association: str, target_kind: str) -> TargetMetadata | None:
        found = self._config.associations.get(association)
        if found is None:
            return None
        meta = found.targets.get(target_kind)
        return meta.model_copy() if meta is not None else None

    def is_valid_target(
        self, association: str, target_kind: str, *, include_inactive: bool = False
    ) -> bool:
        found = self._config.associations.get(association)
        if found is None:
            return False
        meta = found.targets.get(target_kind)
        if meta is None:
            return False
        return include_inactive or meta.active

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def register_association(
        self,
        name: str,
        *,
        discriminator_field: str | None = None,
        foreign_id_field: str | None = None,
        source_table: str | None = None,
        description: str = "",
    ) -> Association:
        """Create an association, or confirm an existing one.

        Field names default to ``<name>_type`` / ``<name>_id``. They are fixed
        once created; asking for different ones raises ``RegistryError``.
        A missing source table or description on an existing association is
        filled in.
        """
        _check_identifier("association", name, ASSOCIATION_NAME_PATTERN)
        discriminator_field = discriminator_field or f"{name}_type"
        foreign_id_field = foreign_id_field or f"{name}_id"
        _check_identifier("field", discriminator_field, FIELD_NAME_PATTERN)
        _check_identifier("field", foreign_id_field, FIELD_NAME_PATTERN)

        with self._lock:
            existing = self._config.associations.get(name)
            if existing is not None:
                if existing.discriminator_field != discriminator_field:
                    raise RegistryError.fields_fixed(
                        name,
                        "discriminator_field",
                        existing.discriminator_field,
                        discriminator_field,
                    )
                if existing.foreign_id_field != foreign_id_field:
                    raise RegistryError.fields_fixed(
                        name, "foreign_id_field", existing.foreign_id_field, foreign_id_field
                    )
                fill_table = source_table is not None and existing.source_table is None
                fill_description = bool(description) and not existing.description
                if not (fill_table or fill_description):
                    return existing.model_copy(deep=True)

            now = self._clock()
            config = self._config.model_copy(deep=True)
            if existing is None:
                created = Association(
                    name=name,
                    discriminator_field=discriminator_field,
                    foreign_id_field=foreign_id_field,
                    source_table=source_table,
                    description=description,
                    created_at=now,
                    updated_at=now,
                )
                config.associations[name] = created
            else:
                created = config.associations[name]
                if source_table is not None and created.source_table is None:
                    created.source_table = source_table
                if description and not created.description:
                    created.description = description
                created.updated_at = now
            config.touch(now)
            self._config = config
            self._persist()

        logger.info("registry_association_registered", association=name, source_table=source_table)
        return created.model_copy(deep=True)

    def add_target(
        self,
        association: str,
        target_kind: str,
        display_name: str,
        provenance: Provenance | str = Provenance.MANUAL,
    ) -> TargetMetadata:
        """Upsert a target kind, creating the association on first use.

        A new target starts active with ``discovered_at`` = ``last_verified_at``
        = now. An existing target only has ``last_verified_at`` refreshed.
        """
        provenance = Provenance(provenance)
        _check_identifier("target kind", target_kind, TARGET_KIND_PATTERN)
        if association not in self._config.associations:
            self.register_association(association)

        with self._lock:
            now = self._clock()
            config = self._config.model_copy(deep=True)
            assoc = config.associations.get(association)
            if assoc is None:
                # Removed concurrently between registration and here
                raise UnknownAssociation.for_name(association)

            meta = assoc.targets.get(target_kind)
            if meta is None:
                meta = TargetMetadata(
                    target_kind=target_kind,
                    display_name=display_name,
                    discovered_at=now,
                    last_verified_at=now,
                    active=True,
                    provenance=provenance,
                )
                assoc.targets[target_kind] = meta
                created = True
            else:
                meta.last_verified_at = now
                created = False

            assoc.updated_at = now
            config.touch(now)
            self._config = config
            self._emit(association, target_kind, ChangeKind.ADDED)
            self._persist()

        logger.info(
            "registry_target_added" if created else "registry_target_verified",
            association=association,
            target_kind=target_kind,
            display_name=display_name,
            provenance=provenance.value,
        )
        return meta.model_copy()

    def remove_target(self, association: str, target_kind: str) -> bool:
        """Hard-delete a target. Returns False if it was not registered."""
        with self._lock:
            if association not in self._config.associations:
                raise UnknownAssociation.for_name(association)
            if target_kind not in self._config.associations[association].targets:
                logger.warning(
                    "registry_target_not_found", association=association, target_kind=target_kind
                )
                return False

            now = self._clock()
            config = self._config.model_copy(deep=True)
            assoc = config.associations[association]
            del assoc.targets[target_kind]
            assoc.updated_at = now
            config.touch(now)
            self._config = config
            self._emit(association, target_kind, ChangeKind.REMOVED)
            self._persist()

        logger.info("registry_target_removed", association=association, target_kind=target_kind)
        return True

    def deactivate_target(self, association: str, target_kind: str) -> bool:
        """Mark a target inactive, keeping it for audit."""
        return self._set_active(association, target_kind, active=False)

    def activate_target(self, association: str, target_kind: str) -> bool:
        """Reverse ``deactivate_target``."""
        return self._set_active(association, target_kind, active=True)

    def _set_active(self, association: str, target_kind: str, *, active: bool) -> bool:
        with self._lock:
            if association not in self._config.associations:
                raise UnknownAssociation.for_name(association)
            if target_kind not in self._config.associations[association].targets:
                logger.warning(
                    "registry_target_not_found", association=association, target_kind=target_kind
                )
                return False

            now = self._clock()
            config = self._config.model_copy(deep=True)
            assoc = config.associations[association]
            meta = assoc.targets[target_kind]
            meta.active = active
            meta.last_verified_at = now
            assoc.updated_at = now
            config.touch(now)
            self._config = config
            self._emit(
                association,
                target_kind,
                ChangeKind.ACTIVATED if active else ChangeKind.DEACTIVATED,
            )
            self._persist()

        logger.info(
            "registry_target_activated" if active else "registry_target_deactivated",
            association=association,
            target_kind=target_kind,
        )
        return True

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate(self, *, include_inactive: bool = False) -> ValidationReport:
        """Walk every association and target. Never mutates."""
        config = self._config
        report = ValidationReport(validated_at=self._clock())

        for name, assoc in config.associations.items():
            report.total_checked += 1
            if not ASSOCIATION_NAME_PATTERN.match(name):
                report.errors.append(
                    ValidationIssue(name, f"Malformed association name '{name}'", "error")
                )
                report.failed_checks += 1
            if not assoc.targets:
                report.warnings.append(
                    ValidationIssue(
                        name, f"No valid targets defined for association '{name}'", "warning"
                    )
                )

            for kind, meta in assoc.targets.items():
                report.total_checked += 1
                failed = False
                if not meta.display_name:
                    report.errors.append(
                        ValidationIssue(
                            name, f"Missing display name for target '{kind}'", "error", kind
                        )
                    )
                    failed = True
                if not TARGET_KIND_PATTERN.match(kind):
                    report.errors.append(
                        ValidationIssue(name, f"Malformed target kind '{kind}'", "error", kind)
                    )
                    failed = True
                if failed:
                    report.failed_checks += 1
                if not meta.active and not include_inactive:
                    report.warnings.append(
                        ValidationIssue(name, f"Target '{kind}' is inactive", "warning", kind)
                    )

        return report

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _emit(self, association: str, target_kind: str, kind: ChangeKind) -> None:
        notify(list(self._listeners), RegistryChanged(association, target_kind, kind))

    def _persist(self) -> None:
        if self._store is not None:
            self._store.save(self._config)


def _check_identifier(kind: str, value: str, pattern: object) -> None:
    if not isinstance(value, str) or not pattern.match(value):  # type: ignore[attr-defined]
        raise RegistryError.malformed_identifier(kind, value)
