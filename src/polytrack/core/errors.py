"""Polytrack error types with typed error codes.

Error code ranges:
- 1xxx: Registry
- 2xxx: Config
- 3xxx: Query
- 4xxx: Cache
- 5xxx: Discovery
- 6xxx: Persistence
- 9xxx: Internal
"""

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any


class ErrorCode(IntEnum):
    """Typed error codes for programmatic handling."""

    # Registry (1xxx)
    UNKNOWN_ASSOCIATION = 1001
    INVALID_TARGET = 1002
    ASSOCIATION_FIELDS_FIXED = 1003
    MALFORMED_IDENTIFIER = 1004

    # Config (2xxx)
    CONFIG_PARSE_ERROR = 2001
    CONFIG_INVALID_VALUE = 2002

    # Query (3xxx)
    MALFORMED_AGGREGATION = 3001
    QUERY_MISSING_SOURCE_TABLE = 3002
    QUERY_TIMEOUT = 3003
    QUERY_INVALID_CONDITION = 3004

    # Cache (4xxx)
    CACHE_CORRUPT_ENTRY = 4001

    # Discovery (5xxx)
    DISCOVERY_FIELD_FAILED = 5001
    DISCOVERY_INVALID_TARGET = 5002

    # Persistence (6xxx)
    PERSISTENCE_LOAD_FAILED = 6001
    PERSISTENCE_SAVE_FAILED = 6002

    # Internal (9xxx)
    INTERNAL_ERROR = 9001


@dataclass(frozen=True, slots=True)
class PolytrackError(Exception):
    """Base error with structured context."""

    code: ErrorCode
    message: str
    retryable: bool = False
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def error_name(self) -> str:
        """String identifier for logging (e.g., 'UNKNOWN_ASSOCIATION')."""
        return self.code.name

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code.value,
            "error": self.error_name,
            "message": self.message,
            "retryable": self.retryable,
            "details": self.details,
        }

    def __str__(self) -> str:
        return f"[{self.code.value}] {self.error_name}: {self.message}"


class UnknownAssociation(PolytrackError):
    """Association name is not registered."""

    @classmethod
    def for_name(cls, association: str) -> "UnknownAssociation":
        return cls(
            code=ErrorCode.UNKNOWN_ASSOCIATION,
            message=f"Unknown association: '{association}'",
            details={"association": association},
        )


class InvalidTarget(PolytrackError):
    """Target kind is unregistered, or inactive without an explicit override."""

    @classmethod
    def not_registered(cls, association: str, target_kind: str) -> "InvalidTarget":
        return cls(
            code=ErrorCode.INVALID_TARGET,
            message=f"'{target_kind}' is not a registered target of '{association}'",
            details={
                "association": association,
                "target_kind": target_kind,
                "reason": "unregistered",
            },
        )

    @classmethod
    def inactive(cls, association: str, target_kind: str) -> "InvalidTarget":
        return cls(
            code=ErrorCode.INVALID_TARGET,
            message=f"Target '{target_kind}' of '{association}' is inactive",
            details={"association": association, "target_kind": target_kind, "reason": "inactive"},
        )


class RegistryError(PolytrackError):
    """Structural misuse of the registry."""

    @classmethod
    def fields_fixed(
        cls, association: str, field_name: str, current: str, requested: str
    ) -> "RegistryError":
        return cls(
            code=ErrorCode.ASSOCIATION_FIELDS_FIXED,
            message=(
                f"Association '{association}' already uses {field_name}='{current}'; "
                f"register a new association instead of renaming to '{requested}'"
            ),
            details={
                "association": association,
                "field": field_name,
                "current": current,
                "requested": requested,
            },
        )

    @classmethod
    def malformed_identifier(cls, kind: str, value: str) -> "RegistryError":
        return cls(
            code=ErrorCode.MALFORMED_IDENTIFIER,
            message=f"Malformed {kind} identifier: '{value}'",
            details={"kind": kind, "value": value},
        )


class ConfigError(PolytrackError):
    """Configuration-related errors."""

    @classmethod
    def parse_error(cls, path: str, reason: str) -> "ConfigError":
        return cls(
            code=ErrorCode.CONFIG_PARSE_ERROR,
            message=f"Failed to parse config at {path}: {reason}",
            details={"path": path, "reason": reason},
        )

    @classmethod
    def invalid_value(cls, field: str, value: Any, reason: str) -> "ConfigError":
        return cls(
            code=ErrorCode.CONFIG_INVALID_VALUE,
            message=f"Invalid value for '{field}': {reason}",
            details={"field": field, "value": str(value), "reason": reason},
        )


class QueryError(PolytrackError):
    """Query construction or execution errors."""

    @classmethod
    def missing_source_table(cls, association: str) -> "QueryError":
        return cls(
            code=ErrorCode.QUERY_MISSING_SOURCE_TABLE,
            message=f"Association '{association}' has no source table to query",
            details={"association": association},
        )

    @classmethod
    def timeout(cls, association: str, timeout_sec: float) -> "QueryError":
        return cls(
            code=ErrorCode.QUERY_TIMEOUT,
            message=f"Query for '{association}' exceeded {timeout_sec}s",
            retryable=True,
            details={"association": association, "timeout_sec": timeout_sec},
        )

    @classmethod
    def invalid_condition(cls, field: str, op: str) -> "QueryError":
        return cls(
            code=ErrorCode.QUERY_INVALID_CONDITION,
            message=f"Unsupported operator '{op}' on field '{field}'",
            details={"field": field, "op": op},
        )


class MalformedAggregation(PolytrackError):
    """Aggregation spec cannot be applied."""

    @classmethod
    def unknown_function(cls, function: str) -> "MalformedAggregation":
        return cls(
            code=ErrorCode.MALFORMED_AGGREGATION,
            message=f"Unknown aggregation function: '{function}'",
            details={"function": function},
        )

    @classmethod
    def empty(cls, what: str) -> "MalformedAggregation":
        return cls(
            code=ErrorCode.MALFORMED_AGGREGATION,
            message=f"Aggregation requires at least one {what}",
            details={"missing": what},
        )


class CacheError(PolytrackError):
    """Cache-layer failures. Recovered locally, never surfaced to query callers."""

    @classmethod
    def corrupt_entry(cls, key: str, reason: str) -> "CacheError":
        return cls(
            code=ErrorCode.CACHE_CORRUPT_ENTRY,
            message=f"Corrupt cache entry {key[:12]}: {reason}",
            details={"key": key, "reason": reason},
        )


class DiscoveryError(PolytrackError):
    """A single discovery candidate failed. Logged and skipped."""

    @classmethod
    def field_failed(cls, table: str, field: str, reason: str) -> "DiscoveryError":
        return cls(
            code=ErrorCode.DISCOVERY_FIELD_FAILED,
            message=f"Failed to analyze {table}.{field}: {reason}",
            retryable=True,
            details={"table": table, "field": field, "reason": reason},
        )

    @classmethod
    def invalid_target(cls, association: str, target_kind: str) -> "DiscoveryError":
        return cls(
            code=ErrorCode.DISCOVERY_INVALID_TARGET,
            message=f"Proposed target '{target_kind}' for '{association}' failed validation",
            details={"association": association, "target_kind": target_kind},
        )


class PersistenceError(PolytrackError):
    """Registry configuration load/save failures."""

    @classmethod
    def load_failed(cls, location: str, reason: str) -> "PersistenceError":
        return cls(
            code=ErrorCode.PERSISTENCE_LOAD_FAILED,
            message=f"Failed to load registry configuration from {location}: {reason}",
            details={"location": location, "reason": reason},
        )

    @classmethod
    def save_failed(cls, location: str, reason: str) -> "PersistenceError":
        return cls(
            code=ErrorCode.PERSISTENCE_SAVE_FAILED,
            message=f"Failed to save registry configuration to {location}: {reason}",
            retryable=True,
            details={"location": location, "reason": reason},
        )


class InternalError(PolytrackError):
    """Internal/unexpected errors."""

    @classmethod
    def unexpected(cls, reason: str, **details: Any) -> "InternalError":
        return cls(
            code=ErrorCode.INTERNAL_ERROR,
            message=f"Internal error: {reason}",
            details=details,
        )
