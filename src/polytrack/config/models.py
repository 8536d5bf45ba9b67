"""Pydantic configuration models with env var support.

Configuration Hierarchy (highest to lowest precedence):
1. Direct kwargs to load_config()
2. Environment variables (POLYTRACK__SECTION__KEY)
3. Project YAML (polytrack.yaml)
4. Global YAML (~/.config/polytrack/config.yaml)
5. Built-in defaults (this file)

Environment Variable Format:
    POLYTRACK__<SECTION>__<KEY>=<VALUE>

Examples:
    POLYTRACK__LOGGING__LEVEL=DEBUG
    POLYTRACK__CACHE__DEFAULT_TTL_SEC=60
    POLYTRACK__DISCOVERY__MIN_CONFIDENCE=0.6
"""

from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, field_validator, model_validator

LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


class LogOutputConfig(BaseModel):
    """Single logging output configuration.

    Env vars: Not directly configurable via env (use YAML for multi-output).
    """

    format: Literal["json", "console"] = "console"
    destination: str = "stderr"  # stderr, stdout, or absolute file path
    level: LogLevel | None = None  # Inherits from parent if None

    @field_validator("destination")
    @classmethod
    def validate_destination(cls, v: str) -> str:
        if v in ("stderr", "stdout"):
            return v
        path = Path(v).expanduser()
        if not path.is_absolute():
            raise ValueError(f"File destination must be absolute path: {v}")
        return str(path)


class LoggingConfig(BaseModel):
    """Logging configuration.

    Env vars:
        POLYTRACK__LOGGING__LEVEL: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """

    level: LogLevel = Field(
        default="INFO",
        description="Root log level. DEBUG logs every cache hit and miss.",
    )
    outputs: list[LogOutputConfig] = Field(default_factory=lambda: [LogOutputConfig()])


class RegistryConfig(BaseModel):
    """Association registry persistence.

    Env vars:
        POLYTRACK__REGISTRY__CONFIG_PATH: Where the registry configuration is stored
        POLYTRACK__REGISTRY__KEEP_BACKUPS: Rotating backups kept beside the file
    """

    config_path: str | None = Field(
        default=None,
        description="Registry configuration file (.json, .yaml or .yml). "
        "None keeps the registry in memory only.",
    )
    keep_backups: int = Field(
        default=3,
        ge=0,
        description="Previous versions kept as <file>.bak.N. Used to recover from a corrupt file.",
    )


class DiscoveryConfig(BaseModel):
    """Discovery heuristics.

    The confidence weights are heuristic. Recalibrate against real data
    rather than treating these defaults as load-bearing.

    Env vars:
        POLYTRACK__DISCOVERY__MIN_CONFIDENCE: Results below this are discarded
        POLYTRACK__DISCOVERY__AUTO_APPLY_CONFIDENCE: Results at or above this are prevalidated
    """

    min_confidence: float = Field(
        default=0.5,
        ge=0.0,
        le=1.0,
        description="Statistical results below this confidence are discarded.",
    )
    auto_apply_confidence: float = Field(
        default=0.7,
        ge=0.0,
        le=1.0,
        description="Statistical results at or above this are marked prevalidated "
        "and applied without auto_apply. Also gates detect_new_associations.",
    )
    naming_confidence: float = Field(
        default=0.9,
        ge=0.0,
        le=1.0,
        description="Confidence assigned to naming-pattern and schema-definition matches.",
    )
    min_variety: int = Field(
        default=2, ge=2, description="Fewest distinct values for a polymorphic field."
    )
    max_variety: int = Field(
        default=20, ge=2, description="Most distinct values for a polymorphic field."
    )
    dominance_ratio: float = Field(
        default=0.8,
        gt=0.0,
        le=1.0,
        description="A field where one value holds more than this share of records is suspect.",
    )

    @model_validator(mode="after")
    def validate_variety(self) -> "DiscoveryConfig":
        if self.min_variety > self.max_variety:
            raise ValueError(
                f"min_variety ({self.min_variety}) must not exceed max_variety ({self.max_variety})"
            )
        return self


class QueryConfig(BaseModel):
    """Query builder and batch execution.

    Env vars:
        POLYTRACK__QUERY__BATCH_MAX_WORKERS: Concurrent per-kind fetches
        POLYTRACK__QUERY__DEFAULT_TIMEOUT_SEC: Timeout applied when the caller gives none
    """

    batch_max_workers: int = Field(
        default=8,
        ge=1,
        description="Thread pool size for batch execution across target kinds.",
    )
    default_timeout_sec: float | None = Field(
        default=None,
        description="Timeout for a single fetch. None waits indefinitely.",
    )
    restrict_hint_threshold: int = Field(
        default=5,
        ge=0,
        description=(
            "Plan analysis suggests restricting target kinds above this many valid targets."
        ),
    )
    large_batch_threshold: int = Field(
        default=1000,
        ge=1,
        description="Plan analysis warns when a batch size exceeds this.",
    )

    @field_validator("default_timeout_sec")
    @classmethod
    def validate_timeout(cls, v: float | None) -> float | None:
        if v is not None and v <= 0:
            raise ValueError(f"default_timeout_sec must be positive, got {v}")
        return v


class CacheConfig(BaseModel):
    """Query cache limits and TTLs.

    Env vars:
        POLYTRACK__CACHE__MAX_ENTRIES: Entry count limit
        POLYTRACK__CACHE__MEMORY_LIMIT_MB: Estimated memory limit
        POLYTRACK__CACHE__DEFAULT_TTL_SEC: TTL when no per-association TTL applies
        POLYTRACK__CACHE__SWEEP_INTERVAL_SEC: Background expiry sweep interval
    """

    max_entries: int = Field(default=1000, ge=1, description="Maximum cached queries.")
    memory_limit_mb: float = Field(
        default=50.0,
        gt=0,
        description="Estimated footprint limit (serialized row size). Rough, not RSS.",
    )
    max_entry_bytes: int = Field(
        default=5_000_000,
        ge=1,
        description="Results larger than this are not cached.",
    )
    default_ttl_sec: float = Field(default=300.0, gt=0, description="Default entry lifetime.")
    association_ttl_sec: dict[str, float] = Field(
        default_factory=dict,
        description="Per-association TTL overrides, e.g. {'loggable': 60}.",
    )
    sweep_interval_sec: float = Field(
        default=300.0,
        gt=0,
        description="Interval of the proactive expiry sweep.",
    )


class PolytrackConfig(BaseModel):
    """Root configuration for polytrack.

    All settings can be configured via:
    1. Environment variables: POLYTRACK__SECTION__KEY
    2. YAML config files (project or global)
    3. Direct kwargs to load_config()
    """

    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    registry: RegistryConfig = Field(default_factory=RegistryConfig)
    discovery: DiscoveryConfig = Field(default_factory=DiscoveryConfig)
    query: QueryConfig = Field(default_factory=QueryConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
