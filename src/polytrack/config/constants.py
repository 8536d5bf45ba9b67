"""Configuration constants.

This module contains truly constant values that should NOT be user-configurable.
For configurable values, see models.py (CacheConfig, DiscoveryConfig, etc.).
"""

import re

# =============================================================================
# Registry Format
# =============================================================================

CONFIG_VERSION = "1.0.0"
"""Registry configuration format version."""

GENERATED_BY = "polytrack"
"""Value written to generated_by in persisted configurations."""

# =============================================================================
# Identifier Validation
# =============================================================================

TARGET_KIND_PATTERN = re.compile(r"^[a-z][a-z0-9_]*[a-z0-9]$")
"""Target kinds are collection identifiers: lower snake case, e.g. 'jobs'."""

ASSOCIATION_NAME_PATTERN = re.compile(r"^[a-z][a-z0-9_]*$")
"""Association names, e.g. 'loggable'."""

FIELD_NAME_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
"""Discriminator / foreign-id field names."""

# =============================================================================
# Discovery Heuristics
# =============================================================================

TYPE_FIELD_PATTERN = re.compile(r"type|kind|class|category", re.IGNORECASE)
"""Field names suggesting a discriminator."""

TYPE_VALUE_PATTERN = re.compile(r"^[A-Z][a-zA-Z0-9]*$")
"""Values that look like a model name (capitalized single word)."""

WEIGHT_TYPE_FIELD = 0.4
WEIGHT_TYPE_VALUES = 0.3
WEIGHT_VARIETY = 0.2
WEIGHT_DISTRIBUTION = 0.1

UNBOUNDED_VARIETY_CAP = 0.45
"""Ceiling for fields outside the variety bounds: free-form text is never polymorphic."""

ID_FIELD_FALLBACKS = ("target_id", "reference_id", "entity_id")
"""Foreign-id names tried after the <prefix>_id conventions."""

# =============================================================================
# Query Plan Cost Model
# =============================================================================

COST_PER_TARGET = 10
COST_PER_EAGER_TARGET = 20
COST_PER_AGGREGATE_FIELD = 5
BATCH_JOIN_THRESHOLD = 3
"""Eager loading more kinds than this switches the join strategy to batch."""

# =============================================================================
# Cache
# =============================================================================

EVICTION_FRACTION = 0.1
"""Fraction of capacity evicted per LRU round (at least one entry)."""
