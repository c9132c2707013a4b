"""
Pydantic v2 data models for the metrics aggregation engine.

Model Organization:
    - enums: Ratio names, combine modes, reach policy, failure kinds
    - metrics: Date ranges, chunk policy, entity identity, counters, records
    - results: Per-chunk outcomes, merged results, aggregation report

Usage:
    >>> from admetrics.models import EntityKey, MetricRecord, RawCounters
    >>> record = MetricRecord(
    ...     key=EntityKey(scope_id="act_1001", sub_entity_id="cmp_1"),
    ...     counters=RawCounters(spend=100.0, purchase_value=400.0),
    ... )
"""

# Enumerations
from .enums import CombineMode, DerivedRatio, FailureKind, ReachPolicy

# Metric models
from .metrics import (
    COUNTER_FIELDS,
    NON_ADDITIVE_FIELDS,
    ChunkPolicy,
    DateRange,
    EntityKey,
    EntityScope,
    MetricRecord,
    RawCounters,
)

# Result models
from .results import (
    AggregationReport,
    ChunkFailure,
    MergedResult,
    PartialResult,
    RecordWarning,
)

__all__ = [
    # Enumerations
    "CombineMode",
    "DerivedRatio",
    "FailureKind",
    "ReachPolicy",
    # Metric models
    "COUNTER_FIELDS",
    "NON_ADDITIVE_FIELDS",
    "ChunkPolicy",
    "DateRange",
    "EntityKey",
    "EntityScope",
    "MetricRecord",
    "RawCounters",
    # Result models
    "AggregationReport",
    "ChunkFailure",
    "MergedResult",
    "PartialResult",
    "RecordWarning",
]
