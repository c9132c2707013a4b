"""
Metrics aggregation engine core components.

This package splits a long reporting period into chunks, fetches each
(scope, chunk) pair concurrently, merges the chunk results into one record
per entity, and blends entities into a cross-entity summary:

- Partitioning: contiguous, non-overlapping date sub-ranges
- Derived metrics: ratio registry with a zero-denominator guard
- Merging: order-independent counter sums and weighted ratio means
- Blending: cross-entity totals with ratios recomputed from the sums
- Aggregation: bounded-concurrency fetch with retry and partial failure
"""

__all__ = [
    "BlendedAggregator",
    "ChunkMerger",
    "DerivedMetricCalculator",
    "MetricsAggregationService",
    "RangePartitioner",
    "compute_metrics",
]

from admetrics.engine.aggregation import MetricsAggregationService, compute_metrics
from admetrics.engine.blender import BlendedAggregator
from admetrics.engine.derived import DerivedMetricCalculator
from admetrics.engine.merger import ChunkMerger
from admetrics.engine.partitioner import RangePartitioner
