"""
Chunk Merger — reduce per-chunk records into one record per entity.

For every EntityKey seen across all partial results the merger keeps an
accumulator holding:
- the per-chunk value of every raw counter
- a WeightedMean per weighted ratio, weighted by the ratio's weight basis
- the display names seen, tagged with the chunk they came from

Finalization sums counters with math.fsum (exactly rounded, so the result does
not depend on the order chunks completed in), re-derives exact ratios from the
summed counters, and takes weighted ratios from their accumulated means.

Reach is not additive across time. ReachPolicy.SUM (the default) adds the
per-chunk reach figures and overcounts people reached in more than one chunk;
ReachPolicy.MAX keeps the largest chunk figure and undercounts. Both are
approximations.

A merger is not thread-safe: exactly one reducer should own it.
"""

import math
from datetime import date
from typing import Iterable, Optional

import structlog

from admetrics.engine.derived import (
    RATIO_SPECS,
    WEIGHTED_RATIOS,
    DerivedMetricCalculator,
    WeightedMean,
)
from admetrics.models.enums import DerivedRatio, ReachPolicy
from admetrics.models.metrics import COUNTER_FIELDS, DateRange, EntityKey, MetricRecord, RawCounters
from admetrics.models.results import ChunkFailure, MergedResult, PartialResult, RecordWarning

logger = structlog.get_logger()


def combine_counter(field: str, values: list[float], reach_policy: ReachPolicy) -> float:
    """Combine one counter's per-part values into a total."""
    if field == "reach" and reach_policy == ReachPolicy.MAX:
        return max(values, default=0.0)
    return math.fsum(values)


def combine_counters(
    parts: Iterable[RawCounters], reach_policy: ReachPolicy = ReachPolicy.SUM
) -> RawCounters:
    """Field-wise total of several counter sets."""
    values: dict[str, list[float]] = {field: [] for field in COUNTER_FIELDS}
    for counters in parts:
        for field in COUNTER_FIELDS:
            values[field].append(counters.get(field))
    return RawCounters(
        **{field: combine_counter(field, values[field], reach_policy) for field in COUNTER_FIELDS}
    )


def _finalize_means(means: dict[DerivedRatio, WeightedMean]) -> dict[DerivedRatio, float]:
    return {spec.ratio: means[spec.ratio].value() for spec in RATIO_SPECS if spec.ratio in means}


class _EntityAccumulator:
    """Running totals for one entity across chunks."""

    def __init__(self, key: EntityKey):
        self.key = key
        self.counter_values: dict[str, list[float]] = {field: [] for field in COUNTER_FIELDS}
        self.derived_means: dict[DerivedRatio, WeightedMean] = {}
        self.reported_means: dict[DerivedRatio, WeightedMean] = {}
        self.names: list[tuple[date, str]] = []

    def add(
        self,
        record: MetricRecord,
        chunk: DateRange,
        derived: dict[DerivedRatio, float],
        calculator: DerivedMetricCalculator,
    ) -> None:
        for field in COUNTER_FIELDS:
            self.counter_values[field].append(record.counters.get(field))

        for ratio in WEIGHTED_RATIOS:
            if ratio in derived:
                weight = calculator.weight_of(ratio, record.counters)
                self.derived_means.setdefault(ratio, WeightedMean()).add(derived[ratio], weight)

        for ratio, value in record.reported.items():
            weight = calculator.weight_of(ratio, record.counters)
            self.reported_means.setdefault(ratio, WeightedMean()).add(value, weight)

        if record.key.display_name:
            self.names.append((chunk.start, record.key.display_name))

    def finalize(
        self,
        reach_policy: ReachPolicy,
        calculator: DerivedMetricCalculator,
        missing: list[DateRange],
    ) -> MetricRecord:
        counters = RawCounters(
            **{
                field: combine_counter(field, values, reach_policy)
                for field, values in self.counter_values.items()
            }
        )
        # Declaration order, not arrival order
        weighted = _finalize_means(self.derived_means)
        reported = _finalize_means(self.reported_means)

        # Earliest chunk's name wins
        display_name = min(self.names)[1] if self.names else ""

        return MetricRecord(
            key=self.key.model_copy(update={"display_name": display_name}),
            counters=counters,
            reported=reported,
            derived=calculator.compute(counters, overrides=weighted),
            incomplete=bool(missing),
            missing_ranges=missing,
        )


class ChunkMerger:
    """
    Incremental merger of PartialResults.

    Feed results with add() in any order, then call finalize() once every
    (entity, chunk) fetch has resolved.

    Attributes:
        reach_policy: Cross-chunk combination rule for reach
        calculator: Ratio calculator used per chunk and after summation

    Example:
        >>> merger = ChunkMerger()
        >>> for partial in partials:
        ...     merger.add(partial)
        >>> result = merger.finalize()
    """

    def __init__(
        self,
        reach_policy: ReachPolicy = ReachPolicy.SUM,
        calculator: Optional[DerivedMetricCalculator] = None,
    ):
        self.reach_policy = reach_policy
        self.calculator = calculator or DerivedMetricCalculator()
        self._accumulators: dict[EntityKey, _EntityAccumulator] = {}
        self._failures: list[ChunkFailure] = []
        self._warnings: list[RecordWarning] = []
        self._seen: set[tuple[str, DateRange]] = set()
        self._record_count = 0

    def add(self, partial: PartialResult) -> None:
        """
        Fold one chunk result into the accumulators.

        Raises:
            ValueError: If the same (scope, chunk) pair is added twice
        """
        pair = (partial.scope_id, partial.date_range)
        if pair in self._seen:
            raise ValueError(
                f"Chunk {partial.date_range} for scope {partial.scope_id} was already merged"
            )
        self._seen.add(pair)

        self._warnings.extend(partial.warnings)
        if partial.failure is not None:
            self._failures.append(partial.failure)
            return

        for record in partial.records:
            derived = record.derived or self.calculator.compute(record.counters, record.reported)
            accumulator = self._accumulators.get(record.key)
            if accumulator is None:
                accumulator = _EntityAccumulator(record.key)
                self._accumulators[record.key] = accumulator
            accumulator.add(record, partial.date_range, derived, self.calculator)
            self._record_count += 1

    def finalize(self) -> MergedResult:
        """Produce one merged record per entity plus the failure ledger."""
        failures = sorted(
            self._failures, key=lambda f: (f.scope_id, f.date_range.sort_key)
        )
        warnings = sorted(
            self._warnings, key=lambda w: (w.scope_id, w.date_range.sort_key, w.index)
        )

        missing_by_scope: dict[str, list[DateRange]] = {}
        for failure in failures:
            missing_by_scope.setdefault(failure.scope_id, []).append(failure.date_range)

        records = [
            accumulator.finalize(
                self.reach_policy,
                self.calculator,
                missing_by_scope.get(accumulator.key.scope_id, []),
            )
            for accumulator in sorted(self._accumulators.values(), key=lambda a: a.key.sort_key)
        ]

        logger.info(
            "merge_completed",
            entities=len(records),
            records_merged=self._record_count,
            failures=len(failures),
            warnings=len(warnings),
            reach_policy=self.reach_policy.value,
        )

        return MergedResult(records=records, failures=failures, warnings=warnings)


def merge(
    partials: Iterable[PartialResult],
    reach_policy: ReachPolicy = ReachPolicy.SUM,
) -> MergedResult:
    """Merge a batch of chunk results in one call."""
    merger = ChunkMerger(reach_policy=reach_policy)
    for partial in partials:
        merger.add(partial)
    return merger.finalize()
