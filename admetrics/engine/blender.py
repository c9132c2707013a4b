"""
Blended Aggregator — one cross-entity summary from merged entity records.

Counters are summed across entities and every exact ratio is recomputed
from those sums, never by re-averaging the entities' already-merged ratios.
Weighted ratios (frequency, audience saturation and the upstream-only figures)
are combined across entities by their weight basis, so a blend of a single
entity returns that entity's ratios unchanged.

Reach is summed across entities. Audiences of different ad accounts can
overlap, so the blended reach is an upper bound.
"""

from typing import Optional, Sequence

import structlog

from admetrics.engine.derived import (
    RATIO_SPECS,
    WEIGHTED_RATIOS,
    DerivedMetricCalculator,
    WeightedMean,
)
from admetrics.engine.merger import combine_counters
from admetrics.models.enums import DerivedRatio, ReachPolicy
from admetrics.models.metrics import DateRange, EntityKey, MetricRecord

logger = structlog.get_logger()

ALL_ENTITIES_KEY = EntityKey(scope_id="__all__", display_name="All accounts")


class BlendedAggregator:
    """
    Sums merged entity records into a single summary record.

    Example:
        >>> aggregator = BlendedAggregator()
        >>> summary = aggregator.blend(merged.records)
        >>> summary.ratio(DerivedRatio.ROAS)
    """

    def __init__(self, calculator: Optional[DerivedMetricCalculator] = None):
        self.calculator = calculator or DerivedMetricCalculator()

    def blend(
        self,
        records: Sequence[MetricRecord],
        key: EntityKey = ALL_ENTITIES_KEY,
    ) -> MetricRecord:
        """
        Build the blended summary.

        Args:
            records: Merged per-entity records
            key: Identity to give the summary

        Returns:
            MetricRecord whose counters are the cross-entity totals, with
            exact ratios recomputed from those totals
        """
        counters = combine_counters((r.counters for r in records), ReachPolicy.SUM)

        weighted = self._weighted_across(records, WEIGHTED_RATIOS, lambda r: r.derived)
        reported = self._weighted_across(
            records, [spec.ratio for spec in RATIO_SPECS], lambda r: r.reported
        )

        missing: set[DateRange] = {m for r in records for m in r.missing_ranges}

        summary = MetricRecord(
            key=key,
            counters=counters,
            reported=reported,
            derived=self.calculator.compute(counters, overrides=weighted),
            incomplete=any(r.incomplete for r in records),
            missing_ranges=sorted(missing, key=lambda d: d.sort_key),
        )

        logger.info(
            "blend_completed",
            entities=len(records),
            spend=counters.spend,
            roas=summary.ratio(DerivedRatio.ROAS),
            incomplete=summary.incomplete,
        )

        return summary

    def _weighted_across(self, records, ratios, source) -> dict[DerivedRatio, float]:
        combined: dict[DerivedRatio, float] = {}
        for ratio in ratios:
            mean = WeightedMean()
            for record in records:
                values = source(record)
                if ratio in values:
                    mean.add(values[ratio], self.calculator.weight_of(ratio, record.counters))
            if len(mean):
                combined[ratio] = mean.value()
        return combined


def blend(records: Sequence[MetricRecord]) -> MetricRecord:
    """Module-level shortcut for BlendedAggregator().blend."""
    return BlendedAggregator().blend(records)
