"""
Derived Metric Calculator — ratio metrics from raw counters.

Every ratio is declared once in RATIO_SPECS with:
- a formula over the raw counters (or over ratios declared before it)
- a weight basis: the counter that measures how much a part contributes
  when the ratio is combined across chunks or entities
- a combine mode: EXACT ratios are re-derived from summed counters, WEIGHTED
  ratios are combined as Σ(value × weight) / Σ(weight)

Upstream-only ratios (no formula) exist only when the source reported them.

Zero-denominator policy: a ratio whose denominator is 0 evaluates to 0.0,
never NaN, infinity or an error.
"""

import math
from typing import Callable, Iterable, Mapping, Optional

from pydantic import BaseModel, ConfigDict

from admetrics.models.enums import CombineMode, DerivedRatio
from admetrics.models.metrics import RawCounters

# (numerator, denominator) from the counters and the ratios evaluated so far
Formula = Callable[[RawCounters, Mapping[DerivedRatio, float]], tuple[float, float]]


class RatioSpec(BaseModel):
    """
    Declaration of one derived ratio.

    Attributes:
        ratio: Ratio name
        mode: How the ratio combines across parts
        weight_basis: Counter field used as the ratio's weight
        formula: Numerator/denominator pair, None for upstream-only ratios
        scale: Multiplier applied to numerator / denominator
    """

    model_config = ConfigDict(frozen=True)

    ratio: DerivedRatio
    mode: CombineMode
    weight_basis: str
    formula: Optional[Formula] = None
    scale: float = 1.0

    @property
    def upstream_only(self) -> bool:
        return self.formula is None

    def evaluate(
        self, counters: RawCounters, ratios: Mapping[DerivedRatio, float]
    ) -> float:
        """Apply the formula with the zero-denominator guard."""
        numerator, denominator = self.formula(counters, ratios)
        return safe_ratio(numerator, denominator, self.scale)


def safe_ratio(numerator: float, denominator: float, scale: float = 1.0) -> float:
    """numerator / denominator × scale, or 0.0 when the denominator is 0."""
    if denominator <= 0:
        return 0.0
    result = numerator / denominator * scale
    return result if math.isfinite(result) else 0.0


def _counters(numerator: str, denominator: str) -> Formula:
    return lambda c, _: (c.get(numerator), c.get(denominator))


def _high_intent(c: RawCounters, _: Mapping[DerivedRatio, float]) -> tuple[float, float]:
    return (c.landing_page_views + c.add_to_cart + c.checkouts_initiated, c.clicks)


def _saturation(c: RawCounters, r: Mapping[DerivedRatio, float]) -> tuple[float, float]:
    return (r.get(DerivedRatio.FREQUENCY, 0.0), r.get(DerivedRatio.OUTBOUND_CTR, 0.0))


_EXACT = CombineMode.EXACT
_WEIGHTED = CombineMode.WEIGHTED

RATIO_SPECS: tuple[RatioSpec, ...] = (
    RatioSpec(ratio=DerivedRatio.ROAS, mode=_EXACT, weight_basis="spend",
              formula=_counters("purchase_value", "spend")),
    RatioSpec(ratio=DerivedRatio.CTR, mode=_EXACT, weight_basis="impressions",
              formula=_counters("clicks", "impressions"), scale=100.0),
    RatioSpec(ratio=DerivedRatio.CPC, mode=_EXACT, weight_basis="clicks",
              formula=_counters("spend", "clicks")),
    RatioSpec(ratio=DerivedRatio.CPM, mode=_EXACT, weight_basis="impressions",
              formula=_counters("spend", "impressions"), scale=1000.0),
    RatioSpec(ratio=DerivedRatio.CPM_REACH, mode=_EXACT, weight_basis="reach",
              formula=_counters("spend", "reach"), scale=1000.0),
    RatioSpec(ratio=DerivedRatio.COST_PER_CONTENT_VIEW, mode=_EXACT, weight_basis="content_views",
              formula=_counters("spend", "content_views")),
    RatioSpec(ratio=DerivedRatio.COST_PER_ADD_TO_CART, mode=_EXACT, weight_basis="add_to_cart",
              formula=_counters("spend", "add_to_cart")),
    RatioSpec(ratio=DerivedRatio.COST_PER_CHECKOUT, mode=_EXACT, weight_basis="checkouts_initiated",
              formula=_counters("spend", "checkouts_initiated")),
    RatioSpec(ratio=DerivedRatio.COST_PER_PURCHASE, mode=_EXACT, weight_basis="purchases",
              formula=_counters("spend", "purchases")),
    RatioSpec(ratio=DerivedRatio.CONVERSION_RATE, mode=_EXACT, weight_basis="link_clicks",
              formula=_counters("purchases", "link_clicks"), scale=100.0),
    RatioSpec(ratio=DerivedRatio.CV_TO_ATC_RATE, mode=_EXACT, weight_basis="content_views",
              formula=_counters("add_to_cart", "content_views"), scale=100.0),
    RatioSpec(ratio=DerivedRatio.ATC_TO_CI_RATE, mode=_EXACT, weight_basis="add_to_cart",
              formula=_counters("checkouts_initiated", "add_to_cart"), scale=100.0),
    RatioSpec(ratio=DerivedRatio.CI_TO_PURCHASE_RATE, mode=_EXACT, weight_basis="checkouts_initiated",
              formula=_counters("purchases", "checkouts_initiated"), scale=100.0),
    RatioSpec(ratio=DerivedRatio.HIGH_INTENT_CLICK_RATE, mode=_EXACT, weight_basis="clicks",
              formula=_high_intent, scale=100.0),
    RatioSpec(ratio=DerivedRatio.HOOK_RATE, mode=_EXACT, weight_basis="impressions",
              formula=_counters("video_views", "impressions"), scale=100.0),
    RatioSpec(ratio=DerivedRatio.HOLD_RATE, mode=_EXACT, weight_basis="impressions",
              formula=_counters("video_p50_watched", "impressions"), scale=100.0),
    RatioSpec(ratio=DerivedRatio.VIDEO_COMPLETION_RATE, mode=_EXACT, weight_basis="video_views",
              formula=_counters("video_p100_watched", "video_views"), scale=100.0),
    RatioSpec(ratio=DerivedRatio.REACH_PER_UNIQUE_CLICK, mode=_EXACT, weight_basis="unique_clicks",
              formula=_counters("reach", "unique_clicks")),
    RatioSpec(ratio=DerivedRatio.FREQUENCY, mode=_WEIGHTED, weight_basis="reach",
              formula=_counters("impressions", "reach")),
    RatioSpec(ratio=DerivedRatio.REPORTED_ROAS, mode=_WEIGHTED, weight_basis="spend"),
    RatioSpec(ratio=DerivedRatio.REPORTED_CPM, mode=_WEIGHTED, weight_basis="impressions"),
    RatioSpec(ratio=DerivedRatio.OUTBOUND_CTR, mode=_WEIGHTED, weight_basis="impressions"),
    RatioSpec(ratio=DerivedRatio.AUDIENCE_SATURATION, mode=_WEIGHTED, weight_basis="impressions",
              formula=_saturation, scale=100.0),
)

RATIO_REGISTRY: dict[DerivedRatio, RatioSpec] = {spec.ratio: spec for spec in RATIO_SPECS}

WEIGHTED_RATIOS: tuple[DerivedRatio, ...] = tuple(
    spec.ratio for spec in RATIO_SPECS if spec.mode == CombineMode.WEIGHTED
)
UPSTREAM_ONLY_RATIOS: tuple[DerivedRatio, ...] = tuple(
    spec.ratio for spec in RATIO_SPECS if spec.upstream_only
)


class WeightedMean:
    """
    Running (value, weight) accumulator for one ratio.

    Terms are kept and summed with math.fsum on finalize, which is exactly
    rounded and therefore independent of the order terms arrived in.

    Zero-weight rule: two or more terms whose weights sum to 0 finalize to
    0.0. A single term is exempt and finalizes to its own value unchanged,
    even at weight 0, so that merging one chunk (or blending one entity)
    returns the source record's ratios exactly. A ratio reported for a chunk
    with no impressions therefore survives a one-chunk merge but reads 0.0
    once a second zero-weight chunk is added.
    """

    def __init__(self) -> None:
        self._terms: list[tuple[float, float]] = []

    def add(self, value: float, weight: float) -> None:
        self._terms.append((value, weight))

    def __len__(self) -> int:
        return len(self._terms)

    @property
    def weighted_sum(self) -> float:
        return math.fsum(v * w for v, w in self._terms)

    @property
    def total_weight(self) -> float:
        return math.fsum(w for _, w in self._terms)

    def value(self) -> float:
        if not self._terms:
            return 0.0
        if len(self._terms) == 1:
            return self._terms[0][0]
        try:
            return safe_ratio(self.weighted_sum, self.total_weight)
        except OverflowError:
            # fsum intermediate overflow: same policy as a non-finite ratio
            return 0.0


def weighted_average(terms: Iterable[tuple[float, float]]) -> float:
    """Σ(value × weight) / Σ(weight) over (value, weight) pairs, 0.0 on zero weight."""
    mean = WeightedMean()
    for value, weight in terms:
        mean.add(value, weight)
    return mean.value()


class DerivedMetricCalculator:
    """
    Computes every ratio for a set of raw counters.

    Ratios are evaluated in declaration order. For a weighted ratio an
    override (an upstream-reported value, or a value finalized by the merger)
    wins over the formula; upstream-only ratios without an override are left
    out of the result. Exact ratios always come from the counters.

    Example:
        >>> calc = DerivedMetricCalculator()
        >>> ratios = calc.compute(RawCounters(spend=400.0, purchase_value=1000.0))
        >>> ratios[DerivedRatio.ROAS]
        2.5
    """

    def __init__(self, specs: tuple[RatioSpec, ...] = RATIO_SPECS):
        self.specs = specs

    def compute(
        self,
        counters: RawCounters,
        overrides: Optional[Mapping[DerivedRatio, float]] = None,
    ) -> dict[DerivedRatio, float]:
        """
        Compute all ratios.

        Args:
            counters: Raw counters for one entity over one period
            overrides: Ratio values that replace the formula result

        Returns:
            Mapping of ratio name to value
        """
        overrides = overrides or {}
        ratios: dict[DerivedRatio, float] = {}

        for spec in self.specs:
            if spec.mode == CombineMode.WEIGHTED and spec.ratio in overrides:
                ratios[spec.ratio] = overrides[spec.ratio]
            elif not spec.upstream_only:
                ratios[spec.ratio] = spec.evaluate(counters, ratios)

        return ratios

    def weight_of(self, ratio: DerivedRatio, counters: RawCounters) -> float:
        """Weight of a ratio's value for these counters."""
        return counters.get(RATIO_REGISTRY[ratio].weight_basis)


_default_calculator = DerivedMetricCalculator()


def compute_ratios(
    counters: RawCounters,
    overrides: Optional[Mapping[DerivedRatio, float]] = None,
) -> dict[DerivedRatio, float]:
    """Module-level shortcut using the default ratio registry."""
    return _default_calculator.compute(counters, overrides)
