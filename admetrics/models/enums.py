"""
Enumeration types for the metrics aggregation engine.

This module defines all enum types used across the system for type safety
and consistent validation. All enums inherit from str to ensure JSON
serialization compatibility.
"""

from enum import Enum


class DerivedRatio(str, Enum):
    """
    Ratio metrics computed from raw counters or supplied by the upstream source.

    The declaration order here is the evaluation order used by the calculator,
    so composite ratios (audience saturation) come after their inputs.
    """

    # Return and cost efficiency
    ROAS = "roas"
    CTR = "ctr"
    CPC = "cpc"
    CPM = "cpm"
    CPM_REACH = "cpm_reach"

    # Cost per action
    COST_PER_CONTENT_VIEW = "cost_per_content_view"
    COST_PER_ADD_TO_CART = "cost_per_add_to_cart"
    COST_PER_CHECKOUT = "cost_per_checkout"
    COST_PER_PURCHASE = "cost_per_purchase"

    # Conversion funnel
    CONVERSION_RATE = "conversion_rate"
    CV_TO_ATC_RATE = "cv_to_atc_rate"
    ATC_TO_CI_RATE = "atc_to_ci_rate"
    CI_TO_PURCHASE_RATE = "ci_to_purchase_rate"
    HIGH_INTENT_CLICK_RATE = "high_intent_click_rate"

    # Creative
    HOOK_RATE = "hook_rate"
    HOLD_RATE = "hold_rate"
    VIDEO_COMPLETION_RATE = "video_completion_rate"

    # Audience
    REACH_PER_UNIQUE_CLICK = "reach_per_unique_click"
    FREQUENCY = "frequency"

    # Upstream-authoritative figures
    REPORTED_ROAS = "reported_roas"
    REPORTED_CPM = "reported_cpm"
    OUTBOUND_CTR = "outbound_ctr"

    AUDIENCE_SATURATION = "audience_saturation"


class CombineMode(str, Enum):
    """How a ratio is combined across chunks or entities."""

    # Re-derived from summed counters
    EXACT = "exact"
    # Weighted average of per-part values by the ratio's weight basis
    WEIGHTED = "weighted"


class ReachPolicy(str, Enum):
    """
    Cross-chunk combination rule for the non-additive reach counter.

    SUM overcounts audiences that appear in more than one chunk; MAX
    undercounts audiences that differ between chunks. Neither is exact.
    """

    SUM = "sum"
    MAX = "max"


class FailureKind(str, Enum):
    """Why an (entity, chunk) fetch produced no data."""

    TRANSIENT = "transient"
    PERMANENT = "permanent"
    UNEXPECTED = "unexpected"
    CANCELLED = "cancelled"
