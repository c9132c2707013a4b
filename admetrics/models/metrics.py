"""
Metric data models for the aggregation engine.

This module defines the date range and chunk policy inputs, the composite
entity identity, the strictly typed raw counter set, and the per-entity
metric record that flows from the fetch layer through merge and blend.
"""

import math
from datetime import date
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .enums import DerivedRatio


class DateRange(BaseModel):
    """
    Inclusive calendar date range.

    Attributes:
        start: First day of the range
        end: Last day of the range (inclusive)
    """

    model_config = ConfigDict(frozen=True)

    start: date = Field(description="First day of the range")
    end: date = Field(description="Last day of the range (inclusive)")

    @model_validator(mode="after")
    def validate_order(self) -> "DateRange":
        """Ensure start does not come after end."""
        if self.start > self.end:
            raise ValueError(
                f"start ({self.start.isoformat()}) must not be after end ({self.end.isoformat()})"
            )
        return self

    @property
    def days(self) -> int:
        """Number of calendar days covered, both bounds included."""
        return (self.end - self.start).days + 1

    @property
    def sort_key(self) -> tuple[date, date]:
        return (self.start, self.end)

    def __str__(self) -> str:
        return f"{self.start.isoformat()}..{self.end.isoformat()}"


class ChunkPolicy(BaseModel):
    """
    How a requested period is split into independently fetched chunks.

    Exactly one of the two inputs must be set: an explicit chunk count, or a
    maximum number of days per chunk from which the count is derived.
    """

    model_config = ConfigDict(frozen=True)

    chunk_count: Optional[int] = Field(
        default=None, ge=1, description="Explicit number of chunks"
    )
    max_days_per_chunk: Optional[int] = Field(
        default=None, ge=1, description="Upper bound on days per chunk"
    )

    @model_validator(mode="after")
    def validate_exactly_one(self) -> "ChunkPolicy":
        """Ensure exactly one policy input is supplied."""
        if (self.chunk_count is None) == (self.max_days_per_chunk is None):
            raise ValueError("Specify exactly one of chunk_count or max_days_per_chunk")
        return self

    def resolve(self, date_range: DateRange) -> int:
        """Chunk count this policy yields for the given range."""
        if self.chunk_count is not None:
            return self.chunk_count
        return math.ceil(date_range.days / self.max_days_per_chunk)


class EntityScope(BaseModel):
    """A scoped entity to fetch for, e.g. one ad account."""

    model_config = ConfigDict(frozen=True)

    scope_id: str = Field(min_length=1, description="Scope identifier (e.g. ad account ID)")
    display_name: str = Field(default="", description="Human-readable name")

    @field_validator("scope_id")
    @classmethod
    def strip_scope_id(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("scope_id must not be blank")
        return v


class EntityKey(BaseModel):
    """
    Composite identity of the thing metrics are tracked for.

    Equality and hashing use the identifier fields only; the display name is
    carried along but two keys differing only by name are the same entity.

    Attributes:
        scope_id: Scope identifier, e.g. an ad account ID
        sub_entity_id: Optional sub-entity, e.g. a campaign or interest segment
        display_name: Human-readable name, not part of identity
    """

    model_config = ConfigDict(frozen=True)

    scope_id: str = Field(min_length=1, description="Scope identifier")
    sub_entity_id: Optional[str] = Field(default=None, description="Sub-entity identifier")
    display_name: str = Field(default="", description="Human-readable name")

    @property
    def identity(self) -> tuple[str, Optional[str]]:
        return (self.scope_id, self.sub_entity_id)

    @property
    def sort_key(self) -> tuple[str, str]:
        return (self.scope_id, self.sub_entity_id or "")

    def __eq__(self, other: object) -> bool:
        if isinstance(other, EntityKey):
            return self.identity == other.identity
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self.identity)


def _counter(description: str) -> Any:
    return Field(default=0.0, ge=0.0, allow_inf_nan=False, description=description)


class RawCounters(BaseModel):
    """
    Additive counters for one entity over one period.

    Every field except ``reach`` sums correctly across disjoint sub-ranges.
    Reach is a point-in-time audience size and only approximately additive.
    Unknown field names are rejected so that a misspelled counter fails
    validation instead of silently reading as zero.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    spend: float = _counter("Amount spent")
    impressions: float = _counter("Impressions")
    clicks: float = _counter("All clicks")
    unique_clicks: float = _counter("Unique link clicks")
    reach: float = _counter("Unique accounts reached (non-additive)")
    link_clicks: float = _counter("Link clicks")
    landing_page_views: float = _counter("Landing page views")
    content_views: float = _counter("Content views")
    add_to_cart: float = _counter("Add-to-cart events")
    checkouts_initiated: float = _counter("Checkouts initiated")
    purchases: float = _counter("Purchases")
    purchase_value: float = _counter("Purchase value (revenue)")
    video_views: float = _counter("Short-form (3-second) video views")
    video_p25_watched: float = _counter("Videos watched to 25%")
    video_p50_watched: float = _counter("Videos watched to 50%")
    video_p100_watched: float = _counter("Videos watched to 100%")

    def get(self, field: str) -> float:
        return getattr(self, field)


COUNTER_FIELDS: tuple[str, ...] = tuple(RawCounters.model_fields)
NON_ADDITIVE_FIELDS: frozenset[str] = frozenset({"reach"})


class MetricRecord(BaseModel):
    """
    Raw counters and ratio metrics for one entity over one period.

    Attributes:
        key: Entity identity
        counters: Raw additive counters
        reported: Ratio values supplied by the upstream source for this
            record's period; these override the counter formula
        derived: Every ratio computed for this record
        incomplete: True when some chunks of this entity's scope failed
        missing_ranges: Chunks whose data is absent from this record
    """

    model_config = ConfigDict(frozen=True)

    key: EntityKey = Field(description="Entity identity")
    counters: RawCounters = Field(
        default_factory=RawCounters, description="Raw additive counters"
    )
    reported: dict[DerivedRatio, float] = Field(
        default_factory=dict, description="Upstream-supplied ratio values"
    )
    derived: dict[DerivedRatio, float] = Field(
        default_factory=dict, description="Computed ratio values"
    )
    incomplete: bool = Field(default=False, description="Some chunks failed for this scope")
    missing_ranges: list[DateRange] = Field(
        default_factory=list, description="Chunks missing from this record"
    )

    @field_validator("reported", "derived")
    @classmethod
    def validate_ratio_values(cls, v: dict[DerivedRatio, float]) -> dict[DerivedRatio, float]:
        """Ratios are finite and non-negative."""
        for ratio, value in v.items():
            if not math.isfinite(value) or value < 0:
                raise ValueError(f"Ratio {ratio.value} must be finite and non-negative, got {value}")
        return v

    def ratio(self, ratio: DerivedRatio) -> float:
        """Derived value of a ratio, 0.0 when absent."""
        return self.derived.get(ratio, 0.0)
