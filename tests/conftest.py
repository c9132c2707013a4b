"""
Pytest configuration and shared fixtures for the metrics aggregation test suite.

Provides model factories, a scripted in-memory ChunkFetcher, and environment
isolation reused across unit, integration and property-based tests.
"""

import asyncio
import os
from datetime import date
from typing import Any, Optional

import pytest

# Set testing environment BEFORE importing app
os.environ["TESTING"] = "true"
os.environ["DEV_MODE"] = "true"
os.environ["FETCH_BACKOFF_BASE_SECONDS"] = "0"


# ---------------------------------------------------------------------------
# Pydantic model factories, reusable across all test suites
# ---------------------------------------------------------------------------

from admetrics.connectors.base import ChunkFetcher
from admetrics.models.enums import DerivedRatio, FailureKind
from admetrics.models.metrics import DateRange, EntityKey, EntityScope, MetricRecord, RawCounters
from admetrics.models.results import ChunkFailure, PartialResult


def make_range(start: str = "2025-01-01", end: str = "2025-01-31") -> DateRange:
    """Factory for DateRange objects from ISO strings."""
    return DateRange(start=date.fromisoformat(start), end=date.fromisoformat(end))


def make_counters(**overrides) -> RawCounters:
    """Factory function for creating test RawCounters objects."""
    defaults = dict(
        spend=100.0,
        impressions=10000.0,
        clicks=200.0,
        unique_clicks=150.0,
        reach=4000.0,
        link_clicks=180.0,
        landing_page_views=120.0,
        content_views=90.0,
        add_to_cart=30.0,
        checkouts_initiated=15.0,
        purchases=10.0,
        purchase_value=400.0,
        video_views=2500.0,
        video_p25_watched=1500.0,
        video_p50_watched=900.0,
        video_p100_watched=300.0,
    )
    defaults.update(overrides)
    return RawCounters(**defaults)


def make_record(
    scope_id: str = "act_1001",
    sub_entity_id: Optional[str] = None,
    display_name: str = "Main account",
    counters: Optional[RawCounters] = None,
    reported: Optional[dict[DerivedRatio, float]] = None,
    **counter_overrides,
) -> MetricRecord:
    """Factory function for creating test MetricRecord objects."""
    return MetricRecord(
        key=EntityKey(scope_id=scope_id, sub_entity_id=sub_entity_id, display_name=display_name),
        counters=counters or make_counters(**counter_overrides),
        reported=reported or {},
    )


def make_partial(
    records: Optional[list[MetricRecord]] = None,
    date_range: Optional[DateRange] = None,
    scope_id: str = "act_1001",
) -> PartialResult:
    """Factory for a successful chunk result."""
    return PartialResult(
        scope_id=scope_id,
        date_range=date_range or make_range(),
        records=records if records is not None else [make_record(scope_id=scope_id)],
    )


def make_failed_partial(
    date_range: Optional[DateRange] = None,
    scope_id: str = "act_1001",
    kind: FailureKind = FailureKind.TRANSIENT,
) -> PartialResult:
    """Factory for a failed chunk result."""
    date_range = date_range or make_range()
    return PartialResult(
        scope_id=scope_id,
        date_range=date_range,
        failure=ChunkFailure(
            scope_id=scope_id, date_range=date_range, kind=kind, message="boom", attempts=3
        ),
    )


class FakeChunkFetcher(ChunkFetcher):
    """
    Scripted in-memory fetcher.

    ``script`` maps (scope_id, chunk) to a list of outcomes consumed one per
    attempt; an outcome is either an exception instance (raised) or a list of
    records (returned). The last outcome repeats once the list is exhausted.
    Pairs without a script return ``default(scope, chunk)``.
    """

    def __init__(
        self,
        script: Optional[dict[tuple[str, DateRange], list[Any]]] = None,
        default=None,
        delay: float = 0.0,
    ):
        self.script = script or {}
        self.default = default or (lambda scope, chunk: [make_record(scope_id=scope.scope_id)])
        self.delay = delay
        self.calls: list[tuple[str, DateRange]] = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def fetch(self, scope: EntityScope, date_range: DateRange) -> list[Any]:
        pair = (scope.scope_id, date_range)
        attempt = sum(1 for call in self.calls if call == pair)
        self.calls.append(pair)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            outcomes = self.script.get(pair)
            if outcomes is None:
                return self.default(scope, date_range)
            outcome = outcomes[min(attempt, len(outcomes) - 1)]
            if isinstance(outcome, BaseException):
                raise outcome
            return outcome
        finally:
            self.in_flight -= 1

    def attempts_for(self, scope_id: str, date_range: DateRange) -> int:
        return sum(1 for call in self.calls if call == (scope_id, date_range))


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def january() -> DateRange:
    """The 31 days of January 2025."""
    return make_range("2025-01-01", "2025-01-31")


@pytest.fixture
def fake_fetcher() -> FakeChunkFetcher:
    """Fetcher returning one default record per (scope, chunk)."""
    return FakeChunkFetcher()
