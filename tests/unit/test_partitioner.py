"""
Unit tests for RangePartitioner and ChunkPolicy resolution.
"""

from datetime import date, timedelta

import pytest
from pydantic import ValidationError

from admetrics.engine.partitioner import RangePartitioner, partition_range
from admetrics.models.metrics import ChunkPolicy, DateRange
from tests.conftest import make_range


class TestChunkPolicy:
    """Tests for ChunkPolicy validation and resolution."""

    def test_requires_exactly_one_input(self):
        """Neither or both inputs is rejected."""
        with pytest.raises(ValidationError):
            ChunkPolicy()
        with pytest.raises(ValidationError):
            ChunkPolicy(chunk_count=2, max_days_per_chunk=30)

    def test_rejects_non_positive_values(self):
        with pytest.raises(ValidationError):
            ChunkPolicy(chunk_count=0)
        with pytest.raises(ValidationError):
            ChunkPolicy(max_days_per_chunk=0)

    def test_resolve_from_threshold(self):
        """Chunk count is ceil(days / max_days_per_chunk)."""
        policy = ChunkPolicy(max_days_per_chunk=10)
        assert policy.resolve(make_range("2025-01-01", "2025-01-31")) == 4
        assert policy.resolve(make_range("2025-01-01", "2025-01-10")) == 1

    def test_resolve_explicit_count(self):
        assert ChunkPolicy(chunk_count=7).resolve(make_range()) == 7


class TestRangePartitioner:
    """Tests for RangePartitioner.partition."""

    def setup_method(self):
        self.partitioner = RangePartitioner()

    def test_single_chunk_returns_input(self, january):
        """n = 1 returns the input range unchanged."""
        assert self.partitioner.partition(january, ChunkPolicy(chunk_count=1)) == [january]

    def test_three_chunks_over_january(self, january):
        chunks = self.partitioner.partition(january, ChunkPolicy(chunk_count=3))
        assert [str(c) for c in chunks] == [
            "2025-01-01..2025-01-11",
            "2025-01-12..2025-01-22",
            "2025-01-23..2025-01-31",
        ]

    def test_last_chunk_absorbs_remainder(self):
        chunks = partition_range(make_range("2025-01-01", "2025-01-10"), ChunkPolicy(chunk_count=4))
        assert [c.days for c in chunks] == [3, 3, 3, 1]
        assert chunks[-1].end == date(2025, 1, 10)

    def test_threshold_policy(self, january):
        chunks = self.partitioner.partition(january, ChunkPolicy(max_days_per_chunk=10))
        assert len(chunks) == 4
        assert all(c.days <= 10 for c in chunks)

    def test_more_chunks_than_days_drops_empty_chunks(self):
        """A 1-day range split 3 ways yields a single 1-day chunk."""
        single_day = make_range("2025-03-15", "2025-03-15")
        assert self.partitioner.partition(single_day, ChunkPolicy(chunk_count=3)) == [single_day]

    def test_empty_trailing_chunks_are_not_emitted(self):
        chunks = self.partitioner.partition(
            make_range("2025-01-01", "2025-01-05"), ChunkPolicy(chunk_count=4)
        )
        assert [str(c) for c in chunks] == [
            "2025-01-01..2025-01-02",
            "2025-01-03..2025-01-04",
            "2025-01-05..2025-01-05",
        ]

    def test_chunks_are_contiguous_and_cover_range(self):
        date_range = make_range("2024-02-01", "2024-11-30")
        chunks = self.partitioner.partition(date_range, ChunkPolicy(max_days_per_chunk=90))
        assert chunks[0].start == date_range.start
        assert chunks[-1].end == date_range.end
        for previous, current in zip(chunks, chunks[1:]):
            assert current.start == previous.end + timedelta(days=1)
        assert sum(c.days for c in chunks) == date_range.days

    def test_inverted_range_rejected(self):
        with pytest.raises(ValidationError):
            DateRange(start=date(2025, 2, 1), end=date(2025, 1, 1))
