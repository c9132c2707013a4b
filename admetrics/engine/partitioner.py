"""
Range Partitioner — split a requested period into fetchable chunks.

Upstream insights sources limit how much history one call may cover, so a
long period is fetched as several contiguous sub-ranges. The partitioner
derives the chunk count from a ChunkPolicy, sizes every chunk at
ceil(totalDays / n) days, and lets the last chunk absorb the remainder.

Guarantees:
- chunks are ordered, contiguous and non-overlapping
- the first chunk starts at range.start and the last ends at range.end
- a single-chunk policy returns the input range unchanged
"""

import math
from datetime import timedelta

import structlog

from admetrics.models.metrics import ChunkPolicy, DateRange

logger = structlog.get_logger()


class RangePartitioner:
    """
    Splits date ranges into chunks according to a ChunkPolicy.

    Example:
        >>> partitioner = RangePartitioner()
        >>> chunks = partitioner.partition(
        ...     DateRange(start=date(2025, 1, 1), end=date(2025, 1, 10)),
        ...     ChunkPolicy(chunk_count=3),
        ... )
        >>> [str(c) for c in chunks]
        ['2025-01-01..2025-01-04', '2025-01-05..2025-01-08', '2025-01-09..2025-01-10']
    """

    def partition(self, date_range: DateRange, policy: ChunkPolicy) -> list[DateRange]:
        """
        Split a range into ordered, contiguous chunks.

        When the policy asks for more chunks than the range can fill at
        ceil(totalDays / n) days each, only the non-empty chunks are returned.

        Args:
            date_range: Inclusive period to split
            policy: Chunk count or max-days-per-chunk policy

        Returns:
            Ordered list of chunk ranges whose union is date_range

        Raises:
            ValueError: If the policy resolves to fewer than one chunk
        """
        n = policy.resolve(date_range)
        if n < 1:
            raise ValueError(f"Chunk count must be at least 1, got {n}")

        if n == 1:
            return [date_range]

        chunk_size = math.ceil(date_range.days / n)
        chunks: list[DateRange] = []

        for i in range(n):
            start = date_range.start + timedelta(days=i * chunk_size)
            if start > date_range.end:
                break
            end = date_range.start + timedelta(days=(i + 1) * chunk_size - 1)
            if i == n - 1 or end > date_range.end:
                end = date_range.end
            chunks.append(DateRange(start=start, end=end))

        logger.debug(
            "range_partitioned",
            range=str(date_range),
            requested_chunks=n,
            chunk_count=len(chunks),
            chunk_size_days=chunk_size,
        )

        return chunks


def partition_range(date_range: DateRange, policy: ChunkPolicy) -> list[DateRange]:
    """Module-level shortcut for RangePartitioner().partition."""
    return RangePartitioner().partition(date_range, policy)
