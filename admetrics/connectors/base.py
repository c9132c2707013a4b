"""
Abstract chunk fetcher interface and fetch error taxonomy.

The aggregation engine never talks to an advertising platform directly. It
calls a ChunkFetcher once per (entity scope, date sub-range) pair; the fetcher
owns wire protocol, authentication and pagination. Fetchers signal failures
with the exceptions below so the engine can decide whether to retry.
"""

from abc import ABC, abstractmethod
from typing import Any, Union

from admetrics.models.metrics import DateRange, EntityScope, MetricRecord

# A fetcher may return validated records or raw payloads for the engine to validate
FetchedRecord = Union[MetricRecord, dict[str, Any]]


class ChunkFetchError(Exception):
    """Base class for chunk fetch failures."""

    pass


class TransientFetchError(ChunkFetchError):
    """Raised for failures worth retrying: throttling, timeouts, 5xx, transport errors."""

    pass


class PermanentFetchError(ChunkFetchError):
    """Raised for failures that will not resolve on retry: unknown scope, authorization."""

    pass


class ChunkFetcher(ABC):
    """
    Abstract base class for chunk fetchers.

    Implementations must return raw counters for exactly the requested
    sub-range, one record per sub-entity found (campaign, interest segment,
    or the scope itself for account-level insights).
    """

    @abstractmethod
    async def fetch(self, scope: EntityScope, date_range: DateRange) -> list[FetchedRecord]:
        """
        Fetch metrics for one scope over one date sub-range.

        Args:
            scope: Entity scope to fetch, e.g. an ad account
            date_range: Inclusive sub-range to cover

        Returns:
            MetricRecords or raw record payloads (dicts matching the
            MetricRecord schema); an empty list when the scope had no activity

        Raises:
            TransientFetchError: If the fetch may succeed when retried
            PermanentFetchError: If retrying cannot help
        """
        pass
