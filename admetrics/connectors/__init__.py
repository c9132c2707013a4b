"""
Chunk fetchers for the metrics aggregation engine.

Main Components:
    ChunkFetcher: Abstract per-(scope, sub-range) fetch interface
    InsightsAPIClient: HTTP fetcher for an insights service
    TransientFetchError / PermanentFetchError: Retry classification

Usage:
    >>> from admetrics.connectors import InsightsAPIClient
    >>> async with InsightsAPIClient(base_url="https://insights.example.com/v1") as client:
    ...     payloads = await client.fetch(scope, date_range)
"""

from admetrics.connectors.base import (
    ChunkFetcher,
    ChunkFetchError,
    FetchedRecord,
    PermanentFetchError,
    TransientFetchError,
)
from admetrics.connectors.insights_client import InsightsAPIClient, row_to_payload

__all__ = [
    "ChunkFetcher",
    "ChunkFetchError",
    "FetchedRecord",
    "PermanentFetchError",
    "TransientFetchError",
    "InsightsAPIClient",
    "row_to_payload",
]
