"""
Metrics aggregation router.

Wired to:
- MetricsAggregationService for chunked fetch, merge and blend
- InsightsAPIClient as the default chunk fetcher
"""

from datetime import date
from typing import AsyncGenerator, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field, ValidationError

from admetrics.connectors.base import ChunkFetcher
from admetrics.connectors.insights_client import InsightsAPIClient
from admetrics.engine.aggregation import MetricsAggregationService
from admetrics.models.metrics import ChunkPolicy, DateRange
from admetrics.utils.logging import get_logger

logger = get_logger(__name__)
router = APIRouter()


class MetricsComputeRequest(BaseModel):
    """Request to aggregate metrics for a set of scopes over a period."""

    entities: List[str] = Field(min_length=1, description="Scope IDs, e.g. ad account IDs")
    start: date = Field(description="First day of the period")
    end: date = Field(description="Last day of the period (inclusive)")
    chunk_count: Optional[int] = Field(default=None, ge=1, description="Explicit chunk count")
    max_days_per_chunk: Optional[int] = Field(
        default=None, ge=1, description="Upper bound on days per chunk"
    )
    blend: Optional[bool] = Field(
        default=None, description="Build a cross-entity summary (default: more than one scope)"
    )


async def get_chunk_fetcher() -> AsyncGenerator[ChunkFetcher, None]:
    """Provide an insights client for the duration of one request."""
    async with InsightsAPIClient() as client:
        yield client


@router.post("/compute")
async def compute_metrics(
    request: MetricsComputeRequest,
    fetcher: ChunkFetcher = Depends(get_chunk_fetcher),
):
    """
    Aggregate metrics for the requested scopes over the full period.
    Failed chunks are reported in the response instead of failing the request.
    """
    try:
        date_range = DateRange(start=request.start, end=request.end)
        policy = None
        if request.chunk_count is not None or request.max_days_per_chunk is not None:
            policy = ChunkPolicy(
                chunk_count=request.chunk_count,
                max_days_per_chunk=request.max_days_per_chunk,
            )
    except ValidationError as e:
        raise HTTPException(
            status_code=422,
            detail=[{"loc": list(err["loc"]), "msg": err["msg"]} for err in e.errors()],
        )

    logger.info(
        "metrics_compute_start",
        entities=len(request.entities),
        range=str(date_range),
    )

    service = MetricsAggregationService(fetcher=fetcher)
    try:
        report = await service.compute_metrics(
            request.entities, date_range, policy=policy, blend=request.blend
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return {"success": True, "data": report.model_dump(mode="json")}
