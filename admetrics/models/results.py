"""
Result models for the aggregation engine.

This module defines the per-chunk fetch outcome, the merged per-entity
result with its failure ledger, and the report returned to callers.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field

from .enums import FailureKind
from .metrics import DateRange, EntityKey, MetricRecord


class ChunkFailure(BaseModel):
    """
    An (entity, chunk) pair that produced no data.

    Attributes:
        scope_id: Scope whose fetch failed
        date_range: Chunk that failed
        kind: Failure classification
        message: Error detail from the last attempt
        attempts: Number of fetch attempts made
    """

    model_config = ConfigDict(frozen=True)

    scope_id: str = Field(description="Scope whose fetch failed")
    date_range: DateRange = Field(description="Chunk that failed")
    kind: FailureKind = Field(description="Failure classification")
    message: str = Field(default="", description="Error detail from the last attempt")
    attempts: int = Field(default=1, ge=0, description="Fetch attempts made")


class RecordWarning(BaseModel):
    """A malformed record dropped from an otherwise successful chunk."""

    model_config = ConfigDict(frozen=True)

    scope_id: str = Field(description="Scope the record was fetched for")
    date_range: DateRange = Field(description="Chunk the record came from")
    index: int = Field(ge=0, description="Position of the record in the chunk response")
    message: str = Field(description="Why the record was rejected")


class PartialResult(BaseModel):
    """
    Outcome of one chunk fetch for one scope.

    Attributes:
        scope_id: Scope that was fetched
        date_range: Chunk the records cover
        records: One record per sub-entity found in the chunk
        failure: Set when the fetch produced no data
        warnings: Records dropped as malformed
    """

    model_config = ConfigDict(frozen=True)

    scope_id: str = Field(description="Scope that was fetched")
    date_range: DateRange = Field(description="Chunk the records cover")
    records: list[MetricRecord] = Field(default_factory=list)
    failure: Optional[ChunkFailure] = Field(default=None)
    warnings: list[RecordWarning] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.failure is None


class MergedResult(BaseModel):
    """
    One merged record per entity over the full requested period.

    Records are ordered by entity key; failures and warnings by scope and
    chunk start, so two merges of the same inputs compare equal.
    """

    records: list[MetricRecord] = Field(default_factory=list)
    failures: list[ChunkFailure] = Field(default_factory=list)
    warnings: list[RecordWarning] = Field(default_factory=list)

    @computed_field
    @property
    def is_complete(self) -> bool:
        return not self.failures

    @property
    def failed_scopes(self) -> list[str]:
        return sorted({f.scope_id for f in self.failures})

    def failures_for(self, scope_id: str) -> list[ChunkFailure]:
        return [f for f in self.failures if f.scope_id == scope_id]

    def get(self, key: EntityKey) -> Optional[MetricRecord]:
        for record in self.records:
            if record.key == key:
                return record
        return None


class AggregationReport(BaseModel):
    """
    Response of the engine entry point.

    Attributes:
        date_range: Requested period
        chunks: Sub-ranges the period was split into
        merged: Per-entity merged records and the failure ledger
        blended: Cross-entity summary, when requested
    """

    date_range: DateRange = Field(description="Requested period")
    chunks: list[DateRange] = Field(description="Sub-ranges fetched")
    merged: MergedResult = Field(description="Per-entity merged result")
    blended: Optional[MetricRecord] = Field(default=None, description="Cross-entity summary")

    @computed_field
    @property
    def is_complete(self) -> bool:
        return self.merged.is_complete
