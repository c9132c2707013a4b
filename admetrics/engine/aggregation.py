"""
Metrics Aggregation Service — chunked fetch, merge and blend.

Pipeline for one request:
1. Partition the requested range into chunks (RangePartitioner)
2. Fetch every (scope, chunk) pair concurrently under a semaphore, retrying
   transient failures with exponential backoff
3. Validate each fetched record, drop malformed ones with a warning, and
   attach derived ratios (DerivedMetricCalculator)
4. Push every outcome onto a queue consumed by a single reducer that owns the
   ChunkMerger, so accumulation never runs concurrently
5. Finalize the merge and, for multi-entity requests, blend a cross-entity
   summary (BlendedAggregator)

A failed (scope, chunk) pair never aborts the request: it is recorded in the
result's failure ledger and the affected records are flagged incomplete.
"""

import asyncio
import time
from typing import Awaitable, Callable, Iterable, Optional, Union

import structlog
from pydantic import ValidationError

from admetrics.config import Settings, get_settings
from admetrics.connectors.base import ChunkFetcher, PermanentFetchError, TransientFetchError
from admetrics.engine.blender import BlendedAggregator
from admetrics.engine.derived import DerivedMetricCalculator
from admetrics.engine.merger import ChunkMerger
from admetrics.engine.partitioner import RangePartitioner
from admetrics.models.enums import FailureKind, ReachPolicy
from admetrics.models.metrics import ChunkPolicy, DateRange, EntityScope, MetricRecord
from admetrics.models.results import AggregationReport, ChunkFailure, PartialResult, RecordWarning

EntityInput = Union[EntityScope, str]


def _describe_validation_error(error: ValidationError) -> str:
    return "; ".join(
        f"{'.'.join(str(part) for part in err['loc']) or 'record'}: {err['msg']}"
        for err in error.errors()
    )


class MetricsAggregationService:
    """
    Engine entry point: metrics for a set of scopes over a long period.

    Attributes:
        fetcher: ChunkFetcher used for every (scope, chunk) pair
        max_concurrency: Simultaneous in-flight fetches
        timeout: Per-attempt fetch timeout in seconds
        max_attempts: Attempts per pair for transient failures
        backoff_base: Wait before retry k (from 0) is backoff_base * 2**k seconds
        reach_policy: Cross-chunk reach combination rule
        default_chunk_days: Max days per chunk when no policy is given

    Example:
        >>> service = MetricsAggregationService(fetcher=InsightsAPIClient())
        >>> report = await service.compute_metrics(
        ...     ["act_1001", "act_1002"],
        ...     DateRange(start=date(2025, 1, 1), end=date(2025, 6, 30)),
        ...     ChunkPolicy(max_days_per_chunk=30),
        ... )
        >>> report.blended.ratio(DerivedRatio.ROAS)
    """

    def __init__(
        self,
        fetcher: ChunkFetcher,
        settings: Optional[Settings] = None,
        *,
        max_concurrency: Optional[int] = None,
        timeout: Optional[float] = None,
        max_attempts: Optional[int] = None,
        backoff_base: Optional[float] = None,
        reach_policy: Optional[ReachPolicy] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """
        Initialize the service.

        Explicit keyword arguments override the corresponding settings.

        Args:
            fetcher: ChunkFetcher implementation
            settings: Settings instance (defaults to get_settings())
            max_concurrency: Simultaneous in-flight fetches
            timeout: Per-attempt fetch timeout in seconds
            max_attempts: Attempts per pair for transient failures
            backoff_base: Exponential backoff base in seconds
            reach_policy: Cross-chunk reach combination rule
            sleep: Coroutine used to wait between attempts
        """
        settings = settings or get_settings()
        self.fetcher = fetcher
        self.max_concurrency = max_concurrency or settings.fetch_max_concurrency
        self.timeout = timeout or settings.fetch_timeout_seconds
        self.max_attempts = max_attempts or settings.fetch_max_attempts
        self.backoff_base = (
            backoff_base if backoff_base is not None else settings.fetch_backoff_base_seconds
        )
        self.reach_policy = reach_policy or ReachPolicy(settings.reach_policy)
        self.default_chunk_days = settings.chunk_max_days
        self._sleep = sleep

        self.partitioner = RangePartitioner()
        self.calculator = DerivedMetricCalculator()
        self.blender = BlendedAggregator(self.calculator)
        self.logger = structlog.get_logger()

    async def compute_metrics(
        self,
        entities: Iterable[EntityInput],
        date_range: DateRange,
        policy: Optional[ChunkPolicy] = None,
        blend: Optional[bool] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> AggregationReport:
        """
        Fetch, merge and optionally blend metrics for the full period.

        Args:
            entities: Scopes to fetch (EntityScope or bare scope IDs)
            date_range: Requested period
            policy: Chunk policy (defaults to default_chunk_days per chunk)
            blend: Build a cross-entity summary (defaults to more than one scope)
            cancel_event: Once set, fetches not yet started are skipped and
                recorded as cancelled; in-flight fetches finish normally

        Returns:
            AggregationReport with merged records, failures and the summary

        Raises:
            ValueError: If no entity scope is given
        """
        scopes = self._normalize_scopes(entities)
        if not scopes:
            raise ValueError("At least one entity scope is required")

        policy = policy or ChunkPolicy(max_days_per_chunk=self.default_chunk_days)
        chunks = self.partitioner.partition(date_range, policy)
        pairs = [(scope, chunk) for scope in scopes for chunk in chunks]
        started = time.monotonic()

        self.logger.info(
            "aggregation_started",
            scopes=len(scopes),
            range=str(date_range),
            chunks=len(chunks),
            fetches=len(pairs),
            max_concurrency=self.max_concurrency,
        )

        semaphore = asyncio.Semaphore(self.max_concurrency)
        queue: asyncio.Queue = asyncio.Queue()

        async def worker(scope: EntityScope, chunk: DateRange) -> None:
            await queue.put(await self._fetch_pair(scope, chunk, semaphore, cancel_event))

        tasks = [asyncio.create_task(worker(scope, chunk)) for scope, chunk in pairs]

        # Single reducer: the merger is only touched here
        merger = ChunkMerger(reach_policy=self.reach_policy, calculator=self.calculator)
        try:
            for _ in range(len(pairs)):
                merger.add(await queue.get())
        finally:
            for task in tasks:
                if not task.done():
                    task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)

        merged = merger.finalize()

        if blend is None:
            blend = len(scopes) > 1
        blended = self.blender.blend(merged.records) if blend else None

        self.logger.info(
            "aggregation_completed",
            entities=len(merged.records),
            failures=len(merged.failures),
            warnings=len(merged.warnings),
            blended=blended is not None,
            duration_ms=round((time.monotonic() - started) * 1000, 1),
        )

        return AggregationReport(
            date_range=date_range,
            chunks=chunks,
            merged=merged,
            blended=blended,
        )

    # =========================================================================
    # Fetch
    # =========================================================================

    async def _fetch_pair(
        self,
        scope: EntityScope,
        chunk: DateRange,
        semaphore: asyncio.Semaphore,
        cancel_event: Optional[asyncio.Event],
    ) -> PartialResult:
        """
        Fetch one (scope, chunk) pair with timeout and bounded retries.

        The semaphore is held only while an attempt is in flight, not while
        backing off.

        Returns:
            PartialResult carrying either records or a ChunkFailure
        """
        attempt = 0
        while True:
            async with semaphore:
                if cancel_event is not None and cancel_event.is_set():
                    return self._failed(
                        scope, chunk, FailureKind.CANCELLED, "Request cancelled", attempt
                    )
                attempt += 1
                try:
                    raw = await asyncio.wait_for(
                        self.fetcher.fetch(scope, chunk), timeout=self.timeout
                    )
                except (TransientFetchError, asyncio.TimeoutError) as e:
                    message = str(e) or f"Fetch timed out after {self.timeout}s"
                    if attempt >= self.max_attempts:
                        self.logger.error(
                            "chunk_fetch_exhausted",
                            scope_id=scope.scope_id,
                            range=str(chunk),
                            attempts=attempt,
                            error=message,
                        )
                        return self._failed(scope, chunk, FailureKind.TRANSIENT, message, attempt)
                    wait_seconds = self.backoff_base * 2 ** (attempt - 1)
                    self.logger.warning(
                        "chunk_fetch_retrying",
                        scope_id=scope.scope_id,
                        range=str(chunk),
                        attempt=attempt,
                        wait_seconds=wait_seconds,
                        error=message,
                    )
                except PermanentFetchError as e:
                    self.logger.error(
                        "chunk_fetch_rejected",
                        scope_id=scope.scope_id,
                        range=str(chunk),
                        error=str(e),
                    )
                    return self._failed(scope, chunk, FailureKind.PERMANENT, str(e), attempt)
                except Exception as e:
                    self.logger.error(
                        "chunk_fetch_error",
                        scope_id=scope.scope_id,
                        range=str(chunk),
                        error=str(e),
                        exc_info=True,
                    )
                    return self._failed(
                        scope, chunk, FailureKind.UNEXPECTED, f"{type(e).__name__}: {e}", attempt
                    )
                else:
                    return self._build_partial(scope, chunk, raw, attempt)

            await self._sleep(wait_seconds)

    def _failed(
        self,
        scope: EntityScope,
        chunk: DateRange,
        kind: FailureKind,
        message: str,
        attempts: int,
    ) -> PartialResult:
        return PartialResult(
            scope_id=scope.scope_id,
            date_range=chunk,
            failure=ChunkFailure(
                scope_id=scope.scope_id,
                date_range=chunk,
                kind=kind,
                message=message,
                attempts=attempts,
            ),
        )

    def _build_partial(
        self,
        scope: EntityScope,
        chunk: DateRange,
        raw: object,
        attempts: int,
    ) -> PartialResult:
        """Validate fetched records and attach derived ratios."""
        if raw is None:
            raw = []
        if not isinstance(raw, (list, tuple)):
            return self._failed(
                scope,
                chunk,
                FailureKind.UNEXPECTED,
                f"Fetcher returned {type(raw).__name__}, expected a list of records",
                attempts,
            )

        records: list[MetricRecord] = []
        warnings: list[RecordWarning] = []

        for index, item in enumerate(raw):
            try:
                record = (
                    item if isinstance(item, MetricRecord) else MetricRecord.model_validate(item)
                )
            except ValidationError as e:
                message = _describe_validation_error(e)
            else:
                if record.key.scope_id == scope.scope_id:
                    records.append(
                        record.model_copy(
                            update={
                                "derived": self.calculator.compute(
                                    record.counters, record.reported
                                )
                            }
                        )
                    )
                    continue
                message = (
                    f"Record scope {record.key.scope_id!r} does not match "
                    f"requested scope {scope.scope_id!r}"
                )

            warnings.append(
                RecordWarning(
                    scope_id=scope.scope_id,
                    date_range=chunk,
                    index=index,
                    message=message,
                )
            )
            self.logger.warning(
                "record_dropped",
                scope_id=scope.scope_id,
                range=str(chunk),
                index=index,
                reason=message,
            )

        self.logger.debug(
            "chunk_fetched",
            scope_id=scope.scope_id,
            range=str(chunk),
            records=len(records),
            dropped=len(warnings),
            attempts=attempts,
        )

        return PartialResult(
            scope_id=scope.scope_id,
            date_range=chunk,
            records=records,
            warnings=warnings,
        )

    @staticmethod
    def _normalize_scopes(entities: Iterable[EntityInput]) -> list[EntityScope]:
        """Coerce inputs to EntityScope and drop duplicate scope IDs, keeping order."""
        scopes: list[EntityScope] = []
        seen: set[str] = set()
        for entity in entities:
            scope = entity if isinstance(entity, EntityScope) else EntityScope(scope_id=entity)
            if scope.scope_id not in seen:
                seen.add(scope.scope_id)
                scopes.append(scope)
        return scopes


async def compute_metrics(
    fetcher: ChunkFetcher,
    entities: Iterable[EntityInput],
    date_range: DateRange,
    policy: Optional[ChunkPolicy] = None,
    blend: Optional[bool] = None,
    **service_options,
) -> AggregationReport:
    """Module-level shortcut: build a service and run one request."""
    service = MetricsAggregationService(fetcher, **service_options)
    return await service.compute_metrics(entities, date_range, policy=policy, blend=blend)
