"""
HTTP insights client implementing the ChunkFetcher interface.

Fetches one scope's insights rows for one date sub-range from an insights
service over HTTP:

    GET {base_url}/scopes/{scope_id}/insights?since=YYYY-MM-DD&until=YYYY-MM-DD

The response body is ``{"data": [row, ...], "paging": {"next_cursor": ...}}``.
Pages are followed until no cursor is returned. Each row becomes a MetricRecord
payload; validation is left to the engine so a single bad row is dropped
instead of failing the whole chunk.

Retries are the engine's job; this client only classifies failures:
- 429 and 5xx responses, timeouts and transport errors are transient
- any other 4xx response is permanent
"""

from typing import Any, Optional

import httpx
import structlog

from admetrics.config import get_settings
from admetrics.connectors.base import ChunkFetcher, PermanentFetchError, TransientFetchError
from admetrics.models.enums import DerivedRatio
from admetrics.models.metrics import COUNTER_FIELDS, DateRange, EntityScope

logger = structlog.get_logger()

# Row fields carrying upstream-computed ratios
REPORTED_FIELDS: dict[str, DerivedRatio] = {
    "roas": DerivedRatio.REPORTED_ROAS,
    "cpm": DerivedRatio.REPORTED_CPM,
    "outbound_ctr": DerivedRatio.OUTBOUND_CTR,
    "frequency": DerivedRatio.FREQUENCY,
}


def _as_float(value: Any) -> Optional[float]:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def row_to_payload(scope: EntityScope, row: dict[str, Any]) -> dict[str, Any]:
    """
    Map one insights row onto the MetricRecord schema.

    Rows without an ``entity_id`` are scope-level (account) rows. When the row
    carries a ROAS figure but no purchase value, revenue is taken as
    spend × ROAS.

    Args:
        scope: Scope the row was fetched for
        row: Raw row from the insights response

    Returns:
        Dict ready for MetricRecord.model_validate
    """
    counters = {field: row[field] for field in COUNTER_FIELDS if row.get(field) is not None}
    reported = {
        ratio.value: row[name] for name, ratio in REPORTED_FIELDS.items() if row.get(name) is not None
    }

    if "purchase_value" not in counters:
        spend = _as_float(row.get("spend"))
        roas = _as_float(row.get("roas"))
        if spend is not None and roas is not None:
            counters["purchase_value"] = spend * roas

    entity_id = row.get("entity_id")
    return {
        "key": {
            "scope_id": scope.scope_id,
            "sub_entity_id": str(entity_id) if entity_id is not None else None,
            "display_name": row.get("entity_name") or scope.display_name,
        },
        "counters": counters,
        "reported": reported,
    }


class InsightsAPIClient(ChunkFetcher):
    """
    Async insights service client.

    Attributes:
        base_url: Insights service base URL
        timeout: Per-request timeout in seconds

    Example:
        >>> async with InsightsAPIClient() as client:
        ...     rows = await client.fetch(EntityScope(scope_id="act_1001"), chunk)
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_token: Optional[str] = None,
        timeout: Optional[float] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Initialize the insights client.

        Args:
            base_url: Service base URL (defaults to settings)
            api_token: Bearer token (defaults to settings)
            timeout: Per-request timeout in seconds (defaults to settings)
            http_client: Pre-built client, e.g. one with a mock transport
        """
        settings = get_settings()
        self.base_url = (base_url or settings.insights_base_url).rstrip("/")
        self._api_token = api_token if api_token is not None else settings.insights_api_token
        self.timeout = timeout or settings.fetch_timeout_seconds
        self._http_client = http_client
        self._owns_client = http_client is None

    async def __aenter__(self):
        """Async context manager entry."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self.timeout)
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.aclose()

    async def aclose(self) -> None:
        if self._http_client is not None and self._owns_client:
            await self._http_client.aclose()
            self._http_client = None

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self._api_token:
            headers["Authorization"] = f"Bearer {self._api_token}"
        return headers

    async def _get_page(self, url: str, params: dict[str, str]) -> dict[str, Any]:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self.timeout)
            self._owns_client = True

        try:
            response = await self._http_client.get(url, params=params, headers=self._headers())
        except httpx.TimeoutException as e:
            raise TransientFetchError(f"Insights request timed out: {e}") from e
        except httpx.TransportError as e:
            raise TransientFetchError(f"Insights transport error: {e}") from e

        status = response.status_code
        if status == 429 or status >= 500:
            logger.warning("insights_request_throttled_or_failed", url=url, status_code=status)
            raise TransientFetchError(f"Insights service returned {status}: {response.text}")
        if status >= 400:
            logger.error("insights_request_rejected", url=url, status_code=status)
            raise PermanentFetchError(f"Insights service returned {status}: {response.text}")

        try:
            body = response.json()
        except ValueError as e:
            raise TransientFetchError(f"Insights response is not valid JSON: {e}") from e

        if not isinstance(body, dict):
            raise TransientFetchError("Insights response body is not an object")
        return body

    async def fetch(self, scope: EntityScope, date_range: DateRange) -> list[Any]:
        """
        Fetch all insights rows for one scope over one sub-range.

        Args:
            scope: Entity scope (ad account) to fetch
            date_range: Inclusive sub-range

        Returns:
            MetricRecord payload dicts, one per row

        Raises:
            TransientFetchError: On throttling, 5xx, timeouts or transport errors
            PermanentFetchError: On any other 4xx response
        """
        url = f"{self.base_url}/scopes/{scope.scope_id}/insights"
        params = {"since": date_range.start.isoformat(), "until": date_range.end.isoformat()}

        payloads: list[Any] = []
        pages = 0
        while True:
            body = await self._get_page(url, params)
            pages += 1
            rows = body.get("data") or []
            for row in rows:
                payloads.append(row_to_payload(scope, row) if isinstance(row, dict) else row)

            cursor = (body.get("paging") or {}).get("next_cursor")
            if not cursor:
                break
            params = {**params, "after": cursor}

        logger.info(
            "insights_fetched",
            scope_id=scope.scope_id,
            range=str(date_range),
            rows=len(payloads),
            pages=pages,
        )

        return payloads
