"""Run query requests against Grafana's datasource query API."""

import logging
import time
from typing import Any, Protocol, TypedDict

import httpx

from src.config import Settings, get_settings
from src.observability.metrics import DATASOURCE_QUERIES_TOTAL, DATASOURCE_QUERY_DURATION
from src.query.models import PrometheusQuery, QueryRequest, QueryResult
from src.query.translator import validate_request

logger = logging.getLogger(__name__)


class QueryExecutionError(Exception):
    """The datasource could not be reached or refused the query."""


class QueryExecutor(Protocol):
    async def execute(self, request: QueryRequest) -> QueryResult: ...


# --- Grafana /api/ds/query response types ---


class GrafanaField(TypedDict, total=False):
    name: str
    type: str


class GrafanaFrameSchema(TypedDict, total=False):
    name: str
    refId: str
    fields: list[GrafanaField]


class GrafanaFrameData(TypedDict, total=False):
    values: list[list[Any]]


class GrafanaFrame(TypedDict, total=False):
    schema: GrafanaFrameSchema
    data: GrafanaFrameData


class GrafanaRefResult(TypedDict, total=False):
    status: int
    error: str
    frames: list[GrafanaFrame]


class GrafanaQueryResponse(TypedDict, total=False):
    results: dict[str, GrafanaRefResult]


def frames_to_result(response: GrafanaQueryResponse) -> QueryResult:
    """Flatten the first non-empty data frame into row-oriented columns/values.

    Grafana returns frames column-major (one list per field); analysis wants
    one row per timestamp.

    Raises:
        QueryExecutionError: If any refId reports an error.
    """
    if not isinstance(response, dict):
        raise QueryExecutionError(f"Unexpected Grafana response: {type(response).__name__}")
    results = response.get("results", {})
    for ref_id, ref_result in results.items():
        error = ref_result.get("error")
        if error:
            raise QueryExecutionError(f"Query {ref_id} failed: {error}")

    for ref_result in results.values():
        for frame in ref_result.get("frames", []):
            fields = frame.get("schema", {}).get("fields", [])
            columns_data = frame.get("data", {}).get("values", [])
            if not fields or not columns_data or not columns_data[0]:
                continue
            columns = [f.get("name", f"col{i}") for i, f in enumerate(fields)]
            rows = [list(row) for row in zip(*columns_data, strict=False)]
            return QueryResult(columns=columns, values=rows)

    return QueryResult()


class GrafanaQueryExecutor:
    """QueryExecutor that POSTs requests to ``{grafana_url}/api/ds/query``."""

    def __init__(self, settings: Settings | None = None) -> None:
        self._settings = settings or get_settings()

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json", "Content-Type": "application/json"}
        if self._settings.grafana_service_account_token:
            headers["Authorization"] = f"Bearer {self._settings.grafana_service_account_token}"
        return headers

    @staticmethod
    def _datasource_type(request: QueryRequest) -> str:
        if request.queries and isinstance(request.queries[0], PrometheusQuery):
            return "prometheus"
        return "influxdb"

    async def execute(self, request: QueryRequest) -> QueryResult:
        validate_request(request)
        url = f"{self._settings.grafana_url}/api/ds/query"
        timeout = self._settings.query_timeout_seconds
        ds_type = self._datasource_type(request)

        logger.info("Datasource query (%s): %s", ds_type, "; ".join(q.text for q in request.queries))
        start = time.monotonic()
        try:
            async with httpx.AsyncClient(timeout=timeout) as client:
                response = await client.post(url, json=request.to_payload(), headers=self._headers())
                _ = response.raise_for_status()
                data: GrafanaQueryResponse = response.json()  # pyright: ignore[reportAny]
        except httpx.HTTPStatusError as e:
            DATASOURCE_QUERIES_TOTAL.labels(datasource_type=ds_type, status="error").inc()
            raise QueryExecutionError(
                f"Grafana API error: HTTP {e.response.status_code} - {e.response.text[:500]}"
            ) from e
        except httpx.ConnectError as e:
            DATASOURCE_QUERIES_TOTAL.labels(datasource_type=ds_type, status="error").inc()
            raise QueryExecutionError(f"Cannot connect to Grafana at {self._settings.grafana_url}: {e}") from e
        except httpx.TimeoutException as e:
            DATASOURCE_QUERIES_TOTAL.labels(datasource_type=ds_type, status="error").inc()
            raise QueryExecutionError(f"Grafana query timed out after {timeout}s: {e}") from e
        except httpx.RequestError as e:
            DATASOURCE_QUERIES_TOTAL.labels(datasource_type=ds_type, status="error").inc()
            raise QueryExecutionError(f"Grafana request failed: {e!r}") from e
        except ValueError as e:
            DATASOURCE_QUERIES_TOTAL.labels(datasource_type=ds_type, status="error").inc()
            raise QueryExecutionError(f"Grafana returned a non-JSON response: {e}") from e
        finally:
            DATASOURCE_QUERY_DURATION.labels(datasource_type=ds_type).observe(time.monotonic() - start)

        try:
            result = frames_to_result(data)
        except QueryExecutionError:
            DATASOURCE_QUERIES_TOTAL.labels(datasource_type=ds_type, status="error").inc()
            raise
        DATASOURCE_QUERIES_TOTAL.labels(datasource_type=ds_type, status="success").inc()
        return result
