"""Metric catalogs: where the assistant learns which measurements exist."""

import logging
from collections.abc import Iterable
from typing import Protocol, TypedDict

import httpx

from src.config import Settings, get_settings
from src.query.executor import QueryExecutionError, QueryExecutor
from src.query.models import QueryOptions
from src.query.translator import build_request

logger = logging.getLogger(__name__)


class MetricCatalog(Protocol):
    async def list(self) -> list[str]: ...


class StaticMetricCatalog:
    """Fixed list of names, for hosts that already know their metrics and for tests."""

    def __init__(self, names: Iterable[str] = ()) -> None:
        self._names = list(dict.fromkeys(names))

    async def list(self) -> list[str]:
        return list(self._names)


class PrometheusLabelValuesResponse(TypedDict, total=False):
    status: str
    data: list[str]


class PrometheusMetricCatalog:
    """Metric names from Prometheus' ``__name__`` label values."""

    def __init__(self, settings: Settings | None = None) -> None:
        self._settings = settings or get_settings()

    async def list(self) -> list[str]:
        url = f"{self._settings.prometheus_url}/api/v1/label/__name__/values"
        timeout = self._settings.query_timeout_seconds
        try:
            async with httpx.AsyncClient(timeout=timeout) as client:
                response = await client.get(url)
                _ = response.raise_for_status()
                data: PrometheusLabelValuesResponse = response.json()  # pyright: ignore[reportAny]
        except httpx.HTTPStatusError as e:
            raise QueryExecutionError(
                f"Prometheus API error: HTTP {e.response.status_code} - {e.response.text[:500]}"
            ) from e
        except httpx.ConnectError as e:
            raise QueryExecutionError(f"Cannot connect to Prometheus at {self._settings.prometheus_url}: {e}") from e
        except httpx.TimeoutException as e:
            raise QueryExecutionError(f"Prometheus metric listing timed out after {timeout}s: {e}") from e

        if data.get("status") != "success":
            raise QueryExecutionError(f"Prometheus metric listing failed: {data}")
        names = sorted(data.get("data", []))
        logger.debug("Loaded %d metric names from Prometheus", len(names))
        return names


class InfluxMetricCatalog:
    """Measurement names from ``SHOW MEASUREMENTS``, run through the query executor."""

    def __init__(self, executor: QueryExecutor, datasource_uid: str, database: str | None = None) -> None:
        self._executor = executor
        self._datasource_uid = datasource_uid
        self._database = database

    async def list(self) -> list[str]:
        request = build_request(
            self._datasource_uid,
            "SHOW MEASUREMENTS",
            QueryOptions(datasource_type="influxdb", database=self._database, format="table"),
        )
        result = await self._executor.execute(request)
        # Single "name" column, one measurement per row
        names = [str(row[0]) for row in result.values if row and row[0]]
        logger.debug("Loaded %d measurements from InfluxDB", len(names))
        return names


def create_catalog(executor: QueryExecutor, settings: Settings | None = None) -> MetricCatalog:
    """Pick the catalog matching the configured default datasource."""
    settings = settings or get_settings()
    if settings.default_datasource_type == "prometheus" and settings.prometheus_url:
        return PrometheusMetricCatalog(settings)
    return InfluxMetricCatalog(executor, settings.default_datasource_uid, settings.default_database or None)
