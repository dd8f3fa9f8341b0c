"""Build and validate datasource query requests.

A request is shaped for Prometheus when the caller says so or when the query
text looks like PromQL; everything else is sent as a raw InfluxQL query.
"""

import logging
import re
import time
from collections.abc import Iterable, Mapping
from typing import Any

from src.query.models import (
    DEFAULT_INTERVAL_MS,
    BatchEntry,
    DatasourceQuery,
    DatasourceRef,
    InfluxQuery,
    PrometheusQuery,
    QueryOptions,
    QueryRequest,
    TimeRange,
    VariableRequest,
)

logger = logging.getLogger(__name__)

DEFAULT_LOOKBACK_MS = 3_600_000
FALLBACK_INTERVAL_MS = 10_000

_PROMQL_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"^\s*\w+\{.*\}"),  # metric{labels}
    re.compile(r"^\s*\w+\[.*\]"),  # metric[range]
    re.compile(
        r"^\s*(sum|avg|max|min|count|rate|irate|increase|histogram_quantile|predict_linear)\s*\(",
        re.IGNORECASE,
    ),
    re.compile(r"\sby\s*\(", re.IGNORECASE),
    re.compile(r"\swithout\s*\(", re.IGNORECASE),
    re.compile(r"\soffset\s+\d+[smhd]", re.IGNORECASE),
    re.compile(r"^\s*[a-zA-Z_:][a-zA-Z0-9_:]*\s*$"),  # bare metric name, e.g. "up"
)

_INTERVAL_PATTERN = re.compile(r"^(\d+)([smhd])$")
_INTERVAL_MULTIPLIERS_MS = {"s": 1000, "m": 60_000, "h": 3_600_000, "d": 86_400_000}

_LABEL_VALUES_PATTERN = re.compile(r"label_values\s*\(\s*(?:(.+?)\s*,\s*)?(\w+)\s*\)")


class QueryValidationError(ValueError):
    """A query request is missing something the datasource requires."""


def is_prometheus_query(text: str) -> bool:
    """Heuristic: does this query text look like PromQL?"""
    return any(pattern.search(text) for pattern in _PROMQL_PATTERNS)


def parse_interval(text: str | None) -> int:
    """Convert ``<n><s|m|h|d>`` to milliseconds. Missing, malformed or zero input gives 10s."""
    if not text or not isinstance(text, str):
        return FALLBACK_INTERVAL_MS
    match = _INTERVAL_PATTERN.match(text)
    if not match:
        return FALLBACK_INTERVAL_MS
    value = int(match.group(1))
    if value <= 0:
        return FALLBACK_INTERVAL_MS
    return value * _INTERVAL_MULTIPLIERS_MS[match.group(2)]


def default_time_range(now_ms: int | None = None) -> TimeRange:
    """The last hour, ending now."""
    now = now_ms if now_ms is not None else int(time.time() * 1000)
    return TimeRange(from_=str(now - DEFAULT_LOOKBACK_MS), to=str(now))


def _ref_id(index: int) -> str:
    """Spreadsheet-style column names: A..Z, AA, AB, ..."""
    letters = ""
    index += 1
    while index:
        index, rem = divmod(index - 1, 26)
        letters = chr(ord("A") + rem) + letters
    return letters


def _prometheus_query(
    ref_id: str,
    datasource_id: str,
    expr: str,
    options: QueryOptions,
    legend_format: str = "",
    interval: str | None = None,
) -> PrometheusQuery:
    interval = interval or options.interval
    return PrometheusQuery(
        ref_id=ref_id,
        datasource=DatasourceRef(uid=datasource_id),
        expr=expr,
        max_data_points=options.max_data_points,
        format=options.format,
        interval_ms=parse_interval(interval) if interval else DEFAULT_INTERVAL_MS,
        instant=options.instant,
        range=not options.instant,
        legend_format=legend_format or options.legend_format,
        interval=interval,
    )


def _influx_query(
    ref_id: str,
    datasource_id: str,
    text: str,
    options: QueryOptions,
    alias: str | None = None,
) -> InfluxQuery:
    return InfluxQuery(
        ref_id=ref_id,
        datasource=DatasourceRef(uid=datasource_id),
        query=text,
        max_data_points=options.max_data_points,
        format=options.format,
        interval_ms=DEFAULT_INTERVAL_MS,
        database=options.database or None,
        alias=alias or options.alias,
    )


def _wants_prometheus(text: str, datasource_type: str | None) -> bool:
    return datasource_type == "prometheus" or is_prometheus_query(text)


def build_request(datasource_id: str, query_text: str, options: QueryOptions | None = None) -> QueryRequest:
    """Build a single-query request with refId ``A``."""
    options = options or QueryOptions()
    time_range = options.time_range or default_time_range()

    query: DatasourceQuery
    if _wants_prometheus(query_text, options.datasource_type):
        query = _prometheus_query("A", datasource_id, query_text, options)
    else:
        query = _influx_query("A", datasource_id, query_text, options)

    database = options.database if options.database and options.datasource_type == "influxdb" else None
    return QueryRequest(from_=time_range.from_, to=time_range.to, queries=[query], database=database)


def build_batch_request(entries: Iterable[BatchEntry], options: QueryOptions | None = None) -> QueryRequest:
    """Build one request holding several queries.

    Entries without a datasource id or query text are dropped; refIds are
    handed out in order over the entries that remain.
    """
    options = options or QueryOptions()
    time_range = options.time_range or default_time_range()

    queries: list[DatasourceQuery] = []
    for entry in entries:
        if not entry.datasource_id or not entry.query:
            logger.debug("Skipping incomplete batch entry: %s", entry)
            continue
        ref_id = _ref_id(len(queries))
        if _wants_prometheus(entry.query, entry.datasource_type or options.datasource_type):
            queries.append(
                _prometheus_query(
                    ref_id,
                    entry.datasource_id,
                    entry.query,
                    options,
                    legend_format=entry.legend_format,
                    interval=entry.interval,
                )
            )
        else:
            queries.append(_influx_query(ref_id, entry.datasource_id, entry.query, options, alias=entry.alias))

    return QueryRequest(from_=time_range.from_, to=time_range.to, queries=queries)


def validate_request(request: QueryRequest | Mapping[str, Any]) -> None:
    """Check a request is complete enough to send.

    Raises:
        QueryValidationError: On missing time bounds, no queries, or a query
            lacking its refId, datasource uid or expression.
    """
    payload = request.to_payload() if isinstance(request, QueryRequest) else dict(request)

    if not payload.get("from") or not payload.get("to"):
        raise QueryValidationError("Time range (from/to) is required")

    queries = payload.get("queries")
    if not isinstance(queries, list) or not queries:
        raise QueryValidationError("At least one query is required")

    for index, query in enumerate(queries):  # pyright: ignore[reportUnknownVariableType, reportUnknownArgumentType]
        if not isinstance(query, Mapping):
            raise QueryValidationError(f"Query {index} is not an object")
        if not query.get("refId"):
            raise QueryValidationError(f"Query {index} is missing refId")
        datasource = query.get("datasource")
        if not isinstance(datasource, Mapping) or not datasource.get("uid"):
            raise QueryValidationError(f"Query {index} is missing datasource")
        if not query.get("expr") and not query.get("query"):
            raise QueryValidationError(f"Query {index} is missing expression")


def build_variable_request(
    datasource_id: str,
    query_text: str,
    options: QueryOptions | None = None,
) -> VariableRequest:
    """Describe how to resolve a dashboard variable query.

    ``label_values(label)`` and ``label_values(metric, label)`` become Prometheus
    label/series endpoint lookups; other PromQL runs as an instant query.

    Raises:
        QueryValidationError: If a ``label_values`` query cannot be parsed.
    """
    options = options or QueryOptions()
    # label_values(...) is checked first: it never looks like PromQL on its own
    if query_text.lstrip().startswith("label_values"):
        match = _LABEL_VALUES_PATTERN.search(query_text)
        if not match:
            raise QueryValidationError("Invalid label_values query format")
        metric, label = match.group(1), match.group(2)
        if metric:
            return VariableRequest(
                url=f"/api/datasources/proxy/{datasource_id}/api/v1/series",
                params={"match[]": metric},
                extract_label=label,
            )
        return VariableRequest(url=f"/api/datasources/proxy/{datasource_id}/api/v1/label/{label}/values")
    if _wants_prometheus(query_text, options.datasource_type):
        instant = options.model_copy(update={"format": "time_series", "instant": True})
        return VariableRequest(request=build_request(datasource_id, query_text, instant))
    return VariableRequest(request=build_request(datasource_id, query_text, options))


def merge_time_ranges(first: TimeRange | None, second: TimeRange | None) -> TimeRange | None:
    """Smallest range covering both. A missing side yields the other."""
    if first is None:
        return second
    if second is None:
        return first
    return TimeRange(
        from_=str(min(int(first.from_), int(second.from_))),
        to=str(max(int(first.to), int(second.to))),
    )
