"""Turn a metric plus an operation into query text for each datasource dialect."""

from typing import NamedTuple

from src.query.durations import normalize_duration, parse_duration_seconds
from src.query.models import DatasourceType

RAW_QUERY_LIMIT = 1000
ANOMALY_QUERY_LIMIT = 2000

HOUR = 3600
DAY = 86400

INFLUX_AGGREGATIONS = frozenset({"mean", "max", "min", "sum", "count", "median", "stddev"})

PROMQL_OVER_TIME: dict[str, str] = {
    "mean": "avg_over_time",
    "max": "max_over_time",
    "min": "min_over_time",
    "sum": "sum_over_time",
    "count": "count_over_time",
    "stddev": "stddev_over_time",
}

# (max window in seconds, group-by interval): the first row the window fits wins
_GROUP_INTERVALS: tuple[tuple[int, str], ...] = (
    (HOUR, "1m"),
    (6 * HOUR, "5m"),
    (2 * DAY, "15m"),
    (7 * DAY, "1h"),
)
_WIDEST_GROUP_INTERVAL = "6h"

# Anomaly baselines look further back than the question asked about
_ANOMALY_WINDOWS: tuple[tuple[int, str, str], ...] = (
    (HOUR, "6h", "30s"),
    (DAY, "7d", "5m"),
)
_WIDEST_ANOMALY_WINDOW = ("30d", "1h")


class QueryPlan(NamedTuple):
    """Query text plus the window and step it was built for."""

    text: str
    time_range: str
    interval: str


def group_interval(time_range: str) -> str:
    """Bucket width that keeps a window at a chartable number of points."""
    seconds = parse_duration_seconds(normalize_duration(time_range)) or HOUR
    for limit, interval in _GROUP_INTERVALS:
        if seconds <= limit:
            return interval
    return _WIDEST_GROUP_INTERVAL


def _quote(identifier: str) -> str:
    return '"' + identifier.replace('"', '\\"') + '"'


def build_influx_query(
    measurement: str,
    field: str = "value",
    operation: str | None = None,
    time_range: str = "1h",
) -> QueryPlan:
    """InfluxQL bucketed when an aggregation is requested.

    The window is applied through Grafana's ``$timeFilter`` macro, so the
    request bounds decide which points come back.
    """
    window = normalize_duration(time_range)
    interval = group_interval(window)
    if operation in INFLUX_AGGREGATIONS:
        text = (
            f"SELECT {operation}({_quote(field)}) FROM {_quote(measurement)} WHERE $timeFilter "
            + f"GROUP BY time({interval}) fill(null) LIMIT {RAW_QUERY_LIMIT}"
        )
    else:
        text = f"SELECT {_quote(field)} FROM {_quote(measurement)} WHERE $timeFilter LIMIT {RAW_QUERY_LIMIT}"
    return QueryPlan(text, window, interval)


def build_promql_query(metric: str, operation: str | None = None, time_range: str = "1h") -> QueryPlan:
    """PromQL for a range query. The window is carried by the request bounds."""
    window = normalize_duration(time_range)
    interval = group_interval(window)
    if operation in PROMQL_OVER_TIME:
        text = f"{PROMQL_OVER_TIME[operation]}({metric}[{interval}])"
    elif operation == "rate":
        text = f"rate({metric}[{interval}])"
    else:
        text = metric
    return QueryPlan(text, window, interval)


def build_anomaly_query(
    measurement: str,
    field: str = "value",
    time_range: str = "1h",
    datasource_type: DatasourceType = "influxdb",
) -> QueryPlan:
    """Higher-resolution query over a widened window so the baseline has history."""
    seconds = parse_duration_seconds(normalize_duration(time_range)) or HOUR
    window, interval = _WIDEST_ANOMALY_WINDOW
    for limit, candidate_window, candidate_interval in _ANOMALY_WINDOWS:
        if seconds <= limit:
            window, interval = candidate_window, candidate_interval
            break

    if datasource_type == "prometheus":
        return QueryPlan(measurement, window, interval)
    text = (
        f"SELECT mean({_quote(field)}) FROM {_quote(measurement)} WHERE $timeFilter "
        + f"GROUP BY time({interval}) fill(null) LIMIT {ANOMALY_QUERY_LIMIT}"
    )
    return QueryPlan(text, window, interval)


def build_metric_query(
    measurement: str,
    field: str = "value",
    operation: str | None = None,
    time_range: str = "1h",
    datasource_type: DatasourceType = "influxdb",
) -> QueryPlan:
    """Dispatch to the dialect builder for the datasource type."""
    if datasource_type == "prometheus":
        return build_promql_query(measurement, operation, time_range)
    return build_influx_query(measurement, field, operation, time_range)
