"""Unit tests for metric-to-query-text builders."""

import pytest

from src.query.builders import (
    build_anomaly_query,
    build_influx_query,
    build_metric_query,
    build_promql_query,
    group_interval,
)
from src.query.translator import is_prometheus_query


class TestGroupInterval:
    @pytest.mark.parametrize(
        ("time_range", "expected"),
        [("15m", "1m"), ("1h", "1m"), ("6h", "5m"), ("1d", "15m"), ("2d", "15m"), ("7d", "1h"), ("30d", "6h")],
    )
    def test_table(self, time_range: str, expected: str) -> None:
        assert group_interval(time_range) == expected

    def test_unparseable_treated_as_default(self) -> None:
        assert group_interval("whenever") == "1m"


class TestInfluxQuery:
    def test_aggregated(self) -> None:
        plan = build_influx_query("cpu", "usage_idle", "max", "6h")
        assert plan.text == (
            'SELECT max("usage_idle") FROM "cpu" WHERE $timeFilter GROUP BY time(5m) fill(null) LIMIT 1000'
        )
        assert plan.time_range == "6h"
        assert plan.interval == "5m"

    def test_raw_when_no_aggregation(self) -> None:
        plan = build_influx_query("mem")
        assert plan.text == 'SELECT "value" FROM "mem" WHERE $timeFilter LIMIT 1000'

    def test_unknown_operation_is_raw(self) -> None:
        assert "GROUP BY" not in build_influx_query("mem", operation="rate").text

    def test_identifiers_are_quoted(self) -> None:
        assert 'FROM "disk \\"io\\""' in build_influx_query('disk "io"').text

    def test_never_looks_like_promql(self) -> None:
        assert is_prometheus_query(build_influx_query("cpu", operation="sum").text) is False


class TestPromqlQuery:
    def test_over_time(self) -> None:
        plan = build_promql_query("node_load1", "mean", "1d")
        assert plan.text == "avg_over_time(node_load1[15m])"
        assert plan.interval == "15m"

    def test_rate(self) -> None:
        assert build_promql_query("http_requests_total", "rate").text == "rate(http_requests_total[1m])"

    def test_bare_metric(self) -> None:
        assert build_promql_query("up").text == "up"

    def test_median_has_no_over_time_form(self) -> None:
        assert build_promql_query("up", "median").text == "up"


class TestAnomalyQuery:
    @pytest.mark.parametrize(
        ("time_range", "window", "interval"),
        [("1h", "6h", "30s"), ("6h", "7d", "5m"), ("1d", "7d", "5m"), ("7d", "30d", "1h")],
    )
    def test_widened_window(self, time_range: str, window: str, interval: str) -> None:
        plan = build_anomaly_query("cpu", time_range=time_range)
        assert plan.time_range == window
        assert plan.interval == interval
        assert f"GROUP BY time({interval})" in plan.text
        assert plan.text.endswith("LIMIT 2000")

    def test_prometheus_is_bare_metric(self) -> None:
        plan = build_anomaly_query("up", time_range="1h", datasource_type="prometheus")
        assert plan.text == "up"
        assert plan.time_range == "6h"


class TestMetricQuery:
    def test_dispatch_prometheus(self) -> None:
        assert build_metric_query("up", operation="max", datasource_type="prometheus").text == (
            "max_over_time(up[1m])"
        )

    def test_dispatch_influx(self) -> None:
        assert build_metric_query("cpu", operation="max").text.startswith('SELECT max("value")')
