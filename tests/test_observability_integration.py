"""Integration tests for the /metrics endpoint and request instrumentation.

Uses TestClient with a mocked engine and mocked HTTP health endpoints; no real services needed.
"""

from collections.abc import Generator
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest
import respx
from fastapi.testclient import TestClient
from prometheus_client import REGISTRY

from src.assistant.models import AssistantResponse

# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def mock_engine() -> MagicMock:
    engine = MagicMock(name="fake_engine")
    engine.process_message = AsyncMock(return_value=AssistantResponse(text="ok"))
    engine.execute_action = AsyncMock(return_value=AssistantResponse(text="ok"))
    return engine


@pytest.fixture
def client(mock_settings: object, mock_engine: MagicMock) -> Generator[TestClient]:  # noqa: ARG001
    with patch("src.api.main.build_engine", return_value=mock_engine):
        from src.api.main import app

        with TestClient(app) as tc:
            yield tc


def _sample(metric_name: str, labels: dict[str, str] | None = None) -> float:
    return REGISTRY.get_sample_value(metric_name, labels or {}) or 0.0


# ---------------------------------------------------------------------------
# GET /metrics
# ---------------------------------------------------------------------------


@pytest.mark.integration
class TestMetricsEndpoint:
    """Tests for GET /metrics."""

    def test_metrics_returns_prometheus_format(self, client: TestClient) -> None:
        resp = client.get("/metrics")
        assert resp.status_code == 200
        assert "text/plain" in resp.headers["content-type"]

    def test_metrics_contains_expected_metric_names(self, client: TestClient) -> None:
        body = client.get("/metrics").text
        assert "ts_assistant_request_duration_seconds" in body
        assert "ts_assistant_requests_total" in body
        assert "ts_assistant_turn_duration_seconds" in body
        assert "ts_assistant_datasource_queries_total" in body
        assert "ts_assistant_llm_calls_total" in body


# ---------------------------------------------------------------------------
# Request instrumentation
# ---------------------------------------------------------------------------


@pytest.mark.integration
class TestRequestInstrumentation:
    """POST /message and POST /action record request metrics."""

    def test_successful_request_increments_counter(self, client: TestClient) -> None:
        labels = {"endpoint": "/message", "status": "success"}
        before = _sample("ts_assistant_requests_total", labels)

        client.post("/message", json={"message": "hello"})

        assert _sample("ts_assistant_requests_total", labels) - before == 1.0

    def test_failed_request_increments_error_counter(self, client: TestClient, mock_engine: MagicMock) -> None:
        mock_engine.execute_action.side_effect = RuntimeError("boom")
        labels = {"endpoint": "/action", "status": "error"}
        before = _sample("ts_assistant_requests_total", labels)

        resp = client.post("/action", json={"action_id": "show_help", "session_id": "s1"})

        assert resp.status_code == 500
        assert _sample("ts_assistant_requests_total", labels) - before == 1.0

    def test_request_duration_recorded(self, client: TestClient) -> None:
        labels = {"endpoint": "/message"}
        before = _sample("ts_assistant_request_duration_seconds_count", labels)

        client.post("/message", json={"message": "hello"})

        assert _sample("ts_assistant_request_duration_seconds_count", labels) - before == 1.0

    def test_in_progress_gauge_returns_to_zero(self, client: TestClient, mock_engine: MagicMock) -> None:
        client.post("/message", json={"message": "hello"})
        mock_engine.process_message.side_effect = RuntimeError("boom")
        client.post("/message", json={"message": "hello"})

        assert _sample("ts_assistant_requests_in_progress", {"endpoint": "/message"}) == 0.0


# ---------------------------------------------------------------------------
# Health gauges
# ---------------------------------------------------------------------------


@pytest.mark.integration
class TestHealthGauges:
    """GET /health mirrors each component's status into a gauge."""

    @respx.mock
    def test_healthy_components_set_gauge_to_one(self, client: TestClient) -> None:
        respx.get("http://grafana.test:3000/api/health").mock(return_value=httpx.Response(200, json={}))
        respx.get("http://prometheus.test:9090/-/healthy").mock(return_value=httpx.Response(200, text="ok"))

        client.get("/health")

        for component in ("grafana", "prometheus", "datasource"):
            assert _sample("ts_assistant_component_healthy", {"component": component}) == 1.0

    @respx.mock
    def test_unhealthy_component_sets_gauge_to_zero(self, client: TestClient) -> None:
        respx.get("http://grafana.test:3000/api/health").mock(side_effect=httpx.ConnectError("refused"))
        respx.get("http://prometheus.test:9090/-/healthy").mock(return_value=httpx.Response(200, text="ok"))

        client.get("/health")

        assert _sample("ts_assistant_component_healthy", {"component": "grafana"}) == 0.0
        assert _sample("ts_assistant_component_healthy", {"component": "prometheus"}) == 1.0
