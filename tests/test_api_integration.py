"""Integration tests for the FastAPI host.

Uses TestClient with a mocked engine and mocked HTTP health endpoints; no real services needed.
"""

import asyncio
from collections.abc import Generator
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest
import respx
from fastapi.testclient import TestClient

from src.api.main import SessionStore
from src.assistant.models import Action, AssistantResponse

GRAFANA_HEALTH = "http://grafana.test:3000/api/health"
PROMETHEUS_HEALTH = "http://prometheus.test:9090/-/healthy"

# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def mock_engine() -> MagicMock:
    """A fake engine whose two operations return canned responses."""
    engine = MagicMock(name="fake_engine")
    engine.process_message = AsyncMock(
        return_value=AssistantResponse(
            text="No anomalies detected in cpu.",
            data={"type": "no_anomalies"},
            actions=[Action(label="Analyze Trends", action_id="analyze_trends")],
        )
    )
    engine.execute_action = AsyncMock(
        return_value=AssistantResponse(text="Time range updated.", data={"type": "time_range_updated"})
    )
    return engine


@pytest.fixture
def client(mock_settings: object, mock_engine: MagicMock) -> Generator[TestClient]:  # noqa: ARG001
    """Create a TestClient with the engine pre-injected into app state."""
    with patch("src.api.main.build_engine", return_value=mock_engine):
        from src.api.main import app

        with TestClient(app) as tc:
            yield tc


# ---------------------------------------------------------------------------
# POST /message
# ---------------------------------------------------------------------------


@pytest.mark.integration
class TestMessageEndpoint:
    """Tests for POST /message."""

    def test_successful_message(self, client: TestClient, mock_engine: MagicMock) -> None:
        resp = client.post("/message", json={"message": "anything odd in cpu?"})

        assert resp.status_code == 200
        body = resp.json()
        assert body["text"] == "No anomalies detected in cpu."
        assert body["data"] == {"type": "no_anomalies"}
        assert body["actions"] == [{"label": "Analyze Trends", "action_id": "analyze_trends"}]
        assert mock_engine.process_message.await_args.args[0] == "anything odd in cpu?"

    def test_server_generates_session_id(self, client: TestClient) -> None:
        resp = client.post("/message", json={"message": "hello"})
        assert len(resp.json()["session_id"]) == 8

    def test_client_session_id_echoed(self, client: TestClient) -> None:
        resp = client.post("/message", json={"message": "hello", "session_id": "my-sess-1"})
        assert resp.json()["session_id"] == "my-sess-1"

    def test_same_session_reuses_context(self, client: TestClient, mock_engine: MagicMock) -> None:
        client.post("/message", json={"message": "one", "session_id": "s1"})
        client.post("/message", json={"message": "two", "session_id": "s1"})
        client.post("/message", json={"message": "three", "session_id": "s2"})

        contexts = [call.args[1] for call in mock_engine.process_message.await_args_list]
        assert contexts[0] is contexts[1]
        assert contexts[0] is not contexts[2]

    def test_turn_runs_under_the_session_lock(self, client: TestClient, mock_engine: MagicMock) -> None:
        held: list[bool] = []

        async def turn(message: str, context: object) -> AssistantResponse:
            _, lock = client.app.state.sessions.get("s1")
            held.append(lock.locked())
            return AssistantResponse(text="ok")

        mock_engine.process_message.side_effect = turn

        client.post("/message", json={"message": "hello", "session_id": "s1"})

        assert held == [True]
        assert client.app.state.sessions.get("s1")[1].locked() is False

    def test_least_recently_used_session_evicted(self, client: TestClient, mock_engine: MagicMock) -> None:
        client.app.state.sessions = SessionStore(max_sessions=2, default_time_range="1h")
        client.post("/message", json={"message": "one", "session_id": "s1"})
        client.post("/message", json={"message": "two", "session_id": "s2"})
        client.post("/message", json={"message": "again", "session_id": "s1"})
        client.post("/message", json={"message": "three", "session_id": "s3"})

        sessions = client.app.state.sessions
        assert len(sessions) == 2
        assert "s1" in sessions
        assert "s2" not in sessions
        contexts = [call.args[1] for call in mock_engine.process_message.await_args_list]
        assert contexts[0] is contexts[2]

    def test_new_context_uses_default_time_range(self, client: TestClient, mock_engine: MagicMock) -> None:
        client.post("/message", json={"message": "hello"})
        context = mock_engine.process_message.await_args.args[1]
        assert context.current_time_range == "1h"

    def test_missing_message_returns_422(self, client: TestClient) -> None:
        resp = client.post("/message", json={})
        assert resp.status_code == 422

    def test_engine_failure_returns_500(self, client: TestClient, mock_engine: MagicMock) -> None:
        mock_engine.process_message.side_effect = RuntimeError("engine exploded")

        resp = client.post("/message", json={"message": "boom"})

        assert resp.status_code == 500
        assert "engine exploded" in resp.json()["detail"]


# ---------------------------------------------------------------------------
# POST /action
# ---------------------------------------------------------------------------


@pytest.mark.integration
class TestActionEndpoint:
    """Tests for POST /action."""

    def test_action_shares_message_session(self, client: TestClient, mock_engine: MagicMock) -> None:
        client.post("/message", json={"message": "hello", "session_id": "s1"})

        resp = client.post("/action", json={"action_id": "set_time_range:6h", "session_id": "s1"})

        assert resp.status_code == 200
        assert resp.json()["data"] == {"type": "time_range_updated"}
        action_id, context = mock_engine.execute_action.await_args.args
        assert action_id == "set_time_range:6h"
        assert context is mock_engine.process_message.await_args.args[1]

    def test_session_id_required(self, client: TestClient) -> None:
        resp = client.post("/action", json={"action_id": "show_help"})
        assert resp.status_code == 422


# ---------------------------------------------------------------------------
# GET /health and /metrics
# ---------------------------------------------------------------------------


@pytest.mark.integration
class TestHealthEndpoint:
    """Tests for GET /health."""

    @respx.mock
    def test_all_healthy(self, client: TestClient) -> None:
        grafana = respx.get(GRAFANA_HEALTH).mock(return_value=httpx.Response(200, json={"database": "ok"}))
        respx.get(PROMETHEUS_HEALTH).mock(return_value=httpx.Response(200, text="Prometheus Server is Healthy."))

        resp = client.get("/health")

        assert resp.status_code == 200
        body = resp.json()
        assert body["status"] == "healthy"
        assert [c["name"] for c in body["components"]] == ["grafana", "prometheus", "datasource"]
        assert grafana.calls.last.request.headers["Authorization"] == "Bearer glsa_test_fake"

    @respx.mock
    def test_prometheus_unreachable(self, client: TestClient) -> None:
        respx.get(GRAFANA_HEALTH).mock(return_value=httpx.Response(200, json={"database": "ok"}))
        respx.get(PROMETHEUS_HEALTH).mock(side_effect=httpx.ConnectError("connection refused"))

        body = client.get("/health").json()

        assert body["status"] == "degraded"
        prom = next(c for c in body["components"] if c["name"] == "prometheus")
        assert prom["status"] == "unhealthy"
        assert "connection refused" in prom["detail"]

    @respx.mock
    def test_grafana_error_status(self, client: TestClient) -> None:
        respx.get(GRAFANA_HEALTH).mock(return_value=httpx.Response(503))
        respx.get(PROMETHEUS_HEALTH).mock(return_value=httpx.Response(200, text="ok"))

        body = client.get("/health").json()

        grafana = next(c for c in body["components"] if c["name"] == "grafana")
        assert grafana == {"name": "grafana", "status": "unhealthy", "detail": "HTTP 503"}
        assert body["status"] == "degraded"


@pytest.mark.integration
class TestMetricsEndpoint:
    def test_exposition_format(self, client: TestClient) -> None:
        client.post("/message", json={"message": "hello"})

        resp = client.get("/metrics")

        assert resp.status_code == 200
        assert 'ts_assistant_requests_total{endpoint="/message",status="success"}' in resp.text
        assert "ts_assistant_info" in resp.text


# ---------------------------------------------------------------------------
# Session store
# ---------------------------------------------------------------------------


class TestSessionStore:
    def test_same_id_returns_same_context_and_lock(self) -> None:
        store = SessionStore(max_sessions=10, default_time_range="6h")
        first = store.get("s1")
        assert store.get("s1") is first
        assert first[0].current_time_range == "6h"

    def test_bounded_by_max_sessions(self) -> None:
        store = SessionStore(max_sessions=3, default_time_range="1h")
        for i in range(10):
            store.get(f"s{i}")
        assert len(store) == 3
        assert [f"s{i}" in store for i in range(10)] == [False] * 7 + [True] * 3

    def test_access_refreshes_recency(self) -> None:
        store = SessionStore(max_sessions=2, default_time_range="1h")
        store.get("a")
        store.get("b")
        store.get("a")
        store.get("c")
        assert "a" in store
        assert "b" not in store

    async def test_turns_on_one_session_run_one_at_a_time(self) -> None:
        store = SessionStore(max_sessions=10, default_time_range="1h")
        active = 0
        peak = 0

        async def turn() -> None:
            nonlocal active, peak
            _, lock = store.get("s1")
            async with lock:
                active += 1
                peak = max(peak, active)
                await asyncio.sleep(0)
                active -= 1

        await asyncio.gather(*(turn() for _ in range(5)))

        assert peak == 1
