"""FastAPI host for the analytics assistant.

Exposes the engine's two operations over HTTP. The engine is built once at
startup; conversation contexts are kept in memory, one per session id.
"""

import asyncio
import logging
import time
from collections import OrderedDict
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from typing import Any
from uuid import uuid4

import httpx
from fastapi import FastAPI, HTTPException, Request, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from pydantic import BaseModel, Field

from src.assistant.engine import AssistantEngine
from src.assistant.llm import create_completion_service
from src.assistant.models import Action, AssistantResponse, ConversationContext
from src.config import get_settings
from src.observability.metrics import (
    APP_INFO,
    COMPONENT_HEALTHY,
    REQUEST_DURATION,
    REQUESTS_IN_PROGRESS,
    REQUESTS_TOTAL,
)
from src.query.catalog import create_catalog
from src.query.executor import GrafanaQueryExecutor

logger = logging.getLogger(__name__)

HEALTH_TIMEOUT_SECONDS = 5.0


# ---------------------------------------------------------------------------
# Pydantic models
# ---------------------------------------------------------------------------


class MessageRequest(BaseModel):
    """Request body for POST /message."""

    message: str
    session_id: str | None = None


class ActionRequest(BaseModel):
    """Request body for POST /action."""

    action_id: str
    session_id: str


class TurnResponse(BaseModel):
    """Response body for POST /message and POST /action."""

    text: str
    data: dict[str, Any] = Field(default_factory=dict)
    actions: list[Action] = Field(default_factory=list)
    session_id: str


class ComponentHealth(BaseModel):
    """Health status of a single dependency."""

    name: str
    status: str
    detail: str | None = None


class HealthResponse(BaseModel):
    """Response body for GET /health."""

    status: str
    components: list[ComponentHealth]


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------


class SessionStore:
    """Conversation contexts keyed by session id, least recently used first out.

    Each session carries a lock so concurrent turns on one session run one at a time.
    """

    def __init__(self, max_sessions: int, default_time_range: str) -> None:
        self._max_sessions = max(1, max_sessions)
        self._default_time_range = default_time_range
        self._entries: OrderedDict[str, tuple[ConversationContext, asyncio.Lock]] = OrderedDict()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._entries

    def get(self, session_id: str) -> tuple[ConversationContext, asyncio.Lock]:
        entry = self._entries.get(session_id)
        if entry is not None:
            self._entries.move_to_end(session_id)
            return entry

        entry = (ConversationContext(current_time_range=self._default_time_range), asyncio.Lock())
        self._entries[session_id] = entry
        logger.debug("Created conversation context for session %s", session_id)
        while len(self._entries) > self._max_sessions:
            evicted, _ = self._entries.popitem(last=False)
            logger.debug("Evicted conversation context for session %s", evicted)
        return entry


# ---------------------------------------------------------------------------
# Application lifespan
# ---------------------------------------------------------------------------


def build_engine() -> AssistantEngine:
    """Wire the engine to Grafana, the configured catalog and the optional LLM."""
    settings = get_settings()
    executor = GrafanaQueryExecutor(settings)
    return AssistantEngine(
        executor=executor,
        catalog=create_catalog(executor, settings),
        llm_service=create_completion_service(settings),
        settings=settings,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build the engine once at startup."""
    settings = get_settings()
    APP_INFO.info(
        {
            "version": "0.1.0",
            "datasource_type": settings.default_datasource_type,
            "llm_provider": settings.llm_provider if settings.llm_configured else "none",
        }
    )

    logger.info("Building analytics assistant engine...")
    try:
        app.state.engine = build_engine()
    except Exception:
        logger.exception("Failed to build engine at startup")
        raise
    app.state.sessions = SessionStore(settings.max_sessions, settings.default_time_range)
    logger.info("Engine ready")
    yield
    logger.info("Shutting down analytics assistant")


app = FastAPI(title="Time-Series Analytics Assistant", lifespan=lifespan)


def _session(request: Request, session_id: str) -> tuple[ConversationContext, asyncio.Lock]:
    sessions: SessionStore = request.app.state.sessions
    return sessions.get(session_id)


async def _run_turn(
    endpoint: str,
    session_id: str,
    turn: Callable[[], Awaitable[AssistantResponse]],
) -> TurnResponse:
    REQUESTS_IN_PROGRESS.labels(endpoint=endpoint).inc()
    start = time.monotonic()
    try:
        result = await turn()
    except Exception as exc:
        REQUESTS_TOTAL.labels(endpoint=endpoint, status="error").inc()
        REQUEST_DURATION.labels(endpoint=endpoint).observe(time.monotonic() - start)
        logger.exception("Assistant turn failed")
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    finally:
        REQUESTS_IN_PROGRESS.labels(endpoint=endpoint).dec()

    REQUEST_DURATION.labels(endpoint=endpoint).observe(time.monotonic() - start)
    REQUESTS_TOTAL.labels(endpoint=endpoint, status="success").inc()
    return TurnResponse(text=result.text, data=result.data, actions=result.actions, session_id=session_id)


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@app.get("/metrics")
async def metrics() -> Response:
    """Expose Prometheus metrics in exposition format."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


@app.post("/message", response_model=TurnResponse)
async def message(body: MessageRequest, request: Request) -> TurnResponse:
    """Send a message to the assistant within a session."""
    session_id = body.session_id or uuid4().hex[:8]
    context, lock = _session(request, session_id)
    engine: AssistantEngine = request.app.state.engine
    async with lock:
        return await _run_turn("/message", session_id, lambda: engine.process_message(body.message, context))


@app.post("/action", response_model=TurnResponse)
async def action(body: ActionRequest, request: Request) -> TurnResponse:
    """Run a follow-up action from an earlier response."""
    context, lock = _session(request, body.session_id)
    engine: AssistantEngine = request.app.state.engine
    async with lock:
        return await _run_turn("/action", body.session_id, lambda: engine.execute_action(body.action_id, context))


async def _check_component(name: str, url: str, headers: dict[str, str] | None = None) -> ComponentHealth:
    try:
        async with httpx.AsyncClient(timeout=HEALTH_TIMEOUT_SECONDS) as client:
            resp = await client.get(url, headers=headers)
    except Exception as exc:
        return ComponentHealth(name=name, status="unhealthy", detail=str(exc))
    if resp.status_code == 200:
        return ComponentHealth(name=name, status="healthy")
    return ComponentHealth(name=name, status="unhealthy", detail=f"HTTP {resp.status_code}")


@app.get("/health", response_model=HealthResponse)
async def health() -> HealthResponse:
    """Check health of the assistant's dependencies."""
    settings = get_settings()
    components: list[ComponentHealth] = []

    # --- Grafana ---
    headers = (
        {"Authorization": f"Bearer {settings.grafana_service_account_token}"}
        if settings.grafana_service_account_token
        else None
    )
    components.append(await _check_component("grafana", f"{settings.grafana_url}/api/health", headers))

    # --- Prometheus (optional) ---
    if settings.prometheus_url:
        components.append(await _check_component("prometheus", f"{settings.prometheus_url}/-/healthy"))

    # --- Default datasource ---
    if settings.default_datasource_uid:
        components.append(ComponentHealth(name="datasource", status="healthy"))
    else:
        components.append(
            ComponentHealth(name="datasource", status="unhealthy", detail="DEFAULT_DATASOURCE_UID is not set")
        )

    # --- Update Prometheus gauges ---
    for comp in components:
        COMPONENT_HEALTHY.labels(component=comp.name).set(1.0 if comp.status == "healthy" else 0.0)

    # --- Overall status ---
    healthy_count = sum(1 for c in components if c.status == "healthy")
    if healthy_count == len(components):
        overall = "healthy"
    elif healthy_count == 0:
        overall = "unhealthy"
    else:
        overall = "degraded"

    return HealthResponse(status=overall, components=components)
