"""Pydantic models for intents, entities, conversation state and responses."""

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from src.analysis.models import AnalysisResult, TimeSeriesPoint
from src.assistant.patterns import IntentKind

Severity = Literal["low", "medium", "high", "critical"]
Aggregation = Literal["mean", "max", "min", "sum", "count", "median", "stddev"]


class ActionId(StrEnum):
    """Follow-up actions the engine can execute. ``set_time_range:<d>`` is parameterised."""

    FIND_ANOMALIES = "find_anomalies"
    RUN_ANOMALY_ANALYSIS = "run_anomaly_analysis"
    CHECK_STATUS = "check_status"
    ANALYZE_TRENDS = "analyze_trends"
    BROWSE_METRICS = "browse_metrics"
    SEARCH_METRICS = "search_metrics"
    CHANGE_TIME_RANGE = "change_time_range"
    COMPARE_PERIODS = "compare_periods"
    COMPARE_YESTERDAY_TODAY = "compare_yesterday_today"
    COMPARE_WEEKS = "compare_weeks"
    SHOW_FORECAST = "show_forecast"
    SHOW_HELP = "show_help"
    RUN_HEALTH_CHECK = "run_health_check"


SET_TIME_RANGE_PREFIX = "set_time_range:"


class Intent(BaseModel):
    """The classified purpose of a single user message."""

    model_config = ConfigDict(frozen=True)

    type: IntentKind
    handler: IntentKind
    confidence: float = Field(ge=0.0, le=1.0)
    source: Literal["pattern", "llm"] = "pattern"
    # Populated only by the language-model strategy
    metrics: tuple[str, ...] = ()
    time_range: str | None = None
    operation: str | None = None
    reasoning: str | None = None


class Entities(BaseModel):
    """Structured values pulled from free text. Every field is optional."""

    time_range: str | None = None
    metric: str | None = None
    severity: Severity | None = None
    aggregation: Aggregation | None = None
    values: list[str] = Field(default_factory=list)
    possible_metric: str | None = None


class MetricRef(BaseModel):
    """A measurement/field pair the conversation is currently about."""

    measurement: str
    field: str = "value"

    @property
    def label(self) -> str:
        if self.field == "value":
            return self.measurement
        return f"{self.measurement}.{self.field}"


class Turn(BaseModel):
    """One handled message in the conversation history."""

    message: str
    intent: IntentKind
    entities: Entities
    result: dict[str, Any]
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))


class ConversationContext(BaseModel):
    """Per-session mutable state. One writer per turn, never shared across sessions."""

    current_metric: MetricRef | None = None
    current_time_range: str = "1h"
    current_datasource: str | None = None
    datasource_type: Literal["prometheus", "influxdb"] | None = None
    database: str | None = None
    # Set while a clarification prompt is waiting for the user to name a metric
    awaiting_metric_for: IntentKind | None = None
    history: list[Turn] = Field(default_factory=list)


class Action(BaseModel):
    """A follow-up the host can offer; ``action_id`` feeds back into execute_action."""

    label: str
    action_id: str


class AssistantResponse(BaseModel):
    """What one turn returns to the host."""

    text: str
    data: dict[str, Any] = Field(default_factory=dict)
    actions: list[Action] = Field(default_factory=list)


class MetricOutcome(BaseModel):
    """Result of querying and analysing one metric within a batch."""

    metric: str
    query: str | None = None
    analysis: AnalysisResult | None = None
    error: str | None = None
    points: list[TimeSeriesPoint] = Field(default_factory=list, exclude=True)

    @property
    def ok(self) -> bool:
        return self.error is None and self.analysis is not None
