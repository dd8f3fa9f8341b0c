"""Conversation engine: turns one message or action into one AssistantResponse.

Each turn classifies the message, resolves the metric against the catalog and
the session context, runs the needed queries one metric at a time, analyses
the returned series and hands the outcomes to the composer. Failures of a
single query are recorded on that metric's outcome; anything else is caught at
``process_message`` / ``execute_action`` and turned into an error response.
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Sequence
from datetime import UTC, datetime
from typing import NamedTuple

from src.analysis.models import SeriesComparison
from src.analysis.statistics import analyze_series, compare_baselines, points_from_result, project_trend
from src.assistant import composer
from src.assistant.context import find_mentioned_metric, record_turn, resolve_metric, resolve_time_range
from src.assistant.entities import extract_alert_condition, extract_comparison_periods, extract_entities
from src.assistant.intents import match_rule
from src.assistant.llm import LanguageModelService
from src.assistant.llm_intent import LLMIntentStrategy
from src.assistant.models import (
    SET_TIME_RANGE_PREFIX,
    ActionId,
    AssistantResponse,
    ConversationContext,
    Entities,
    Intent,
    MetricOutcome,
    MetricRef,
)
from src.assistant.patterns import IntentKind
from src.config import Settings, get_settings
from src.observability.metrics import ANOMALIES_DETECTED_TOTAL, COMPONENT_HEALTHY, TURN_DURATION, TURNS_TOTAL
from src.query.builders import QueryPlan, build_anomaly_query, build_metric_query
from src.query.catalog import MetricCatalog
from src.query.durations import normalize_duration, parse_duration_seconds
from src.query.executor import QueryExecutionError, QueryExecutor
from src.query.models import DatasourceType, QueryOptions, TimeRange
from src.query.translator import QueryValidationError, build_request

logger = logging.getLogger(__name__)

TREND_DEFAULT_TIME_RANGE = "7d"
FORECAST_TIME_RANGE = "7d"
FORECAST_HORIZON = "1d"

# Length of each window when comparing named periods
_PERIOD_LENGTHS = {
    "yesterday": "1d",
    "today": "1d",
    "last week": "7d",
    "this week": "7d",
}

# Actions that replay an intent handler as if the user had asked for it
_ACTION_INTENTS: dict[str, IntentKind] = {
    ActionId.FIND_ANOMALIES: IntentKind.ANOMALY_DETECTION,
    ActionId.RUN_ANOMALY_ANALYSIS: IntentKind.ANOMALY_DETECTION,
    ActionId.CHECK_STATUS: IntentKind.STATUS_CHECK,
    ActionId.ANALYZE_TRENDS: IntentKind.TREND_ANALYSIS,
    ActionId.BROWSE_METRICS: IntentKind.METRIC_QUERY,
}


def _action_label(action_id: str) -> str:
    if action_id.startswith(SET_TIME_RANGE_PREFIX):
        return SET_TIME_RANGE_PREFIX.rstrip(":")
    if action_id in ActionId:
        return action_id
    return "unknown"


class TurnRequest(NamedTuple):
    """Everything a handler needs about the current turn."""

    message: str
    intent: Intent
    entities: Entities
    context: ConversationContext
    catalog_names: list[str]


class Datasource(NamedTuple):
    uid: str
    type: DatasourceType
    database: str | None


type Handler = Callable[[TurnRequest], Awaitable[AssistantResponse]]


class AssistantEngine:
    """Stateless over sessions: every call takes the session's ConversationContext."""

    def __init__(
        self,
        executor: QueryExecutor,
        catalog: MetricCatalog,
        llm_service: LanguageModelService | None = None,
        settings: Settings | None = None,
    ) -> None:
        self._executor = executor
        self._catalog = catalog
        self._settings = settings or get_settings()
        self._classifier = LLMIntentStrategy(llm_service if self._settings.llm_intent_enabled else None)
        self._intent_handlers: dict[IntentKind, Handler] = {
            IntentKind.ANOMALY_DETECTION: self._handle_anomaly_detection,
            IntentKind.STATUS_CHECK: self._handle_status_check,
            IntentKind.TREND_ANALYSIS: self._handle_trend_analysis,
            IntentKind.COMPARISON: self._handle_comparison,
            IntentKind.METRIC_QUERY: self._handle_metric_query,
            IntentKind.ALERT_SETUP: self._handle_alert_setup,
            IntentKind.TIME_RANGE: self._handle_time_range,
            IntentKind.GENERAL_QUERY: self._handle_general_query,
            IntentKind.UNKNOWN: self._handle_unknown,
        }
        self._action_handlers: dict[str, Handler] = {
            ActionId.SEARCH_METRICS: self._action_search_metrics,
            ActionId.CHANGE_TIME_RANGE: self._action_change_time_range,
            ActionId.COMPARE_PERIODS: self._action_compare_periods,
            ActionId.COMPARE_YESTERDAY_TODAY: self._action_compare_yesterday_today,
            ActionId.COMPARE_WEEKS: self._action_compare_weeks,
            ActionId.SHOW_FORECAST: self._action_show_forecast,
            ActionId.SHOW_HELP: self._action_show_help,
            ActionId.RUN_HEALTH_CHECK: self._action_run_health_check,
        }

    # --- Public operations ---

    async def process_message(self, text: str, context: ConversationContext) -> AssistantResponse:
        """Handle one user message and append the turn to the context history."""
        start = time.monotonic()
        intent_label = IntentKind.UNKNOWN.value
        try:
            catalog_names = await self._catalog_names()
            entities = extract_entities(text, catalog_names)
            intent = await self._classifier.classify(text, context, catalog_names)
            intent_label = intent.type.value

            handler_kind = intent.handler
            mentioned = self._mentioned_metric(text, intent, entities, catalog_names)
            if mentioned is not None:
                context.current_metric = MetricRef(measurement=mentioned)
                pending = context.awaiting_metric_for
                context.awaiting_metric_for = None
                # A bare metric name answers the pending question; an explicit request overrides it
                if pending is not None and match_rule(text) is None:
                    handler_kind = pending
            if handler_kind is not intent.handler:
                intent = intent.model_copy(update={"handler": handler_kind})

            logger.info(
                "Message classified as %s (handler=%s, source=%s, confidence=%.2f)",
                intent.type,
                intent.handler,
                intent.source,
                intent.confidence,
            )
            request = TurnRequest(text, intent, entities, context, catalog_names)
            response = await self._intent_handlers[intent.handler](request)
            _ = record_turn(context, text, intent.type, entities, response.model_dump(mode="json"))
        except Exception as e:
            logger.exception("Failed to process message: %s", text[:200])
            TURNS_TOTAL.labels(kind="message", intent=intent_label, status="error").inc()
            return composer.error_response(e)
        finally:
            TURN_DURATION.labels(kind="message").observe(time.monotonic() - start)

        TURNS_TOTAL.labels(kind="message", intent=intent_label, status="success").inc()
        return response

    async def execute_action(self, action_id: str, context: ConversationContext) -> AssistantResponse:
        """Run a follow-up action offered by an earlier response."""
        start = time.monotonic()
        action_label = _action_label(action_id)
        try:
            if action_id.startswith(SET_TIME_RANGE_PREFIX):
                response = self._set_time_range(action_id.removeprefix(SET_TIME_RANGE_PREFIX), context)
            elif action_id in _ACTION_INTENTS:
                kind = _ACTION_INTENTS[action_id]
                request = await self._action_request(action_id, context, kind)
                response = await self._intent_handlers[kind](request)
            elif action_id in self._action_handlers:
                request = await self._action_request(action_id, context, IntentKind.UNKNOWN)
                response = await self._action_handlers[action_id](request)
            else:
                logger.info("Unknown action requested: %s", action_id)
                response = composer.unknown_action(action_id)
        except Exception as e:
            logger.exception("Failed to execute action: %s", action_id)
            TURNS_TOTAL.labels(kind="action", intent=action_label, status="error").inc()
            return composer.error_response(e)
        finally:
            TURN_DURATION.labels(kind="action").observe(time.monotonic() - start)

        TURNS_TOTAL.labels(kind="action", intent=action_label, status="success").inc()
        return response

    # --- Resolution helpers ---

    async def _catalog_names(self) -> list[str]:
        try:
            names = await self._catalog.list()
        except Exception:
            logger.warning("Metric catalog unavailable, continuing without it", exc_info=True)
            COMPONENT_HEALTHY.labels(component="catalog").set(0)
            return []
        COMPONENT_HEALTHY.labels(component="catalog").set(1)
        return names

    async def _action_request(self, action_id: str, context: ConversationContext, kind: IntentKind) -> TurnRequest:
        catalog_names = await self._catalog_names()
        intent = Intent(type=kind, handler=kind, confidence=1.0)
        return TurnRequest(action_id, intent, Entities(), context, catalog_names)

    def _mentioned_metric(
        self,
        text: str,
        intent: Intent,
        entities: Entities,
        catalog_names: Sequence[str],
    ) -> str | None:
        """Catalog metric the message names, preferring what the language model picked."""
        for name in intent.metrics:
            resolved = resolve_metric(name, catalog_names) if catalog_names else name
            if resolved:
                return resolved
        if not catalog_names:
            # Without a catalog only an explicit metric word can stand in for a name
            return entities.possible_metric
        mentioned = find_mentioned_metric(text, catalog_names)
        if mentioned is not None:
            return mentioned
        for candidate in (entities.possible_metric, entities.metric):
            if candidate:
                resolved = resolve_metric(candidate, catalog_names)
                if resolved is not None:
                    return resolved
        return None

    def _metrics_for(self, request: TurnRequest) -> list[MetricRef]:
        """Metrics a handler should run over: every model-picked metric, else the current one."""
        refs: list[MetricRef] = []
        for name in request.intent.metrics:
            resolved = resolve_metric(name, request.catalog_names) if request.catalog_names else name
            if resolved and all(ref.measurement != resolved for ref in refs):
                refs.append(MetricRef(measurement=resolved))
        if not refs and request.context.current_metric is not None:
            refs.append(request.context.current_metric)
        return refs

    def _time_range_for(self, request: TurnRequest, default: str | None = None) -> str:
        chosen = request.entities.time_range or request.intent.time_range or default
        if chosen is None:
            chosen = request.context.current_time_range
        return normalize_duration(chosen, self._settings.default_time_range)

    def _datasource(self, context: ConversationContext) -> Datasource | None:
        uid = context.current_datasource or self._settings.default_datasource_uid
        if not uid:
            return None
        ds_type = context.datasource_type or self._settings.default_datasource_type
        return Datasource(
            uid=uid,
            type="prometheus" if ds_type == "prometheus" else "influxdb",
            database=context.database or self._settings.default_database or None,
        )

    def _clarify(self, kind: IntentKind, time_range: str, request: TurnRequest) -> AssistantResponse:
        request.context.awaiting_metric_for = kind
        return composer.clarification(kind, time_range, request.catalog_names)

    # --- Query execution ---

    async def _query_metric(
        self,
        metric: MetricRef,
        datasource: Datasource,
        plan: QueryPlan,
        bounds: TimeRange | None = None,
        name: str | None = None,
    ) -> MetricOutcome:
        """Run one plan and analyse the series; executor failures land on the outcome."""
        name = name or metric.label
        options = QueryOptions(
            datasource_type=datasource.type,
            database=datasource.database,
            time_range=bounds or resolve_time_range(plan.time_range, default=self._settings.default_time_range),
            max_data_points=self._settings.max_data_points,
            interval=plan.interval,
        )
        request = build_request(datasource.uid, plan.text, options)
        try:
            result = await self._executor.execute(request)
        except QueryValidationError:
            raise
        except QueryExecutionError as e:
            logger.warning("Query for %s failed: %s", name, e)
            return MetricOutcome(metric=name, query=plan.text, error=str(e))
        except Exception as e:
            logger.warning("Query for %s failed unexpectedly", name, exc_info=True)
            return MetricOutcome(metric=name, query=plan.text, error=str(e) or type(e).__name__)

        points = points_from_result(result)
        analysis = analyze_series(points, name, self._settings.outlier_threshold)
        return MetricOutcome(metric=name, query=plan.text, analysis=analysis, points=points)

    async def _run_batch(
        self,
        metrics: Sequence[MetricRef],
        datasource: Datasource,
        plan_for: Callable[[MetricRef], QueryPlan],
    ) -> list[MetricOutcome]:
        """Query metrics one after another with a fixed delay between requests."""
        outcomes: list[MetricOutcome] = []
        for index, metric in enumerate(metrics):
            if index:
                await asyncio.sleep(self._settings.batch_delay_seconds)
            outcomes.append(await self._query_metric(metric, datasource, plan_for(metric)))
        return outcomes

    # --- Intent handlers ---

    async def _handle_anomaly_detection(self, request: TurnRequest) -> AssistantResponse:
        time_range = self._time_range_for(request)
        metrics = self._metrics_for(request)
        if not metrics:
            return self._clarify(IntentKind.ANOMALY_DETECTION, time_range, request)
        datasource = self._datasource(request.context)
        if datasource is None:
            return composer.datasource_required()

        outcomes = await self._run_batch(
            metrics,
            datasource,
            lambda m: build_anomaly_query(m.measurement, m.field, time_range, datasource.type),
        )
        for outcome in outcomes:
            if outcome.analysis is None:
                continue
            for anomaly in outcome.analysis.anomalies:
                ANOMALIES_DETECTED_TOTAL.labels(type=anomaly.type, severity=anomaly.severity).inc()
        return composer.compose(request.intent, outcomes, request.message, time_range)

    async def _handle_status_check(self, request: TurnRequest) -> AssistantResponse:
        time_range = self._time_range_for(request)
        metrics = self._metrics_for(request)
        if not metrics:
            return self._clarify(IntentKind.STATUS_CHECK, time_range, request)
        datasource = self._datasource(request.context)
        if datasource is None:
            return composer.datasource_required()

        operation = request.entities.aggregation or request.intent.operation or "mean"
        outcomes = await self._run_batch(
            metrics,
            datasource,
            lambda m: build_metric_query(m.measurement, m.field, operation, time_range, datasource.type),
        )
        return composer.compose(request.intent, outcomes, request.message, time_range)

    async def _handle_trend_analysis(self, request: TurnRequest) -> AssistantResponse:
        time_range = self._time_range_for(request, default=TREND_DEFAULT_TIME_RANGE)
        metrics = self._metrics_for(request)
        if not metrics:
            return self._clarify(IntentKind.TREND_ANALYSIS, time_range, request)
        datasource = self._datasource(request.context)
        if datasource is None:
            return composer.datasource_required()

        outcomes = await self._run_batch(
            metrics,
            datasource,
            lambda m: build_metric_query(m.measurement, m.field, "mean", time_range, datasource.type),
        )
        return composer.compose(request.intent, outcomes, request.message, time_range)

    async def _handle_comparison(self, request: TurnRequest) -> AssistantResponse:
        time_range = self._time_range_for(request)
        metrics = self._metrics_for(request)
        if not metrics:
            return self._clarify(IntentKind.COMPARISON, time_range, request)
        datasource = self._datasource(request.context)
        if datasource is None:
            return composer.datasource_required()

        if len(metrics) >= 2:
            first, second = metrics[0], metrics[1]
            outcomes = await self._run_batch(
                [first, second],
                datasource,
                lambda m: build_metric_query(m.measurement, m.field, "mean", time_range, datasource.type),
            )
            return composer.comparison_report(
                f"{first.label} vs {second.label}",
                outcomes,
                self._compare_outcomes(outcomes),
            )

        earlier, later = extract_comparison_periods(request.message)
        return await self._compare_periods(metrics[0], datasource, earlier, later, request.context)

    async def _handle_metric_query(self, request: TurnRequest) -> AssistantResponse:
        return composer.metric_listing(request.catalog_names)

    async def _handle_alert_setup(self, request: TurnRequest) -> AssistantResponse:
        current = request.context.current_metric
        metric = current.label if current is not None else request.entities.metric
        threshold = request.entities.values[0] if request.entities.values else None
        return composer.alert_setup(metric, threshold, extract_alert_condition(request.message))

    async def _handle_time_range(self, request: TurnRequest) -> AssistantResponse:
        duration = request.entities.time_range or request.intent.time_range
        if duration is None or parse_duration_seconds(duration) is None:
            return composer.time_range_required()
        request.context.current_time_range = duration
        return composer.time_range_updated(duration)

    async def _handle_general_query(self, request: TurnRequest) -> AssistantResponse:
        return composer.suggestions(request.message, request.entities.possible_metric)

    async def _handle_unknown(self, request: TurnRequest) -> AssistantResponse:
        return composer.unknown_intent(request.message)

    # --- Comparison and forecast ---

    def _compare_outcomes(self, outcomes: Sequence[MetricOutcome]) -> SeriesComparison | None:
        first, second = outcomes[0], outcomes[1]
        if first.analysis is None or second.analysis is None:
            return None
        if first.analysis.baseline is None or second.analysis.baseline is None:
            return None
        return compare_baselines(first.metric, first.analysis.baseline, second.metric, second.analysis.baseline)

    async def _compare_periods(
        self,
        metric: MetricRef,
        datasource: Datasource,
        earlier: str,
        later: str,
        context: ConversationContext,
    ) -> AssistantResponse:
        """Compare two back-to-back windows of equal length, the later one ending now."""
        window = _PERIOD_LENGTHS.get(later) or normalize_duration(
            context.current_time_range, self._settings.default_time_range
        )
        seconds = parse_duration_seconds(window) or 3600
        now_ms = int(datetime.now(UTC).timestamp() * 1000)
        span_ms = seconds * 1000
        later_bounds = TimeRange(from_=str(now_ms - span_ms), to=str(now_ms))
        earlier_bounds = TimeRange(from_=str(now_ms - 2 * span_ms), to=str(now_ms - span_ms))

        plan = build_metric_query(metric.measurement, metric.field, "mean", window, datasource.type)
        earlier_outcome = await self._query_metric(
            metric, datasource, plan, bounds=earlier_bounds, name=f"{metric.label} ({earlier})"
        )
        await asyncio.sleep(self._settings.batch_delay_seconds)
        later_outcome = await self._query_metric(
            metric, datasource, plan, bounds=later_bounds, name=f"{metric.label} ({later})"
        )
        outcomes = [later_outcome, earlier_outcome]
        title = f"{metric.label}: {later.capitalize()} vs {earlier.capitalize()}"
        return composer.comparison_report(title, outcomes, self._compare_outcomes(outcomes))

    # --- Action handlers ---

    def _set_time_range(self, duration: str, context: ConversationContext) -> AssistantResponse:
        if parse_duration_seconds(duration) is None:
            return composer.unknown_action(f"{SET_TIME_RANGE_PREFIX}{duration}")
        context.current_time_range = duration
        return composer.time_range_updated(duration)

    async def _action_search_metrics(self, request: TurnRequest) -> AssistantResponse:
        return composer.metric_search(request.catalog_names)

    async def _action_change_time_range(self, request: TurnRequest) -> AssistantResponse:
        return composer.time_range_options(request.context.current_time_range)

    async def _action_compare_periods(self, request: TurnRequest) -> AssistantResponse:
        metric = request.context.current_metric
        if metric is None:
            return self._clarify(IntentKind.COMPARISON, request.context.current_time_range, request)
        return composer.period_choice(metric.label)

    async def _compare_action(self, request: TurnRequest, earlier: str, later: str) -> AssistantResponse:
        metric = request.context.current_metric
        if metric is None:
            return self._clarify(IntentKind.COMPARISON, request.context.current_time_range, request)
        datasource = self._datasource(request.context)
        if datasource is None:
            return composer.datasource_required()
        return await self._compare_periods(metric, datasource, earlier, later, request.context)

    async def _action_compare_yesterday_today(self, request: TurnRequest) -> AssistantResponse:
        return await self._compare_action(request, "yesterday", "today")

    async def _action_compare_weeks(self, request: TurnRequest) -> AssistantResponse:
        return await self._compare_action(request, "last week", "this week")

    async def _action_show_forecast(self, request: TurnRequest) -> AssistantResponse:
        metric = request.context.current_metric
        if metric is None:
            request.context.awaiting_metric_for = IntentKind.TREND_ANALYSIS
            return composer.forecast_clarification(FORECAST_TIME_RANGE, request.catalog_names)
        datasource = self._datasource(request.context)
        if datasource is None:
            return composer.datasource_required()

        plan = build_metric_query(metric.measurement, metric.field, "mean", FORECAST_TIME_RANGE, datasource.type)
        outcome = await self._query_metric(metric, datasource, plan)
        step = parse_duration_seconds(plan.interval) or 3600
        horizon = max(1, (parse_duration_seconds(FORECAST_HORIZON) or 86400) // step)
        values = [p.value for p in outcome.points if p.value is not None]
        forecast = project_trend(values, horizon) if outcome.error is None else None
        return composer.forecast_report(outcome, forecast, composer.describe_time_range(FORECAST_HORIZON))

    async def _action_show_help(self, request: TurnRequest) -> AssistantResponse:
        return composer.help_response()

    async def _action_run_health_check(self, request: TurnRequest) -> AssistantResponse:
        checks: list[composer.HealthCheck] = []

        datasource = self._datasource(request.context)
        if datasource is None:
            checks.append(composer.HealthCheck("Datasource", "unavailable", "No datasource selected"))
        else:
            checks.append(
                composer.HealthCheck("Datasource", "healthy", f"{datasource.type} datasource {datasource.uid}")
            )

        try:
            names = await self._catalog.list()
        except Exception as e:
            logger.warning("Health check: metric catalog failed", exc_info=True)
            COMPONENT_HEALTHY.labels(component="catalog").set(0)
            checks.append(composer.HealthCheck("Metric catalog", "unavailable", str(e)))
        else:
            COMPONENT_HEALTHY.labels(component="catalog").set(1)
            status = "healthy" if names else "warning"
            checks.append(composer.HealthCheck("Metric catalog", status, f"{len(names)} metrics available"))

        if self._classifier.available:
            checks.append(composer.HealthCheck("Language model", "healthy", "Intent parsing enabled"))
        else:
            checks.append(composer.HealthCheck("Language model", "warning", "Using pattern classification only"))
        COMPONENT_HEALTHY.labels(component="llm").set(1 if self._classifier.available else 0)

        return composer.health_check(checks)
