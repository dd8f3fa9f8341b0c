"""Turn analysis outcomes and conversation state into user-facing responses.

Every function returns a complete ``AssistantResponse``: markdown text, a
``data`` payload whose ``type`` names the variant, and follow-up actions drawn
from ``ActionId``.
"""

from collections.abc import Sequence
from datetime import UTC, datetime
from typing import Any, NamedTuple

from src.analysis.models import Anomaly, Forecast, SeriesComparison
from src.assistant.models import (
    SET_TIME_RANGE_PREFIX,
    Action,
    ActionId,
    AssistantResponse,
    Intent,
    MetricOutcome,
)
from src.assistant.patterns import TIME_RANGE_LABELS, IntentKind

CLARIFICATION_LIST_LIMIT = 5
GROUP_ITEM_LIMIT = 3
LISTING_LIMIT = 25
SEARCH_LIMIT = 10

SEVERITY_ORDER: tuple[str, ...] = ("critical", "high", "medium", "low")
_SEVERITY_HEADINGS = {
    "critical": "Critical anomalies",
    "high": "High severity",
    "medium": "Medium severity",
    "low": "Low severity",
}

_CLARIFICATION_GREETINGS: dict[IntentKind, str] = {
    IntentKind.ANOMALY_DETECTION: (
        "I'd be happy to help you find anomalies! First, let me understand which metric you want to analyze."
    ),
    IntentKind.STATUS_CHECK: "I'd be happy to check a metric's status! Which metric would you like me to examine?",
    IntentKind.TREND_ANALYSIS: "I'd love to help you analyze trends! Let me know which metric you're interested in.",
    IntentKind.COMPARISON: (
        "I can compare metrics across different time periods! Which metric would you like me to compare?"
    ),
}
_FORECAST_GREETING = "I can help you forecast metric trends! Which metric would you like me to predict?"

TIME_RANGE_CHOICES: tuple[tuple[str, str], ...] = (
    ("Last Hour", "1h"),
    ("Last 6 Hours", "6h"),
    ("Last Day", "1d"),
    ("Last Week", "7d"),
)

RECOMMENDATION = "**Recommendation**: Investigate the critical and high severity anomalies immediately."


class HealthCheck(NamedTuple):
    name: str
    status: str  # healthy | warning | unavailable
    details: str


def action(label: str, action_id: str) -> Action:
    return Action(label=label, action_id=action_id)


_CORE_ACTIONS = (
    action("Find Anomalies", ActionId.FIND_ANOMALIES),
    action("Check Status", ActionId.CHECK_STATUS),
    action("Analyze Trends", ActionId.ANALYZE_TRENDS),
)


def describe_time_range(duration: str) -> str:
    """Human label for a duration, e.g. ``7d`` -> ``last week``."""
    return TIME_RANGE_LABELS.get(duration, f"last {duration}")


def format_timestamp(timestamp: Any) -> str:
    """Epoch milliseconds (as returned by the datasource) to a UTC wall-clock string."""
    if isinstance(timestamp, int | float) and not isinstance(timestamp, bool):
        return datetime.fromtimestamp(timestamp / 1000, tz=UTC).strftime("%Y-%m-%d %H:%M UTC")
    if timestamp is None:
        return "unknown time"
    return str(timestamp)


def _format_value(value: float | None) -> str:
    return "n/a" if value is None else f"{value:.2f}"


# --- Clarification and soft-absence variants ---


def clarification(
    kind: IntentKind,
    time_range: str,
    catalog_names: Sequence[str],
    greeting: str | None = None,
) -> AssistantResponse:
    """Ask which metric to use, listing a few catalog names as hints."""
    lines = [greeting or _CLARIFICATION_GREETINGS.get(kind, "Which metric would you like me to analyze?"), ""]
    if catalog_names:
        lines.append("I can see you have data for these metrics:")
        lines.extend(f"- {name}" for name in catalog_names[:CLARIFICATION_LIST_LIMIT])
        if len(catalog_names) > CLARIFICATION_LIST_LIMIT:
            lines.append(f"- ... and {len(catalog_names) - CLARIFICATION_LIST_LIMIT} more")
        lines.append("")
        lines.append("Which one would you like me to analyze?")
    else:
        lines.append(
            "What metric would you like me to analyze? You can tell me the measurement name "
            + "(like 'cpu', 'memory', 'network') and I'll help you find it."
        )
    return AssistantResponse(
        text="\n".join(lines),
        data={
            "type": "metric_conversation",
            "analysis_type": kind.value,
            "time_range": time_range,
            "available_metrics": list(catalog_names[:CLARIFICATION_LIST_LIMIT]),
            "total_metrics": len(catalog_names),
        },
        actions=[
            action("Browse All Metrics", ActionId.BROWSE_METRICS),
            action("Search Metrics", ActionId.SEARCH_METRICS),
        ],
    )


def forecast_clarification(time_range: str, catalog_names: Sequence[str]) -> AssistantResponse:
    return clarification(IntentKind.TREND_ANALYSIS, time_range, catalog_names, greeting=_FORECAST_GREETING)


def datasource_required() -> AssistantResponse:
    return AssistantResponse(
        text=(
            "I need a datasource before I can query anything. Select a datasource, "
            + "or set DEFAULT_DATASOURCE_UID, and try again."
        ),
        data={"type": "datasource_required"},
        actions=[action("Run Health Check", ActionId.RUN_HEALTH_CHECK)],
    )


# --- Per-metric reports ---


def _error_lines(outcomes: Sequence[MetricOutcome]) -> list[str]:
    return [f"- {o.metric}: query failed ({o.error})" for o in outcomes if o.error is not None]


def _notice_lines(outcomes: Sequence[MetricOutcome]) -> list[str]:
    lines: list[str] = []
    for outcome in outcomes:
        if outcome.analysis is None:
            continue
        for anomaly in outcome.analysis.anomalies:
            if anomaly.severity in ("info", "warning"):
                lines.append(f"- {outcome.metric}: {anomaly.message}")
    return lines


def _anomaly_item(metric: str, anomaly: Anomaly) -> str:
    if anomaly.timestamp is None and anomaly.value is None:
        return f"- {metric}: {anomaly.message}"
    when = format_timestamp(anomaly.timestamp)
    return f"- {metric}: {anomaly.message} (first at {when}, value {_format_value(anomaly.value)})"


def group_by_severity(outcomes: Sequence[MetricOutcome]) -> dict[str, list[tuple[str, Anomaly]]]:
    """Findings keyed by severity in reporting order; data-quality notices are left out."""
    groups: dict[str, list[tuple[str, Anomaly]]] = {level: [] for level in SEVERITY_ORDER}
    for outcome in outcomes:
        if outcome.analysis is None:
            continue
        for anomaly in outcome.analysis.anomalies:
            if anomaly.severity in groups:
                groups[anomaly.severity].append((outcome.metric, anomaly))
    return groups


def _outcomes_payload(outcomes: Sequence[MetricOutcome]) -> list[dict[str, Any]]:
    return [o.model_dump(mode="json") for o in outcomes]


def anomaly_report(outcomes: Sequence[MetricOutcome], time_range: str) -> AssistantResponse:
    """Anomalies grouped critical -> high -> medium -> low, at most three items per group."""
    period = describe_time_range(time_range)
    groups = group_by_severity(outcomes)
    total = sum(len(items) for items in groups.values())
    metrics = ", ".join(o.metric for o in outcomes)

    lines: list[str] = []
    if total:
        lines.append(f"I found {total} anomalies in {metrics} over the {period}:")
        lines.append("")
        for level in SEVERITY_ORDER:
            items = groups[level]
            if not items:
                continue
            lines.append(f"**{_SEVERITY_HEADINGS[level]} ({len(items)})**:")
            lines.extend(_anomaly_item(metric, anomaly) for metric, anomaly in items[:GROUP_ITEM_LIMIT])
            if len(items) > GROUP_ITEM_LIMIT:
                lines.append(f"...and {len(items) - GROUP_ITEM_LIMIT} more")
            lines.append("")
        if groups["critical"] or groups["high"]:
            lines.append(RECOMMENDATION)
    elif any(o.ok and o.analysis is not None and o.analysis.has_data for o in outcomes):
        lines.append(
            f"Good news! I didn't find any significant anomalies in {metrics} over the {period}. "
            + "Everything looks normal."
        )
    else:
        lines.append(f"I couldn't analyze {metrics} over the {period}.")

    notices = _notice_lines(outcomes)
    if notices:
        lines.extend(["", "Notes:", *notices])
    errors = _error_lines(outcomes)
    if errors:
        lines.extend(["", "Some metrics could not be analyzed:", *errors])

    return AssistantResponse(
        text="\n".join(lines).rstrip(),
        data={
            "type": "anomaly_results" if total else "no_anomalies",
            "time_range": time_range,
            "anomaly_count": total,
            "metrics": _outcomes_payload(outcomes),
        },
        actions=[
            action("Change Time Range", ActionId.CHANGE_TIME_RANGE),
            action("Analyze Trends", ActionId.ANALYZE_TRENDS),
            action("Compare Periods", ActionId.COMPARE_PERIODS),
        ],
    )


def status_report(outcomes: Sequence[MetricOutcome], time_range: str) -> AssistantResponse:
    """Latest value and summary statistics per metric."""
    period = describe_time_range(time_range)
    lines = [f"**Current status** over the {period}:", ""]
    for outcome in outcomes:
        analysis = outcome.analysis
        if outcome.error is not None or analysis is None:
            continue
        if analysis.baseline is None:
            lines.append(f"- {outcome.metric}: no data")
            continue
        b = analysis.baseline
        line = (
            f"- {outcome.metric}: latest {_format_value(analysis.latest_value)} "
            + f"(mean {b.mean:.2f}, min {b.min:.2f}, max {b.max:.2f}, {b.count} points)"
        )
        if analysis.severity != "normal":
            line += f"; {len(analysis.anomalies)} finding(s), severity {analysis.severity}"
        lines.append(line)

    notices = _notice_lines(outcomes)
    if notices:
        lines.extend(["", "Notes:", *notices])
    errors = _error_lines(outcomes)
    if errors:
        lines.extend(["", "Some metrics could not be queried:", *errors])

    return AssistantResponse(
        text="\n".join(lines).rstrip(),
        data={"type": "metric_status", "time_range": time_range, "metrics": _outcomes_payload(outcomes)},
        actions=[
            action("Check for Issues", ActionId.FIND_ANOMALIES),
            action("Analyze Trends", ActionId.ANALYZE_TRENDS),
            action("Change Time Range", ActionId.CHANGE_TIME_RANGE),
        ],
    )


def trend_report(outcomes: Sequence[MetricOutcome], time_range: str) -> AssistantResponse:
    """Direction, strength and fitted short/long trend lines per metric."""
    period = describe_time_range(time_range)
    lines = [f"**Trend analysis** over the {period}:", ""]
    for outcome in outcomes:
        analysis = outcome.analysis
        if outcome.error is not None or analysis is None:
            continue
        trend = analysis.trend
        if trend is None or trend.direction == "insufficient_data":
            lines.append(f"- {outcome.metric}: not enough data to establish a trend")
            continue
        line = f"- {outcome.metric}: {trend.direction} (slope {trend.slope:+.4f} per point)"
        long_term = analysis.trend_lines.long_term
        short_term = analysis.trend_lines.short_term
        if long_term is not None:
            line += f"; long-term {long_term.start:.2f} -> {long_term.end:.2f}"
        if short_term is not None:
            line += f", recent {short_term.start:.2f} -> {short_term.end:.2f}"
        lines.append(line)

    errors = _error_lines(outcomes)
    if errors:
        lines.extend(["", "Some metrics could not be queried:", *errors])

    return AssistantResponse(
        text="\n".join(lines).rstrip(),
        data={"type": "trend_analysis", "time_range": time_range, "metrics": _outcomes_payload(outcomes)},
        actions=[
            action("Show Forecast", ActionId.SHOW_FORECAST),
            action("Compare Periods", ActionId.COMPARE_PERIODS),
        ],
    )


def compose(
    intent: Intent,
    outcomes: Sequence[MetricOutcome],
    original_message: str,
    time_range: str,
) -> AssistantResponse:
    """Pick the report variant for the intent that produced the outcomes."""
    if intent.handler is IntentKind.STATUS_CHECK:
        response = status_report(outcomes, time_range)
    elif intent.handler is IntentKind.TREND_ANALYSIS:
        response = trend_report(outcomes, time_range)
    else:
        response = anomaly_report(outcomes, time_range)
    response.data["question"] = original_message
    return response


# --- Comparison and forecast ---


def period_choice(metric: str) -> AssistantResponse:
    return AssistantResponse(
        text=f"I'll compare {metric} across different time periods. What would you like to compare?",
        data={"type": "period_comparison", "metric": metric},
        actions=[
            action("Yesterday vs Today", ActionId.COMPARE_YESTERDAY_TODAY),
            action("This Week vs Last Week", ActionId.COMPARE_WEEKS),
        ],
    )


def comparison_report(
    title: str,
    outcomes: Sequence[MetricOutcome],
    comparison: SeriesComparison | None,
) -> AssistantResponse:
    """Two-series comparison: insights when both sides have data, otherwise what went wrong."""
    lines = [f"**{title}**", ""]
    if comparison is not None:
        lines.extend(f"- {insight}" for insight in comparison.insights)
        for outcome in outcomes:
            if outcome.analysis is not None and outcome.analysis.baseline is not None:
                b = outcome.analysis.baseline
                lines.append(f"- {outcome.metric}: mean {b.mean:.2f}, min {b.min:.2f}, max {b.max:.2f}")
    else:
        lines.append("I couldn't compare these because one side has no data.")
    errors = _error_lines(outcomes)
    if errors:
        lines.extend(["", *errors])

    return AssistantResponse(
        text="\n".join(lines).rstrip(),
        data={
            "type": "comparison",
            "title": title,
            "comparison": comparison.model_dump() if comparison is not None else None,
            "metrics": _outcomes_payload(outcomes),
        },
        actions=[
            action("Find Anomalies", ActionId.FIND_ANOMALIES),
            action("Analyze Trends", ActionId.ANALYZE_TRENDS),
        ],
    )


def forecast_report(outcome: MetricOutcome, forecast: Forecast | None, horizon_label: str) -> AssistantResponse:
    if outcome.error is not None:
        text = f"I couldn't build a forecast for {outcome.metric}: {outcome.error}"
    elif forecast is None:
        text = f"There isn't enough data in {outcome.metric} to project a trend."
    else:
        direction = "rise" if forecast.change > 0 else "fall" if forecast.change < 0 else "stay flat"
        text = (
            f"**Forecast for {outcome.metric}** ({horizon_label} ahead, linear projection):\n\n"
            + f"- Current: {forecast.current:.2f}\n"
            + f"- Projected: {forecast.projected:.2f}\n"
            + f"- Expected to {direction} by {abs(forecast.change):.2f}"
        )
    return AssistantResponse(
        text=text,
        data={
            "type": "forecast",
            "metric": outcome.metric,
            "horizon": horizon_label,
            "forecast": forecast.model_dump() if forecast is not None else None,
        },
        actions=[
            action("Analyze Trends", ActionId.ANALYZE_TRENDS),
            action("Find Anomalies", ActionId.FIND_ANOMALIES),
        ],
    )


# --- Catalog listings ---


def metric_listing(catalog_names: Sequence[str]) -> AssistantResponse:
    if not catalog_names:
        return AssistantResponse(
            text="I don't see any metrics in the current datasource yet.",
            data={"type": "no_metrics_found"},
            actions=[action("Run Health Check", ActionId.RUN_HEALTH_CHECK)],
        )
    lines = ["Here are the metrics I can analyze for you:", ""]
    lines.extend(f"- {name}" for name in catalog_names[:LISTING_LIMIT])
    if len(catalog_names) > LISTING_LIMIT:
        lines.append(f"...and {len(catalog_names) - LISTING_LIMIT} more")
    first = catalog_names[0]
    second = catalog_names[1] if len(catalog_names) > 1 else first
    lines.extend(
        [
            "",
            "Just tell me which one you'd like to analyze, or ask me something like:",
            f'- "Find anomalies in {first}"',
            f'- "Show me trends for {second}"',
        ]
    )
    return AssistantResponse(
        text="\n".join(lines),
        data={"type": "metrics_display", "available_metrics": list(catalog_names), "total": len(catalog_names)},
        actions=[action("Search Metrics", ActionId.SEARCH_METRICS)],
    )


def metric_search(catalog_names: Sequence[str]) -> AssistantResponse:
    shown = list(catalog_names[:SEARCH_LIMIT])
    text = "Tell me part of a metric name and I'll find it. Here are some of the metrics I can see:\n\n" + "\n".join(
        f"- {n}" for n in shown
    )
    return AssistantResponse(
        text=text,
        data={"type": "metric_search", "matches": shown, "total": len(catalog_names)},
        actions=[action("Show All Metrics", ActionId.BROWSE_METRICS)],
    )


# --- Time range ---


def time_range_options(current: str) -> AssistantResponse:
    return AssistantResponse(
        text=f"Current time range is {current}. What time range would you like to analyze instead?",
        data={"type": "time_range_selection", "current_range": current},
        actions=[action(label, f"{SET_TIME_RANGE_PREFIX}{duration}") for label, duration in TIME_RANGE_CHOICES],
    )


def time_range_updated(duration: str) -> AssistantResponse:
    label = describe_time_range(duration)
    return AssistantResponse(
        text=f"Time range updated to {label}. What would you like me to analyze over this period?",
        data={"type": "time_range_updated", "time_range": duration, "label": label},
        actions=list(_CORE_ACTIONS),
    )


def time_range_required() -> AssistantResponse:
    return AssistantResponse(
        text="Please specify a time range like 'last hour', 'today', or 'last week'.",
        data={"type": "time_range_required"},
        actions=[action(label, f"{SET_TIME_RANGE_PREFIX}{duration}") for label, duration in TIME_RANGE_CHOICES],
    )


# --- Alerts, suggestions, help ---


def alert_setup(metric: str | None, threshold: str | None, condition: str) -> AssistantResponse:
    lines = ["I can help you set up monitoring alerts. Here's what I understood:", ""]
    lines.append(f"- Metric: {metric or 'not specified yet'}")
    lines.append(f"- Condition: {condition}")
    lines.append(f"- Threshold: {threshold or 'not specified yet'}")
    if metric is None or threshold is None:
        lines.extend(["", "Tell me the missing details, e.g. 'alert when cpu is above 90%'."])
    return AssistantResponse(
        text="\n".join(lines),
        data={"type": "alert_setup", "metric": metric, "threshold": threshold, "condition": condition},
        actions=[
            action("Check Status", ActionId.CHECK_STATUS),
            action("Find Anomalies", ActionId.FIND_ANOMALIES),
        ],
    )


def generate_suggestions(message: str) -> list[Action]:
    """Follow-ups keyed off words in the message, with a generic set as fallback."""
    lower = message.lower()
    suggestions: list[Action] = []
    if "help" in lower:
        suggestions += [action("Show Help", ActionId.SHOW_HELP), action("Browse Metrics", ActionId.BROWSE_METRICS)]
    if "metric" in lower or "data" in lower:
        suggestions += [
            action("Explore Metrics", ActionId.BROWSE_METRICS),
            action("Search Metrics", ActionId.SEARCH_METRICS),
        ]
    if "problem" in lower or "issue" in lower or "anomal" in lower:
        suggestions += [
            action("Find Anomalies", ActionId.FIND_ANOMALIES),
            action("Run Health Check", ActionId.RUN_HEALTH_CHECK),
        ]
    if "trend" in lower or "pattern" in lower or "forecast" in lower:
        suggestions += [
            action("Analyze Trends", ActionId.ANALYZE_TRENDS),
            action("Compare Periods", ActionId.COMPARE_PERIODS),
        ]
    if not suggestions:
        suggestions = [*_CORE_ACTIONS, action("Browse Metrics", ActionId.BROWSE_METRICS)]
    seen: set[str] = set()
    unique: list[Action] = []
    for suggestion in suggestions:
        if suggestion.action_id not in seen:
            seen.add(suggestion.action_id)
            unique.append(suggestion)
    return unique


def suggestions(message: str, possible_metric: str | None) -> AssistantResponse:
    text = "I can help you analyze your time series data! "
    if possible_metric:
        text += f'I noticed you mentioned "{possible_metric}". Would you like me to analyze that metric, or '
    text += "here are some things I can help you with:"
    actions = generate_suggestions(message)
    return AssistantResponse(
        text=text,
        data={"type": "suggestions", "possible_metric": possible_metric, "suggestions": [a.label for a in actions]},
        actions=actions,
    )


HELP_TEXT = """Here's what I can do:

- **Find anomalies**: "any anomalies in cpu today?"
- **Check status**: "what's the current memory usage?"
- **Analyze trends**: "show the trend for disk usage this week"
- **Compare periods**: "compare yesterday vs today"
- **Browse metrics**: "what metrics are available?"
- **Change the time range**: "last 6 hours", "past week"
- **Set up alerts**: "alert when cpu is above 90%"
"""


def help_response() -> AssistantResponse:
    return AssistantResponse(
        text=HELP_TEXT.rstrip(),
        data={"type": "help"},
        actions=[*_CORE_ACTIONS, action("Browse Metrics", ActionId.BROWSE_METRICS)],
    )


def health_check(checks: Sequence[HealthCheck]) -> AssistantResponse:
    icons = {"healthy": "[ok]", "warning": "[warn]"}
    lines = ["**System Health Check**", ""]
    lines.extend(f"{icons.get(c.status, '[down]')} {c.name}: {c.details}" for c in checks)
    return AssistantResponse(
        text="\n".join(lines),
        data={"type": "health_check", "checks": [c._asdict() for c in checks]},
        actions=[action("Browse Metrics", ActionId.BROWSE_METRICS)],
    )


# --- Fallbacks ---


def unknown_intent(message: str) -> AssistantResponse:
    return AssistantResponse(
        text=(
            f'I\'m not sure how to help with "{message}". I can help you find anomalies, analyze trends, '
            + "check status, and more. What would you like to do?"
        ),
        data={"type": "unknown_intent"},
        actions=[*_CORE_ACTIONS, action("Show Help", ActionId.SHOW_HELP)],
    )


def unknown_action(action_id: str) -> AssistantResponse:
    return AssistantResponse(
        text=(
            "I'm still learning how to do that. In the meantime, I can help you find anomalies, "
            + "check status, analyze trends, or browse your available metrics."
        ),
        data={"type": "action_redirect", "action_id": action_id},
        actions=[
            action("Find Anomalies", ActionId.FIND_ANOMALIES),
            action("Check Status", ActionId.CHECK_STATUS),
            action("Browse Metrics", ActionId.BROWSE_METRICS),
        ],
    )


def error_response(error: BaseException) -> AssistantResponse:
    return AssistantResponse(
        text=f"I encountered an error while processing your request: {error}",
        data={"type": "error", "error": str(error)},
        actions=[action("Run Health Check", ActionId.RUN_HEALTH_CHECK)],
    )
