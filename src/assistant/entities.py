"""Entity extraction: best-effort, independent lookups against the pattern library.

None of these functions raise; a missing match simply leaves the field unset.
"""

import re
from collections.abc import Sequence
from typing import cast

from src.assistant.models import Aggregation, Entities, Severity
from src.assistant.patterns import (
    AGGREGATION_PATTERNS,
    ALERT_CONDITION_PATTERNS,
    COMMON_METRIC_TOKENS,
    METRIC_PATTERNS,
    NUMERIC_VALUE_PATTERN,
    SEVERITY_PATTERNS,
    TIME_RANGE_PHRASES,
)


def extract_time_range(message: str) -> str | None:
    """Return the duration for the first time-range phrase found in the message."""
    lower = message.lower()
    for phrase, duration in TIME_RANGE_PHRASES:
        if phrase in lower:
            return duration
    return None


def extract_metric(message: str) -> str | None:
    """Return the text matched by the first metric pattern that fires."""
    for pattern in METRIC_PATTERNS:
        match = pattern.search(message)
        if match:
            return match.group(0)
    return None


def extract_severity(message: str) -> Severity | None:
    for level, pattern in SEVERITY_PATTERNS:
        if pattern.search(message):
            return cast(Severity, level)
    return None


def extract_aggregation(message: str) -> Aggregation | None:
    for name, pattern in AGGREGATION_PATTERNS:
        if pattern.search(message):
            return cast(Aggregation, name)
    return None


def extract_values(message: str) -> list[str]:
    """Collect every numeric token (with optional unit) in order of appearance."""
    return [m.group(0) for m in NUMERIC_VALUE_PATTERN.finditer(message)]


def extract_possible_metric(message: str, known_metrics: Sequence[str] = ()) -> str | None:
    """Find a metric name the user may be referring to.

    Checks the common metric tokens first (whole message, then as a word), then
    the catalog names by bidirectional, case-insensitive containment.
    """
    lower = message.lower().strip()
    if not lower:
        return None

    if lower in COMMON_METRIC_TOKENS:
        return lower
    for token in COMMON_METRIC_TOKENS:
        if re.search(rf"\b{re.escape(token)}\b", lower):
            return token

    for name in known_metrics:
        name_lower = name.lower()
        if name_lower and (name_lower in lower or lower in name_lower):
            return name
    return None


def extract_entities(message: str, known_metrics: Sequence[str] = ()) -> Entities:
    """Pull time range, metric, severity, aggregation and numeric tokens from text."""
    return Entities(
        time_range=extract_time_range(message),
        metric=extract_metric(message),
        severity=extract_severity(message),
        aggregation=extract_aggregation(message),
        values=extract_values(message),
        possible_metric=extract_possible_metric(message, known_metrics),
    )


def extract_alert_condition(message: str) -> str:
    """Return the comparison an alert should use. Defaults to 'above'."""
    for condition, pattern in ALERT_CONDITION_PATTERNS:
        if pattern.search(message):
            return condition
    return "above"


def extract_comparison_periods(message: str) -> tuple[str, str]:
    """Return (earlier period, later period) named in a comparison question."""
    lower = message.lower()
    if "yesterday" in lower and "today" in lower:
        return ("yesterday", "today")
    if "last week" in lower and "this week" in lower:
        return ("last week", "this week")
    return ("previous period", "current period")
