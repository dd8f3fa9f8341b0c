"""Static pattern tables used by intent classification and entity extraction.

Everything here is data: ordered regex ladders, phrase tables and keyword sets.
Order matters in every table: the first match wins.
"""

import re
from enum import StrEnum
from typing import NamedTuple


class IntentKind(StrEnum):
    """Closed set of intents the assistant knows how to handle."""

    ANOMALY_DETECTION = "anomaly_detection"
    STATUS_CHECK = "status_check"
    TREND_ANALYSIS = "trend_analysis"
    COMPARISON = "comparison"
    METRIC_QUERY = "metric_query"
    ALERT_SETUP = "alert_setup"
    TIME_RANGE = "time_range"
    GENERAL_QUERY = "general_query"
    UNKNOWN = "unknown"


class IntentRule(NamedTuple):
    """One row of the intent ladder: patterns tried in order, fixed confidence on match."""

    kind: IntentKind
    patterns: tuple[re.Pattern[str], ...]
    confidence: float = 0.9


def _compile(*patterns: str) -> tuple[re.Pattern[str], ...]:
    return tuple(re.compile(p, re.IGNORECASE) for p in patterns)


# --- Intent ladder ---
# Category order is the tie-break: "show me unusual spikes" is an anomaly
# question even though "show" also appears in status/trend patterns.

INTENT_RULES: tuple[IntentRule, ...] = (
    IntentRule(
        IntentKind.ANOMALY_DETECTION,
        _compile(
            r"what.*(?:unusual|strange|anomal|weird|odd)",
            r"show.*(?:spike|surge|drop|anomal|outlier)",
            r"find.*(?:outlier|abnormal|unusual|anomal)",
            r"any.*(?:issues|problems|anomal)",
            r"detect.*anomal",
            r"anomalies.*(?:today|yesterday|this week|last)",
        ),
    ),
    IntentRule(
        IntentKind.STATUS_CHECK,
        _compile(
            r"(?:current|latest|recent).*(?:status|state|value)",
            r"what.*(?:status|happening|going on)",
            r"show.*current",
            r"how.*(?:is|are).*(?:metric|system|service)",
            r"(?:health|status).*check",
        ),
    ),
    IntentRule(
        IntentKind.TREND_ANALYSIS,
        _compile(
            r"(?:trend|pattern|behavior)",
            r"(?:increasing|decreasing|stable|growing|declining)",
            r"analyze.*trend",
            r"what.*trend",
            r"show.*(?:trend|pattern)",
            r"(?:forecast|predict)",
        ),
    ),
    IntentRule(
        IntentKind.COMPARISON,
        _compile(
            r"compare.*(?:to|versus|vs|with)",
            r"difference.*between",
            r"how.*changed.*(?:since|from)",
            r"(?:yesterday|today|this week|last week).*(?:vs|versus|compared)",
        ),
    ),
    IntentRule(
        IntentKind.METRIC_QUERY,
        _compile(
            r"show.*(?:metric|measurement|field)",
            r"what.*(?:metrics|measurements|fields)",
            r"list.*(?:metric|measurement|field)",
            r"available.*(?:metric|measurement|field)",
        ),
    ),
    IntentRule(
        IntentKind.ALERT_SETUP,
        _compile(
            r"alert.*when",
            r"notify.*(?:if|when)",
            r"set.*(?:threshold|alert|alarm)",
            r"monitor.*for",
            r"watch.*(?:for|when)",
        ),
    ),
    IntentRule(
        IntentKind.TIME_RANGE,
        _compile(
            r"(?:last|past).*(?:hour|day|week|month)",
            r"(?:today|yesterday|this week|last week)",
            r"between.*and",
            r"from.*to",
            r"since.*(?:yesterday|monday|last)",
        ),
    ),
)

METRIC_MENTION_CONFIDENCE = 0.7
GENERAL_QUERY_CONFIDENCE = 0.5


# --- Time range phrases ---
# "yesterday" maps to a 2-day lookback so the whole previous calendar day is
# covered regardless of the current time of day.

TIME_RANGE_PHRASES: tuple[tuple[str, str], ...] = (
    ("last hour", "1h"),
    ("past hour", "1h"),
    ("last 6 hours", "6h"),
    ("last day", "1d"),
    ("past day", "1d"),
    ("today", "1d"),
    ("yesterday", "2d"),
    ("last week", "7d"),
    ("past week", "7d"),
    ("this week", "7d"),
    ("last month", "30d"),
    ("past month", "30d"),
)

TIME_RANGE_LABELS: dict[str, str] = {
    "1h": "last hour",
    "6h": "last 6 hours",
    "1d": "last day",
    "2d": "last 2 days",
    "7d": "last week",
    "30d": "last month",
}


# --- Metric phrasings ---

METRIC_PATTERNS: tuple[re.Pattern[str], ...] = _compile(
    r"(?:cpu|processor).*(?:usage|utilization|percent)",
    r"memory.*(?:usage|utilization|percent|consumption)",
    r"disk.*(?:usage|space|io|read|write)",
    r"network.*(?:traffic|bandwidth|throughput|latency)",
    r"response.*time",
    r"error.*(?:rate|count)",
    r"request.*(?:rate|count|per second)",
    r"temperature",
    r"load.*average",
)

# Bare tokens that, on their own, name a metric family.
COMMON_METRIC_TOKENS: tuple[str, ...] = (
    "cpu",
    "memory",
    "mem",
    "disk",
    "network",
    "net",
    "load",
    "response_time",
    "latency",
    "throughput",
    "error_rate",
    "temperature",
    "temp",
    "bandwidth",
    "requests",
    "connections",
    "queue",
    "cache",
    "database",
    "db",
    "uptime",
    "availability",
    "usage",
    "utilization",
    "performance",
    "bytes",
    "packets",
    "errors",
    "dropped",
    "transmitted",
    "received",
)


# --- Severity / aggregation keyword families ---

SEVERITY_PATTERNS: tuple[tuple[str, re.Pattern[str]], ...] = (
    ("high", re.compile(r"(?:high|critical|severe|major)", re.IGNORECASE)),
    ("medium", re.compile(r"(?:medium|moderate|warning)", re.IGNORECASE)),
    ("low", re.compile(r"(?:low|minor|info)", re.IGNORECASE)),
)

AGGREGATION_PATTERNS: tuple[tuple[str, re.Pattern[str]], ...] = (
    ("mean", re.compile(r"(?:mean|average|avg)", re.IGNORECASE)),
    ("max", re.compile(r"(?:max|maximum|peak|highest)", re.IGNORECASE)),
    ("min", re.compile(r"(?:min|minimum|lowest)", re.IGNORECASE)),
    ("sum", re.compile(r"(?:sum|total)", re.IGNORECASE)),
    ("count", re.compile(r"(?:count|number)", re.IGNORECASE)),
    ("median", re.compile(r"(?:median)", re.IGNORECASE)),
    ("stddev", re.compile(r"(?:stddev|standard deviation)", re.IGNORECASE)),
)

NUMERIC_VALUE_PATTERN = re.compile(r"\b\d+(?:\.\d+)?(?:\s*(?:ms|s|m|h|GB|MB|KB)\b|%|\b)")


# --- Alert conditions ---

ALERT_CONDITION_PATTERNS: tuple[tuple[str, re.Pattern[str]], ...] = (
    ("above", re.compile(r"(?:above|greater than|exceeds|more than|>)", re.IGNORECASE)),
    ("below", re.compile(r"(?:below|less than|under|<)", re.IGNORECASE)),
    ("equals", re.compile(r"(?:equals|\bis\b|=)", re.IGNORECASE)),
    ("contains", re.compile(r"(?:contains|includes)", re.IGNORECASE)),
)
