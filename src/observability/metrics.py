"""Prometheus metric definitions for the analytics assistant.

Module-level singletons on the default prometheus_client registry; import them
where the instrumentation happens.
"""

from prometheus_client import Counter, Gauge, Histogram, Info

TURN_DURATION_BUCKETS = (0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0)
QUERY_DURATION_BUCKETS = (0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 15.0)

# ---------------------------------------------------------------------------
# HTTP request metrics
# ---------------------------------------------------------------------------

REQUESTS_TOTAL = Counter(
    "ts_assistant_requests_total",
    "Total HTTP requests",
    labelnames=["endpoint", "status"],
)

REQUEST_DURATION = Histogram(
    "ts_assistant_request_duration_seconds",
    "HTTP request duration",
    labelnames=["endpoint"],
    buckets=TURN_DURATION_BUCKETS,
)

REQUESTS_IN_PROGRESS = Gauge(
    "ts_assistant_requests_in_progress",
    "HTTP requests currently being processed",
    labelnames=["endpoint"],
)

# ---------------------------------------------------------------------------
# Turn-level metrics
# ---------------------------------------------------------------------------

TURNS_TOTAL = Counter(
    "ts_assistant_turns_total",
    "Messages and actions handled",
    labelnames=["kind", "intent", "status"],
)

TURN_DURATION = Histogram(
    "ts_assistant_turn_duration_seconds",
    "Time to produce one assistant response",
    labelnames=["kind"],
    buckets=TURN_DURATION_BUCKETS,
)

# ---------------------------------------------------------------------------
# Datasource metrics
# ---------------------------------------------------------------------------

DATASOURCE_QUERIES_TOTAL = Counter(
    "ts_assistant_datasource_queries_total",
    "Queries sent to the time-series datasource",
    labelnames=["datasource_type", "status"],
)

DATASOURCE_QUERY_DURATION = Histogram(
    "ts_assistant_datasource_query_duration_seconds",
    "Datasource query round-trip time",
    labelnames=["datasource_type"],
    buckets=QUERY_DURATION_BUCKETS,
)

# ---------------------------------------------------------------------------
# Analysis metrics
# ---------------------------------------------------------------------------

ANOMALIES_DETECTED_TOTAL = Counter(
    "ts_assistant_anomalies_detected_total",
    "Anomaly findings reported by the analysis engine",
    labelnames=["type", "severity"],
)

# ---------------------------------------------------------------------------
# LLM metrics (call/token counters populated by the callback handler)
# ---------------------------------------------------------------------------

LLM_INTENT_TOTAL = Counter(
    "ts_assistant_llm_intent_total",
    "Language-model intent parsing outcomes",
    labelnames=["outcome"],
)

LLM_CALLS_TOTAL = Counter(
    "ts_assistant_llm_calls_total",
    "Total number of LLM calls",
    labelnames=["status"],
)

LLM_TOKEN_USAGE = Counter(
    "ts_assistant_llm_token_usage",
    "Total LLM token usage",
    labelnames=["type"],
)

# ---------------------------------------------------------------------------
# Health / info
# ---------------------------------------------------------------------------

COMPONENT_HEALTHY = Gauge(
    "ts_assistant_component_healthy",
    "Whether a dependency component is healthy (1=healthy, 0=unhealthy)",
    labelnames=["component"],
)

APP_INFO = Info(
    "ts_assistant",
    "Analytics assistant build information",
)
