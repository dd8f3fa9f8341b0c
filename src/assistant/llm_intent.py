"""Language-model intent augmentation with silent fallback to the pattern ladder.

The model is shown a schema description built from the metric catalog plus
recent conversation, and asked for a JSON intent. Any failure (a service error,
unparsable text, an unknown intent type) falls back to the deterministic
classifier. Nothing here raises.
"""

import json
import logging
import re
from collections.abc import Sequence

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from src.assistant.intents import classify
from src.assistant.llm import LanguageModelService
from src.assistant.models import ConversationContext, Intent
from src.assistant.patterns import IntentKind
from src.observability.metrics import LLM_INTENT_TOTAL

logger = logging.getLogger(__name__)

MAX_SCHEMA_EXAMPLES = 5
RECENT_TURNS_FOR_CONTEXT = 3
LLM_TEMPERATURE = 0.1
LLM_MAX_TOKENS = 500

# Type names models tend to produce that map onto our intents
_TYPE_ALIASES: dict[str, IntentKind] = {
    "find_anomalies": IntentKind.ANOMALY_DETECTION,
    "compare_metrics": IntentKind.COMPARISON,
    "list_metrics": IntentKind.METRIC_QUERY,
    "explain_metric": IntentKind.METRIC_QUERY,
    "analyze_fields": IntentKind.METRIC_QUERY,
    "get_stats": IntentKind.STATUS_CHECK,
    "query_data": IntentKind.STATUS_CHECK,
}


class MeasurementDetails(BaseModel):
    """Descriptive hints about a measurement, derived from its name."""

    type: str
    description: str
    fields: list[str]
    tags: list[str]
    use_case: str


# (name keywords, details); the first family whose keyword appears in the name wins
_MEASUREMENT_FAMILIES: tuple[tuple[tuple[str, ...], MeasurementDetails], ...] = (
    (
        ("cpu", "processor", "load"),
        MeasurementDetails(
            type="gauge",
            description="Processor utilisation",
            fields=["usage_user", "usage_system", "usage_idle"],
            tags=["host", "cpu"],
            use_case="Capacity planning and saturation detection",
        ),
    ),
    (
        ("mem", "memory", "swap"),
        MeasurementDetails(
            type="gauge",
            description="Memory consumption",
            fields=["used_percent", "available", "used"],
            tags=["host"],
            use_case="Leak detection and capacity planning",
        ),
    ),
    (
        ("disk", "diskio", "filesystem", "fs"),
        MeasurementDetails(
            type="gauge",
            description="Storage space and I/O",
            fields=["used_percent", "free", "read_bytes", "write_bytes"],
            tags=["host", "device", "path"],
            use_case="Disk-full prevention and I/O bottleneck analysis",
        ),
    ),
    (
        ("net", "network", "interface", "bandwidth"),
        MeasurementDetails(
            type="counter",
            description="Network traffic",
            fields=["bytes_recv", "bytes_sent", "err_in", "drop_in"],
            tags=["host", "interface"],
            use_case="Throughput monitoring and packet-loss investigation",
        ),
    ),
    (
        ("http", "request", "response", "latency"),
        MeasurementDetails(
            type="histogram",
            description="Request rate and latency",
            fields=["count", "duration_ms", "status"],
            tags=["service", "endpoint", "method"],
            use_case="Service-level objective tracking",
        ),
    ),
    (
        ("error", "exception", "fail"),
        MeasurementDetails(
            type="counter",
            description="Error occurrences",
            fields=["count", "rate"],
            tags=["service", "code"],
            use_case="Reliability and incident detection",
        ),
    ),
    (
        ("temp", "sensor", "power"),
        MeasurementDetails(
            type="gauge",
            description="Hardware sensor readings",
            fields=["value"],
            tags=["host", "sensor"],
            use_case="Hardware health monitoring",
        ),
    ),
)

_DEFAULT_DETAILS = MeasurementDetails(
    type="time_series",
    description="Time series measurement",
    fields=["value"],
    tags=["host", "environment", "service"],
    use_case="General monitoring",
)


class LLMIntentResponse(BaseModel):
    """Shape the model must return. Field names follow the prompt's JSON keys."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    type: IntentKind
    metrics: list[str] = Field(default_factory=list)
    time_range: str | None = Field(default=None, alias="timeRange")
    operation: str | None = None
    confidence: float = Field(ge=0.0, le=1.0)
    reasoning: str = ""
    question: str = ""

    @field_validator("type", mode="before")
    @classmethod
    def _normalise_type(cls, value: object) -> object:
        if not isinstance(value, str):
            return value
        # Models sometimes echo the alternatives as "a|b|c"; the last one is the most specific
        candidate = value.split("|")[-1].strip().lower()
        return _TYPE_ALIASES.get(candidate, candidate)


def describe_measurement(name: str) -> MeasurementDetails:
    """Guess type, fields, tags and use case for a measurement from its name."""
    lower = name.lower()
    for keywords, details in _MEASUREMENT_FAMILIES:
        if any(keyword in lower for keyword in keywords):
            return details
    return _DEFAULT_DETAILS


def _recently_discussed(catalog_names: Sequence[str], context: ConversationContext) -> list[str]:
    """Catalog names mentioned in the last few turns, in catalog order."""
    recent = context.history[-RECENT_TURNS_FOR_CONTEXT:]
    if not recent:
        return []
    text = " ".join(f"{turn.message} {turn.result.get('text', '')}" for turn in recent)
    mentioned: list[str] = []
    for name in catalog_names:
        if re.search(rf"\b{re.escape(name)}\b", text, re.IGNORECASE):
            mentioned.append(name)
    return mentioned


def build_rich_schema(catalog_names: Sequence[str], context: ConversationContext) -> str:
    """Describe the available measurements for the intent prompt."""
    lines: list[str] = ["**TIME SERIES DATA AVAILABLE:**", f"Total measurements: {len(catalog_names)}", ""]

    mentioned = _recently_discussed(catalog_names, context)
    if mentioned:
        lines.append("**Recently discussed measurements:**")
        lines.extend(f"- {name}" for name in mentioned)
        lines.append("")

    examples = [name for name in catalog_names if name not in mentioned][:MAX_SCHEMA_EXAMPLES]
    if examples:
        lines.append(f"**Example measurements ({len(examples)} of {len(catalog_names)}):**")
        for name in examples:
            d = describe_measurement(name)
            lines.append(
                f"- {name} ({d.type}): {d.description}. Fields: {', '.join(d.fields)}. "
                + f"Tags: {', '.join(d.tags)}. Use case: {d.use_case}"
            )
    return "\n".join(lines)


def _conversation_summary(context: ConversationContext) -> str:
    lines: list[str] = []
    if context.current_metric is not None:
        lines.append(f"Current metric: {context.current_metric.label}")
    lines.append(f"Current time range: {context.current_time_range}")
    for turn in context.history[-RECENT_TURNS_FOR_CONTEXT:]:
        lines.append(f"- user asked ({turn.intent}): {turn.message}")
    return "\n".join(lines)


def build_intent_prompt(message: str, catalog_names: Sequence[str], context: ConversationContext) -> str:
    """Assemble the full intent-parsing prompt."""
    kinds = ", ".join(k.value for k in IntentKind if k is not IntentKind.UNKNOWN)
    question = json.dumps(message)
    return f"""You are an expert time series analyst. Parse this user query and extract the intent.

{build_rich_schema(catalog_names, context)}

**CONVERSATION CONTEXT:**
{_conversation_summary(context)}

User query: {question}

Respond with ONLY a JSON object:
{{
  "type": "anomaly_detection",
  "metrics": ["exact_measurement_names"],
  "timeRange": "1h",
  "operation": "mean",
  "confidence": 0.9,
  "reasoning": "Why you chose these metrics and this approach",
  "question": {question}
}}

Rules:
- "type" must be exactly ONE of: {kinds}
- "timeRange" is a duration such as 1h, 6h, 1d, 7d or 30d
- "operation" is one of: mean, sum, max, min, count, rate, anomaly_detection
- Only use measurement names that appear above or in the conversation
"""


def parse_llm_intent(raw: str) -> LLMIntentResponse | None:
    """Extract and validate the JSON intent from raw model output."""
    stripped = re.sub(r"```(?:json)?", "", raw)
    match = re.search(r"\{.*\}", stripped, re.DOTALL)
    if not match:
        logger.warning("LLM intent response contained no JSON object")
        return None
    try:
        payload: object = json.loads(match.group(0))
        return LLMIntentResponse.model_validate(payload)
    except (json.JSONDecodeError, ValidationError) as exc:
        logger.warning("Failed to parse LLM intent response: %s", exc)
        return None


class LLMIntentStrategy:
    """Capability-checked classifier: try the model, fall back to the pattern ladder."""

    def __init__(self, service: LanguageModelService | None) -> None:
        self._service = service

    @property
    def available(self) -> bool:
        return self._service is not None

    async def classify(
        self,
        message: str,
        context: ConversationContext,
        catalog_names: Sequence[str] = (),
    ) -> Intent:
        fallback = classify(message, catalog_names)
        if self._service is None:
            return fallback

        try:
            prompt = build_intent_prompt(message, catalog_names, context)
            raw = await self._service.complete(prompt, temperature=LLM_TEMPERATURE, max_tokens=LLM_MAX_TOKENS)
            parsed = parse_llm_intent(raw)
        except Exception:
            logger.warning("LLM intent parsing failed, using pattern classification", exc_info=True)
            LLM_INTENT_TOTAL.labels(outcome="fallback").inc()
            return fallback

        if parsed is None:
            LLM_INTENT_TOTAL.labels(outcome="fallback").inc()
            return fallback

        LLM_INTENT_TOTAL.labels(outcome="used").inc()
        return Intent(
            type=parsed.type,
            handler=parsed.type,
            confidence=parsed.confidence,
            source="llm",
            metrics=tuple(parsed.metrics),
            time_range=parsed.time_range,
            operation=parsed.operation,
            reasoning=parsed.reasoning or None,
        )
