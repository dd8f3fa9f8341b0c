"""Tests for language-model intent augmentation."""

import json
from unittest.mock import AsyncMock

import pytest
from prometheus_client import REGISTRY

from src.assistant.llm_intent import (
    LLMIntentStrategy,
    build_intent_prompt,
    build_rich_schema,
    describe_measurement,
    parse_llm_intent,
)
from src.assistant.models import ConversationContext, Entities, MetricRef, Turn
from src.assistant.patterns import IntentKind

CATALOG = ["cpu", "mem", "disk", "net", "http_requests", "weather", "power"]


def _llm_json(**overrides: object) -> str:
    payload: dict[str, object] = {
        "type": "trend_analysis",
        "metrics": ["mem"],
        "timeRange": "7d",
        "operation": "mean",
        "confidence": 0.85,
        "reasoning": "memory growth question",
    }
    payload.update(overrides)
    return json.dumps(payload)


def _sample(outcome: str) -> float:
    return REGISTRY.get_sample_value("ts_assistant_llm_intent_total", {"outcome": outcome}) or 0.0


class TestParseLLMIntent:
    def test_plain_json(self) -> None:
        parsed = parse_llm_intent(_llm_json())
        assert parsed is not None
        assert parsed.type is IntentKind.TREND_ANALYSIS
        assert parsed.metrics == ["mem"]
        assert parsed.time_range == "7d"

    def test_fenced_json_with_prose(self) -> None:
        raw = f"Sure! Here you go:\n```json\n{_llm_json()}\n```\nHope that helps."
        parsed = parse_llm_intent(raw)
        assert parsed is not None
        assert parsed.confidence == 0.85

    def test_pipe_separated_type_takes_last(self) -> None:
        parsed = parse_llm_intent(_llm_json(type="status_check|anomaly_detection"))
        assert parsed is not None
        assert parsed.type is IntentKind.ANOMALY_DETECTION

    @pytest.mark.parametrize(
        ("alias", "expected"),
        [
            ("find_anomalies", IntentKind.ANOMALY_DETECTION),
            ("compare_metrics", IntentKind.COMPARISON),
            ("list_metrics", IntentKind.METRIC_QUERY),
            ("get_stats", IntentKind.STATUS_CHECK),
        ],
    )
    def test_aliases(self, alias: str, expected: IntentKind) -> None:
        parsed = parse_llm_intent(_llm_json(type=alias))
        assert parsed is not None
        assert parsed.type is expected

    @pytest.mark.parametrize(
        "raw",
        [
            "no json here",
            "{not valid json}",
            _llm_json(type="make_coffee"),
            _llm_json(confidence=1.5),
        ],
    )
    def test_invalid_returns_none(self, raw: str) -> None:
        assert parse_llm_intent(raw) is None


class TestSchema:
    def test_describe_measurement_families(self) -> None:
        assert describe_measurement("cpu_load").description == "Processor utilisation"
        assert describe_measurement("diskio").type == "gauge"
        assert describe_measurement("weather").description == "Time series measurement"

    def test_rich_schema_limits_examples(self) -> None:
        schema = build_rich_schema(CATALOG, ConversationContext())
        assert "Total measurements: 7" in schema
        assert "Example measurements (5 of 7)" in schema
        assert "- weather" not in schema

    def test_recently_discussed_listed_separately(self) -> None:
        context = ConversationContext(
            history=[
                Turn(
                    message="anything odd in weather?",
                    intent=IntentKind.ANOMALY_DETECTION,
                    entities=Entities(),
                    result={"text": "No anomalies in weather."},
                )
            ]
        )
        schema = build_rich_schema(CATALOG, context)
        assert "**Recently discussed measurements:**\n- weather" in schema

    def test_prompt_contains_context_and_question(self) -> None:
        context = ConversationContext(current_metric=MetricRef(measurement="cpu"), current_time_range="6h")
        prompt = build_intent_prompt('is "cpu" ok?', CATALOG, context)
        assert "Current metric: cpu" in prompt
        assert "Current time range: 6h" in prompt
        assert 'User query: "is \\"cpu\\" ok?"' in prompt
        assert "unknown" not in prompt.split('"type" must be exactly ONE of:')[1].splitlines()[0]


class TestLLMIntentStrategy:
    async def test_no_service_uses_patterns(self) -> None:
        strategy = LLMIntentStrategy(None)
        intent = await strategy.classify("show me unusual spikes in cpu", ConversationContext())
        assert strategy.available is False
        assert intent.source == "pattern"
        assert intent.type is IntentKind.ANOMALY_DETECTION

    async def test_model_result_used(self) -> None:
        service = AsyncMock()
        service.complete.return_value = _llm_json()
        before = _sample("used")

        intent = await LLMIntentStrategy(service).classify("is memory creeping up?", ConversationContext(), CATALOG)

        assert intent.source == "llm"
        assert intent.type is IntentKind.TREND_ANALYSIS
        assert intent.handler is IntentKind.TREND_ANALYSIS
        assert intent.metrics == ("mem",)
        assert intent.time_range == "7d"
        assert intent.confidence == 0.85
        assert service.complete.call_args.kwargs == {"temperature": 0.1, "max_tokens": 500}
        assert _sample("used") - before == 1.0

    async def test_service_error_falls_back(self) -> None:
        service = AsyncMock()
        service.complete.side_effect = RuntimeError("rate limited")
        before = _sample("fallback")

        intent = await LLMIntentStrategy(service).classify("show me unusual spikes in cpu", ConversationContext())

        assert intent.source == "pattern"
        assert intent.type is IntentKind.ANOMALY_DETECTION
        assert _sample("fallback") - before == 1.0

    async def test_unparsable_output_falls_back(self) -> None:
        service = AsyncMock()
        service.complete.return_value = "I think they want anomalies"

        intent = await LLMIntentStrategy(service).classify("hello", ConversationContext())

        assert intent.source == "pattern"
        assert intent.type is IntentKind.GENERAL_QUERY
