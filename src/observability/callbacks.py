"""LangChain callback handler that records LLM call and token metrics.

Create one per completion and pass it via ``config["callbacks"]``. Metric
collection must never break a completion, so every hook swallows its own
failures.
"""

import logging
from typing import Any
from uuid import UUID

from langchain_core.callbacks import BaseCallbackHandler
from langchain_core.outputs import LLMResult

from src.observability.metrics import LLM_CALLS_TOTAL, LLM_TOKEN_USAGE

logger = logging.getLogger(__name__)


def _token_counts(response: LLMResult) -> tuple[int, int] | None:
    """(prompt, completion) token counts from provider output, if reported."""
    llm_output = response.llm_output or {}
    # OpenAI reports "token_usage", Anthropic reports "usage"
    usage: dict[str, Any] | None = llm_output.get("token_usage") or llm_output.get("usage")
    if not usage:
        return None
    prompt = usage.get("prompt_tokens", usage.get("input_tokens", 0)) or 0
    completion = usage.get("completion_tokens", usage.get("output_tokens", 0)) or 0
    return int(prompt), int(completion)


class MetricsCallbackHandler(BaseCallbackHandler):
    """Counts LLM calls by outcome and accumulates token usage."""

    def on_llm_end(
        self,
        response: LLMResult,
        *,
        run_id: UUID,
        parent_run_id: UUID | None = None,
        **kwargs: Any,
    ) -> None:
        try:
            LLM_CALLS_TOTAL.labels(status="success").inc()
            counts = _token_counts(response)
            if counts is None:
                return
            prompt_tokens, completion_tokens = counts
            LLM_TOKEN_USAGE.labels(type="prompt").inc(prompt_tokens)
            LLM_TOKEN_USAGE.labels(type="completion").inc(completion_tokens)
        except Exception:
            logger.debug("metrics: on_llm_end failed", exc_info=True)

    def on_llm_error(
        self,
        error: BaseException,
        *,
        run_id: UUID,
        parent_run_id: UUID | None = None,
        **kwargs: Any,
    ) -> None:
        try:
            LLM_CALLS_TOTAL.labels(status="error").inc()
        except Exception:
            logger.debug("metrics: on_llm_error failed", exc_info=True)
