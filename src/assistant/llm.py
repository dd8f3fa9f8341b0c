"""LLM factory and the completion service used for intent augmentation."""

import logging
from typing import Any, Protocol

from langchain_anthropic import ChatAnthropic
from langchain_core.language_models import BaseChatModel
from langchain_core.runnables import RunnableConfig
from langchain_openai import ChatOpenAI
from pydantic import SecretStr

from src.config import Settings
from src.observability.callbacks import MetricsCallbackHandler

logger = logging.getLogger(__name__)


class LanguageModelService(Protocol):
    """Anything that turns a prompt into text. Failures are the caller's to absorb."""

    async def complete(self, prompt: str, temperature: float = 0.1, max_tokens: int = 500) -> str: ...


def create_anthropic_chat(
    api_key: str,
    model: str,
    temperature: float,
    max_tokens: int,
) -> ChatAnthropic:
    """Create a ChatAnthropic instance."""
    kwargs: dict[str, Any] = {
        "model": model,
        "temperature": temperature,
        "max_tokens": max_tokens,
        "api_key": SecretStr(api_key),
    }
    return ChatAnthropic(**kwargs)  # pyright: ignore[reportCallIssue]


def create_llm(
    settings: Settings,
    temperature: float = 0.0,
    max_tokens: int = 4096,
    model_override: str | None = None,
) -> BaseChatModel:
    """Create a chat model instance based on the configured provider.

    Args:
        settings: Application settings (provider, keys, model names).
        temperature: LLM temperature (low values for structured JSON output).
        max_tokens: Upper bound on completion length.
        model_override: Override model name from settings.

    Returns:
        A ChatAnthropic or ChatOpenAI instance.
    """
    if settings.llm_provider == "anthropic":
        model = model_override or settings.anthropic_model
        return create_anthropic_chat(
            api_key=settings.anthropic_api_key,
            model=model,
            temperature=temperature,
            max_tokens=max_tokens,
        )

    model = model_override or settings.openai_model
    return ChatOpenAI(
        model=model,
        temperature=temperature,
        max_tokens=max_tokens,  # pyright: ignore[reportCallIssue]
        api_key=SecretStr(settings.openai_api_key),
        base_url=settings.openai_base_url or None,
    )


class LangChainCompletionService:
    """LanguageModelService backed by a LangChain chat model.

    A chat model is created per call because temperature and token limits are
    per-request parameters here, not per-process ones.
    """

    def __init__(self, settings: Settings) -> None:
        self._settings = settings

    async def complete(self, prompt: str, temperature: float = 0.1, max_tokens: int = 500) -> str:
        llm = create_llm(self._settings, temperature=temperature, max_tokens=max_tokens)
        config: RunnableConfig = {"callbacks": [MetricsCallbackHandler()]}
        response = await llm.ainvoke(prompt, config=config)
        return str(response.content)


def create_completion_service(settings: Settings) -> LanguageModelService | None:
    """Return a completion service if an LLM is configured and enabled, else None."""
    if not settings.llm_intent_enabled:
        logger.info("LLM intent augmentation disabled by configuration")
        return None
    if not settings.llm_configured:
        logger.info("LLM intent augmentation disabled, no API key for provider '%s'", settings.llm_provider)
        return None
    return LangChainCompletionService(settings)
