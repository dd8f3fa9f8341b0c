"""Tests for the chat model factory and completion service."""

from collections.abc import Callable
from unittest.mock import AsyncMock, patch

from langchain_anthropic import ChatAnthropic
from langchain_core.messages import AIMessage
from langchain_openai import ChatOpenAI

from src.assistant.llm import LangChainCompletionService, create_completion_service, create_llm
from src.config import Settings
from src.observability.callbacks import MetricsCallbackHandler


class TestCreateLLM:
    def test_openai_default(self, settings_factory: Callable[..., Settings]) -> None:
        llm = create_llm(settings_factory(openai_api_key="sk-test"), temperature=0.1, max_tokens=500)
        assert isinstance(llm, ChatOpenAI)
        assert llm.model_name == "gpt-4o-mini"

    def test_anthropic(self, settings_factory: Callable[..., Settings]) -> None:
        settings = settings_factory(llm_provider="anthropic", anthropic_api_key="sk-ant-test")
        assert isinstance(create_llm(settings), ChatAnthropic)

    def test_model_override(self, settings_factory: Callable[..., Settings]) -> None:
        llm = create_llm(settings_factory(openai_api_key="sk-test"), model_override="gpt-4o")
        assert isinstance(llm, ChatOpenAI)
        assert llm.model_name == "gpt-4o"


class TestCreateCompletionService:
    def test_none_without_key(self, settings_factory: Callable[..., Settings]) -> None:
        assert create_completion_service(settings_factory()) is None

    def test_none_when_disabled(self, settings_factory: Callable[..., Settings]) -> None:
        settings = settings_factory(openai_api_key="sk-test", llm_intent_enabled=False)
        assert create_completion_service(settings) is None

    def test_service_for_configured_provider(self, settings_factory: Callable[..., Settings]) -> None:
        settings = settings_factory(llm_provider="anthropic", anthropic_api_key="sk-ant-test")
        assert isinstance(create_completion_service(settings), LangChainCompletionService)


class TestLangChainCompletionService:
    async def test_complete_passes_limits_and_callbacks(self, settings_factory: Callable[..., Settings]) -> None:
        settings = settings_factory(openai_api_key="sk-test")
        fake_llm = AsyncMock()
        fake_llm.ainvoke.return_value = AIMessage(content='{"type": "status_check"}')

        with patch("src.assistant.llm.create_llm", return_value=fake_llm) as factory:
            text = await LangChainCompletionService(settings).complete("prompt", temperature=0.1, max_tokens=500)

        assert text == '{"type": "status_check"}'
        factory.assert_called_once_with(settings, temperature=0.1, max_tokens=500)
        callbacks = fake_llm.ainvoke.call_args.kwargs["config"]["callbacks"]
        assert isinstance(callbacks[0], MetricsCallbackHandler)
