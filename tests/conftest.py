"""Shared pytest configuration and fixtures."""

from collections.abc import Callable, Generator
from typing import Any
from unittest.mock import patch

import pytest

from src.config import Settings, get_settings


def pytest_addoption(parser: pytest.Parser) -> None:
    parser.addoption(
        "--run-e2e",
        action="store_true",
        default=False,
        help="Run e2e tests that hit real services (requires .env with valid credentials)",
    )


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    if config.getoption("--run-e2e"):
        return
    skip_e2e = pytest.mark.skip(reason="Need --run-e2e flag to run")
    for item in items:
        if "e2e" in item.keywords:
            item.add_marker(skip_e2e)


@pytest.fixture(autouse=True)
def _no_dotenv(request: pytest.FixtureRequest) -> Generator[None]:
    """Block .env loading so tests that forget mock_settings fail locally, not just in CI.

    Sets Settings.model_config['env_file'] = None before each test (except e2e).
    Tests that use mock_settings bypass Settings() entirely, so this is transparent.
    Tests that forget mock_settings will hit a validation error on required fields.
    """
    if "e2e" in request.keywords:
        yield
        return

    get_settings.cache_clear()
    original = Settings.model_config.get("env_file")
    Settings.model_config["env_file"] = None

    try:
        yield
    finally:
        Settings.model_config["env_file"] = original
        get_settings.cache_clear()


def _make_settings(**overrides: Any) -> Settings:
    """Real Settings object with test values; keyword arguments override fields."""
    values: dict[str, Any] = {
        "grafana_url": "http://grafana.test:3000",
        "grafana_service_account_token": "glsa_test_fake",
        "prometheus_url": "http://prometheus.test:9090",
        "default_datasource_uid": "influx-uid",
        "default_datasource_type": "influxdb",
        "default_database": "telegraf",
        "llm_provider": "openai",
        "openai_api_key": "",
        "anthropic_api_key": "",
        "llm_intent_enabled": True,
        "default_time_range": "1h",
        "outlier_threshold": 2.5,
        "batch_delay_seconds": 0.0,
        "max_data_points": 300,
        "query_timeout_seconds": 5.0,
        "max_sessions": 1000,
    }
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def settings_factory() -> Callable[..., Settings]:
    """Build Settings with test defaults; keyword arguments override fields."""
    return _make_settings


@pytest.fixture
def mock_settings() -> Generator[Settings]:
    """Provide fake settings so tests don't need a .env file.

    Patches get_settings at every import site so cached references are overridden.
    """
    fake_settings = _make_settings()
    with (
        patch("src.config.get_settings", return_value=fake_settings),
        patch("src.query.executor.get_settings", return_value=fake_settings),
        patch("src.query.catalog.get_settings", return_value=fake_settings),
        patch("src.assistant.engine.get_settings", return_value=fake_settings),
        patch("src.api.main.get_settings", return_value=fake_settings),
    ):
        yield fake_settings
