from functools import lru_cache
from typing import ClassVar

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables / .env file."""

    # Grafana datasource proxy used to run queries
    grafana_url: str
    grafana_service_account_token: str = ""

    # Prometheus API (optional; used for the metric catalog when the datasource is Prometheus)
    prometheus_url: str = ""

    # Datasource selected for the session when the host does not pick one
    default_datasource_uid: str = ""
    default_datasource_type: str = "influxdb"  # influxdb | prometheus
    default_database: str = ""

    # LLM intent augmentation (optional; without a key classification is pattern-only)
    llm_provider: str = "openai"  # openai | anthropic
    openai_api_key: str = ""
    openai_model: str = "gpt-4o-mini"
    openai_base_url: str = ""  # Optional OpenAI-compatible proxy URL
    anthropic_api_key: str = ""
    anthropic_model: str = "claude-sonnet-4-5"
    llm_intent_enabled: bool = True

    # Analysis and query tuning
    default_time_range: str = "1h"
    outlier_threshold: float = 2.5  # standard deviations from the mean
    batch_delay_seconds: float = 0.3  # pause between per-metric queries in a batch
    max_data_points: int = 300
    query_timeout_seconds: float = 15.0
    max_sessions: int = 1000  # least recently used contexts are dropped beyond this

    model_config: ClassVar[SettingsConfigDict] = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    @property
    def llm_configured(self) -> bool:
        """True when the active provider has an API key."""
        if self.llm_provider == "anthropic":
            return bool(self.anthropic_api_key)
        return bool(self.openai_api_key)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Lazily load and cache settings. Fails at first call, not at import time."""
    return Settings()  # type: ignore[call-arg]  # pyright: ignore[reportCallIssue]
