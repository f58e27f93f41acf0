"""Application configuration using pydantic-settings."""

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = "FlapCast"
    app_version: str = "0.1.0"
    debug: bool = False
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    # Redis
    redis_url: str = Field(
        default="redis://localhost:6379/0",
        description="Redis connection URL",
    )
    redis_max_connections: int = Field(default=20, ge=1)
    redis_socket_timeout_seconds: float = Field(
        default=5.0,
        gt=0,
        description="Redis command timeout; a timeout counts as a store failure",
    )

    # Home Assistant
    ha_url: str = Field(
        default="",
        description="Home Assistant base URL, e.g. http://homeassistant.local:8123",
    )
    ha_token: str = Field(default="", description="Home Assistant long-lived access token")
    ha_refresh_event: str = Field(
        default="vestaboard_refresh",
        description="Event type that forces a major refresh",
    )
    ha_reconnect_delay_seconds: float = Field(
        default=5.0,
        gt=0,
        description="Initial delay before reconnecting to Home Assistant",
    )
    ha_max_reconnect_delay_seconds: float = Field(
        default=60.0,
        gt=0,
        description="Upper bound for the reconnect backoff",
    )

    # Triggers
    triggers_config_path: str = Field(
        default="",
        description="Path to the triggers YAML file (empty disables state-change triggers)",
    )
    triggers_watch: bool = Field(default=True, description="Hot-reload triggers on file change")
    triggers_watch_interval_seconds: float = Field(
        default=1.0,
        gt=0,
        description="Polling interval for the triggers file",
    )
    triggers_reload_debounce_seconds: float = Field(
        default=0.5,
        ge=0,
        description="Quiet period before a changed triggers file is reloaded",
    )

    # Minor updates
    minor_updates_enabled: bool = Field(
        default=True,
        description="Send a minor update on every interval boundary",
    )
    minor_update_interval_seconds: float = Field(
        default=60.0,
        gt=0,
        description="Minor update interval, aligned to the wall clock",
    )

    # Circuit breaker
    circuit_failure_threshold: int = Field(
        default=5,
        ge=1,
        description="Consecutive failures before a provider circuit trips",
    )
    circuit_reset_timeout_seconds: float = Field(
        default=300.0,
        gt=0,
        description="Time a provider circuit stays off before a trial is allowed",
    )
    circuit_half_open_successes: int = Field(
        default=1,
        ge=1,
        description="Successful trials needed to close a half-open circuit",
    )
    circuit_store_failure_policy: Literal["fail_closed", "fail_open"] = Field(
        default="fail_closed",
        description="Provider circuit verdict when the store cannot be read",
    )

    # AI providers (OpenAI compatible)
    openai_api_key: str = Field(default="", description="OpenAI API key")
    openai_base_url: str = Field(
        default="https://api.openai.com/v1",
        description="OpenAI compatible API base URL",
    )
    openai_model: str = Field(default="gpt-4o-mini", description="Model name to use")
    openai_timeout: int = Field(default=30, ge=1, description="API request timeout in seconds")

    alternate_provider_name: str = Field(
        default="",
        description="Name of the failover provider (empty reuses the primary)",
    )
    alternate_api_key: str = Field(default="", description="Failover provider API key")
    alternate_base_url: str = Field(default="", description="Failover provider base URL")
    alternate_model: str = Field(default="", description="Failover provider model")

    # Retry
    retry_attempts_per_provider: int = Field(default=2, ge=1)
    retry_backoff_base_seconds: float = Field(default=1.0, ge=0)
    retry_backoff_multiplier: float = Field(default=2.0, ge=1)

    # Display device
    display_url: str = Field(
        default="http://vestaboard.local:7000",
        description="Local API base URL of the display",
    )
    display_api_key: str = Field(default="", description="Display local API key")
    display_timeout_seconds: float = Field(default=5.0, gt=0)
    display_max_retries: int = Field(default=2, ge=0)
    display_max_backoff_seconds: float = Field(default=10.0, gt=0)

    # Content history
    history_max_items: int = Field(default=500, ge=1, description="Content records kept")


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
