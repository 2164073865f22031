from __future__ import annotations

from pydantic import ValidationInfo, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from api_guard.logging import get_log_level_value

ENV_PREFIX = "API_GUARD_"


def prefixed_settings_config(prefix: str) -> SettingsConfigDict:
    """Build standard Pydantic settings config for prefixed environments."""
    return SettingsConfigDict(env_prefix=prefix, case_sensitive=False)


class ResilienceSettings(BaseSettings):
    """Settings for calling the backend API with retries and a circuit breaker."""

    model_config = prefixed_settings_config(ENV_PREFIX)

    api_base_url: str
    request_deadline_seconds: float = 30.0
    retry_max_attempts: int = 3
    retry_base_delay_seconds: float = 0.3
    retry_max_delay_seconds: float = 10.0
    retry_backoff_multiplier: float = 2.0
    retry_jitter_fraction: float = 0.2
    breaker_name: str = "api"
    breaker_failure_threshold: int = 10
    breaker_recovery_timeout_seconds: float = 120.0
    status_poll_interval_seconds: float = 5.0
    health_check_path: str = "/health"
    log_level: str = "INFO"

    @field_validator("api_base_url", "breaker_name", mode="before")
    @classmethod
    def _validate_required_string(cls, value: object, info: ValidationInfo) -> object:
        if not isinstance(value, str):
            return value
        normalized = value.strip()
        if not normalized:
            raise ValueError(f"{info.field_name} must be non-empty")
        return normalized

    @field_validator("log_level", mode="before")
    @classmethod
    def _normalize_log_level(cls, value: object) -> object:
        if not isinstance(value, str):
            return value
        get_log_level_value(value)
        return value.strip().upper()

    @field_validator("health_check_path", mode="before")
    @classmethod
    def _normalize_health_check_path(cls, value: object) -> object:
        if isinstance(value, str) and not value.startswith("/"):
            return f"/{value}"
        return value

    @model_validator(mode="after")
    def _validate_resilience_settings(self) -> ResilienceSettings:
        if self.request_deadline_seconds <= 0:
            raise ValueError("request_deadline_seconds must be > 0")
        if self.retry_max_attempts < 1:
            raise ValueError("retry_max_attempts must be >= 1")
        if self.retry_base_delay_seconds < 0:
            raise ValueError("retry_base_delay_seconds must be >= 0")
        if self.retry_max_delay_seconds < self.retry_base_delay_seconds:
            raise ValueError(
                "retry_max_delay_seconds must be >= retry_base_delay_seconds"
            )
        if self.retry_backoff_multiplier <= 1:
            raise ValueError("retry_backoff_multiplier must be > 1")
        if not 0 <= self.retry_jitter_fraction <= 1:
            raise ValueError("retry_jitter_fraction must be within [0, 1]")
        if self.breaker_failure_threshold < 1:
            raise ValueError("breaker_failure_threshold must be >= 1")
        if self.breaker_recovery_timeout_seconds < 0:
            raise ValueError("breaker_recovery_timeout_seconds must be >= 0")
        if self.status_poll_interval_seconds <= 0:
            raise ValueError("status_poll_interval_seconds must be > 0")
        return self
