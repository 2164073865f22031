from __future__ import annotations

from typing import Any, cast

import pytest
from pydantic import ValidationError

from api_guard.api_policy import build_api_retry_policy
from api_guard.settings import ENV_PREFIX, ResilienceSettings


def _build_settings(**overrides: object) -> ResilienceSettings:
    values: dict[str, object] = {"api_base_url": "https://api.example.com"}
    values.update(overrides)
    return ResilienceSettings(**cast(Any, values))


def test_resilience_settings_defaults() -> None:
    settings = _build_settings()

    assert settings.request_deadline_seconds == 30.0
    assert settings.retry_max_attempts == 3
    assert settings.retry_base_delay_seconds == 0.3
    assert settings.retry_max_delay_seconds == 10.0
    assert settings.retry_backoff_multiplier == 2.0
    assert settings.retry_jitter_fraction == 0.2
    assert settings.breaker_name == "api"
    assert settings.breaker_failure_threshold == 10
    assert settings.breaker_recovery_timeout_seconds == 120.0
    assert settings.status_poll_interval_seconds == 5.0
    assert settings.health_check_path == "/health"
    assert settings.log_level == "INFO"


def test_resilience_settings_reads_prefixed_environment(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setenv(f"{ENV_PREFIX}API_BASE_URL", " https://backend.internal ")
    monkeypatch.setenv(f"{ENV_PREFIX}BREAKER_FAILURE_THRESHOLD", "4")
    monkeypatch.setenv(f"{ENV_PREFIX}RETRY_MAX_ATTEMPTS", "5")
    monkeypatch.setenv(f"{ENV_PREFIX}LOG_LEVEL", "debug")

    settings = ResilienceSettings()  # type: ignore[call-arg]

    assert settings.api_base_url == "https://backend.internal"
    assert settings.breaker_failure_threshold == 4
    assert settings.retry_max_attempts == 5
    assert settings.log_level == "DEBUG"


def test_resilience_settings_prefixes_health_check_path() -> None:
    assert _build_settings(health_check_path="status").health_check_path == "/status"


def test_resilience_settings_requires_api_base_url(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.delenv(f"{ENV_PREFIX}API_BASE_URL", raising=False)

    with pytest.raises(ValidationError):
        ResilienceSettings()  # type: ignore[call-arg]


@pytest.mark.parametrize(
    ("overrides", "message"),
    [
        ({"api_base_url": "   "}, "api_base_url must be non-empty"),
        ({"breaker_name": ""}, "breaker_name must be non-empty"),
        ({"log_level": "TRACE"}, "log_level must be one of"),
        ({"request_deadline_seconds": 0}, "request_deadline_seconds must be > 0"),
        ({"retry_max_attempts": 0}, "retry_max_attempts must be >= 1"),
        ({"retry_base_delay_seconds": -1}, "retry_base_delay_seconds must be >= 0"),
        (
            {"retry_base_delay_seconds": 5, "retry_max_delay_seconds": 1},
            "retry_max_delay_seconds must be >= retry_base_delay_seconds",
        ),
        ({"retry_backoff_multiplier": 1}, "retry_backoff_multiplier must be > 1"),
        ({"retry_jitter_fraction": 2}, "retry_jitter_fraction must be within"),
        ({"breaker_failure_threshold": 0}, "breaker_failure_threshold must be >= 1"),
        (
            {"breaker_recovery_timeout_seconds": -1},
            "breaker_recovery_timeout_seconds must be >= 0",
        ),
        ({"status_poll_interval_seconds": 0}, "status_poll_interval_seconds must be > 0"),
    ],
)
def test_resilience_settings_rejects_invalid_values(
    overrides: dict[str, object],
    message: str,
) -> None:
    with pytest.raises(ValidationError, match=message):
        _build_settings(**overrides)


def test_build_api_retry_policy_uses_settings() -> None:
    settings = _build_settings(
        retry_max_attempts=6,
        retry_base_delay_seconds=0.5,
        retry_max_delay_seconds=4.0,
        retry_backoff_multiplier=3.0,
        retry_jitter_fraction=0.0,
    )

    policy = build_api_retry_policy(settings, on_retry=None)

    assert policy.max_attempts == 6
    assert policy.base_delay == 0.5
    assert policy.max_delay == 4.0
    assert policy.backoff_multiplier == 3.0
    assert policy.jitter_fraction == 0.0
    assert policy.on_retry is None
