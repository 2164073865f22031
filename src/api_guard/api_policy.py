"""Retry policy preset tuned for request/response failures."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, TypeVar

from api_guard.classifier import classify_failure, is_retryable_failure
from api_guard.logging import get_logger, log_info
from api_guard.retry import RetryObserver, RetryPolicy, SleepFn, retry_with_backoff

if TYPE_CHECKING:
    from api_guard.settings import ResilienceSettings

T = TypeVar("T")

_logger = get_logger(__name__)


def log_api_retry(attempt_number: int, error: BaseException) -> None:
    """Log the classification of a failed API attempt that will be retried."""
    failure = classify_failure(error)
    log_info(
        _logger,
        "api_call.retrying",
        attempt=attempt_number,
        failure_kind=str(failure.kind),
        status=failure.status,
        error_type=error.__class__.__name__,
    )


API_RETRY_POLICY = RetryPolicy(
    max_attempts=3,
    base_delay=0.3,
    max_delay=10.0,
    backoff_multiplier=2.0,
    jitter_fraction=0.2,
    is_retryable=is_retryable_failure,
    on_retry=log_api_retry,
)


def build_api_retry_policy(
    settings: ResilienceSettings | None = None,
    *,
    on_retry: RetryObserver | None = log_api_retry,
) -> RetryPolicy:
    """Build the API retry policy, optionally from environment settings."""
    if settings is None:
        return API_RETRY_POLICY.with_overrides(on_retry=on_retry)
    return RetryPolicy(
        max_attempts=settings.retry_max_attempts,
        base_delay=settings.retry_base_delay_seconds,
        max_delay=settings.retry_max_delay_seconds,
        backoff_multiplier=settings.retry_backoff_multiplier,
        jitter_fraction=settings.retry_jitter_fraction,
        is_retryable=is_retryable_failure,
        on_retry=on_retry,
    )


async def retry_api_call(
    operation: Callable[[], Awaitable[T]],
    *,
    policy: RetryPolicy | None = None,
    sleep: SleepFn | None = None,
) -> T:
    """Run ``operation`` under the API retry policy.

    Network, timeout, 5xx and 429 failures are retried; other 4xx failures and
    unclassified failures are raised on first occurrence.
    """
    resolved = API_RETRY_POLICY if policy is None else policy
    return await retry_with_backoff(operation, resolved, sleep=sleep)
