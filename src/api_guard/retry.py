from __future__ import annotations

import asyncio
import dataclasses
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
)
from tenacity.wait import wait_base

from api_guard.classifier import classify_failure, is_retryable_failure
from api_guard.errors import OperationCancelled
from api_guard.logging import get_logger, log_exception, log_warning

T = TypeVar("T")

RetryObserver = Callable[[int, BaseException], None]
SleepFn = Callable[[float], Awaitable[None]]

_logger = get_logger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    """Attempt count, backoff curve and failure predicate for one retry loop.

    Attributes:
        max_attempts: Total attempts including the first one.
        base_delay: Delay in seconds before the second attempt.
        max_delay: Upper bound in seconds for any single delay.
        backoff_multiplier: Growth factor applied per attempt.
        jitter_fraction: Relative jitter applied around each delay.
        is_retryable: Predicate deciding whether a failure is retried.
        on_retry: Optional observer called with the 1-based number of the
            failed attempt and its failure, before the backoff wait.
    """

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 10.0
    backoff_multiplier: float = 2.0
    jitter_fraction: float = 0.1
    is_retryable: Callable[[BaseException], bool] = is_retryable_failure
    on_retry: RetryObserver | None = None

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.base_delay < 0:
            raise ValueError("base_delay must be >= 0")
        if self.max_delay < self.base_delay:
            raise ValueError("max_delay must be >= base_delay")
        if self.backoff_multiplier <= 1:
            raise ValueError("backoff_multiplier must be > 1")
        if not 0 <= self.jitter_fraction <= 1:
            raise ValueError("jitter_fraction must be within [0, 1]")

    def with_overrides(self, **changes: object) -> RetryPolicy:
        """Return a copy of this policy with ``changes`` applied."""
        return dataclasses.replace(self, **changes)  # type: ignore[arg-type]

    def nominal_delay(self, attempt_number: int) -> float:
        """Return the un-jittered delay after failed attempt ``attempt_number``."""
        exponent = max(attempt_number - 1, 0)
        try:
            raw = self.base_delay * self.backoff_multiplier**exponent
        except OverflowError:
            return self.max_delay
        return min(raw, self.max_delay)


DEFAULT_RETRY_POLICY = RetryPolicy()


class wait_bounded_jitter(wait_base):  # noqa: N801
    """Exponential wait with symmetric jitter clamped to ``[0, max_delay]``."""

    def __init__(
        self,
        policy: RetryPolicy,
        *,
        uniform: Callable[[float, float], float] = random.uniform,
    ) -> None:
        self._policy = policy
        self._uniform = uniform

    def __call__(self, retry_state: RetryCallState) -> float:
        delay = self._policy.nominal_delay(retry_state.attempt_number)
        spread = delay * self._policy.jitter_fraction
        if spread > 0:
            delay += self._uniform(-spread, spread)
        return min(max(delay, 0.0), self._policy.max_delay)


def build_interruptible_sleep(stop_event: asyncio.Event) -> SleepFn:
    """Build a backoff sleep that aborts the retry loop when shutdown is requested.

    The returned sleep raises ``OperationCancelled`` as soon as ``stop_event`` is
    set, so no further attempt is scheduled.
    """

    async def _interruptible_sleep(delay: float) -> None:
        if stop_event.is_set():
            raise OperationCancelled("Shutdown requested before retry attempt.")

        bounded_delay = max(delay, 0.0)
        try:
            await asyncio.wait_for(stop_event.wait(), timeout=bounded_delay)
        except TimeoutError:
            return
        raise OperationCancelled("Shutdown requested during retry backoff.")

    return _interruptible_sleep


def _should_retry(policy: RetryPolicy) -> Callable[[BaseException], bool]:
    def _predicate(error: BaseException) -> bool:
        if not isinstance(error, Exception):
            # Cancellation and interpreter exits always propagate.
            return False
        return policy.is_retryable(error)

    return _predicate


def _build_before_sleep(policy: RetryPolicy) -> Callable[[RetryCallState], None]:
    def _before_sleep(retry_state: RetryCallState) -> None:
        outcome = retry_state.outcome
        if outcome is None:
            return
        error = outcome.exception()
        if error is None:
            return
        attempt_number = retry_state.attempt_number
        delay = 0.0
        if retry_state.next_action is not None:
            delay = retry_state.next_action.sleep
        failure = classify_failure(error)
        log_warning(
            _logger,
            "retry.scheduled",
            attempt=attempt_number,
            max_attempts=policy.max_attempts,
            delay_seconds=delay,
            failure_kind=str(failure.kind),
            status=failure.status,
            error=str(error),
        )
        if policy.on_retry is None:
            return
        try:
            policy.on_retry(attempt_number, error)
        except Exception:
            log_exception(_logger, "retry.observer_failed", attempt=attempt_number)

    return _before_sleep


def build_exponential_jitter_retrying(
    policy: RetryPolicy,
    *,
    sleep: SleepFn | None = None,
    uniform: Callable[[float, float], float] = random.uniform,
) -> AsyncRetrying:
    """Build an ``AsyncRetrying`` that follows ``policy``.

    The last failure is re-raised unchanged once attempts are exhausted, and
    non-retryable failures are re-raised on first occurrence.
    """
    options: dict[str, object] = {
        "retry": retry_if_exception(_should_retry(policy)),
        "wait": wait_bounded_jitter(policy, uniform=uniform),
        "stop": stop_after_attempt(policy.max_attempts),
        "before_sleep": _build_before_sleep(policy),
        "reraise": True,
    }
    if sleep is not None:
        options["sleep"] = sleep
    return AsyncRetrying(**options)  # type: ignore[arg-type]


async def retry_with_backoff(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy | None = None,
    *,
    sleep: SleepFn | None = None,
) -> T:
    """Run ``operation`` with exponential backoff retries.

    Args:
        operation: Zero-argument async callable producing the result.
        policy: Retry policy. Defaults to ``DEFAULT_RETRY_POLICY``.
        sleep: Optional awaitable sleep used between attempts. Defaults to
            ``asyncio.sleep``; pass ``build_interruptible_sleep`` for
            cancellable waits or a fake for virtual clocks.

    Returns:
        The result of the first successful attempt.

    Raises:
        Exception: The last failure of ``operation``, unchanged.
        OperationCancelled: When an interruptible sleep observes shutdown.
    """
    resolved = DEFAULT_RETRY_POLICY if policy is None else policy
    retrying = build_exponential_jitter_retrying(resolved, sleep=sleep)
    async for attempt in retrying:
        with attempt:
            return await operation()

    raise RuntimeError("Retry loop exited unexpectedly.")
