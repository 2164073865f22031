from __future__ import annotations

import asyncio

import pytest
from tenacity import RetryCallState

from api_guard.circuit_breaker import CircuitOpenError
from api_guard.errors import HttpError, NetworkError, OperationCancelled
from api_guard.retry import (
    DEFAULT_RETRY_POLICY,
    RetryPolicy,
    build_interruptible_sleep,
    retry_with_backoff,
    wait_bounded_jitter,
)
from tests.api_guard.support.fakes import RecordingSleep, ScriptedOperation

pytestmark = pytest.mark.asyncio


def _retry_state(attempt_number: int) -> RetryCallState:
    state = RetryCallState(retry_object=None, fn=None, args=(), kwargs={})  # type: ignore[arg-type]
    state.attempt_number = attempt_number
    return state


@pytest.mark.parametrize(
    ("overrides", "message"),
    [
        ({"max_attempts": 0}, "max_attempts must be >= 1"),
        ({"base_delay": -0.1}, "base_delay must be >= 0"),
        ({"base_delay": 2.0, "max_delay": 1.0}, "max_delay must be >= base_delay"),
        ({"backoff_multiplier": 1.0}, "backoff_multiplier must be > 1"),
        ({"jitter_fraction": 1.5}, r"jitter_fraction must be within \[0, 1\]"),
        ({"jitter_fraction": -0.1}, r"jitter_fraction must be within \[0, 1\]"),
    ],
)
async def test_retry_policy_validation(
    overrides: dict[str, object],
    message: str,
) -> None:
    with pytest.raises(ValueError, match=message):
        RetryPolicy(**overrides)  # type: ignore[arg-type]


async def test_nominal_delay_grows_exponentially_and_caps() -> None:
    policy = RetryPolicy(base_delay=0.5, max_delay=3.0, backoff_multiplier=2.0)

    assert [policy.nominal_delay(n) for n in range(1, 6)] == [0.5, 1.0, 2.0, 3.0, 3.0]


async def test_nominal_delay_caps_on_overflow() -> None:
    policy = RetryPolicy(base_delay=1.0, max_delay=60.0, backoff_multiplier=10.0)

    assert policy.nominal_delay(10_000) == 60.0


async def test_with_overrides_returns_modified_copy() -> None:
    updated = DEFAULT_RETRY_POLICY.with_overrides(max_attempts=7)

    assert updated.max_attempts == 7
    assert DEFAULT_RETRY_POLICY.max_attempts == 3


@pytest.mark.parametrize("offset_sign", [-1.0, 1.0])
async def test_wait_applies_symmetric_jitter(offset_sign: float) -> None:
    policy = RetryPolicy(base_delay=1.0, max_delay=10.0, jitter_fraction=0.2)
    wait = wait_bounded_jitter(policy, uniform=lambda low, high: offset_sign * high)

    assert wait(_retry_state(2)) == pytest.approx(2.0 + offset_sign * 0.4)


async def test_wait_never_exceeds_max_delay() -> None:
    policy = RetryPolicy(base_delay=4.0, max_delay=5.0, jitter_fraction=1.0)
    wait = wait_bounded_jitter(policy, uniform=lambda low, high: high)

    assert wait(_retry_state(3)) == 5.0


async def test_wait_without_jitter_is_deterministic() -> None:
    policy = RetryPolicy(base_delay=0.3, max_delay=10.0, jitter_fraction=0.0)
    wait = wait_bounded_jitter(policy, uniform=lambda low, high: 1 / 0)

    assert wait(_retry_state(1)) == pytest.approx(0.3)


async def test_first_attempt_success_runs_once_without_delay() -> None:
    operation = ScriptedOperation("ok")
    sleep = RecordingSleep()

    assert await retry_with_backoff(operation, sleep=sleep) == "ok"
    assert operation.calls == 1
    assert sleep.delays == []


async def test_retryable_failures_then_success_respect_delay_bounds() -> None:
    policy = RetryPolicy(
        max_attempts=5,
        base_delay=0.5,
        max_delay=30.0,
        backoff_multiplier=2.0,
        jitter_fraction=0.25,
    )
    operation = ScriptedOperation(
        NetworkError("down"),
        HttpError(503, "Service Unavailable"),
        HttpError(429, "Too Many Requests"),
        "ok",
    )
    sleep = RecordingSleep()

    assert await retry_with_backoff(operation, policy, sleep=sleep) == "ok"
    assert operation.calls == 4
    assert len(sleep.delays) == 3
    for index, delay in enumerate(sleep.delays, start=1):
        lower = 0.5 * 2.0 ** (index - 1) * (1 - 0.25)
        assert lower <= delay <= policy.max_delay


async def test_non_retryable_failure_runs_once_regardless_of_max_attempts() -> None:
    error = HttpError(400, "Bad Request")
    operation = ScriptedOperation(error)
    sleep = RecordingSleep()

    with pytest.raises(HttpError) as excinfo:
        await retry_with_backoff(
            operation,
            RetryPolicy(max_attempts=10),
            sleep=sleep,
        )

    assert excinfo.value is error
    assert operation.calls == 1
    assert sleep.delays == []


async def test_exhausted_attempts_surface_last_failure_unchanged() -> None:
    first = NetworkError("first")
    last = NetworkError("last")
    operation = ScriptedOperation(first, last)

    with pytest.raises(NetworkError) as excinfo:
        await retry_with_backoff(
            operation,
            RetryPolicy(max_attempts=2, base_delay=0.0, max_delay=0.0),
            sleep=RecordingSleep(),
        )

    assert excinfo.value is last
    assert operation.calls == 2


async def test_on_retry_receives_attempt_number_and_failure() -> None:
    failures = [NetworkError("one"), HttpError(502, "Bad Gateway")]
    operation = ScriptedOperation(*failures, "ok")
    observed: list[tuple[int, BaseException]] = []

    policy = RetryPolicy(
        max_attempts=3,
        on_retry=lambda attempt, error: observed.append((attempt, error)),
    )

    assert await retry_with_backoff(operation, policy, sleep=RecordingSleep()) == "ok"
    assert observed == [(1, failures[0]), (2, failures[1])]


async def test_on_retry_is_not_called_for_the_final_failure() -> None:
    operation = ScriptedOperation(NetworkError("down"))
    observed: list[int] = []

    policy = RetryPolicy(
        max_attempts=3,
        on_retry=lambda attempt, error: observed.append(attempt),
    )

    with pytest.raises(NetworkError):
        await retry_with_backoff(operation, policy, sleep=RecordingSleep())

    assert observed == [1, 2]


async def test_on_retry_errors_do_not_stop_retrying() -> None:
    def _exploding_observer(attempt: int, error: BaseException) -> None:
        raise RuntimeError("observer boom")

    operation = ScriptedOperation(NetworkError("down"), "ok")
    policy = RetryPolicy(on_retry=_exploding_observer)

    assert await retry_with_backoff(operation, policy, sleep=RecordingSleep()) == "ok"
    assert operation.calls == 2


async def test_custom_is_retryable_predicate_is_used() -> None:
    operation = ScriptedOperation(KeyError("transient"), "ok")
    policy = RetryPolicy(is_retryable=lambda error: isinstance(error, KeyError))

    assert await retry_with_backoff(operation, policy, sleep=RecordingSleep()) == "ok"
    assert operation.calls == 2


async def test_circuit_open_error_is_never_retried() -> None:
    operation = ScriptedOperation(CircuitOpenError("api", retry_after=10.0))

    with pytest.raises(CircuitOpenError):
        await retry_with_backoff(operation, sleep=RecordingSleep())

    assert operation.calls == 1


async def test_cancellation_inside_attempt_is_not_retried() -> None:
    operation = ScriptedOperation(asyncio.CancelledError())
    policy = RetryPolicy(is_retryable=lambda error: True)

    with pytest.raises(asyncio.CancelledError):
        await retry_with_backoff(operation, policy, sleep=RecordingSleep())

    assert operation.calls == 1


async def test_cancelling_backoff_wait_stops_further_attempts() -> None:
    operation = ScriptedOperation(NetworkError("down"), "ok")
    task = asyncio.create_task(
        retry_with_backoff(
            operation,
            RetryPolicy(base_delay=30.0, max_delay=30.0),
        )
    )
    await asyncio.sleep(0.01)
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task

    assert operation.calls == 1


async def test_interruptible_sleep_aborts_retry_loop_when_stop_is_set() -> None:
    stop_event = asyncio.Event()
    operation = ScriptedOperation(NetworkError("down"), "ok")
    task = asyncio.create_task(
        retry_with_backoff(
            operation,
            RetryPolicy(base_delay=30.0, max_delay=30.0),
            sleep=build_interruptible_sleep(stop_event),
        )
    )
    await asyncio.sleep(0.01)
    stop_event.set()

    with pytest.raises(OperationCancelled):
        await asyncio.wait_for(task, timeout=1.0)

    assert operation.calls == 1


async def test_interruptible_sleep_raises_immediately_when_stop_event_is_set() -> None:
    stop_event = asyncio.Event()
    stop_event.set()
    sleep = build_interruptible_sleep(stop_event)

    with pytest.raises(OperationCancelled):
        await asyncio.wait_for(sleep(30.0), timeout=0.1)


async def test_interruptible_sleep_waits_for_delay_when_not_interrupted() -> None:
    stop_event = asyncio.Event()
    sleep = build_interruptible_sleep(stop_event)

    await asyncio.wait_for(sleep(0.01), timeout=0.2)
