"""Core circuit breaker implementation."""

import sys
import threading
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from types import TracebackType
from typing import ParamSpec, TypeVar

from api_guard.circuit_breaker.exceptions import CircuitOpenError
from api_guard.circuit_breaker.metrics import BreakerListener
from api_guard.circuit_breaker.state import CircuitBreakerStatus, CircuitState
from api_guard.classifier import is_retryable_failure
from api_guard.logging import get_logger, log_info

T = TypeVar("T")
P = ParamSpec("P")

_Transition = tuple[CircuitState, CircuitState]

_logger = get_logger(__name__)


class _StateGuard:
    """Serialize state updates when the interpreter runs without the GIL.

    With the GIL enabled, state updates never span an ``await`` and cannot
    interleave on one event loop, so no lock is taken.
    """

    def __init__(self) -> None:
        is_gil_enabled = getattr(sys, "_is_gil_enabled", None)
        self._gil_enabled = True if is_gil_enabled is None else bool(is_gil_enabled())
        self._thread_lock: threading.Lock | None = None
        if not self._gil_enabled:
            self._thread_lock = threading.Lock()

    def __enter__(self) -> None:
        if self._thread_lock is not None:
            self._thread_lock.acquire()

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        if self._thread_lock is not None:
            self._thread_lock.release()


@dataclass(slots=True)
class CircuitBreakerConfig:
    """Circuit breaker configuration values.

    Attributes:
        failure_threshold: Consecutive counted failures while ``CLOSED`` before
            opening.
        recovery_timeout: Seconds to wait while ``OPEN`` before allowing a probe.
        is_failure: Predicate deciding whether a failure counts toward the
            threshold. Defaults to the retryable-failure classifier, so client
            errors never trip the breaker.
    """

    failure_threshold: int = 5
    recovery_timeout: float = 30.0
    is_failure: Callable[[BaseException], bool] = is_retryable_failure

    def __post_init__(self) -> None:
        if self.failure_threshold < 1:
            raise ValueError("failure_threshold must be >= 1")
        if self.recovery_timeout < 0:
            raise ValueError("recovery_timeout must be >= 0")


class CircuitBreaker:
    """Stateful proxy around calls to one unreliable dependency.

    Only failures accepted by ``config.is_failure`` are counted. Other failures
    propagate unchanged and leave the breaker untouched. While ``OPEN`` calls are
    rejected with ``CircuitOpenError`` until ``recovery_timeout`` has elapsed
    since the last counted failure; the next call then becomes the single
    ``HALF_OPEN`` probe whose outcome closes or re-opens the circuit.
    """

    def __init__(
        self,
        name: str,
        *,
        failure_threshold: int | None = None,
        recovery_timeout: float | None = None,
        config: CircuitBreakerConfig | None = None,
        listeners: Sequence[BreakerListener] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Build a circuit breaker for one guarded dependency.

        Args:
            name: Breaker name used in errors, logs and listener events.
            failure_threshold: Shorthand for ``config.failure_threshold``.
            recovery_timeout: Shorthand for ``config.recovery_timeout``.
            config: Breaker behavior configuration. Defaults to
                ``CircuitBreakerConfig()``.
            listeners: Optional listener hooks for breaker events.
            clock: Monotonic clock in seconds, replaceable for tests.

        Raises:
            ValueError: If ``config`` is combined with the shorthand arguments.
        """
        if config is None:
            overrides: dict[str, float] = {}
            if failure_threshold is not None:
                overrides["failure_threshold"] = failure_threshold
            if recovery_timeout is not None:
                overrides["recovery_timeout"] = recovery_timeout
            config = CircuitBreakerConfig(**overrides)  # type: ignore[arg-type]
        elif failure_threshold is not None or recovery_timeout is not None:
            raise ValueError(
                "pass either config or failure_threshold/recovery_timeout, not both"
            )
        self.name = name
        self.config = config
        self._listeners = tuple(listeners) if listeners is not None else ()
        self._clock = clock
        self._guard = _StateGuard()
        self._state = CircuitState.CLOSED
        self._consecutive_failures = 0
        self._last_failure_at: float | None = None
        self._probe_in_flight = False
        self._generation = 0

    async def _emit_state_change(self, old: CircuitState, new: CircuitState) -> None:
        for listener in self._listeners:
            try:
                await listener.on_state_change(self.name, old, new)
            except Exception:
                continue

    async def _emit_transitions(self, transitions: Sequence[_Transition]) -> None:
        for old, new in transitions:
            await self._emit_state_change(old, new)

    async def _emit_call_rejected(self) -> None:
        for listener in self._listeners:
            try:
                await listener.on_call_rejected(self.name)
            except Exception:
                continue

    async def _emit_call_succeeded(self, elapsed: float) -> None:
        for listener in self._listeners:
            try:
                await listener.on_call_succeeded(self.name, elapsed)
            except Exception:
                continue

    async def _emit_call_failed(self, exc: Exception, elapsed: float) -> None:
        for listener in self._listeners:
            try:
                await listener.on_call_failed(self.name, exc, elapsed)
            except Exception:
                continue

    def _remaining_cooldown(self, now: float) -> float:
        if self._last_failure_at is None:
            return 0.0
        elapsed = now - self._last_failure_at
        return max(self.config.recovery_timeout - elapsed, 0.0)

    def _admit(self) -> tuple[list[_Transition], float | None, bool, int]:
        """Decide whether a call may run.

        Returns transitions to emit, the ``retry_after`` of a rejection (or
        ``None`` when admitted), whether the call is the probe, and the reset
        generation the decision was made in.
        """
        transitions: list[_Transition] = []
        with self._guard:
            if self._state == CircuitState.OPEN:
                retry_after = self._remaining_cooldown(self._clock())
                if retry_after > 0:
                    return transitions, retry_after, False, self._generation
                self._state = CircuitState.HALF_OPEN
                transitions.append((CircuitState.OPEN, CircuitState.HALF_OPEN))

            if self._state == CircuitState.HALF_OPEN:
                if self._probe_in_flight:
                    return transitions, 0.0, False, self._generation
                self._probe_in_flight = True
                return transitions, None, True, self._generation

            return transitions, None, False, self._generation

    def _settle_failure(
        self, exc: Exception, *, is_probe: bool, generation: int
    ) -> list[_Transition]:
        counted = self.config.is_failure(exc)
        with self._guard:
            if generation != self._generation:
                # reset() ran while this call was in flight.
                return []
            if is_probe:
                self._probe_in_flight = False
                if not counted:
                    return []
                self._consecutive_failures += 1
                self._last_failure_at = self._clock()
                self._state = CircuitState.OPEN
                return [(CircuitState.HALF_OPEN, CircuitState.OPEN)]

            if not counted or self._state != CircuitState.CLOSED:
                return []
            self._consecutive_failures += 1
            self._last_failure_at = self._clock()
            if self._consecutive_failures < self.config.failure_threshold:
                return []
            self._state = CircuitState.OPEN
            return [(CircuitState.CLOSED, CircuitState.OPEN)]

    def _settle_success(self, *, is_probe: bool, generation: int) -> list[_Transition]:
        with self._guard:
            if generation != self._generation:
                return []
            if is_probe:
                self._probe_in_flight = False
                self._state = CircuitState.CLOSED
                self._consecutive_failures = 0
                self._last_failure_at = None
                return [(CircuitState.HALF_OPEN, CircuitState.CLOSED)]
            if self._state == CircuitState.CLOSED:
                self._consecutive_failures = 0
            return []

    def _release_probe(self, generation: int) -> None:
        with self._guard:
            if generation == self._generation:
                self._probe_in_flight = False

    async def execute(
        self,
        operation: Callable[P, Awaitable[T]],
        *args: P.args,
        **kwargs: P.kwargs,
    ) -> T:
        """Invoke an async callable under circuit breaker protection.

        Args:
            operation: Async callable reaching the guarded dependency.
            *args: Positional arguments forwarded to ``operation``.
            **kwargs: Keyword arguments forwarded to ``operation``.

        Returns:
            The result of ``operation`` when admitted and successful.

        Raises:
            CircuitOpenError: When the circuit is open (or a probe is already in
                flight) and the call is rejected without running ``operation``.
            Exception: The original exception from ``operation``, unchanged.
        """
        transitions, retry_after, is_probe, generation = self._admit()
        if retry_after is not None:
            await self._emit_transitions(transitions)
            await self._emit_call_rejected()
            raise CircuitOpenError(self.name, retry_after=retry_after)

        start = time.monotonic()
        try:
            # The trial call slot is already held while listeners are awaited.
            await self._emit_transitions(transitions)
            result = await operation(*args, **kwargs)
        except Exception as exc:
            elapsed = max(time.monotonic() - start, 0.0)
            transitions = self._settle_failure(
                exc, is_probe=is_probe, generation=generation
            )
            await self._emit_call_failed(exc, elapsed)
            await self._emit_transitions(transitions)
            raise
        except BaseException:
            # Cancelled probes are neutral: the next call may probe again.
            if is_probe:
                self._release_probe(generation)
            raise

        elapsed = max(time.monotonic() - start, 0.0)
        transitions = self._settle_success(is_probe=is_probe, generation=generation)
        await self._emit_transitions(transitions)
        await self._emit_call_succeeded(elapsed)
        return result

    def reset(self) -> None:
        """Force the breaker ``CLOSED`` with a zero failure count.

        Outcomes of calls that were in flight when ``reset`` ran are ignored.
        """
        with self._guard:
            previous = self._state
            self._state = CircuitState.CLOSED
            self._consecutive_failures = 0
            self._last_failure_at = None
            self._probe_in_flight = False
            self._generation += 1
        log_info(
            _logger,
            "circuit_breaker.reset",
            breaker=self.name,
            previous_state=str(previous),
        )

    def get_state(self) -> CircuitState:
        """Return the current state without triggering lazy transitions."""
        return self._state

    def get_failure_count(self) -> int:
        """Return the number of consecutive counted failures."""
        return self._consecutive_failures

    def get_time_until_recovery(self) -> float:
        """Return seconds until a probe may run while ``OPEN``, else ``0.0``."""
        if self._state != CircuitState.OPEN:
            return 0.0
        return self._remaining_cooldown(self._clock())

    def get_status(self) -> CircuitBreakerStatus:
        """Return a read-only status snapshot."""
        with self._guard:
            state = self._state
            failure_count = self._consecutive_failures
            time_until_recovery = 0.0
            if state == CircuitState.OPEN:
                time_until_recovery = self._remaining_cooldown(self._clock())
        return CircuitBreakerStatus(
            name=self.name,
            state=state,
            failure_count=failure_count,
            time_until_recovery=time_until_recovery,
            is_healthy=(
                state != CircuitState.OPEN
                and failure_count < self.config.failure_threshold
            ),
        )
