"""Observability hooks for circuit breakers."""

from typing import Protocol

from api_guard.circuit_breaker.state import CircuitState
from api_guard.classifier import classify_failure
from api_guard.logging import (
    StructuredLogger,
    get_logger,
    log_info,
    log_warning,
)


class BreakerListener(Protocol):
    """Listener protocol for circuit breaker events.

    Notes:
        Listeners are awaited after the breaker has already applied the state
        change, so they observe but never influence the outcome of a call.
    """

    async def on_state_change(
        self, name: str, old: CircuitState, new: CircuitState
    ) -> None:
        """Handle circuit state transitions."""

    async def on_call_rejected(self, name: str) -> None:
        """Handle call rejection while the circuit is open."""

    async def on_call_succeeded(self, name: str, elapsed: float) -> None:
        """Handle successful protected call completion."""

    async def on_call_failed(self, name: str, exc: Exception, elapsed: float) -> None:
        """Handle failed protected call completion."""


class LoggingBreakerListener:
    """Listener that writes breaker transitions and rejections to structlog."""

    def __init__(self, logger: StructuredLogger | None = None) -> None:
        self._logger: StructuredLogger = (
            get_logger("api_guard.circuit_breaker") if logger is None else logger
        )

    async def on_state_change(
        self, name: str, old: CircuitState, new: CircuitState
    ) -> None:
        """Log every transition; opening is logged as a warning."""
        log = log_warning if new == CircuitState.OPEN else log_info
        log(
            self._logger,
            "circuit_breaker.state_changed",
            breaker=name,
            old_state=str(old),
            new_state=str(new),
        )

    async def on_call_rejected(self, name: str) -> None:
        """Log a fast rejection."""
        log_info(self._logger, "circuit_breaker.call_rejected", breaker=name)

    async def on_call_succeeded(self, name: str, elapsed: float) -> None:
        """Successful calls are not logged."""
        _ = (name, elapsed)

    async def on_call_failed(self, name: str, exc: Exception, elapsed: float) -> None:
        """Log the classified failure of a protected call."""
        failure = classify_failure(exc)
        log_info(
            self._logger,
            "circuit_breaker.call_failed",
            breaker=name,
            failure_kind=str(failure.kind),
            retryable=failure.retryable,
            status=failure.status,
            elapsed_seconds=round(elapsed, 3),
        )
