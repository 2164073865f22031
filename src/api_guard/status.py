"""Read-only status accessors polled by health and degradation logic."""

from __future__ import annotations

import math

from api_guard.circuit_breaker import CircuitBreaker, CircuitBreakerStatus, CircuitState


def get_circuit_breaker_status(breaker: CircuitBreaker) -> CircuitBreakerStatus:
    """Return a status snapshot for ``breaker``. Safe to poll on an interval."""
    return breaker.get_status()


def recovery_countdown_seconds(status: CircuitBreakerStatus) -> int:
    """Return whole seconds until automatic recovery, rounded up."""
    if status.state != CircuitState.OPEN:
        return 0
    return math.ceil(status.time_until_recovery)


def describe_status(status: CircuitBreakerStatus) -> str:
    """Return a short human-readable description of ``status``."""
    if status.state == CircuitState.OPEN:
        countdown = recovery_countdown_seconds(status)
        if countdown > 0:
            return f"{status.name} unavailable; recovery in {countdown}s"
        return f"{status.name} unavailable; recovery check pending"
    if status.state == CircuitState.HALF_OPEN:
        return f"{status.name} recovering"
    if not status.is_healthy:
        return f"{status.name} degraded ({status.failure_count} failures)"
    return f"{status.name} healthy"
