"""Breaker states and the read-only status snapshot polled by callers."""

from dataclasses import dataclass
from enum import StrEnum


class CircuitState(StrEnum):
    """Breaker state.

    ``CLOSED`` passes calls through, ``OPEN`` rejects them until the recovery
    window elapses and ``HALF_OPEN`` admits a single probe.
    """

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass(frozen=True)
class CircuitBreakerStatus:
    """Point-in-time, read-only view of a breaker for UI and health polling.

    Attributes:
        name: Breaker name.
        state: Current breaker state.
        failure_count: Consecutive retryable failures counted so far.
        time_until_recovery: Seconds until a probe may be attempted while
            ``OPEN``; ``0.0`` in every other state.
        is_healthy: True when the breaker is not ``OPEN`` and the failure count
            is below the threshold.
    """

    name: str
    state: CircuitState
    failure_count: int
    time_until_recovery: float
    is_healthy: bool
