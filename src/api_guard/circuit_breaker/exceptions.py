"""Exceptions raised by the circuit breaker itself.

Failures of the guarded operation are never wrapped; only rejections
originate here.
"""

import math


class CircuitBreakerError(Exception):
    """Base exception for errors raised by a circuit breaker."""


class CircuitOpenError(CircuitBreakerError):
    """The breaker rejected a call without running the operation.

    Retry loops must not retry this error. ``retry_after`` is ``0.0`` when the
    rejection happened because a half-open probe is already in flight.

    Attributes:
        breaker_name: Name of the rejecting breaker.
        retry_after: Seconds until the breaker admits a probe call.
    """

    def __init__(self, breaker_name: str, retry_after: float) -> None:
        self.breaker_name = breaker_name
        self.retry_after = max(retry_after, 0.0)
        super().__init__(
            f"circuit '{breaker_name}' is open; retry after {self.retry_after:.1f}s"
        )

    @property
    def probe_in_flight(self) -> bool:
        """Return true when the rejection was caused by a running probe."""
        return self.retry_after == 0.0

    @property
    def retry_after_seconds(self) -> int:
        """Return ``retry_after`` rounded up to whole seconds for display."""
        return math.ceil(self.retry_after)
