"""In-memory async circuit breaker for one guarded dependency.

This package implements the circuit breaker pattern from *Release It!*.

Key behavior notes:
  - Only failures accepted by ``CircuitBreakerConfig.is_failure`` count toward
    the threshold. By default those are the retryable kinds (network, timeout,
    5xx, 429); client errors pass through without touching the breaker.
  - The ``OPEN`` -> ``HALF_OPEN`` transition is lazy: it happens on the first
    call after the recovery window, not on a timer.
  - At most one in-flight probe call is permitted while ``HALF_OPEN``. If the
    probe fails with an uncounted exception, or is cancelled, the breaker stays
    ``HALF_OPEN`` and the next call becomes the probe.
  - State lives in the breaker instance only; nothing is persisted.
"""

from api_guard.circuit_breaker.breaker import CircuitBreaker, CircuitBreakerConfig
from api_guard.circuit_breaker.exceptions import (
    CircuitBreakerError,
    CircuitOpenError,
)
from api_guard.circuit_breaker.metrics import BreakerListener, LoggingBreakerListener
from api_guard.circuit_breaker.state import CircuitBreakerStatus, CircuitState

__all__ = [
    "BreakerListener",
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitBreakerError",
    "CircuitBreakerStatus",
    "CircuitOpenError",
    "CircuitState",
    "LoggingBreakerListener",
]
