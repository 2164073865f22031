"""Backend API client composing deadline, retry and circuit breaker.

The shared breaker wraps the whole retried request, so one request that
exhausts its retries counts as a single failure, and an open circuit rejects
the request before any attempt is made.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from types import TracebackType

import httpx
import structlog

from api_guard.api_policy import API_RETRY_POLICY, build_api_retry_policy
from api_guard.circuit_breaker import (
    BreakerListener,
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitBreakerStatus,
    LoggingBreakerListener,
)
from api_guard.errors import ApiCallError
from api_guard.guarded_call import (
    DEFAULT_DEADLINE_SECONDS,
    RequestDescriptor,
    guarded_call,
)
from api_guard.logging import get_logger, log_warning
from api_guard.retry import RetryPolicy, SleepFn, retry_with_backoff
from api_guard.settings import ResilienceSettings
from api_guard.status import get_circuit_breaker_status

_logger = get_logger(__name__)


class BackendClient:
    """Client for the primary backend dependency."""

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        *,
        breaker: CircuitBreaker,
        policy: RetryPolicy | None = None,
        deadline: float = DEFAULT_DEADLINE_SECONDS,
        health_check_path: str = "/health",
        sleep: SleepFn | None = None,
    ) -> None:
        """Create a client around a shared HTTP client and breaker.

        Args:
            http_client: Async HTTP client; closed by ``aclose``.
            breaker: Breaker guarding the backend, shared by all requests.
            policy: Retry policy. Defaults to ``API_RETRY_POLICY``.
            deadline: Default per-attempt deadline in seconds.
            health_check_path: Path probed by ``health_check``.
            sleep: Optional backoff sleep, e.g. ``build_interruptible_sleep``.
        """
        if deadline <= 0:
            raise ValueError("deadline must be > 0")
        self._client = http_client
        self._breaker = breaker
        self._policy = API_RETRY_POLICY if policy is None else policy
        self._deadline = deadline
        self._health_check_path = health_check_path
        self._sleep = sleep

    @property
    def breaker(self) -> CircuitBreaker:
        """Return the shared breaker guarding the backend."""
        return self._breaker

    async def request(self, request: RequestDescriptor) -> httpx.Response:
        """Send ``request`` with deadline, retries and breaker protection.

        Raises:
            CircuitOpenError: When the breaker rejects the request.
            DeadlineExceeded: When the last attempt timed out.
            NetworkError: When the last attempt never reached the backend.
            HttpError: For a non-retryable status, or a retryable status on the
                last attempt.
        """
        deadline = self._deadline if request.deadline is None else request.deadline

        async def _attempt() -> httpx.Response:
            return await guarded_call(self._client, request, deadline=deadline)

        with structlog.contextvars.bound_contextvars(
            request_method=request.method,
            request_url=request.url,
        ):
            return await self._breaker.execute(
                retry_with_backoff,
                _attempt,
                self._policy,
                sleep=self._sleep,
            )

    async def get(
        self,
        url: str,
        *,
        params: Mapping[str, str] | None = None,
        headers: Mapping[str, str] | None = None,
        deadline: float | None = None,
    ) -> httpx.Response:
        """Send a GET request."""
        return await self.request(
            RequestDescriptor(
                "GET", url, params=params, headers=headers, deadline=deadline
            )
        )

    async def post(
        self,
        url: str,
        *,
        json: object | None = None,
        headers: Mapping[str, str] | None = None,
        deadline: float | None = None,
    ) -> httpx.Response:
        """Send a POST request with an optional JSON body."""
        return await self.request(
            RequestDescriptor("POST", url, json=json, headers=headers, deadline=deadline)
        )

    async def put(
        self,
        url: str,
        *,
        json: object | None = None,
        headers: Mapping[str, str] | None = None,
        deadline: float | None = None,
    ) -> httpx.Response:
        """Send a PUT request with an optional JSON body."""
        return await self.request(
            RequestDescriptor("PUT", url, json=json, headers=headers, deadline=deadline)
        )

    async def patch(
        self,
        url: str,
        *,
        json: object | None = None,
        headers: Mapping[str, str] | None = None,
        deadline: float | None = None,
    ) -> httpx.Response:
        """Send a PATCH request with an optional JSON body."""
        return await self.request(
            RequestDescriptor(
                "PATCH", url, json=json, headers=headers, deadline=deadline
            )
        )

    async def delete(
        self,
        url: str,
        *,
        headers: Mapping[str, str] | None = None,
        deadline: float | None = None,
    ) -> httpx.Response:
        """Send a DELETE request."""
        return await self.request(
            RequestDescriptor("DELETE", url, headers=headers, deadline=deadline)
        )

    async def health_check(self) -> bool:
        """Probe the backend once, outside retries and the breaker."""
        try:
            await guarded_call(
                self._client,
                RequestDescriptor("GET", self._health_check_path),
                deadline=self._deadline,
            )
        except ApiCallError as exc:
            log_warning(
                _logger,
                "backend.health_check_failed",
                path=self._health_check_path,
                error=str(exc),
            )
            return False
        return True

    def get_circuit_breaker_status(self) -> CircuitBreakerStatus:
        """Return the status of the shared breaker."""
        return get_circuit_breaker_status(self._breaker)

    def reset_circuit_breaker(self) -> None:
        """Manually close the shared breaker."""
        self._breaker.reset()

    async def aclose(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    async def __aenter__(self) -> BackendClient:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()


def build_backend_breaker(
    settings: ResilienceSettings,
    *,
    listeners: Sequence[BreakerListener] | None = None,
) -> CircuitBreaker:
    """Build the breaker guarding the backend described by ``settings``."""
    resolved_listeners: list[BreakerListener] = [LoggingBreakerListener()]
    if listeners is not None:
        resolved_listeners.extend(listeners)
    return CircuitBreaker(
        settings.breaker_name,
        config=CircuitBreakerConfig(
            failure_threshold=settings.breaker_failure_threshold,
            recovery_timeout=settings.breaker_recovery_timeout_seconds,
        ),
        listeners=resolved_listeners,
    )


def build_backend_client(
    settings: ResilienceSettings,
    *,
    listeners: Sequence[BreakerListener] | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
    sleep: SleepFn | None = None,
) -> BackendClient:
    """Build the backend client and its shared breaker once, at startup.

    Args:
        settings: Resilience settings.
        listeners: Extra breaker listeners added after the logging listener.
        transport: Optional HTTP transport, e.g. ``httpx.MockTransport``.
        sleep: Optional backoff sleep.

    Returns:
        A ``BackendClient`` the caller owns and closes.
    """
    http_client = httpx.AsyncClient(
        base_url=settings.api_base_url,
        transport=transport,
    )
    return BackendClient(
        http_client,
        breaker=build_backend_breaker(settings, listeners=listeners),
        policy=build_api_retry_policy(settings),
        deadline=settings.request_deadline_seconds,
        health_check_path=settings.health_check_path,
        sleep=sleep,
    )
