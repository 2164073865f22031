"""Connection-status notifier for degradation logic.

``ConnectionMonitor`` polls an availability check on an interval and notifies
subscribers only when the online/offline status flips.
"""

from __future__ import annotations

import asyncio
import inspect
from collections.abc import Awaitable, Callable
from contextlib import suppress
from typing import TYPE_CHECKING, cast

from api_guard.circuit_breaker import CircuitBreaker
from api_guard.logging import (
    get_logger,
    log_error,
    log_exception,
    log_info,
    log_warning,
)

if TYPE_CHECKING:
    from api_guard.settings import ResilienceSettings

ConnectionCheck = Callable[[], bool] | Callable[[], Awaitable[bool]]
StatusListener = Callable[[bool], None]

_logger = get_logger(__name__)


def make_breaker_health_check(breaker: CircuitBreaker) -> Callable[[], bool]:
    """Build a connection check that reads ``breaker`` health."""

    def _check() -> bool:
        return breaker.get_status().is_healthy

    _check.__name__ = f"breaker:{breaker.name}"
    return _check


async def _resolve_check(check: ConnectionCheck) -> bool:
    result = check()
    if inspect.isawaitable(result):
        awaited = await cast(Awaitable[object], result)
        return bool(awaited)
    return bool(result)


async def run_monitor_loop(
    *,
    check_once: Callable[[], Awaitable[object]],
    stop_event: asyncio.Event,
    interval_seconds: float,
) -> None:
    """Run periodic connection checks until shutdown is requested."""
    interval = max(interval_seconds, 0.01)
    while not stop_event.is_set():
        await check_once()
        with suppress(TimeoutError):
            await asyncio.wait_for(stop_event.wait(), timeout=interval)


class ConnectionMonitor:
    """Track online/offline status of the backend and notify subscribers."""

    def __init__(
        self,
        check: ConnectionCheck,
        *,
        interval_seconds: float = 5.0,
        stop_grace_seconds: float = 5.0,
    ) -> None:
        """Initialize monitor state and polling configuration.

        Args:
            check: Sync or async callable returning true while the backend is
                reachable. Exceptions count as offline.
            interval_seconds: Background polling interval in seconds.
            stop_grace_seconds: Extra time ``stop`` waits for an in-flight
                check before cancelling the polling task.
        """
        self._check = check
        self._interval_seconds = max(interval_seconds, 0.01)
        self._stop_grace_seconds = max(stop_grace_seconds, 0.0)
        self._online = True
        self._listeners: list[StatusListener] = []
        self._stop_event = asyncio.Event()
        self._task: asyncio.Task[None] | None = None

    @property
    def is_online(self) -> bool:
        """Return the last observed connection status."""
        return self._online

    def on_status_change(self, listener: StatusListener) -> Callable[[], None]:
        """Subscribe ``listener`` to status flips and return an unsubscribe callable."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            with suppress(ValueError):
                self._listeners.remove(listener)

        return _unsubscribe

    async def check_once(self) -> bool:
        """Evaluate the check once, notify on a status flip and return the status."""
        try:
            online = await _resolve_check(self._check)
        except Exception as exc:
            log_warning(
                _logger,
                "connection.check_failed",
                error_type=exc.__class__.__name__,
                error=str(exc),
            )
            online = False
        self._set_online(online)
        return online

    def _set_online(self, online: bool) -> None:
        if online == self._online:
            return
        self._online = online
        log_info(
            _logger,
            "connection.status_changed",
            status="online" if online else "offline",
        )
        for listener in tuple(self._listeners):
            try:
                listener(online)
            except Exception:
                log_exception(
                    _logger,
                    "connection.listener_failed",
                    listener=getattr(listener, "__name__", repr(listener)),
                )

    async def start(self) -> None:
        """Start background polling if not already running."""
        if self._task is not None and not self._task.done():
            return
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(
            run_monitor_loop(
                check_once=self.check_once,
                stop_event=self._stop_event,
                interval_seconds=self._interval_seconds,
            ),
            name="connection-monitor",
        )

    async def stop(self) -> None:
        """Stop background polling and await task completion."""
        self._stop_event.set()
        task = self._task
        if task is None:
            return
        grace_seconds = self._interval_seconds + self._stop_grace_seconds
        try:
            await asyncio.wait_for(task, timeout=grace_seconds)
        except TimeoutError:
            log_error(
                _logger,
                "connection.monitor_stop_timeout",
                grace_seconds=grace_seconds,
            )
            task.cancel()
            with suppress(asyncio.CancelledError):
                await task
        self._task = None


def build_connection_monitor(
    settings: ResilienceSettings,
    check: ConnectionCheck,
) -> ConnectionMonitor:
    """Build a monitor polling ``check`` every ``status_poll_interval_seconds``."""
    return ConnectionMonitor(
        check,
        interval_seconds=settings.status_poll_interval_seconds,
    )
