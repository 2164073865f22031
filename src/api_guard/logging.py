"""Structured logging for ``api_guard``.

Every module logs dotted event names (``retry.scheduled``,
``circuit_breaker.state_changed``, ``guarded_call.deadline_exceeded``) with
keyword fields. The ``log_*`` helpers accept a structlog logger or a plain
stdlib logger, so callers can hand in whatever their process already uses.
"""

from __future__ import annotations

import logging
import sys
from collections.abc import MutableMapping
from typing import TYPE_CHECKING, Literal, Protocol

import structlog

if TYPE_CHECKING:
    from api_guard.settings import ResilienceSettings

LogMethod = Literal["info", "warning", "error", "exception"]

_LEVEL_NAMES = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
_DURATION_SUFFIX = "_seconds"
_DURATION_PRECISION = 3


class StructuredLogger(Protocol):
    """Logger accepting an event name plus keyword fields."""

    def info(self, event: str, **kwargs: object) -> None: ...

    def warning(self, event: str, **kwargs: object) -> None: ...

    def error(self, event: str, **kwargs: object) -> None: ...

    def exception(self, event: str, **kwargs: object) -> None: ...


AnyLogger = StructuredLogger | logging.Logger | logging.LoggerAdapter[logging.Logger]


def get_log_level_value(level: str) -> int:
    """Return the stdlib level number for ``level`` (case and padding ignored).

    Raises:
        ValueError: If ``level`` is not a standard level name.
    """
    normalized = level.strip().upper()
    if normalized not in _LEVEL_NAMES:
        raise ValueError(f"log_level must be one of: {', '.join(sorted(_LEVEL_NAMES))}")
    return logging.getLevelNamesMapping()[normalized]


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Return a lazily configured structlog logger for module ``name``."""
    return structlog.stdlib.get_logger(name)


def round_duration_fields(
    _logger: object,
    _method_name: str,
    event_dict: MutableMapping[str, object],
) -> MutableMapping[str, object]:
    """Round float ``*_seconds`` fields so delays and deadlines stay readable."""
    for key, value in event_dict.items():
        if key.endswith(_DURATION_SUFFIX) and isinstance(value, float):
            event_dict[key] = round(value, _DURATION_PRECISION)
    return event_dict


def _log(logger: AnyLogger, method: LogMethod, event: str, fields: dict[str, object]) -> None:
    emit = getattr(logger, method)
    if isinstance(logger, (logging.Logger, logging.LoggerAdapter)):
        # stdlib loggers take structured fields through ``extra``.
        emit(event, extra=fields)
    else:
        emit(event, **fields)


def log_info(logger: AnyLogger, event: str, **fields: object) -> None:
    """Log ``event`` at info level."""
    _log(logger, "info", event, fields)


def log_warning(logger: AnyLogger, event: str, **fields: object) -> None:
    """Log ``event`` at warning level."""
    _log(logger, "warning", event, fields)


def log_error(logger: AnyLogger, event: str, **fields: object) -> None:
    """Log ``event`` at error level."""
    _log(logger, "error", event, fields)


def log_exception(logger: AnyLogger, event: str, **fields: object) -> None:
    """Log ``event`` at error level with the active exception attached."""
    _log(logger, "exception", event, fields)


def configure_structlog(
    *,
    log_level: str,
    json_output: bool | None = None,
) -> structlog.stdlib.BoundLogger:
    """Route structlog and stdlib logging through one stderr handler.

    Fields bound with ``structlog.contextvars`` (``BackendClient.request`` binds
    the request method and URL) are merged into every event emitted below it,
    including retry and breaker events.

    Args:
        log_level: Standard level name.
        json_output: Force JSON (``True``) or console (``False``) rendering.
            Defaults to console on a TTY and JSON otherwise.

    Returns:
        The ``api_guard`` root logger.
    """
    level_value = get_log_level_value(log_level)
    if json_output is None:
        json_output = not sys.stderr.isatty()
    renderer: structlog.types.Processor = (
        structlog.processors.JSONRenderer()
        if json_output
        else structlog.dev.ConsoleRenderer()
    )
    timestamper = structlog.processors.TimeStamper(fmt="iso", utc=True)
    pre_chain: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        timestamper,
    ]

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=pre_chain,
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                renderer,
            ],
        )
    )
    logging.basicConfig(
        format="%(message)s",
        handlers=[handler],
        level=level_value,
        force=True,
    )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            *pre_chain,
            structlog.stdlib.add_logger_name,
            round_duration_fields,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
    return get_logger("api_guard")


def configure_logging_from_settings(
    settings: ResilienceSettings,
) -> structlog.stdlib.BoundLogger:
    """Configure logging at the level named by ``settings.log_level``."""
    return configure_structlog(log_level=settings.log_level)
