"""Single backend call bounded by a hard deadline.

This is the one place where transport outcomes are first observed, so it is
also where they become typed failures:

  - deadline fired before a response -> ``DeadlineExceeded``
  - transport failed before any response -> ``NetworkError``
  - response with a non-2xx status -> ``HttpError``

The guarded call never retries. Compose it with ``retry_api_call`` (and a
``CircuitBreaker``) to get retry behavior.
"""

from __future__ import annotations

import asyncio
from collections.abc import Mapping
from dataclasses import dataclass

import httpx

from api_guard.errors import DeadlineExceeded, HttpError, NetworkError
from api_guard.logging import get_logger, log_warning

DEFAULT_DEADLINE_SECONDS = 30.0

_logger = get_logger(__name__)


@dataclass(frozen=True)
class RequestDescriptor:
    """Description of one backend request.

    Attributes:
        method: HTTP method.
        url: Absolute URL, or a path relative to the client's base URL.
        params: Optional query parameters.
        headers: Optional request headers.
        json: Optional JSON body.
        content: Optional raw body. Mutually exclusive with ``json``.
        deadline: Optional per-request deadline in seconds.
    """

    method: str
    url: str
    params: Mapping[str, str] | None = None
    headers: Mapping[str, str] | None = None
    json: object | None = None
    content: bytes | str | None = None
    deadline: float | None = None

    def __post_init__(self) -> None:
        if self.json is not None and self.content is not None:
            raise ValueError("json and content are mutually exclusive")
        if self.deadline is not None and self.deadline <= 0:
            raise ValueError("deadline must be > 0")
        object.__setattr__(self, "method", self.method.upper())


def resolve_deadline(request: RequestDescriptor, deadline: float | None) -> float:
    """Return the effective deadline for ``request``."""
    if deadline is not None:
        if deadline <= 0:
            raise ValueError("deadline must be > 0")
        return deadline
    if request.deadline is not None:
        return request.deadline
    return DEFAULT_DEADLINE_SECONDS


async def guarded_call(
    client: httpx.AsyncClient,
    request: RequestDescriptor,
    *,
    deadline: float | None = None,
) -> httpx.Response:
    """Issue one request and enforce its deadline.

    Args:
        client: Shared async HTTP client.
        request: Request to issue.
        deadline: Optional deadline override in seconds. Falls back to the
            request's deadline, then ``DEFAULT_DEADLINE_SECONDS``.

    Returns:
        The successful (2xx) response.

    Raises:
        DeadlineExceeded: When no response arrived within the deadline. The
            in-flight request is cancelled first.
        NetworkError: When the transport failed before any response.
        HttpError: When the response status is not 2xx.
    """
    resolved_deadline = resolve_deadline(request, deadline)
    pending = client.request(
        request.method,
        request.url,
        params=request.params,
        headers=request.headers,
        json=request.json,
        content=request.content,
    )

    try:
        response = await asyncio.wait_for(pending, timeout=resolved_deadline)
    except TimeoutError as exc:
        log_warning(
            _logger,
            "guarded_call.deadline_exceeded",
            method=request.method,
            url=request.url,
            deadline_seconds=resolved_deadline,
        )
        raise DeadlineExceeded(resolved_deadline) from exc
    except httpx.TimeoutException as exc:
        raise DeadlineExceeded(
            resolved_deadline,
            f"transport_timeout: {exc.__class__.__name__}",
        ) from exc
    except httpx.RequestError as exc:
        raise NetworkError(str(exc) or exc.__class__.__name__) from exc

    if not response.is_success:
        raise HttpError(
            response.status_code,
            response.reason_phrase,
            response_body=response.text,
        )
    return response
