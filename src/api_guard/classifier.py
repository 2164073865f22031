"""Classify call failures into retryable and non-retryable kinds.

Rules are applied in priority order:
  1. No response reached the caller -> ``network`` (retryable).
  2. The call exceeded its deadline, or the server answered 408 -> ``timeout``
     (retryable).
  3. Status >= 500 -> ``server_error`` (retryable).
  4. Status 429 -> ``rate_limited`` (retryable).
  5. Any other 4xx -> ``client_error`` (not retryable).
  6. Anything else -> ``other`` (not retryable).
"""

from __future__ import annotations

import socket
from dataclasses import dataclass
from enum import StrEnum

import httpx

from api_guard.errors import DeadlineExceeded, HttpError, NetworkError

REQUEST_TIMEOUT_STATUS = 408
RATE_LIMITED_STATUS = 429


class FailureKind(StrEnum):
    """Structured failure kinds produced by the classifier."""

    NETWORK = "network"
    TIMEOUT = "timeout"
    SERVER_ERROR = "server_error"
    RATE_LIMITED = "rate_limited"
    CLIENT_ERROR = "client_error"
    OTHER = "other"


RETRYABLE_KINDS = frozenset(
    {
        FailureKind.NETWORK,
        FailureKind.TIMEOUT,
        FailureKind.SERVER_ERROR,
        FailureKind.RATE_LIMITED,
    }
)


@dataclass(frozen=True)
class ClassifiedFailure:
    """Classification result for one observed failure.

    Attributes:
        kind: Failure kind.
        status: HTTP status carried by the failure, if any.
        retryable: Whether reattempting the call may succeed.
    """

    kind: FailureKind
    status: int | None = None

    @property
    def retryable(self) -> bool:
        """Return true for kinds that are worth retrying."""
        return self.kind in RETRYABLE_KINDS


def extract_status(error: BaseException) -> int | None:
    """Return the HTTP status carried by ``error``, if any."""
    if isinstance(error, HttpError):
        return error.status
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code
    return None


def _is_network_failure(error: BaseException) -> bool:
    if isinstance(error, NetworkError):
        return True
    if isinstance(error, httpx.TransportError):
        return not isinstance(error, httpx.TimeoutException)
    return isinstance(error, (ConnectionError, socket.gaierror))


def _is_timeout_failure(error: BaseException) -> bool:
    return isinstance(error, (DeadlineExceeded, httpx.TimeoutException, TimeoutError))


def classify_failure(error: BaseException) -> ClassifiedFailure:
    """Map a failure raised by a wrapped operation to a ``ClassifiedFailure``."""
    if _is_network_failure(error):
        return ClassifiedFailure(kind=FailureKind.NETWORK)
    status = extract_status(error)
    if _is_timeout_failure(error) or status == REQUEST_TIMEOUT_STATUS:
        return ClassifiedFailure(kind=FailureKind.TIMEOUT, status=status)
    if status is None:
        return ClassifiedFailure(kind=FailureKind.OTHER)
    if status >= 500:
        return ClassifiedFailure(kind=FailureKind.SERVER_ERROR, status=status)
    if status == RATE_LIMITED_STATUS:
        return ClassifiedFailure(kind=FailureKind.RATE_LIMITED, status=status)
    if 400 <= status < 500:
        return ClassifiedFailure(kind=FailureKind.CLIENT_ERROR, status=status)
    return ClassifiedFailure(kind=FailureKind.OTHER, status=status)


def is_retryable_failure(error: BaseException) -> bool:
    """Return true when ``error`` is classified as retryable."""
    return classify_failure(error).retryable
