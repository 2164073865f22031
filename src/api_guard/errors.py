"""Typed failures raised at the transport boundary."""

from __future__ import annotations


class ApiCallError(RuntimeError):
    """Base exception for failures of one guarded backend call."""


class TransientError(ApiCallError):
    """Generic retry-safe transient dependency failure."""


class NetworkError(TransientError):
    """Raised when no response reached the caller (refused, DNS, reset)."""


class DeadlineExceeded(TransientError):
    """Raised when a guarded call did not complete within its deadline.

    Attributes:
        deadline: Deadline in seconds that was exceeded.
    """

    def __init__(self, deadline: float, message: str | None = None) -> None:
        """Initialize deadline metadata.

        Args:
            deadline: Deadline in seconds that was exceeded.
            message: Optional override for the default message.
        """
        self.deadline = deadline
        super().__init__(message or f"deadline_exceeded: {deadline:g}s")


class OperationCancelled(ApiCallError):
    """Raised when shutdown interrupts a backoff wait between attempts."""


class HttpError(ApiCallError):
    """Raised when a response was received with a non-2xx status."""

    def __init__(
        self,
        status: int,
        status_text: str = "",
        response_body: str | None = None,
    ) -> None:
        """Initialize response metadata.

        Args:
            status: HTTP status code of the failed response.
            status_text: Reason phrase of the failed response.
            response_body: Optional response payload text.
        """
        self.status = status
        self.status_text = status_text
        self.response_body = response_body
        message = f"HTTP {status}"
        if status_text:
            message = f"{message}: {status_text}"
        super().__init__(message)
