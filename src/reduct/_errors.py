"""
Exception hierarchy for the ReductStore client.

This module defines all exceptions that can be raised by the library.
"""

from typing import Any


class ReductError(Exception):
    """
    Base exception for all ReductStore client errors.

    Attributes:
        message: Human-readable error message
        status: HTTP status code (if applicable)
    """

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.status = status

    def __str__(self) -> str:
        parts = [self.message]
        if self.status is not None:
            parts.append(f"(status={self.status})")
        return " ".join(parts)

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"status={self.status!r})"
        )

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ReductError):
            return NotImplemented
        return (
            type(self) is type(other)
            and self.message == other.message
            and self.status == other.status
        )

    def __hash__(self) -> int:
        return hash((type(self), self.message, self.status))


class ApiError(ReductError):
    """
    Exception for non-2xx responses from the storage engine.

    The message is taken from the ``x-reduct-error`` response header. The same
    type is used for per-record errors reported by batch writes.

    Attributes:
        message: Error message from the server
        status: HTTP status code
        url: The URL that was requested (if known)
        body: The response body (if available)
    """

    def __init__(
        self,
        message: str,
        status: int | None = None,
        url: str | None = None,
        body: Any = None,
    ) -> None:
        super().__init__(message, status=status)
        self.url = url
        self.body = body


class NotFoundError(ApiError):
    """
    Exception raised when a bucket, entry, record or token does not exist.

    Corresponds to HTTP 404 Not Found.
    """

    def __init__(
        self, message: str = "Not found", url: str | None = None, body: Any = None
    ) -> None:
        super().__init__(message, status=404, url=url, body=body)


class ConflictError(ApiError):
    """
    Exception raised when a resource already exists or is being deleted.

    Corresponds to HTTP 409 Conflict. It is surfaced, never retried.
    """

    def __init__(
        self, message: str = "Conflict", url: str | None = None, body: Any = None
    ) -> None:
        super().__init__(message, status=409, url=url, body=body)


class UnauthorizedError(ApiError):
    """
    Exception raised when the API token is missing, invalid or lacks permissions.

    Corresponds to HTTP 401 Unauthorized and 403 Forbidden.
    """


class TransportError(ReductError):
    """
    Exception for network, connection and timeout failures.

    No response was received from the server.

    Attributes:
        message: Human-readable error message
        url: The URL that was being requested
        original: The underlying httpx exception
    """

    def __init__(
        self,
        message: str,
        url: str | None = None,
        original: BaseException | None = None,
    ) -> None:
        super().__init__(message)
        self.url = url
        self.original = original

    def __str__(self) -> str:
        if self.url:
            return f"{self.message} at {self.url}"
        return self.message


class ProtocolError(ReductError):
    """
    Exception raised when a batched response or request violates the protocol.

    Examples are a missing ``x-reduct-entries`` header, a bad percent escape or
    an entry/label index out of range. It is never retried.
    """


class UnexpectedEndOfStream(ProtocolError):
    """
    Exception raised when a response body ends before all framed records are read.
    """

    def __init__(
        self,
        message: str = "Unexpected EOF while batching records",
        expected: int | None = None,
        received: int | None = None,
    ) -> None:
        if expected is not None and received is not None:
            message = f"{message}: expected {expected} bytes, got {received}"
        super().__init__(message)
        self.expected = expected
        self.received = received


class InvalidOperation(ReductError):
    """
    Exception raised when a batch is used against its fixed type.

    For example, adding a payload to a REMOVE batch or sending a multi-entry
    batch to a server that does not support it.
    """


class StreamConsumedError(ReductError):
    """
    Exception raised when attempting to read a record body more than once.

    A record body is a one-shot stream - it can only be consumed in one mode.
    """

    def __init__(
        self,
        message: str = "Record body has already been consumed",
        attempted_method: str | None = None,
        consumed_by: str | None = None,
    ) -> None:
        if attempted_method and consumed_by:
            message = (
                f"Cannot call {attempted_method}() - record body was already "
                f"consumed via {consumed_by}()"
            )
        super().__init__(message)
        self.attempted_method = attempted_method
        self.consumed_by = consumed_by


def error_from_status(
    status: int,
    message: str | None = None,
    url: str | None = None,
    body: Any = None,
) -> ApiError:
    """
    Create an appropriate error from an HTTP status code.

    Args:
        status: The HTTP status code
        message: The server message (``x-reduct-error`` header), if any
        url: The URL that was requested
        body: The response body (if available)

    Returns:
        An appropriate exception instance
    """
    if status == 404:
        return NotFoundError(message or "Not found", url=url, body=body)

    if status == 409:
        return ConflictError(message or "Conflict", url=url, body=body)

    if status in (401, 403):
        default = "Unauthorized" if status == 401 else "Forbidden"
        return UnauthorizedError(
            message or default, status=status, url=url, body=body
        )

    return ApiError(
        message or f"HTTP error {status}", status=status, url=url, body=body
    )
