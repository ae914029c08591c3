"""Typed errors raised by the console core.

Every failure leaving the transport, query or mutation layers is one of these
classes, so callers can branch on type instead of parsing messages.

    ConsoleError
    +-- TransportError
    +-- ApiError
    |   +-- RequestValidationError
    |   +-- AuthenticationError
    |   +-- ServerError
    +-- StateConflictError
    |   +-- CheckNotEditableError
    |   +-- DiscrepancyAlreadyHandledError
    |   +-- DiscrepancyNotResolvableError
    +-- InvalidPayloadError
    +-- ResponseSchemaError
"""

from __future__ import annotations

from typing import Any, Optional


class ConsoleError(RuntimeError):
    """Base class for all console errors."""

    def __init__(
        self,
        message: str,
        *,
        operation: Optional[str] = None,
        status_code: Optional[int] = None,
        payload: Any = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.operation = operation
        self.status_code = status_code
        self.payload = payload

    def __str__(self) -> str:
        return self.message


class TransportError(ConsoleError):
    """Raised when the backend cannot be reached or the request timed out."""


class ApiError(ConsoleError):
    """Raised when the backend answers with a non-success status."""


class RequestValidationError(ApiError):
    """The backend rejected the request (4xx) with a message."""


class AuthenticationError(ApiError):
    """The backend rejected the bearer token."""


class ServerError(ApiError):
    """The backend failed while handling the request (5xx)."""


class StateConflictError(ConsoleError):
    """The operation conflicts with the current state of the record."""


class CheckNotEditableError(StateConflictError):
    """Raised when editing or deleting an inventory check that left draft."""

    def __init__(self, code: str, status: str, operation: str = "update") -> None:
        super().__init__(f"Cannot edit completed check {code} (status: {status})", operation=operation)
        self.code = code
        self.status = status


class DiscrepancyAlreadyHandledError(StateConflictError):
    """Raised when resolving a detail whose discrepancy was already handled."""

    def __init__(self, detail_id: int) -> None:
        super().__init__(f"Discrepancy of detail {detail_id} is already handled", operation="update")
        self.detail_id = detail_id


class DiscrepancyNotResolvableError(StateConflictError):
    """Raised when a detail cannot be resolved in the current check state."""

    def __init__(self, detail_id: int, reason: str) -> None:
        super().__init__(f"Detail {detail_id} cannot be resolved: {reason}", operation="update")
        self.detail_id = detail_id
        self.reason = reason


class InvalidPayloadError(ConsoleError):
    """Client side validation of an outgoing payload failed."""


class ResponseSchemaError(ConsoleError):
    """A response body did not match the expected schema."""


def error_for_status(status_code: int, message: str, payload: Any = None) -> ApiError | StateConflictError:
    """Map an HTTP status code to the matching error class."""

    if status_code == 401:
        return AuthenticationError(message, status_code=status_code, payload=payload)
    if status_code == 409:
        return StateConflictError(message, status_code=status_code, payload=payload)
    if 400 <= status_code < 500:
        return RequestValidationError(message, status_code=status_code, payload=payload)
    return ServerError(message, status_code=status_code, payload=payload)


__all__ = [
    "ApiError",
    "AuthenticationError",
    "CheckNotEditableError",
    "ConsoleError",
    "DiscrepancyAlreadyHandledError",
    "DiscrepancyNotResolvableError",
    "InvalidPayloadError",
    "RequestValidationError",
    "ResponseSchemaError",
    "ServerError",
    "StateConflictError",
    "TransportError",
    "error_for_status",
]
