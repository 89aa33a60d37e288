"""Error taxonomy for the scheduling engine.

Every error carries a stable ``code`` so REST and chat callers can tell a
taken slot apart from a bad request without parsing messages.
"""

from __future__ import annotations

from typing import Any

from fastapi import HTTPException, status

HTTP_422_UNPROCESSABLE: int = getattr(status, "HTTP_422_UNPROCESSABLE_CONTENT", 422)


class SchedulingError(Exception):
    """Base class for all scheduling errors."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_code: str = "SCHEDULING_ERROR"

    def __init__(
        self,
        message: str,
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.message = message
        self.code = code or self.default_code
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {"message": self.message, "code": self.code, "details": self.details}

    def to_http_exception(self) -> HTTPException:
        return HTTPException(status_code=self.status_code, detail=self.to_dict())


class ConfigurationError(SchedulingError):
    """Malformed provider availability configuration."""

    status_code = HTTP_422_UNPROCESSABLE
    default_code = "CONFIGURATION_ERROR"


class ValidationError(SchedulingError):
    """A booking request failed one of the availability checks."""

    status_code = HTTP_422_UNPROCESSABLE

    def __init__(self, reason: Any, message: str, details: dict[str, Any] | None = None) -> None:
        self.reason = reason
        super().__init__(message, code=str(getattr(reason, "value", reason)), details=details)


class ConflictError(SchedulingError):
    """The requested time range is already taken."""

    status_code = status.HTTP_409_CONFLICT
    default_code = "CONFLICT"


class BookingTimeoutError(ConflictError):
    """The booking unit of work could not acquire its lock in time."""

    default_code = "TIMEOUT"


class NotFoundError(SchedulingError):
    status_code = status.HTTP_404_NOT_FOUND
    default_code = "NOT_FOUND"


class InvalidStateError(SchedulingError):
    """A status transition is not allowed from the current status."""

    status_code = status.HTTP_409_CONFLICT
    default_code = "INVALID_STATE"


class StorageError(SchedulingError):
    """Transient persistence failure; callers retry with backoff."""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_code = "STORAGE_ERROR"


__all__ = [
    "BookingTimeoutError",
    "ConfigurationError",
    "ConflictError",
    "InvalidStateError",
    "NotFoundError",
    "SchedulingError",
    "StorageError",
    "ValidationError",
]
