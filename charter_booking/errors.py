"""
Error taxonomy for the quote/booking lifecycle.

Synchronous failures (validation, inventory, state conflicts, unknown ids)
never leave partial state behind: the service rolls the transaction back
before the error reaches the caller. ExternalServiceError only ever comes
out of the side-effect dispatcher and never unwinds a committed transition.
"""
from typing import Any, Dict, Optional

from fastapi import HTTPException, status


class BookingError(Exception):
    """Base class for lifecycle errors."""

    code = "BOOKING_ERROR"
    http_status = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context = context

    def to_detail(self) -> Dict[str, Any]:
        detail = {"error": self.code, "message": self.message}
        if self.context:
            detail.update(self.context)
        return detail


class ValidationError(BookingError):
    code = "VALIDATION_ERROR"
    http_status = status.HTTP_400_BAD_REQUEST


class InventoryUnavailable(BookingError):
    code = "INVENTORY_UNAVAILABLE"
    http_status = status.HTTP_409_CONFLICT


class StateConflict(BookingError):
    """Illegal transition from the current status, or a stale expectedVersion."""

    code = "STATE_CONFLICT"
    http_status = status.HTTP_409_CONFLICT


class PaymentMissing(StateConflict):
    code = "PAYMENT_MISSING"


class NotFoundError(BookingError):
    code = "NOT_FOUND"
    http_status = status.HTTP_404_NOT_FOUND


class ExternalServiceError(BookingError):
    code = "EXTERNAL_SERVICE_ERROR"
    http_status = status.HTTP_502_BAD_GATEWAY

    def __init__(self, message: str, service: str, retryable: bool = True,
                 status_code: Optional[int] = None):
        super().__init__(message, service=service)
        self.service = service
        self.retryable = retryable
        self.status_code = status_code


def to_http_exception(exc: BookingError) -> HTTPException:
    """Translate a domain error into the HTTP error the routes return."""
    return HTTPException(status_code=exc.http_status, detail=exc.to_detail())
