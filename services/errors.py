"""
Typed failures raised by the booking core.

Every error carries a user-facing message, a stable ``code`` and the HTTP
status the routes answer with. Only the coordinator decides whether a
failure is retried, compensated or surfaced.
"""

from typing import Any, Dict, Optional


class BookingError(Exception):
    """Base class for all booking core errors."""

    http_status = 500
    retryable = False

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.code = code or self.__class__.__name__
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.message, "code": self.code, "details": self.details}


class ValidationError(BookingError):
    """Caller input rejected; never retried."""

    http_status = 400

    def __init__(self, error_kind: str, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        self.error_kind = error_kind
        super().__init__(message, code=error_kind, details=details)


class InvalidIntervalError(ValidationError):
    """An interval that did not pass validation reached slot enumeration."""


class SlotConflict(BookingError):
    http_status = 409

    def __init__(self, message: str = "This slot was just taken, please pick another one", details=None) -> None:
        super().__init__(message, details=details)


class ReservationNotFound(BookingError):
    http_status = 404

    def __init__(self, reservation_id) -> None:
        super().__init__("Reservation not found", details={"reservation_id": reservation_id})


class FacilityNotFound(BookingError):
    http_status = 404

    def __init__(self, facility_id) -> None:
        super().__init__("Facility not found", details={"facility_id": facility_id})


class InvalidStateTransition(BookingError):
    http_status = 409

    def __init__(self, reservation_id, current, target) -> None:
        super().__init__(
            f"Reservation cannot move from {getattr(current, 'value', current)} to {getattr(target, 'value', target)}",
            details={
                "reservation_id": reservation_id,
                "current": getattr(current, "value", current),
                "target": getattr(target, "value", target),
            },
        )


class CancellationWindowClosed(BookingError):
    http_status = 403

    def __init__(self, cutoff_hours: int, details=None) -> None:
        super().__init__(f"Cancellation not allowed within {cutoff_hours} hours of start", details=details)


class NotReservationOwner(BookingError):
    http_status = 403

    def __init__(self) -> None:
        super().__init__("Only the reservation owner or an admin can do that")


class TransientStoreError(BookingError):
    """Serialization failure or locked database; safe to retry."""

    http_status = 503
    retryable = True


class TransientPaymentError(BookingError):
    """Gateway timeout or 5xx; safe to retry the same charge."""

    http_status = 503
    retryable = True


class PaymentDeclined(BookingError):
    http_status = 402


class RefundError(BookingError):
    http_status = 502


class BookingFailed(BookingError):
    """A booking attempt ended after compensation; ``cause`` holds the original error."""

    def __init__(self, message: str, cause: BookingError, reservation_id=None) -> None:
        self.cause = cause
        self.http_status = cause.http_status
        details = {"reason": cause.code, "reservation_id": reservation_id}
        details.update(cause.details)
        super().__init__(message, code=cause.code, details=details)
