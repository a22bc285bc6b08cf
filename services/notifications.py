import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Optional, Protocol

from services.time_grid import format_time
from utils.emailer import send_email

logger = logging.getLogger(__name__)

BOOKING_CONFIRMED = "booking.confirmed"
BOOKING_FAILED = "booking.failed"
BOOKING_CANCELLED = "booking.cancelled"
REFUND_FAILED = "refund.failed"


@dataclass(frozen=True)
class BookingEvent:
    kind: str
    reservation_id: int
    user_id: str
    facility_id: int
    date: str
    start_time: str
    end_time: str
    details: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def for_reservation(cls, kind: str, reservation, **details) -> "BookingEvent":
        return cls(
            kind=kind,
            reservation_id=reservation.id,
            user_id=reservation.user_id,
            facility_id=reservation.facility_id,
            date=reservation.date.isoformat(),
            start_time=format_time(reservation.start_minute),
            end_time=format_time(reservation.end_minute),
            details=details,
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class NotificationSink(Protocol):
    def notify(self, event: BookingEvent) -> None: ...


class EmailNotificationSink:
    """Mails booking events to an operations inbox."""

    def __init__(self, to_email: Optional[str]):
        self.to_email = to_email

    def notify(self, event: BookingEvent) -> None:
        subject = f"[courtbook] {event.kind} #{event.reservation_id}"
        body = (
            f"Reservation {event.reservation_id} for facility {event.facility_id}\n"
            f"{event.date} {event.start_time}-{event.end_time}\n"
            f"User: {event.user_id}\n"
        )
        if event.details:
            body += "".join(f"{k}: {v}\n" for k, v in event.details.items())
        ok, err = send_email(self.to_email, subject, body)
        if not ok:
            logger.info("Notification %s for reservation %s not mailed: %s", event.kind, event.reservation_id, err)


def notify_safely(sink: Optional[NotificationSink], event: BookingEvent) -> None:
    """Fire-and-forget: a broken sink never fails the booking flow."""
    if sink is None:
        return
    try:
        sink.notify(event)
    except Exception:
        logger.exception("Notification %s for reservation %s failed", event.kind, event.reservation_id)
