import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, FrozenSet, List, Optional

from models.db import utcnow
from models.reservation import PaymentStatus, ReservationStatus
from services.errors import (
    CancellationWindowClosed,
    InvalidStateTransition,
    NotReservationOwner,
    RefundError,
)
from services.notifications import BOOKING_CANCELLED, REFUND_FAILED, BookingEvent, notify_safely
from services.time_grid import at_minute
from utils.audit import log_event

logger = logging.getLogger(__name__)

REFUNDED = "refunded"
REFUND_QUEUED = "queued"
REFUND_NOT_REQUIRED = "not_required"


@dataclass(frozen=True)
class Actor:
    user_id: str
    roles: FrozenSet[str] = field(default_factory=frozenset)

    @property
    def is_admin(self) -> bool:
        return "ADMIN" in self.roles or "SUPER_ADMIN" in self.roles


@dataclass(frozen=True)
class CancellationResult:
    reservation_id: int
    status: ReservationStatus
    payment_status: PaymentStatus
    refund: str

    def to_dict(self) -> dict:
        return {
            "reservation_id": self.reservation_id,
            "status": self.status.value,
            "payment_status": self.payment_status.value,
            "refund": self.refund,
        }


class CancellationHandler:
    """
    Confirmed -> Cancelled, then refund.

    The slot is freed before the refund is attempted. A failed refund does
    not undo the cancellation; it stays queued (payment still Paid on a
    Cancelled reservation) for retry_refunds() or manual follow-up.
    """

    def __init__(
        self,
        ledger,
        payments,
        cutoff: timedelta = timedelta(hours=24),
        notifier=None,
        clock: Callable[[], datetime] = utcnow,
        audit: Callable[..., None] = log_event,
    ):
        self.ledger = ledger
        self.store = ledger.store
        self.payments = payments
        self.cutoff = cutoff
        self.notifier = notifier
        self.clock = clock
        self.audit = audit

    def cancel(self, reservation_id: int, actor: Actor, reason: Optional[str] = None) -> CancellationResult:
        reservation = self.ledger.get(reservation_id)
        if not actor.is_admin and reservation.user_id != str(actor.user_id):
            raise NotReservationOwner()
        if reservation.status != ReservationStatus.CONFIRMED:
            raise InvalidStateTransition(reservation.id, reservation.status, ReservationStatus.CANCELLED)

        starts_at = at_minute(reservation.date, reservation.start_minute)
        # Admins may cancel inside the window
        if not actor.is_admin and starts_at - self.clock() < self.cutoff:
            raise CancellationWindowClosed(
                int(self.cutoff.total_seconds() // 3600),
                details={"reservation_id": reservation.id, "starts_at": starts_at.isoformat()},
            )

        reservation = self.ledger.release(reservation.id, ReservationStatus.CANCELLED, reason=reason)
        self.audit("RESERVATION_CANCEL", user_id=actor.user_id, entity="reservation", entity_id=reservation.id,
                   metadata={"reason": reason, "by_admin": actor.is_admin})
        notify_safely(self.notifier, BookingEvent.for_reservation(BOOKING_CANCELLED, reservation, reason=reason))

        refund = self._refund(reservation)
        reservation = self.ledger.get(reservation.id)
        return CancellationResult(
            reservation_id=reservation.id,
            status=ReservationStatus(reservation.status),
            payment_status=PaymentStatus(reservation.payment_status),
            refund=refund,
        )

    def retry_refunds(self) -> List[int]:
        """Retry refunds for cancelled reservations whose payment is still captured."""
        refunded = []
        for reservation in self.store.cancelled_unrefunded():
            if self._refund(reservation) == REFUNDED:
                refunded.append(reservation.id)
        return refunded

    def _refund(self, reservation) -> str:
        payment = self.store.payment_for(reservation.id)
        if payment is None or payment.status != PaymentStatus.PAID or not payment.transaction_id:
            return REFUND_NOT_REQUIRED

        try:
            result = self.payments.refund(payment.transaction_id)
            if not result.success:
                raise RefundError("Refund was not accepted by the provider",
                                  details={"transaction_id": payment.transaction_id})
        except RefundError as exc:
            logger.error("Refund for reservation %s failed, queued for reconciliation: %s", reservation.id, exc)
            payment.last_error = exc.code[:255]
            self.store.save(payment)
            self.audit("REFUND_FAIL", user_id=reservation.user_id, entity="reservation", entity_id=reservation.id,
                       metadata={"transaction_id": payment.transaction_id, "error": exc.message})
            notify_safely(self.notifier, BookingEvent.for_reservation(REFUND_FAILED, reservation, error=exc.message))
            return REFUND_QUEUED

        payment.status = PaymentStatus.REFUNDED
        payment.refund_id = result.refund_id
        payment.refunded_at = self.clock()
        self.store.save(payment)
        self.ledger.mark_refunded(reservation.id)
        return REFUNDED
