"""
ReservationLedger: the only writer of reservation rows.

Guarantees that, for one facility-date, Pending and Confirmed
reservations never overlap. Every mutation runs inside the store's
facility-date unit of work, so the overlap check and the insert are
atomic for concurrent callers on the same facility-date.
"""

import logging
from datetime import date, datetime, timedelta
from typing import Callable, Dict, FrozenSet, List, Optional

from models.db import utcnow
from models.reservation import PaymentStatus, Reservation, ReservationStatus
from services.availability import is_lock_live
from services.errors import (
    InvalidStateTransition,
    ReservationNotFound,
    SlotConflict,
    ValidationError,
)
from services.time_grid import TimeValue, at_minute, format_time, parse_time, validate_interval
from utils.audit import log_event

logger = logging.getLogger(__name__)

SLOT_IN_PAST = "SlotInPast"

_TRANSITIONS: Dict[ReservationStatus, FrozenSet[ReservationStatus]] = {
    ReservationStatus.PENDING: frozenset(
        {ReservationStatus.CONFIRMED, ReservationStatus.FAILED, ReservationStatus.CANCELLED}
    ),
    ReservationStatus.CONFIRMED: frozenset({ReservationStatus.CANCELLED}),
    ReservationStatus.CANCELLED: frozenset({ReservationStatus.REFUNDED}),
    ReservationStatus.REFUNDED: frozenset(),
    ReservationStatus.FAILED: frozenset(),
}

# Statuses in which the interval is free again
RELEASED_STATUSES = frozenset(
    {ReservationStatus.CANCELLED, ReservationStatus.FAILED, ReservationStatus.REFUNDED}
)


def allowed_targets(status: ReservationStatus) -> FrozenSet[ReservationStatus]:
    try:
        return _TRANSITIONS[ReservationStatus(status)]
    except (KeyError, ValueError):
        raise ValueError(f"unknown reservation status: {status!r}")


class ReservationLedger:
    def __init__(
        self,
        store,
        lock_ttl: timedelta,
        clock: Callable[[], datetime] = utcnow,
        audit: Callable[..., None] = log_event,
    ):
        self.store = store
        self.lock_ttl = lock_ttl
        self.clock = clock
        self.audit = audit

    def reserve(
        self,
        facility_id: int,
        user_id: str,
        day: date,
        start: TimeValue,
        end: TimeValue,
        amount: int = 0,
    ) -> Reservation:
        result = validate_interval(start, end)
        if not result.valid:
            raise ValidationError(result.error_kind, result.message, details={"start": start, "end": end})

        start_minute, end_minute = parse_time(start), parse_time(end)
        now = self.clock()
        if at_minute(day, start_minute) <= now:
            raise ValidationError(SLOT_IN_PAST, "Cannot book past or started slots")

        taken_over: List[int] = []
        with self.store.transaction(facility_id, day) as scope:
            for existing in scope.active_reservations():
                if not existing.overlaps(start_minute, end_minute):
                    continue
                if existing.status == ReservationStatus.PENDING and not is_lock_live(existing, now, self.lock_ttl):
                    # Expired checkout lock: free it so the calendar matches what users see
                    existing.status = ReservationStatus.FAILED
                    existing.released_at = now
                    existing.cancel_reason = "lock expired"
                    taken_over.append(existing.id)
                    continue
                raise SlotConflict(details={
                    "facility_id": facility_id,
                    "date": day.isoformat(),
                    "start_time": format_time(start_minute),
                    "end_time": format_time(end_minute),
                })

            reservation = scope.add(Reservation(
                facility_id=facility_id,
                user_id=str(user_id),
                date=day,
                start_minute=start_minute,
                end_minute=end_minute,
                status=ReservationStatus.PENDING,
                payment_status=PaymentStatus.INITIATED,
                amount=amount,
                created_at=now,
            ))

        for stale_id in taken_over:
            logger.info("Released expired lock %s for facility %s on %s", stale_id, facility_id, day)
            self.audit("RESERVATION_LOCK_EXPIRED", entity="reservation", entity_id=stale_id)
        logger.info(
            "Reservation %s pending for facility %s on %s %s-%s",
            reservation.id, facility_id, day, format_time(start_minute), format_time(end_minute),
        )
        self.audit("RESERVATION_CREATE", user_id=user_id, entity="reservation", entity_id=reservation.id,
                   metadata={"facility_id": facility_id, "date": day.isoformat(),
                             "start_time": format_time(start_minute), "end_time": format_time(end_minute)})
        return reservation

    def get(self, reservation_id: int) -> Reservation:
        reservation = self.store.get(reservation_id)
        if reservation is None:
            raise ReservationNotFound(reservation_id)
        return reservation

    def record_payment(self, reservation_id: int, payment_status: PaymentStatus) -> Reservation:
        """
        Stamp the payment outcome on a Pending reservation.

        A Pending reservation marked Paid no longer expires, so a crash
        before confirm() leaves it for the recovery sweep instead of
        letting another booking take the slot.
        """
        current = self.get(reservation_id)
        with self.store.transaction(current.facility_id, current.date) as scope:
            reservation = scope.get(reservation_id)
            if reservation.status != ReservationStatus.PENDING:
                raise InvalidStateTransition(reservation.id, reservation.status, ReservationStatus.CONFIRMED)
            reservation.payment_status = payment_status
        return reservation

    def confirm(self, reservation_id: int) -> Reservation:
        """Pending -> Confirmed, with the payment recorded as paid."""
        current = self.get(reservation_id)
        with self.store.transaction(current.facility_id, current.date) as scope:
            reservation = scope.get(reservation_id)
            self._check_transition(reservation, ReservationStatus.CONFIRMED)
            reservation.status = ReservationStatus.CONFIRMED
            reservation.payment_status = PaymentStatus.PAID
            reservation.confirmed_at = self.clock()

        self.audit("RESERVATION_CONFIRM", user_id=reservation.user_id, entity="reservation", entity_id=reservation.id)
        return reservation

    def release(
        self,
        reservation_id: int,
        status: ReservationStatus = ReservationStatus.FAILED,
        payment_status: Optional[PaymentStatus] = None,
        reason: Optional[str] = None,
    ) -> Reservation:
        """
        Free the interval by moving to Failed or Cancelled.

        Releasing a reservation that is already released is a no-op, which
        makes compensation safe to race against the stale-lock sweep.
        """
        if status not in (ReservationStatus.FAILED, ReservationStatus.CANCELLED):
            raise ValueError(f"release target must be failed or cancelled, got {status!r}")

        current = self.get(reservation_id)
        with self.store.transaction(current.facility_id, current.date) as scope:
            reservation = scope.get(reservation_id)
            if reservation.status in RELEASED_STATUSES:
                return reservation
            self._check_transition(reservation, status)
            reservation.status = status
            reservation.released_at = self.clock()
            if payment_status is not None:
                reservation.payment_status = payment_status
            if reason:
                reservation.cancel_reason = reason[:120]

        logger.info("Reservation %s released as %s", reservation.id, status.value)
        self.audit("RESERVATION_RELEASE", user_id=reservation.user_id, entity="reservation",
                   entity_id=reservation.id, metadata={"status": status.value, "reason": reason})
        return reservation

    def mark_refunded(self, reservation_id: int) -> Reservation:
        current = self.get(reservation_id)
        with self.store.transaction(current.facility_id, current.date) as scope:
            reservation = scope.get(reservation_id)
            if reservation.status == ReservationStatus.REFUNDED:
                return reservation
            self._check_transition(reservation, ReservationStatus.REFUNDED)
            reservation.status = ReservationStatus.REFUNDED
            reservation.payment_status = PaymentStatus.REFUNDED

        self.audit("RESERVATION_REFUNDED", user_id=reservation.user_id, entity="reservation", entity_id=reservation.id)
        return reservation

    def release_expired(self, now: Optional[datetime] = None) -> Dict[str, List[int]]:
        """
        Recovery sweep over Pending reservations older than the lock TTL.

        Paid ones are confirmed, unpaid ones released as Failed. Rows that
        left Pending after the snapshot was read are skipped.
        """
        now = now or self.clock()
        outcome: Dict[str, List[int]] = {"confirmed": [], "released": []}
        for reservation in self.store.stale_pending(now - self.lock_ttl):
            reservation_id = reservation.id
            try:
                if reservation.payment_status == PaymentStatus.PAID:
                    self.confirm(reservation_id)
                    outcome["confirmed"].append(reservation_id)
                else:
                    self.release(reservation_id, ReservationStatus.FAILED, reason="lock expired")
                    outcome["released"].append(reservation_id)
            except InvalidStateTransition as exc:
                logger.info("Sweep skipped reservation %s: %s", reservation_id, exc)
        return outcome

    def _check_transition(self, reservation: Reservation, target: ReservationStatus) -> None:
        if target not in allowed_targets(reservation.status):
            raise InvalidStateTransition(reservation.id, reservation.status, target)
