"""
BookingCoordinator: reserve -> charge -> confirm, or compensate.

Every path out of ``book`` leaves the reservation Confirmed or released
as Failed. Conflicts and validation errors are surfaced immediately;
transient store and gateway failures are retried under bounded policies.
"""

import logging
from dataclasses import dataclass
from datetime import date
from typing import Callable, Optional

from models.db import utcnow
from models.payment import Payment
from models.reservation import PaymentStatus, ReservationStatus
from services.errors import (
    BookingError,
    BookingFailed,
    InvalidStateTransition,
    PaymentDeclined,
    RefundError,
    TransientPaymentError,
    TransientStoreError,
    ValidationError,
)
from services.notifications import BOOKING_CONFIRMED, BOOKING_FAILED, BookingEvent, notify_safely
from services.retry import RetryPolicy
from services.time_grid import SLOT_MINUTES, TimeValue, parse_time, validate_interval
from utils.audit import log_event

logger = logging.getLogger(__name__)

OUTSIDE_OPERATING_HOURS = "OutsideOperatingHours"


@dataclass(frozen=True)
class BookingResult:
    reservation_id: int
    status: ReservationStatus
    payment_status: PaymentStatus
    amount: int
    transaction_id: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "reservation_id": self.reservation_id,
            "status": self.status.value,
            "payment_status": self.payment_status.value,
            "amount": self.amount,
            "transaction_id": self.transaction_id,
        }


class BookingCoordinator:
    def __init__(
        self,
        ledger,
        facilities,
        payments,
        notifier=None,
        payment_retry: RetryPolicy = RetryPolicy(max_attempts=3, backoff_seconds=1.0),
        store_retry: RetryPolicy = RetryPolicy(max_attempts=3, backoff_seconds=0.1),
        currency: str = "INR",
        audit: Callable[..., None] = log_event,
    ):
        self.ledger = ledger
        self.store = ledger.store
        self.facilities = facilities
        self.payments = payments
        self.notifier = notifier
        self.payment_retry = payment_retry
        self.store_retry = store_retry
        self.currency = currency
        self.audit = audit

    def book(
        self,
        facility_id: int,
        user_id: str,
        day: date,
        start: TimeValue,
        end: TimeValue,
        payment_method: Optional[str] = None,
    ) -> BookingResult:
        start_minute, end_minute = self._validate(facility_id, day, start, end)
        amount = self.facilities.get_slot_price(facility_id) * ((end_minute - start_minute) // SLOT_MINUTES)

        # SlotConflict and validation errors are not retryable and pass straight through
        reservation = self.store_retry.call(
            "reserve",
            lambda: self.ledger.reserve(facility_id, user_id, day, start, end, amount=amount),
            retry_on=(TransientStoreError,),
        )

        if amount == 0:
            reservation = self.ledger.confirm(reservation.id)
            notify_safely(self.notifier, BookingEvent.for_reservation(BOOKING_CONFIRMED, reservation))
            return self._result(reservation)

        payment = Payment(
            reservation_id=reservation.id,
            amount=amount,
            currency=self.currency,
            method=payment_method,
            status=PaymentStatus.INITIATED,
        )
        self.store.save(payment)

        try:
            charge = self.payment_retry.call(
                "charge",
                lambda: self._charge_once(payment, user_id, amount, payment_method),
                retry_on=(TransientPaymentError,),
            )
        except BookingError as exc:
            self._compensate(reservation.id, payment, exc)
            raise BookingFailed(self._failure_message(exc), exc, reservation.id) from exc
        except Exception as exc:
            logger.exception("Unexpected payment failure for reservation %s", reservation.id)
            self._compensate(reservation.id, payment, exc)
            raise

        transaction_id = charge.transaction_id
        try:
            self.store_retry.call(
                "record charge",
                lambda: self._record_charge(payment, transaction_id),
                retry_on=(TransientStoreError,),
            )
            self.ledger.record_payment(reservation.id, PaymentStatus.PAID)
            reservation = self.ledger.confirm(reservation.id)
        except (InvalidStateTransition, TransientStoreError) as exc:
            reservation = self._settle_after_charge(reservation.id, payment, transaction_id, exc)

        notify_safely(self.notifier, BookingEvent.for_reservation(
            BOOKING_CONFIRMED, reservation, transaction_id=transaction_id))
        return self._result(reservation, transaction_id)

    def _validate(self, facility_id: int, day: date, start: TimeValue, end: TimeValue):
        result = validate_interval(start, end)
        if not result.valid:
            raise ValidationError(result.error_kind, result.message, details={"start": start, "end": end})

        start_minute, end_minute = parse_time(start), parse_time(end)
        open_minute, close_minute = self.facilities.get_operating_hours(facility_id, day)
        if start_minute < open_minute or end_minute > close_minute:
            raise ValidationError(
                OUTSIDE_OPERATING_HOURS,
                "Requested time is outside the facility's operating hours",
                details={"facility_id": facility_id},
            )
        return start_minute, end_minute

    def _charge_once(self, payment: Payment, user_id: str, amount: int, method: Optional[str]):
        payment.attempts += 1
        self.store.save(payment)
        try:
            # Same key on every attempt so a retried timeout cannot double-charge
            return self.payments.charge(user_id, amount, method,
                                        idempotency_key=f"reservation-{payment.reservation_id}")
        except BookingError as exc:
            payment.last_error = exc.code[:255]
            self.store.save(payment)
            raise

    def _compensate(self, reservation_id: int, payment: Payment, exc: Exception) -> None:
        reason = getattr(exc, "code", type(exc).__name__)
        payment.status = PaymentStatus.FAILED
        self.store.save(payment)
        reservation = self.store_retry.call(
            "release",
            lambda: self.ledger.release(
                reservation_id,
                ReservationStatus.FAILED,
                payment_status=PaymentStatus.FAILED,
                reason=reason,
            ),
            retry_on=(TransientStoreError,),
        )
        logger.info("Booking %s failed after %d charge attempt(s): %s", reservation_id, payment.attempts, reason)
        self.audit("PAYMENT_CHARGE_FAIL", user_id=reservation.user_id, entity="reservation",
                   entity_id=reservation_id, metadata={"reason": reason, "attempts": payment.attempts})
        notify_safely(self.notifier, BookingEvent.for_reservation(BOOKING_FAILED, reservation, reason=reason))

    def _record_charge(self, payment: Payment, transaction_id: str) -> None:
        payment.status = PaymentStatus.PAID
        payment.transaction_id = transaction_id
        payment.paid_at = utcnow()
        self.store.save(payment)

    def _settle_after_charge(self, reservation_id: int, payment: Payment, transaction_id: str,
                             exc: BookingError):
        """
        The card was charged but confirm did not complete. The recovery
        sweep may already have confirmed the paid hold, in which case the
        booking stands. Otherwise the hold is released and the charge
        refunded.
        """
        reservation = self.ledger.get(reservation_id)
        if reservation.status == ReservationStatus.PENDING:
            try:
                reservation = self.store_retry.call(
                    "release",
                    lambda: self.ledger.release(reservation_id, ReservationStatus.FAILED,
                                                reason="charge not recorded"),
                    retry_on=(TransientStoreError,),
                )
            except InvalidStateTransition:
                reservation = self.ledger.get(reservation_id)

        if reservation.status == ReservationStatus.CONFIRMED:
            logger.info("Reservation %s was confirmed by the recovery sweep", reservation_id)
            return reservation

        logger.warning("Reservation %s not confirmed after charge (%s), refunding", reservation_id, exc.code)
        refunded = self._refund_orphaned_charge(payment, transaction_id)
        if isinstance(exc, InvalidStateTransition):
            message = "Your slot hold expired before payment completed"
        else:
            message = "Your payment could not be recorded"
        message += "; the charge has been refunded" if refunded else "; a refund will follow"
        raise BookingFailed(message, exc, reservation_id) from exc

    def _refund_orphaned_charge(self, payment: Payment, transaction_id: str) -> bool:
        try:
            refund = self.payments.refund(transaction_id)
        except RefundError as exc:
            logger.error("Refund of orphaned charge %s failed: %s", transaction_id, exc)
            self.audit("REFUND_FAIL", entity="payment", entity_id=payment.id,
                       metadata={"transaction_id": transaction_id, "error": exc.message})
            return False
        if not refund.success:
            return False

        self.store_retry.call(
            "record refund",
            lambda: self._record_refund(payment, transaction_id, refund.refund_id),
            retry_on=(TransientStoreError,),
        )
        return True

    def _record_refund(self, payment: Payment, transaction_id: str, refund_id: str) -> None:
        payment.status = PaymentStatus.REFUNDED
        payment.transaction_id = transaction_id
        payment.refund_id = refund_id
        payment.refunded_at = utcnow()
        self.store.save(payment)

    @staticmethod
    def _failure_message(exc: BookingError) -> str:
        if isinstance(exc, PaymentDeclined):
            return f"Payment declined: {exc.message}"
        if isinstance(exc, TransientPaymentError):
            return "Payment provider is unavailable right now; the slot was released, please try again"
        return exc.message

    def _result(self, reservation, transaction_id: Optional[str] = None) -> BookingResult:
        return BookingResult(
            reservation_id=reservation.id,
            status=ReservationStatus(reservation.status),
            payment_status=PaymentStatus(reservation.payment_status),
            amount=reservation.amount,
            transaction_id=transaction_id,
        )
