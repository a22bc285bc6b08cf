import logging
import time
from dataclasses import dataclass
from datetime import timedelta

from flask import current_app

from models.db import utcnow
from services.availability import AvailabilityIndex
from services.cancellation import CancellationHandler
from services.coordinator import BookingCoordinator
from services.facilities import SqlFacilityDirectory
from services.ledger import ReservationLedger
from services.notifications import EmailNotificationSink
from services.payments import StripePaymentGateway
from services.retry import RetryPolicy
from services.store import SqlReservationStore

logger = logging.getLogger(__name__)


@dataclass
class BookingServices:
    store: SqlReservationStore
    facilities: SqlFacilityDirectory
    availability: AvailabilityIndex
    ledger: ReservationLedger
    coordinator: BookingCoordinator
    cancellation: CancellationHandler


def build_services(config, payments=None, notifier=None, clock=utcnow, sleep=time.sleep) -> BookingServices:
    """Wire the booking core from a Flask config mapping."""
    if payments is None:
        if not config.get("STRIPE_SECRET_KEY"):
            logger.warning("STRIPE_SECRET_KEY not set; paid bookings will be rejected by the gateway")
        payments = StripePaymentGateway(config.get("STRIPE_SECRET_KEY"), currency=config.get("CURRENCY", "INR"))
    if notifier is None:
        notifier = EmailNotificationSink(config.get("NOTIFY_EMAIL"))

    lock_ttl = timedelta(seconds=config.get("LOCK_TTL_SECONDS", 600))
    store = SqlReservationStore()
    facilities = SqlFacilityDirectory()
    ledger = ReservationLedger(store, lock_ttl=lock_ttl, clock=clock)

    return BookingServices(
        store=store,
        facilities=facilities,
        availability=AvailabilityIndex(
            store,
            facilities,
            lock_ttl=lock_ttl,
            filling_fast_threshold=config.get("FILLING_FAST_THRESHOLD", 0.0),
            clock=clock,
        ),
        ledger=ledger,
        coordinator=BookingCoordinator(
            ledger,
            facilities,
            payments,
            notifier=notifier,
            payment_retry=RetryPolicy(
                max_attempts=config.get("PAYMENT_MAX_ATTEMPTS", 3),
                backoff_seconds=config.get("PAYMENT_RETRY_BACKOFF_SECONDS", 1.0),
                sleep=sleep,
            ),
            store_retry=RetryPolicy(
                max_attempts=config.get("RESERVE_MAX_ATTEMPTS", 3),
                backoff_seconds=config.get("RESERVE_RETRY_BACKOFF_SECONDS", 0.1),
                sleep=sleep,
            ),
            currency=config.get("CURRENCY", "INR"),
        ),
        cancellation=CancellationHandler(
            ledger,
            payments,
            cutoff=timedelta(hours=config.get("CANCEL_CUTOFF_HOURS", 24)),
            notifier=notifier,
            clock=clock,
        ),
    )


def booking_services() -> BookingServices:
    return current_app.extensions["booking"]
