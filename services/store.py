"""
Persistence port for reservations.

The ledger never touches the ORM session directly; it goes through a
ReservationStore, which owns the facility-date unit of work. The SQL
implementation serialises a facility-date with an in-process keyed lock
and, on PostgreSQL, a transaction-scoped advisory lock so that several
worker processes also linearize on the same facility-date.
"""

import hashlib
import logging
from contextlib import contextmanager
from datetime import date, datetime
from typing import Iterator, List, Optional, Protocol

from sqlalchemy import select, text
from sqlalchemy.exc import OperationalError

from models import db
from models.payment import Payment
from models.reservation import ACTIVE_STATUSES, PaymentStatus, Reservation, ReservationStatus
from services.errors import TransientStoreError
from services.locks import FacilityDayLocks

logger = logging.getLogger(__name__)

# Shared by every store in this process
_process_locks = FacilityDayLocks()


class DayScope(Protocol):
    facility_id: int
    day: date

    def active_reservations(self) -> List[Reservation]: ...

    def get(self, reservation_id: int) -> Optional[Reservation]: ...

    def add(self, reservation: Reservation) -> Reservation: ...


class ReservationStore(Protocol):
    def transaction(self, facility_id: int, day: date): ...

    def get(self, reservation_id: int) -> Optional[Reservation]: ...

    def active_for(self, facility_id: int, day: date) -> List[Reservation]: ...

    def list_for_user(self, user_id: str) -> List[Reservation]: ...

    def stale_pending(self, created_before: datetime) -> List[Reservation]: ...

    def payment_for(self, reservation_id: int) -> Optional[Payment]: ...

    def cancelled_unrefunded(self) -> List[Reservation]: ...

    def save(self, row) -> None: ...


def advisory_key(facility_id: int, day: date) -> int:
    """Stable signed 64-bit key for pg_advisory_xact_lock."""
    digest = hashlib.blake2b(f"{facility_id}:{day.isoformat()}".encode(), digest_size=8).digest()
    return int.from_bytes(digest, "big", signed=True)


class SqlDayScope:
    def __init__(self, session, facility_id: int, day: date):
        self.session = session
        self.facility_id = facility_id
        self.day = day

    def active_reservations(self) -> List[Reservation]:
        stmt = (
            select(Reservation)
            .where(
                Reservation.facility_id == self.facility_id,
                Reservation.date == self.day,
                Reservation.status.in_(ACTIVE_STATUSES),
            )
            .order_by(Reservation.start_minute.asc())
            .execution_options(populate_existing=True)
        )
        return list(self.session.execute(stmt).scalars())

    def get(self, reservation_id: int) -> Optional[Reservation]:
        return self.session.get(Reservation, reservation_id, populate_existing=True)

    def add(self, reservation: Reservation) -> Reservation:
        self.session.add(reservation)
        self.session.flush()
        return reservation


class SqlReservationStore:
    def __init__(self, session=None, locks: Optional[FacilityDayLocks] = None):
        self._session = session
        self._locks = locks or _process_locks

    @property
    def session(self):
        return self._session if self._session is not None else db.session

    @contextmanager
    def transaction(self, facility_id: int, day: date) -> Iterator[SqlDayScope]:
        """Unit of work scoped to one facility-date; commits on clean exit."""
        with self._locks.hold(facility_id, day):
            session = self.session
            try:
                if session.get_bind().dialect.name == "postgresql":
                    session.execute(
                        text("SELECT pg_advisory_xact_lock(:key)"),
                        {"key": advisory_key(facility_id, day)},
                    )
                yield SqlDayScope(session, facility_id, day)
                session.commit()
            except OperationalError as exc:
                session.rollback()
                logger.warning("Store transaction failed for facility %s on %s: %s", facility_id, day, exc)
                raise TransientStoreError(
                    "Booking store is busy, please retry",
                    details={"facility_id": facility_id, "date": day.isoformat()},
                ) from exc
            except Exception:
                session.rollback()
                raise

    def get(self, reservation_id: int) -> Optional[Reservation]:
        return self.session.get(Reservation, reservation_id, populate_existing=True)

    def active_for(self, facility_id: int, day: date) -> List[Reservation]:
        return SqlDayScope(self.session, facility_id, day).active_reservations()

    def list_for_user(self, user_id: str) -> List[Reservation]:
        stmt = (
            select(Reservation)
            .where(Reservation.user_id == str(user_id))
            .order_by(Reservation.created_at.desc())
        )
        return list(self.session.execute(stmt).scalars())

    def stale_pending(self, created_before: datetime) -> List[Reservation]:
        stmt = (
            select(Reservation)
            .where(
                Reservation.status == ReservationStatus.PENDING,
                Reservation.created_at < created_before,
            )
            .order_by(Reservation.created_at.asc())
        )
        return list(self.session.execute(stmt).scalars())

    def payment_for(self, reservation_id: int) -> Optional[Payment]:
        stmt = select(Payment).where(Payment.reservation_id == reservation_id)
        return self.session.execute(stmt).scalar_one_or_none()

    def cancelled_unrefunded(self) -> List[Reservation]:
        stmt = (
            select(Reservation)
            .join(Payment, Payment.reservation_id == Reservation.id)
            .where(
                Reservation.status == ReservationStatus.CANCELLED,
                Payment.status == PaymentStatus.PAID,
            )
            .order_by(Reservation.id.asc())
        )
        return list(self.session.execute(stmt).scalars())

    def save(self, row) -> None:
        session = self.session
        session.add(row)
        try:
            session.commit()
        except OperationalError as exc:
            session.rollback()
            raise TransientStoreError("Booking store is busy, please retry") from exc
