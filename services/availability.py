"""
Read-only availability projection for one facility-date.

The view is rebuilt from the live reservation set on every query.
"""

import enum
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Callable, Iterable, List, Optional, Tuple

from models.db import utcnow
from models.reservation import PaymentStatus, Reservation, ReservationStatus
from services.time_grid import MINUTES_PER_DAY, SLOT_MINUTES, Slot, at_minute, format_time


class SlotAvailability(str, enum.Enum):
    AVAILABLE = "available"
    LOCKED = "locked"
    BOOKED = "booked"
    FILLING_FAST = "filling_fast"
    NOT_AVAILABLE = "not_available"


@dataclass(frozen=True)
class SlotView:
    slot: Slot
    availability: SlotAvailability
    reservation_id: Optional[int] = None

    def to_dict(self) -> dict:
        return {
            "start_time": self.slot.start_time,
            "end_time": self.slot.end_time,
            "availability": self.availability.value,
        }


@dataclass(frozen=True)
class FacilityAvailabilityView:
    facility_id: int
    date: date
    open_minute: int
    close_minute: int
    slots: Tuple[SlotView, ...]

    @property
    def free_count(self) -> int:
        free = (SlotAvailability.AVAILABLE, SlotAvailability.FILLING_FAST)
        return sum(1 for v in self.slots if v.availability in free)

    def to_dict(self) -> dict:
        return {
            "facility_id": self.facility_id,
            "date": self.date.isoformat(),
            "open_time": format_time(self.open_minute),
            "close_time": format_time(self.close_minute),
            "slot_minutes": SLOT_MINUTES,
            "free_slots": self.free_count,
            "slots": [v.to_dict() for v in self.slots],
        }


def is_lock_live(reservation: Reservation, now: datetime, lock_ttl: timedelta) -> bool:
    """
    A Pending reservation holds its slots until the lock TTL runs out.

    Exception: one whose payment is already stamped Paid never expires,
    even past the TTL. It waits for the coordinator's confirm or for
    release_expired(), which confirms it. Either may get there first, so
    the coordinator re-reads the reservation when its own confirm is
    rejected.
    """
    if reservation.status != ReservationStatus.PENDING:
        return False
    if reservation.payment_status == PaymentStatus.PAID:
        return True
    return now - reservation.created_at < lock_ttl


def build_view(
    facility_id: int,
    day: date,
    operating_hours: Tuple[int, int],
    reservations: Iterable[Reservation],
    now: datetime,
    lock_ttl: timedelta,
    filling_fast_threshold: float = 0.0,
) -> FacilityAvailabilityView:
    open_minute, close_minute = operating_hours
    reservations = list(reservations)

    labels: List[Tuple[Slot, Optional[SlotAvailability], Optional[int]]] = []
    capacity = 0
    for minute in range(0, MINUTES_PER_DAY, SLOT_MINUTES):
        slot = Slot(facility_id, day, minute, minute + SLOT_MINUTES)
        if minute < open_minute or slot.end_minute > close_minute or at_minute(day, minute) <= now:
            labels.append((slot, SlotAvailability.NOT_AVAILABLE, None))
            continue

        capacity += 1
        booked = None
        locked = None
        for r in reservations:
            if not r.overlaps(slot.start_minute, slot.end_minute):
                continue
            if r.status == ReservationStatus.CONFIRMED:
                booked = r
                break
            if locked is None and is_lock_live(r, now, lock_ttl):
                locked = r

        # Confirmed wins over any lock on the same slot
        if booked is not None:
            labels.append((slot, SlotAvailability.BOOKED, booked.id))
        elif locked is not None:
            labels.append((slot, SlotAvailability.LOCKED, locked.id))
        else:
            labels.append((slot, None, None))

    free = sum(1 for _, label, _ in labels if label is None)
    filling_fast = bool(capacity) and filling_fast_threshold > 0 and free / capacity < filling_fast_threshold
    free_label = SlotAvailability.FILLING_FAST if filling_fast else SlotAvailability.AVAILABLE

    return FacilityAvailabilityView(
        facility_id=facility_id,
        date=day,
        open_minute=open_minute,
        close_minute=close_minute,
        slots=tuple(SlotView(slot, label or free_label, rid) for slot, label, rid in labels),
    )


class AvailabilityIndex:
    def __init__(
        self,
        store,
        facilities,
        lock_ttl: timedelta,
        filling_fast_threshold: float = 0.0,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.facilities = facilities
        self.lock_ttl = lock_ttl
        self.filling_fast_threshold = filling_fast_threshold
        self.clock = clock

    def availability(self, facility_id: int, day: date) -> FacilityAvailabilityView:
        hours = self.facilities.get_operating_hours(facility_id, day)
        return build_view(
            facility_id,
            day,
            hours,
            self.store.active_for(facility_id, day),
            now=self.clock(),
            lock_ttl=self.lock_ttl,
            filling_fast_threshold=self.filling_fast_threshold,
        )
