from datetime import datetime, timedelta

from conftest import DAY, NOW

from models.reservation import PaymentStatus, Reservation, ReservationStatus
from services.availability import SlotAvailability, build_view

TTL = timedelta(minutes=10)
HOURS = (10 * 60, 12 * 60)


def _reservation(rid, start, end, status=ReservationStatus.CONFIRMED, created_at=NOW,
                 payment_status=PaymentStatus.INITIATED):
    return Reservation(
        id=rid,
        facility_id=1,
        user_id="u1",
        date=DAY,
        start_minute=start,
        end_minute=end,
        status=status,
        payment_status=payment_status,
        created_at=created_at,
    )


def _view(reservations, now=NOW, threshold=0.0, hours=HOURS):
    return build_view(1, DAY, hours, reservations, now=now, lock_ttl=TTL, filling_fast_threshold=threshold)


def _label(view, start_time):
    return next(v.availability for v in view.slots if v.slot.start_time == start_time)


def test_whole_day_grid_with_closed_hours():
    view = _view([])
    assert len(view.slots) == 48
    assert _label(view, "09:30") == SlotAvailability.NOT_AVAILABLE
    assert _label(view, "10:00") == SlotAvailability.AVAILABLE
    assert _label(view, "11:30") == SlotAvailability.AVAILABLE
    assert _label(view, "12:00") == SlotAvailability.NOT_AVAILABLE
    assert view.free_count == 4


def test_confirmed_reservation_marks_slots_booked():
    view = _view([_reservation(1, 600, 660)])
    assert _label(view, "10:00") == SlotAvailability.BOOKED
    assert _label(view, "10:30") == SlotAvailability.BOOKED
    assert _label(view, "11:00") == SlotAvailability.AVAILABLE
    assert view.slots[20].reservation_id == 1


def test_fresh_pending_is_locked_and_expired_pending_is_free():
    fresh = _reservation(1, 600, 630, status=ReservationStatus.PENDING, created_at=NOW - timedelta(minutes=5))
    stale = _reservation(2, 660, 690, status=ReservationStatus.PENDING, created_at=NOW - timedelta(minutes=15))
    view = _view([fresh, stale])
    assert _label(view, "10:00") == SlotAvailability.LOCKED
    assert _label(view, "11:00") == SlotAvailability.AVAILABLE


def test_paid_pending_never_expires():
    paid = _reservation(1, 600, 630, status=ReservationStatus.PENDING,
                        created_at=NOW - timedelta(hours=3), payment_status=PaymentStatus.PAID)
    assert _label(_view([paid]), "10:00") == SlotAvailability.LOCKED


def test_confirmed_wins_over_stale_lock():
    stale = _reservation(1, 600, 660, status=ReservationStatus.PENDING, created_at=NOW - timedelta(hours=1))
    confirmed = _reservation(2, 630, 660)
    view = _view([stale, confirmed])
    assert _label(view, "10:00") == SlotAvailability.AVAILABLE
    assert _label(view, "10:30") == SlotAvailability.BOOKED


def test_released_reservations_do_not_hold_slots():
    cancelled = _reservation(1, 600, 720, status=ReservationStatus.CANCELLED)
    failed = _reservation(2, 600, 720, status=ReservationStatus.FAILED)
    assert _view([cancelled, failed]).free_count == 4


def test_filling_fast_when_free_ratio_under_threshold():
    booked = _reservation(1, 600, 690)  # 3 of 4 open slots
    assert _label(_view([booked], threshold=0.2), "11:30") == SlotAvailability.AVAILABLE
    view = _view([booked], threshold=0.3)
    assert _label(view, "11:30") == SlotAvailability.FILLING_FAST
    assert _label(view, "10:00") == SlotAvailability.BOOKED
    assert view.free_count == 1


def test_started_slots_are_not_available():
    now = datetime.combine(DAY, datetime.min.time()) + timedelta(hours=10, minutes=10)
    view = _view([], now=now)
    assert _label(view, "10:00") == SlotAvailability.NOT_AVAILABLE
    assert _label(view, "10:30") == SlotAvailability.AVAILABLE


def test_view_serialises_labels():
    data = _view([_reservation(1, 600, 630)]).to_dict()
    assert data["open_time"] == "10:00"
    assert data["close_time"] == "12:00"
    assert data["free_slots"] == 3
    assert data["slots"][20] == {"start_time": "10:00", "end_time": "10:30", "availability": "booked"}
