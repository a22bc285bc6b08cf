import threading
from datetime import timedelta

import pytest
from conftest import DAY, FakeClock, FakeGateway, FakeNotifier, assert_no_overlaps

from app import create_app
from config import TestConfig
from models import db
from models.facility import Facility
from models.reservation import PaymentStatus, ReservationStatus
from services.errors import (
    InvalidStateTransition,
    ReservationNotFound,
    SlotConflict,
    TransientStoreError,
    ValidationError,
)
from services.ledger import allowed_targets


def test_reserve_creates_pending(services, facility):
    r = services.ledger.reserve(facility.id, "u1", DAY, "09:00", "10:00", amount=1000)
    assert r.status == ReservationStatus.PENDING
    assert r.payment_status == PaymentStatus.INITIATED
    assert (r.start_minute, r.end_minute) == (540, 600)
    assert r.amount == 1000


def test_overlapping_reserve_conflicts(services, facility):
    services.ledger.reserve(facility.id, "u1", DAY, "09:00", "10:00")
    with pytest.raises(SlotConflict) as exc_info:
        services.ledger.reserve(facility.id, "u2", DAY, "09:30", "10:30")
    assert exc_info.value.details["start_time"] == "09:30"


def test_adjacent_intervals_do_not_overlap(services, facility):
    services.ledger.reserve(facility.id, "u1", DAY, "09:00", "10:00")
    services.ledger.reserve(facility.id, "u2", DAY, "10:00", "11:00")
    services.ledger.reserve(facility.id, "u3", DAY, "08:00", "09:00")
    assert_no_overlaps(facility.id, DAY)


def test_other_dates_are_independent(services, facility):
    services.ledger.reserve(facility.id, "u1", DAY, "09:00", "10:00")
    services.ledger.reserve(facility.id, "u2", DAY + timedelta(days=1), "09:00", "10:00")


def test_reserve_validates_interval(services, facility):
    with pytest.raises(ValidationError) as exc_info:
        services.ledger.reserve(facility.id, "u1", DAY, "09:15", "10:00")
    assert exc_info.value.error_kind == "BadStartAlignment"


def test_reserve_rejects_started_slots(services, facility, clock):
    clock.now = clock.now.replace(year=DAY.year, month=DAY.month, day=DAY.day, hour=9, minute=5)
    with pytest.raises(ValidationError) as exc_info:
        services.ledger.reserve(facility.id, "u1", DAY, "09:00", "10:00")
    assert exc_info.value.error_kind == "SlotInPast"


def test_confirm_only_from_pending(services, facility):
    r = services.ledger.reserve(facility.id, "u1", DAY, "09:00", "10:00")
    confirmed = services.ledger.confirm(r.id)
    assert confirmed.status == ReservationStatus.CONFIRMED
    assert confirmed.payment_status == PaymentStatus.PAID
    assert confirmed.confirmed_at is not None
    with pytest.raises(InvalidStateTransition):
        services.ledger.confirm(r.id)


def test_confirm_unknown_reservation(services):
    with pytest.raises(ReservationNotFound):
        services.ledger.confirm(404)


def test_release_is_idempotent_and_frees_slot(services, facility):
    r = services.ledger.reserve(facility.id, "u1", DAY, "09:00", "10:00")
    first = services.ledger.release(r.id)
    second = services.ledger.release(r.id)
    assert first.status == second.status == ReservationStatus.FAILED
    again = services.ledger.reserve(facility.id, "u2", DAY, "09:00", "10:00")
    assert again.id != r.id


def test_confirmed_can_only_be_released_as_cancelled(services, facility):
    r = services.ledger.reserve(facility.id, "u1", DAY, "09:00", "10:00")
    services.ledger.confirm(r.id)
    with pytest.raises(InvalidStateTransition):
        services.ledger.release(r.id, ReservationStatus.FAILED)
    cancelled = services.ledger.release(r.id, ReservationStatus.CANCELLED, reason="rain")
    assert cancelled.status == ReservationStatus.CANCELLED
    assert cancelled.cancel_reason == "rain"


def test_expired_lock_is_taken_over(services, facility, clock):
    stale = services.ledger.reserve(facility.id, "u1", DAY, "09:00", "10:00")
    clock.advance(minutes=11)
    fresh = services.ledger.reserve(facility.id, "u2", DAY, "09:30", "10:00")
    assert services.ledger.get(stale.id).status == ReservationStatus.FAILED
    assert fresh.status == ReservationStatus.PENDING
    assert_no_overlaps(facility.id, DAY)


def test_live_lock_blocks(services, facility, clock):
    services.ledger.reserve(facility.id, "u1", DAY, "09:00", "10:00")
    clock.advance(minutes=9)
    with pytest.raises(SlotConflict):
        services.ledger.reserve(facility.id, "u2", DAY, "09:00", "10:00")


def test_paid_pending_is_not_taken_over(services, facility, clock):
    r = services.ledger.reserve(facility.id, "u1", DAY, "09:00", "10:00")
    services.ledger.record_payment(r.id, PaymentStatus.PAID)
    clock.advance(hours=1)
    with pytest.raises(SlotConflict):
        services.ledger.reserve(facility.id, "u2", DAY, "09:00", "10:00")


def test_release_expired_sweep(services, facility, clock):
    unpaid = services.ledger.reserve(facility.id, "u1", DAY, "09:00", "10:00")
    paid = services.ledger.reserve(facility.id, "u2", DAY, "11:00", "12:00")
    services.ledger.record_payment(paid.id, PaymentStatus.PAID)
    clock.advance(minutes=5)
    recent = services.ledger.reserve(facility.id, "u3", DAY, "13:00", "14:00")
    clock.advance(minutes=6)

    outcome = services.ledger.release_expired()

    assert outcome == {"confirmed": [paid.id], "released": [unpaid.id]}
    assert services.ledger.get(unpaid.id).status == ReservationStatus.FAILED
    assert services.ledger.get(paid.id).status == ReservationStatus.CONFIRMED
    assert services.ledger.get(recent.id).status == ReservationStatus.PENDING


def test_release_expired_skips_rows_confirmed_after_snapshot(services, facility, clock, monkeypatch):
    paid = services.ledger.reserve(facility.id, "u1", DAY, "09:00", "10:00")
    services.ledger.record_payment(paid.id, PaymentStatus.PAID)
    unpaid = services.ledger.reserve(facility.id, "u2", DAY, "11:00", "12:00")
    clock.advance(minutes=11)
    real_stale_pending = services.store.stale_pending

    def snapshot_then_confirm(created_before):
        rows = real_stale_pending(created_before)
        services.ledger.confirm(paid.id)
        return rows

    monkeypatch.setattr(services.store, "stale_pending", snapshot_then_confirm)

    outcome = services.ledger.release_expired()

    assert outcome == {"confirmed": [], "released": [unpaid.id]}
    assert services.ledger.get(paid.id).status == ReservationStatus.CONFIRMED
    assert services.ledger.get(unpaid.id).status == ReservationStatus.FAILED


def test_refund_transition_follows_cancel(services, facility):
    r = services.ledger.reserve(facility.id, "u1", DAY, "09:00", "10:00")
    services.ledger.confirm(r.id)
    with pytest.raises(InvalidStateTransition):
        services.ledger.mark_refunded(r.id)
    services.ledger.release(r.id, ReservationStatus.CANCELLED)
    refunded = services.ledger.mark_refunded(r.id)
    assert refunded.status == ReservationStatus.REFUNDED
    assert refunded.payment_status == PaymentStatus.REFUNDED


def test_every_status_has_a_transition_entry():
    for status in ReservationStatus:
        assert isinstance(allowed_targets(status), frozenset)
    assert allowed_targets(ReservationStatus.FAILED) == frozenset()
    with pytest.raises(ValueError):
        allowed_targets("expired")


def test_reserve_writes_audit_rows(services, facility):
    from models.audit_log import AuditLog

    r = services.ledger.reserve(facility.id, "u1", DAY, "09:00", "10:00")
    row = AuditLog.query.filter_by(action="RESERVATION_CREATE").one()
    assert row.entity_id == str(r.id)
    assert row.user_id == "u1"


def _file_backed_app(tmp_path):
    class FileConfig(TestConfig):
        SQLALCHEMY_DATABASE_URI = f"sqlite:///{tmp_path / 'concurrency.db'}"

    app = create_app(FileConfig, payments=FakeGateway(), notifier=FakeNotifier(), clock=FakeClock(), sleep=lambda s: None)
    with app.app_context():
        db.create_all()
        facility = Facility(name="Court 9", open_minute=6 * 60, close_minute=22 * 60, slot_price=0)
        db.session.add(facility)
        db.session.commit()
        facility_id = facility.id
    return app, facility_id


def _run_threads(app, jobs):
    barrier = threading.Barrier(len(jobs))
    outcomes = []
    outcomes_lock = threading.Lock()

    def worker(job):
        with app.app_context():
            barrier.wait()
            try:
                job()
                result = "ok"
            except SlotConflict:
                result = "conflict"
            except TransientStoreError:
                result = "transient"
        with outcomes_lock:
            outcomes.append(result)

    threads = [threading.Thread(target=worker, args=(job,)) for job in jobs]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=30)
    return outcomes


def test_concurrent_reserves_for_same_interval_yield_one_winner(tmp_path):
    app, facility_id = _file_backed_app(tmp_path)
    ledger = app.extensions["booking"].ledger
    n = 8

    def job_for(i):
        return lambda: ledger.reserve(facility_id, f"user-{i}", DAY, "18:00", "19:00")

    outcomes = _run_threads(app, [job_for(i) for i in range(n)])

    assert outcomes.count("ok") == 1
    assert outcomes.count("conflict") == n - 1
    with app.app_context():
        assert len(app.extensions["booking"].store.active_for(facility_id, DAY)) == 1


def test_concurrent_overlapping_reserves_keep_invariant(tmp_path):
    app, facility_id = _file_backed_app(tmp_path)
    ledger = app.extensions["booking"].ledger
    ranges = [("09:00", "10:00"), ("09:30", "10:30"), ("10:00", "11:00"), ("10:30", "11:30"),
              ("08:30", "09:30"), ("09:00", "11:00"), ("11:00", "12:00"), ("10:00", "10:30")]

    def job_for(i, start, end):
        return lambda: ledger.reserve(facility_id, f"user-{i}", DAY, start, end)

    outcomes = _run_threads(app, [job_for(i, s, e) for i, (s, e) in enumerate(ranges)])

    assert outcomes.count("ok") >= 1
    assert "transient" not in outcomes
    with app.app_context():
        assert_no_overlaps(facility_id, DAY)
