from datetime import date, datetime, timedelta

import pytest

from app import create_app
from config import TestConfig
from models import db
from models.facility import Facility
from models.reservation import ACTIVE_STATUSES, Reservation
from services.errors import PaymentDeclined, RefundError, TransientPaymentError
from services.payments import ChargeResult, RefundResult

NOW = datetime(2030, 6, 1, 8, 0)
DAY = date(2030, 6, 10)


class FakeClock:
    def __init__(self, now=NOW):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


class FakeGateway:
    """Scripted gateway: each charge pops "ok", "transient" or "decline" (default "ok")."""

    def __init__(self):
        self.script = []
        self.calls = []
        self.charges = []
        self.refunds = []
        self.refund_fails = False
        self.on_charge = None

    def charge(self, user_id, amount, method, idempotency_key=None):
        self.calls.append({"user_id": user_id, "amount": amount, "method": method, "key": idempotency_key})
        if self.on_charge:
            self.on_charge()
        outcome = self.script.pop(0) if self.script else "ok"
        if outcome == "transient":
            raise TransientPaymentError("Gateway timeout")
        if outcome == "decline":
            raise PaymentDeclined("Card declined", code="CardDeclined")
        transaction_id = f"pi_{len(self.charges) + 1}"
        self.charges.append({"transaction_id": transaction_id, "amount": amount, "key": idempotency_key})
        return ChargeResult(True, transaction_id)

    def refund(self, transaction_id):
        if self.refund_fails:
            raise RefundError("Refund could not be issued", details={"transaction_id": transaction_id})
        self.refunds.append(transaction_id)
        return RefundResult(True, f"re_{len(self.refunds)}")


class FakeNotifier:
    def __init__(self):
        self.events = []

    def notify(self, event):
        self.events.append(event)

    def kinds(self):
        return [e.kind for e in self.events]


def assert_no_overlaps(facility_id, day):
    active = (
        Reservation.query
        .filter(Reservation.facility_id == facility_id, Reservation.date == day,
                Reservation.status.in_(ACTIVE_STATUSES))
        .order_by(Reservation.start_minute)
        .all()
    )
    for earlier, later in zip(active, active[1:]):
        assert earlier.end_minute <= later.start_minute, (earlier.id, later.id)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def app(clock, gateway, notifier, sleeps):
    app = create_app(TestConfig, payments=gateway, notifier=notifier, clock=clock, sleep=sleeps.append)
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def services(app):
    return app.extensions["booking"]


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def facility(app):
    f = Facility(name="Court 1", venue="Riverside Arena", open_minute=6 * 60, close_minute=22 * 60, slot_price=500)
    db.session.add(f)
    db.session.commit()
    return f


@pytest.fixture
def free_facility(app):
    f = Facility(name="Practice Wall", open_minute=8 * 60, close_minute=20 * 60, slot_price=0)
    db.session.add(f)
    db.session.commit()
    return f
