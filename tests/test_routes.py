from datetime import datetime

from conftest import DAY

USER = {"X-User-Id": "u1"}
OTHER = {"X-User-Id": "u2"}
ADMIN = {"X-User-Id": "ops", "X-User-Roles": "admin"}


def _book(client, facility_id, start="09:00", end="10:00", headers=USER):
    return client.post("/bookings", headers=headers, json={
        "facility_id": facility_id,
        "date": DAY.isoformat(),
        "start_time": start,
        "end_time": end,
        "payment_method": "pm_card_visa",
    })


def test_health(client):
    assert client.get("/health").get_json() == {"status": "ok"}


def test_availability_reflects_bookings(client, facility):
    assert _book(client, facility.id).status_code == 201

    resp = client.get(f"/facilities/{facility.id}/availability?date={DAY.isoformat()}")
    assert resp.status_code == 200
    body = resp.get_json()
    assert body["open_time"] == "06:00"
    assert body["close_time"] == "22:00"
    assert body["free_slots"] == 30
    labels = {s["start_time"]: s["availability"] for s in body["slots"]}
    assert labels["09:00"] == "booked"
    assert labels["09:30"] == "booked"
    assert labels["10:00"] == "available"
    assert labels["05:30"] == "not_available"


def test_availability_requires_valid_date(client, facility):
    assert client.get(f"/facilities/{facility.id}/availability").status_code == 400
    assert client.get(f"/facilities/{facility.id}/availability?date=10-06-2030").status_code == 400


def test_unknown_facility_is_404(client, app):
    resp = client.get(f"/facilities/999/availability?date={DAY.isoformat()}")
    assert resp.status_code == 404
    assert resp.get_json()["code"] == "FacilityNotFound"


def test_booking_then_conflict(client, facility):
    first = _book(client, facility.id)
    assert first.status_code == 201
    assert first.get_json()["status"] == "confirmed"

    second = _book(client, facility.id, "09:30", "10:30", headers=OTHER)
    assert second.status_code == 409
    assert second.get_json()["code"] == "SlotConflict"


def test_booking_requires_identity(client, facility):
    assert _book(client, facility.id, headers={}).status_code == 401


def test_booking_validates_fields(client, facility):
    assert client.post("/bookings", headers=USER, json={"facility_id": facility.id}).status_code == 400

    resp = _book(client, facility.id, "09:10", "10:00")
    assert resp.status_code == 400
    assert resp.get_json()["code"] == "BadStartAlignment"


def test_declined_payment_is_402(client, facility, gateway):
    gateway.script = ["decline"]
    resp = _book(client, facility.id)
    assert resp.status_code == 402
    assert resp.get_json()["details"]["reason"] == "CardDeclined"


def test_cancel_by_other_user_is_403(client, facility):
    reservation_id = _book(client, facility.id).get_json()["reservation_id"]
    assert client.post(f"/bookings/{reservation_id}/cancel", headers=OTHER).status_code == 403

    resp = client.post(f"/bookings/{reservation_id}/cancel", headers=USER, json={"reason": "rain"})
    assert resp.status_code == 200
    assert resp.get_json()["refund"] == "refunded"


def test_cancel_inside_window_is_403(client, facility, clock):
    reservation_id = _book(client, facility.id).get_json()["reservation_id"]
    clock.now = datetime(DAY.year, DAY.month, DAY.day, 8, 0)
    resp = client.post(f"/bookings/{reservation_id}/cancel", headers=USER)
    assert resp.status_code == 403
    assert resp.get_json()["code"] == "CancellationWindowClosed"


def test_my_bookings_and_lookup(client, facility):
    reservation_id = _book(client, facility.id).get_json()["reservation_id"]
    _book(client, facility.id, "11:00", "12:00", headers=OTHER)

    mine = client.get("/bookings/me", headers=USER).get_json()
    assert [r["id"] for r in mine] == [reservation_id]
    assert client.get("/bookings/me?status=cancelled", headers=USER).get_json() == []

    assert client.get(f"/bookings/{reservation_id}", headers=USER).get_json()["start_time"] == "09:00"
    assert client.get(f"/bookings/{reservation_id}", headers=OTHER).status_code == 403
    assert client.get(f"/bookings/{reservation_id}", headers=ADMIN).status_code == 200
    assert client.get("/bookings/9999", headers=USER).status_code == 404


def test_admin_facility_management(client):
    payload = {"name": "Court 2", "open_time": "07:00", "close_time": "24:00", "slot_price": 400}
    assert client.post("/admin/facilities", headers=USER, json=payload).status_code == 403
    assert client.post("/admin/facilities", json=payload).status_code == 401

    resp = client.post("/admin/facilities", headers=ADMIN, json=payload)
    assert resp.status_code == 201
    facility = resp.get_json()
    assert facility["close_time"] == "24:00"

    bad = client.post("/admin/facilities", headers=ADMIN, json={**payload, "open_time": "07:15"})
    assert bad.status_code == 400

    patched = client.patch(f"/admin/facilities/{facility['id']}", headers=ADMIN, json={"slot_price": 600})
    assert patched.get_json()["slot_price"] == 600


def test_admin_recovery_endpoints(client, facility, services, clock):
    services.ledger.reserve(facility.id, "u1", DAY, "15:00", "16:00")
    clock.advance(minutes=30)

    resp = client.post("/admin/reservations/release-stale", headers=ADMIN)
    assert resp.status_code == 200
    assert len(resp.get_json()["released"]) == 1

    assert client.post("/admin/refunds/retry", headers=ADMIN).get_json() == {"refunded": []}

    listing = client.get(f"/admin/facilities/{facility.id}/reservations?date={DAY.isoformat()}", headers=ADMIN)
    assert listing.get_json() == []
