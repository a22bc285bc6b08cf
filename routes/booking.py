from datetime import date

from flask import Blueprint, request, jsonify, g

from services import booking_services
from services.errors import NotReservationOwner
from services.time_grid import format_time
from utils.auth_context import login_required

booking_bp = Blueprint("booking", __name__, url_prefix="/bookings")


def reservation_json(r):
    return {
        "id": r.id,
        "facility_id": r.facility_id,
        "user_id": r.user_id,
        "date": r.date.isoformat(),
        "start_time": format_time(r.start_minute),
        "end_time": format_time(r.end_minute),
        "status": r.status.value,
        "payment_status": r.payment_status.value,
        "amount": r.amount,
        "created_at": r.created_at.isoformat(),
        "confirmed_at": r.confirmed_at.isoformat() if r.confirmed_at else None,
        "released_at": r.released_at.isoformat() if r.released_at else None,
    }


# ---------- PLAYERS: book a time range (DOUBLE-BOOKING SAFE) ----------
@booking_bp.post("")
@login_required
def create_booking():
    data = request.get_json(silent=True) or {}
    facility_id = data.get("facility_id")
    date_str = data.get("date")
    start_time = data.get("start_time")
    end_time = data.get("end_time")
    payment_method = (data.get("payment_method") or "").strip() or None

    if not facility_id or not date_str or not start_time or not end_time:
        return jsonify(error="facility_id, date, start_time, end_time are required"), 400

    try:
        facility_id = int(facility_id)
        day = date.fromisoformat(date_str)
    except (TypeError, ValueError):
        return jsonify(error="Invalid facility_id or date. Use YYYY-MM-DD"), 400

    result = booking_services().coordinator.book(
        facility_id, g.user.user_id, day, start_time, end_time, payment_method
    )
    return jsonify(result.to_dict()), 201


# ---------- PLAYERS / ADMIN: cancel (policy window) ----------
@booking_bp.post("/<int:reservation_id>/cancel")
@login_required
def cancel_booking(reservation_id: int):
    data = request.get_json(silent=True) or {}
    reason = (data.get("reason") or "").strip() or None

    result = booking_services().cancellation.cancel(reservation_id, g.user, reason=reason)
    return jsonify(result.to_dict()), 200


# ---------- PLAYERS: view my bookings ----------
@booking_bp.get("/me")
@login_required
def my_bookings():
    rows = booking_services().store.list_for_user(g.user.user_id)
    status = request.args.get("status")
    if status:
        rows = [r for r in rows if r.status.value == status.lower()]
    return jsonify([reservation_json(r) for r in rows]), 200


@booking_bp.get("/<int:reservation_id>")
@login_required
def get_booking(reservation_id: int):
    reservation = booking_services().ledger.get(reservation_id)
    if not g.user.is_admin and reservation.user_id != g.user.user_id:
        raise NotReservationOwner()
    return jsonify(reservation_json(reservation)), 200
