from datetime import date

from flask import Blueprint, jsonify, g, request

from models import db
from models.facility import Facility
from routes.booking import reservation_json
from security.rbac import require_roles
from services import booking_services
from services.time_grid import format_time, is_aligned_time, parse_time
from utils.audit import log_event

admin_bp = Blueprint("admin", __name__, url_prefix="/admin")


def _facility_json(f):
    return {
        "id": f.id,
        "name": f.name,
        "venue": f.venue,
        "open_time": format_time(f.open_minute),
        "close_time": format_time(f.close_minute),
        "slot_price": f.slot_price,
        "is_active": f.is_active,
    }


def _hours_from(data, default_open=None, default_close=None):
    open_time = data.get("open_time")
    close_time = data.get("close_time")
    open_minute = parse_time(open_time) if is_aligned_time(open_time) else default_open
    # "24:00" closes at midnight
    if close_time == "24:00":
        close_minute = 24 * 60
    else:
        close_minute = parse_time(close_time) if is_aligned_time(close_time) else default_close
    return open_minute, close_minute


# ---------- ADMIN: manage facilities ----------
@admin_bp.post("/facilities")
@require_roles("ADMIN")
def create_facility():
    data = request.get_json(silent=True) or {}
    name = (data.get("name") or "").strip()
    venue = (data.get("venue") or "").strip() or None
    if not name:
        return jsonify(error="Facility name required"), 400

    open_minute, close_minute = _hours_from(data)
    if open_minute is None or close_minute is None or open_minute >= close_minute:
        return jsonify(error="open_time and close_time must be HH:00/HH:30 with open before close"), 400

    try:
        slot_price = int(data.get("slot_price") or 0)
    except (TypeError, ValueError):
        return jsonify(error="slot_price must be an integer"), 400
    if slot_price < 0:
        return jsonify(error="slot_price must not be negative"), 400

    facility = Facility(name=name, venue=venue, open_minute=open_minute,
                        close_minute=close_minute, slot_price=slot_price)
    db.session.add(facility)
    db.session.commit()

    log_event("FACILITY_CREATE", user_id=g.user.user_id, entity="facility", entity_id=facility.id)
    return jsonify(_facility_json(facility)), 201


@admin_bp.patch("/facilities/<int:facility_id>")
@require_roles("ADMIN")
def update_facility(facility_id: int):
    facility = db.session.get(Facility, facility_id)
    if not facility:
        return jsonify(error="Facility not found"), 404

    data = request.get_json(silent=True) or {}
    open_minute, close_minute = _hours_from(data, facility.open_minute, facility.close_minute)
    if open_minute is None or close_minute is None or open_minute >= close_minute:
        return jsonify(error="open_time must be before close_time"), 400
    facility.open_minute = open_minute
    facility.close_minute = close_minute
    if "slot_price" in data:
        try:
            facility.slot_price = max(int(data.get("slot_price") or 0), 0)
        except (TypeError, ValueError):
            return jsonify(error="slot_price must be an integer"), 400
    if "is_active" in data:
        facility.is_active = bool(data.get("is_active"))
    db.session.commit()

    log_event("FACILITY_UPDATE", user_id=g.user.user_id, entity="facility", entity_id=facility.id)
    return jsonify(_facility_json(facility)), 200


# ---------- ADMIN: reservations of one facility-date ----------
@admin_bp.get("/facilities/<int:facility_id>/reservations")
@require_roles("ADMIN")
def facility_reservations(facility_id: int):
    try:
        day = date.fromisoformat(request.args.get("date") or "")
    except ValueError:
        return jsonify(error="Invalid date. Use YYYY-MM-DD"), 400

    rows = booking_services().store.active_for(facility_id, day)
    return jsonify([reservation_json(r) for r in rows]), 200


# ---------- ADMIN: recovery ----------
@admin_bp.post("/reservations/release-stale")
@require_roles("ADMIN")
def release_stale_locks():
    outcome = booking_services().ledger.release_expired()
    log_event("STALE_LOCKS_RELEASE", user_id=g.user.user_id, metadata=outcome)
    return jsonify(outcome), 200


@admin_bp.post("/refunds/retry")
@require_roles("ADMIN")
def retry_refunds():
    refunded = booking_services().cancellation.retry_refunds()
    return jsonify(refunded=refunded), 200
