from datetime import date

from flask import Blueprint, request, jsonify

from services import booking_services

availability_bp = Blueprint("availability", __name__, url_prefix="/facilities")


@availability_bp.get("/<int:facility_id>/availability")
def facility_availability(facility_id: int):
    date_str = request.args.get("date")
    if not date_str:
        return jsonify(error="date is required (YYYY-MM-DD)"), 400
    try:
        day = date.fromisoformat(date_str)
    except ValueError:
        return jsonify(error="Invalid date. Use YYYY-MM-DD"), 400

    view = booking_services().availability.availability(facility_id, day)
    return jsonify(view.to_dict()), 200
