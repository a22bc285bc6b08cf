from models.db import db, utcnow

class Facility(db.Model):
    __tablename__ = "facilities"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False)
    venue = db.Column(db.String(160), nullable=True)

    # Operating hours as minute-of-day offsets, [open_minute, close_minute)
    open_minute = db.Column(db.Integer, nullable=False, default=6 * 60)
    close_minute = db.Column(db.Integer, nullable=False, default=22 * 60)

    slot_price = db.Column(db.Integer, nullable=False, default=0)  # smallest unit, per 30-minute slot
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        db.CheckConstraint("open_minute >= 0 AND close_minute <= 1440", name="ck_facility_hours_in_day"),
        db.CheckConstraint("open_minute < close_minute", name="ck_facility_hours_order"),
    )
