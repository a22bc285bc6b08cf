import enum

from models.db import db, utcnow


class ReservationStatus(str, enum.Enum):
    """Reservation lifecycle."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"
    FAILED = "failed"


class PaymentStatus(str, enum.Enum):
    """Payment side-effect, tracked independently of the lifecycle."""

    INITIATED = "initiated"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"


# Statuses that hold their interval on the facility calendar
ACTIVE_STATUSES = (ReservationStatus.PENDING, ReservationStatus.CONFIRMED)


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


class Reservation(db.Model):
    __tablename__ = "reservations"

    id = db.Column(db.Integer, primary_key=True)

    facility_id = db.Column(db.Integer, db.ForeignKey("facilities.id"), nullable=False)
    user_id = db.Column(db.String(64), nullable=False, index=True)

    date = db.Column(db.Date, nullable=False)
    start_minute = db.Column(db.Integer, nullable=False)
    end_minute = db.Column(db.Integer, nullable=False)

    status = db.Column(
        db.Enum(ReservationStatus, native_enum=False, length=20, values_callable=_enum_values),
        nullable=False,
        default=ReservationStatus.PENDING,
    )
    payment_status = db.Column(
        db.Enum(PaymentStatus, native_enum=False, length=20, values_callable=_enum_values),
        nullable=False,
        default=PaymentStatus.INITIATED,
    )
    amount = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    confirmed_at = db.Column(db.DateTime, nullable=True)
    released_at = db.Column(db.DateTime, nullable=True)
    cancel_reason = db.Column(db.String(120), nullable=True)

    __table_args__ = (
        # Overlap scans always filter on facility-date first
        db.Index("ix_reservations_facility_day_interval", "facility_id", "date", "start_minute", "end_minute"),
        db.CheckConstraint("start_minute < end_minute", name="ck_reservation_interval_order"),
    )

    def overlaps(self, start_minute: int, end_minute: int) -> bool:
        return self.start_minute < end_minute and start_minute < self.end_minute
