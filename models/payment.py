from models.db import db, utcnow
from models.reservation import PaymentStatus, _enum_values

class Payment(db.Model):
    __tablename__ = "payments"

    id = db.Column(db.Integer, primary_key=True)
    reservation_id = db.Column(db.Integer, db.ForeignKey("reservations.id"), nullable=False, unique=True, index=True)

    provider = db.Column(db.String(20), nullable=False, default="STRIPE")
    method = db.Column(db.String(64), nullable=True)
    amount = db.Column(db.Integer, nullable=False)   # smallest unit
    currency = db.Column(db.String(10), nullable=False, default="INR")

    status = db.Column(
        db.Enum(PaymentStatus, native_enum=False, length=20, values_callable=_enum_values),
        nullable=False,
        default=PaymentStatus.INITIATED,
    )
    attempts = db.Column(db.Integer, nullable=False, default=0)
    transaction_id = db.Column(db.String(255), nullable=True, unique=True)
    refund_id = db.Column(db.String(255), nullable=True)
    last_error = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    paid_at = db.Column(db.DateTime, nullable=True)
    refunded_at = db.Column(db.DateTime, nullable=True)
