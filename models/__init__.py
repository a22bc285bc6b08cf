from .db import db
from .facility import Facility
from .reservation import Reservation, ReservationStatus, PaymentStatus, ACTIVE_STATUSES
from .payment import Payment
from .audit_log import AuditLog
