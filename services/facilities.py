from datetime import date
from typing import Protocol, Tuple

from models import db
from models.facility import Facility
from services.errors import FacilityNotFound


class FacilityDirectory(Protocol):
    def get_operating_hours(self, facility_id: int, day: date) -> Tuple[int, int]: ...

    def get_slot_price(self, facility_id: int) -> int: ...


class SqlFacilityDirectory:
    """Operating hours and pricing read from the facilities table."""

    def __init__(self, session=None):
        self._session = session

    def _facility(self, facility_id: int) -> Facility:
        session = self._session if self._session is not None else db.session
        facility = session.get(Facility, facility_id)
        if not facility or not facility.is_active:
            raise FacilityNotFound(facility_id)
        return facility

    def get_operating_hours(self, facility_id: int, day: date) -> Tuple[int, int]:
        # Hours do not vary by weekday
        facility = self._facility(facility_id)
        return facility.open_minute, facility.close_minute

    def get_slot_price(self, facility_id: int) -> int:
        return self._facility(facility_id).slot_price
