"""
Fixed 30-minute grid used by every booking operation.

All arithmetic is done in integer minutes since midnight; ``HH:MM`` strings
are only parsed or produced at the boundary.
"""

import re
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import List, NamedTuple, Optional, Union

from services.errors import InvalidIntervalError

SLOT_MINUTES = 30
MINUTES_PER_DAY = 24 * 60

BAD_START_ALIGNMENT = "BadStartAlignment"
BAD_END_ALIGNMENT = "BadEndAlignment"
START_NOT_BEFORE_END = "StartNotBeforeEnd"

_TIME_RE = re.compile(r"^(\d{2}):(\d{2})$")

TimeValue = Union[str, int]


class ValidationResult(NamedTuple):
    valid: bool
    error_kind: Optional[str] = None
    message: Optional[str] = None


class GridSlot(NamedTuple):
    start: int
    end: int


@dataclass(frozen=True)
class Slot:
    facility_id: int
    date: date
    start_minute: int
    end_minute: int

    @property
    def start_time(self) -> str:
        return format_time(self.start_minute)

    @property
    def end_time(self) -> str:
        return format_time(self.end_minute)

    def starts_at(self) -> datetime:
        return at_minute(self.date, self.start_minute)


def is_aligned_time(value: TimeValue) -> bool:
    """True for ``HH:MM`` with HH in 00-23 and MM in {00, 30}, or an aligned minute offset."""
    if isinstance(value, bool):
        return False
    if isinstance(value, int):
        return 0 <= value <= MINUTES_PER_DAY and value % SLOT_MINUTES == 0
    if not isinstance(value, str):
        return False
    match = _TIME_RE.match(value.strip())
    if not match:
        return False
    hours, minutes = int(match.group(1)), int(match.group(2))
    return 0 <= hours <= 23 and minutes in (0, 30)


def parse_time(value: TimeValue) -> int:
    if not is_aligned_time(value):
        raise ValueError(f"not an aligned HH:MM time: {value!r}")
    if isinstance(value, int):
        return value
    hours, minutes = value.strip().split(":")
    return int(hours) * 60 + int(minutes)


def format_time(minute: int) -> str:
    return f"{minute // 60:02d}:{minute % 60:02d}"


def at_minute(day: date, minute: int) -> datetime:
    return datetime.combine(day, time()) + timedelta(minutes=minute)


def validate_interval(start: TimeValue, end: TimeValue) -> ValidationResult:
    if not is_aligned_time(start):
        return ValidationResult(False, BAD_START_ALIGNMENT, "Start time must be on a 30-minute boundary (HH:00 or HH:30)")
    if not is_aligned_time(end):
        return ValidationResult(False, BAD_END_ALIGNMENT, "End time must be on a 30-minute boundary (HH:00 or HH:30)")
    if parse_time(start) >= parse_time(end):
        return ValidationResult(False, START_NOT_BEFORE_END, "Start time must be before end time")
    return ValidationResult(True)


def enumerate_slots(start: TimeValue, end: TimeValue) -> List[GridSlot]:
    """
    Ordered 30-minute slots covering [start, end).

    Callers validate first; an invalid interval raises InvalidIntervalError.
    """
    result = validate_interval(start, end)
    if not result.valid:
        raise InvalidIntervalError(result.error_kind, result.message, details={"start": start, "end": end})
    first, last = parse_time(start), parse_time(end)
    return [GridSlot(m, m + SLOT_MINUTES) for m in range(first, last, SLOT_MINUTES)]


def slots_for(facility_id: int, day: date, start: TimeValue, end: TimeValue) -> List[Slot]:
    return [Slot(facility_id, day, s.start, s.end) for s in enumerate_slots(start, end)]
