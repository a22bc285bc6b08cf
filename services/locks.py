import threading
from contextlib import contextmanager
from datetime import date
from typing import Dict, Iterator, List, Tuple

Key = Tuple[int, date]


class FacilityDayLocks:
    """
    In-process mutex per (facility_id, date).

    Entries are dropped once no thread holds or waits on them, so the
    registry stays bounded by the number of facility-dates in flight.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._entries: Dict[Key, List] = {}  # key -> [lock, users]

    @contextmanager
    def hold(self, facility_id: int, day: date) -> Iterator[None]:
        key = (facility_id, day)
        with self._guard:
            entry = self._entries.get(key)
            if entry is None:
                entry = [threading.Lock(), 0]
                self._entries[key] = entry
            entry[1] += 1

        lock = entry[0]
        lock.acquire()
        try:
            yield
        finally:
            lock.release()
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    self._entries.pop(key, None)

    def __len__(self) -> int:
        with self._guard:
            return len(self._entries)
