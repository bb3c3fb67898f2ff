from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from threading import RLock
import logging

logger = logging.getLogger(__name__)


@dataclass
class CachedLocation:
    """Last known position of a driver"""
    driver_id: str
    latitude: float
    longitude: float
    address: str | None = None
    updated_at: datetime = field(default_factory=datetime.now)

    def is_stale(self, ttl: timedelta, now: datetime) -> bool:
        return now - self.updated_at > ttl


class DriverLocationCache:
    """Live driver positions keyed by driver id.

    Entries expire after ``ttl_seconds`` without an update and are dropped
    explicitly when a driver goes offline or disconnects. Once ``max_entries``
    is reached the least recently updated driver is evicted.
    """

    def __init__(self, ttl_seconds: int = 300, max_entries: int = 5000, clock=datetime.now):
        self._entries: OrderedDict[str, CachedLocation] = OrderedDict()
        self._lock = RLock()
        self._ttl = timedelta(seconds=ttl_seconds)
        self._max_entries = max_entries
        self._clock = clock

    def update(self, driver_id: str, latitude: float, longitude: float, address: str | None = None) -> CachedLocation:
        entry = CachedLocation(driver_id, latitude, longitude, address, self._clock())
        with self._lock:
            self._entries[driver_id] = entry
            self._entries.move_to_end(driver_id)
            while len(self._entries) > self._max_entries:
                evicted, _ = self._entries.popitem(last=False)
                logger.debug(f"Evicted driver {evicted} from location cache (size bound)")
        return entry

    def get(self, driver_id: str) -> CachedLocation | None:
        with self._lock:
            entry = self._entries.get(driver_id)
            if entry is None:
                return None
            if entry.is_stale(self._ttl, self._clock()):
                del self._entries[driver_id]
                return None
            return entry

    def evict(self, driver_id: str) -> bool:
        with self._lock:
            return self._entries.pop(driver_id, None) is not None

    def purge_stale(self) -> int:
        now = self._clock()
        with self._lock:
            stale = [driver_id for driver_id, entry in self._entries.items() if entry.is_stale(self._ttl, now)]
            for driver_id in stale:
                del self._entries[driver_id]
        if stale:
            logger.info(f"Purged {len(stale)} stale driver locations")
        return len(stale)

    def snapshot(self) -> dict[str, CachedLocation]:
        self.purge_stale()
        with self._lock:
            return dict(self._entries)

    def __len__(self):
        with self._lock:
            return len(self._entries)
