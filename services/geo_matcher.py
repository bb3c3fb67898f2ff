from enum import Enum
import logging

from models import Driver, DriverMatch, DriverStatus, Location
from .helpers import haversine

logger = logging.getLogger(__name__)


class AvailabilityPolicy(str, Enum):
    """Which drivers count as available for matching"""
    STATUS = "status"            # status == available
    ACTIVE_FLAG = "active"       # status in {available, offline} and isActive


def is_available(driver: Driver, policy: AvailabilityPolicy) -> bool:
    if not driver.isVerified:
        return False
    if policy == AvailabilityPolicy.STATUS:
        return driver.status == DriverStatus.AVAILABLE
    return driver.isActive and driver.status in (DriverStatus.AVAILABLE, DriverStatus.OFFLINE)


def find_nearby_drivers(pickup: Location, drivers, radius_meters: float, limit: int = 10,
                        policy: AvailabilityPolicy = AvailabilityPolicy.STATUS,
                        location_cache=None) -> list[DriverMatch]:
    """Available drivers within ``radius_meters`` of ``pickup``, nearest first.

    A live position in ``location_cache`` takes precedence over the stored one.
    """
    origin = (pickup.latitude, pickup.longitude)
    matches = []
    for driver in drivers:
        if not is_available(driver, policy):
            continue

        cached = location_cache.get(driver.driverId) if location_cache is not None else None
        if cached is not None:
            position = (cached.latitude, cached.longitude)
        elif driver.location is not None:
            position = (driver.location.latitude, driver.location.longitude)
        else:
            continue

        distance = haversine(origin, position)
        if distance <= radius_meters:
            matches.append(DriverMatch(driver=driver, distanceMeters=distance))

    matches.sort(key=lambda match: match.distanceMeters)
    return matches[:limit]


async def match_drivers(pickup: Location, drivers_ref, radius_meters: float, limit: int = 10,
                        policy: AvailabilityPolicy = AvailabilityPolicy.STATUS, location_cache=None):
    """Load candidate drivers from the store and rank them by distance"""
    filters = [("isVerified", "==", True)]
    if policy == AvailabilityPolicy.STATUS:
        filters.append(("status", "==", DriverStatus.AVAILABLE.value))
    else:
        filters.append(("isActive", "==", True))

    drivers = []
    for doc in await drivers_ref.query(filters):
        try:
            drivers.append(Driver.model_validate(doc))
        except Exception as exc:
            logger.warning(f"Skipping malformed driver document {doc.get('driverId')}: {exc}")

    matches = find_nearby_drivers(pickup, drivers, radius_meters, limit, policy, location_cache)
    logger.info(f"Matched {len(matches)} of {len(drivers)} candidate drivers within {radius_meters}m")
    return matches
