from datetime import datetime
import logging

from errors import NotFoundError
from models import Driver, DriverMatch, DriverStatus, Location
from .geo_matcher import AvailabilityPolicy, match_drivers

logger = logging.getLogger(__name__)


async def set_driver_active(driver_id: str, is_active: bool, drivers_ref, location_cache=None) -> Driver:
    """Go online or offline; offline drivers also leave the live location cache"""
    status = DriverStatus.AVAILABLE if is_active else DriverStatus.OFFLINE
    doc = await drivers_ref.update(driver_id, {
        "isActive": is_active,
        "status": status.value,
        "updatedAt": datetime.now().isoformat(),
    })
    if doc is None:
        raise NotFoundError("Driver not found")

    if not is_active and location_cache is not None:
        location_cache.evict(driver_id)
    logger.info(f"Driver {driver_id} is now {status.value}")
    return Driver.model_validate(doc)


async def update_driver_location(driver_id: str, latitude: float, longitude: float, drivers_ref,
                                 location_cache=None, address: str | None = None) -> Location:
    location = Location(address=address, latitude=latitude, longitude=longitude)
    doc = await drivers_ref.update(driver_id, {
        "location": location.model_dump(mode="json"),
        "updatedAt": datetime.now().isoformat(),
    })
    if doc is None:
        raise NotFoundError("Driver not found")

    if location_cache is not None:
        location_cache.update(driver_id, latitude, longitude, address)
    return location


async def get_available_drivers(latitude: float, longitude: float, drivers_ref, radius_meters: float = 50000,
                                limit: int = 50, location_cache=None) -> list[DriverMatch]:
    """Online verified drivers around a point, nearest first"""
    origin = Location(latitude=latitude, longitude=longitude)
    return await match_drivers(origin, drivers_ref, radius_meters, limit, AvailabilityPolicy.ACTIVE_FLAG, location_cache)
