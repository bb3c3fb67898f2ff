from datetime import date
import logging

from errors import NotFoundError, PermissionDeniedError, ValidationError
from models import AuthenticatedUser, Driver, Role, Trip, TripCreate, TripStatus, TripTracking
from notifier import Event
from .geo_matcher import AvailabilityPolicy, match_drivers
from .geocoding import resolve_location
from .helpers import calculate_fare, decode_polyline
from .trip_state import load_trip
from .utils import get_driving_route

logger = logging.getLogger(__name__)


def _vehicle_label(driver: Driver) -> str | None:
    parts = [part for part in (driver.vehicleModel, driver.vehicleRegistration) if part]
    return " ".join(parts) if parts else None


def estimate_fare(route, fare_rates: dict | None = None) -> float:
    if route is None or route.distance is None or route.duration is None:
        return 0
    return calculate_fare(route.distance, route.duration, **(fare_rates or {}))


async def create_trip(body: TripCreate, parent_id: str, trips_ref, drivers_ref, notifier, routes_client=None,
                      geocoder=None, location_cache=None, fare_rates: dict | None = None,
                      radius_meters: float = 10000, limit: int = 10,
                      policy: AvailabilityPolicy = AvailabilityPolicy.STATUS) -> Trip:
    """Book a trip with a chosen driver, or offer it to nearby drivers when none is given"""
    pickup = await resolve_location(body.pickupLocation, geocoder)
    if pickup is None:
        raise ValidationError("Could not resolve the pickup location")
    dropoff = await resolve_location(body.dropoffLocation, geocoder)
    if dropoff is None:
        raise ValidationError("Could not resolve the dropoff location")

    trip = Trip(
        tripType=body.tripType,
        parentId=parent_id,
        parentName=body.parentName,
        childId=body.childId,
        date=body.date,
        pickupTime=body.pickupTime,
        pickupLocation=pickup,
        dropoffLocation=dropoff,
        activity=body.activity,
        instructions=body.instructions,
    )

    route = await get_driving_route(routes_client, pickup, dropoff)
    if route is not None:
        trip.route = route
    trip.fare = body.fare if body.fare is not None else estimate_fare(route, fare_rates)

    if body.driverId:
        doc = await drivers_ref.get(body.driverId)
        if doc is None:
            raise NotFoundError("Driver not found")
        driver = Driver.model_validate(doc)
        if not driver.isActive:
            raise ValidationError("Driver is not available")
        trip.driverId = driver.driverId
        trip.driverName = driver.name
        trip.driverVehicle = _vehicle_label(driver)
        recipients = [driver.driverId]
    else:
        matches = await match_drivers(pickup, drivers_ref, radius_meters, limit, policy, location_cache)
        if not matches:
            raise ValidationError("No drivers available nearby")
        trip.notifiedDrivers = [match.driver.driverId for match in matches]
        recipients = trip.notifiedDrivers

    await trips_ref.create(trip.tripId, trip.model_dump(mode="json"))
    logger.info(f"Created trip {trip.tripId} for parent {parent_id}, offered to {len(recipients)} driver(s)")

    for driver_id in recipients:
        await notifier.emit_to_user(driver_id, Event.NEW_TRIP_REQUEST, {
            "tripId": trip.tripId,
            "parentName": trip.parentName,
            "pickupLocation": trip.pickupLocation.address,
            "dropoffLocation": trip.dropoffLocation.address,
            "pickupTime": trip.pickupTime,
            "date": trip.date,
            "fare": trip.fare,
            "activity": trip.activity,
        })
    return trip


async def get_driver_pending_trips(driver_id: str, trips_ref) -> list[Trip]:
    pending = TripStatus.PENDING.value
    assigned = await trips_ref.query([("driverId", "==", driver_id), ("status", "==", pending)])
    offered = await trips_ref.query([("notifiedDrivers", "array-contains", driver_id), ("status", "==", pending)])

    trips = {doc["tripId"]: Trip.model_validate(doc) for doc in [*assigned, *offered]}
    return sorted(trips.values(), key=lambda trip: trip.createdAt, reverse=True)


async def get_driver_upcoming_trips(driver_id: str, trips_ref, today: date | None = None) -> list[Trip]:
    today = today or date.today()
    docs = await trips_ref.query([
        ("driverId", "==", driver_id),
        ("status", "in", [TripStatus.ACCEPTED.value, TripStatus.IN_PROGRESS.value]),
    ])
    trips = [Trip.model_validate(doc) for doc in docs]
    return sorted((trip for trip in trips if trip.date >= today), key=lambda trip: (trip.date, trip.pickupTime))


async def get_parent_trips(parent_id: str, trips_ref, status: str | None = None) -> list[Trip]:
    filters = [("parentId", "==", parent_id)]
    if status:
        try:
            filters.append(("status", "==", TripStatus(status.lower()).value))
        except ValueError:
            raise ValidationError(f"Unknown trip status: {status}")
    docs = await trips_ref.query(filters, order_by="createdAt", descending=True)
    return [Trip.model_validate(doc) for doc in docs]


def trip_participants(trip: Trip) -> set[str]:
    return {user_id for user_id in (trip.parentId, trip.driverId, *trip.notifiedDrivers) if user_id}


async def get_trip(trip_id: str, trips_ref, viewer: AuthenticatedUser) -> Trip:
    trip = await load_trip(trip_id, trips_ref)
    if viewer.role != Role.ADMIN and viewer.userId not in trip_participants(trip):
        raise PermissionDeniedError("Unauthorized to view this trip")
    return trip


async def get_trip_tracking(trip_id: str, trips_ref, viewer: AuthenticatedUser) -> TripTracking:
    trip = await get_trip(trip_id, trips_ref, viewer)
    return TripTracking(
        tripId=trip.tripId,
        status=trip.status,
        pickupLocation=trip.pickupLocation,
        dropoffLocation=trip.dropoffLocation,
        currentLocation=trip.currentLocation,
        routeCoordinates=[list(point) for point in decode_polyline(trip.route.polyline)],
        driverId=trip.driverId,
        driverName=trip.driverName,
        driverVehicle=trip.driverVehicle,
        startedAt=trip.startedAt,
    )
