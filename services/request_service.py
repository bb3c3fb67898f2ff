from datetime import date, datetime
import logging

from pydantic import ValidationError as ModelValidationError

from errors import ConflictError, NotFoundError, PermissionDeniedError, ValidationError
from models import (
    AuthenticatedUser, RECURRING_TYPES, RideInstance, RideInstanceStatus, RideRequest, RideRequestCreate,
    RideRequestCreated, RideRequestStatus, RideType, Role, Schedule,
)
from notifier import Event
from .assignment_service import release_seat
from .geo_matcher import AvailabilityPolicy, match_drivers
from .geocoding import resolve_location
from .instance_generator import build_instance
from .instance_state import cancel_instance
from .recurrence import DAY_NAME_TO_NUMBER, add_months

logger = logging.getLogger(__name__)

DEFAULT_SCHEDULE_MONTHS = {RideType.WEEKLY: 3, RideType.MONTHLY: 6}


def parse_ride_type(trip_type: str) -> RideType:
    """``once-off``/``weekly``/``monthly`` in any case"""
    try:
        return RideType(trip_type.strip().upper().replace("-", "_"))
    except ValueError:
        raise ValidationError(f"Unknown trip type: {trip_type}")


def _weekday(value) -> int:
    if isinstance(value, int):
        return value
    if value.strip().isdigit():
        return int(value)
    number = DAY_NAME_TO_NUMBER.get(value.strip().lower())
    if number is None:
        raise ValidationError(f"Unknown day: {value}")
    return number


def _day_of_month(value) -> int:
    try:
        return int(value)
    except ValueError:
        raise ValidationError(f"Invalid day of month: {value}")


def build_schedule(ride_type: RideType, start: date, selected_days, end_date: date | None = None) -> Schedule:
    if ride_type == RideType.ONCE_OFF:
        return Schedule(dates=[start], startDate=start, endDate=start)

    if not selected_days:
        raise ValidationError(f"Please select at least one day for {ride_type.value.lower()} trips")

    end = end_date or add_months(start, DEFAULT_SCHEDULE_MONTHS[ride_type])
    try:
        if ride_type == RideType.WEEKLY:
            days = sorted({_weekday(day) for day in selected_days})
            return Schedule(daysOfWeek=days, startDate=start, endDate=end)
        days = sorted({_day_of_month(day) for day in selected_days})
        return Schedule(daysOfMonth=days, startDate=start, endDate=end)
    except ModelValidationError as exc:
        raise ValidationError(f"Invalid schedule: {exc.errors()[0]['msg']}")


async def create_ride_request(body: RideRequestCreate, parent_id: str, requests_ref, instances_ref, drivers_ref,
                              notifier, geocoder=None, location_cache=None, radius_meters: float = 10000,
                              limit: int = 10, policy: AvailabilityPolicy = AvailabilityPolicy.STATUS) -> RideRequestCreated:
    """Save a ride request and start matching it.

    Once-off requests are broadcast to nearby drivers straight away; recurring
    ones wait in PENDING for an admin to assign a driver.
    """
    ride_type = parse_ride_type(body.tripType)
    schedule = build_schedule(ride_type, body.date, body.selectedDays, body.endDate)

    pickup = await resolve_location(body.pickupLocation, geocoder)
    if pickup is None:
        raise ValidationError("Could not resolve the pickup location")
    dropoff = await resolve_location(body.dropoffLocation, geocoder)
    if dropoff is None:
        raise ValidationError("Could not resolve the dropoff location")

    try:
        request = RideRequest(
            parentId=parent_id,
            childId=body.childId,
            childName=body.childName,
            schoolName=body.school,
            pickupLocation=pickup,
            dropoffLocation=dropoff,
            pickupTime=body.pickupTime,
            type=ride_type,
            schedule=schedule,
            activity=body.activity,
            instructions=body.instructions,
        )
    except ModelValidationError as exc:
        raise ValidationError(f"Invalid ride request: {exc.errors()[0]['msg']}")

    if not await requests_ref.create(request.requestId, request.model_dump(mode="json")):
        raise ConflictError(f"Ride request {request.requestId} already exists")
    logger.info(f"Created {ride_type.value} ride request {request.requestId} for parent {parent_id}")

    if ride_type in RECURRING_TYPES:
        await notifier.emit_to_role(Role.ADMIN, Event.NEW_RECURRING_TRIP_REQUEST, {
            "rideRequestId": request.requestId,
            "type": ride_type,
            "childName": request.childName,
            "school": request.schoolName,
            "pickupLocation": pickup.address,
            "dropoffLocation": dropoff.address,
            "pickupTime": request.pickupTime,
            "selectedDays": schedule.daysOfWeek if ride_type == RideType.WEEKLY else schedule.daysOfMonth,
            "startDate": schedule.startDate,
        })
        return RideRequestCreated(
            rideRequestId=request.requestId,
            type=ride_type,
            status=request.status,
            message=f"{body.tripType} trip request submitted to admin for driver assignment",
        )

    return await broadcast_once_off(request, instances_ref, drivers_ref, notifier, location_cache,
                                    radius_meters, limit, policy)


async def broadcast_once_off(request: RideRequest, instances_ref, drivers_ref, notifier, location_cache=None,
                             radius_meters: float = 10000, limit: int = 10,
                             policy: AvailabilityPolicy = AvailabilityPolicy.STATUS) -> RideRequestCreated:
    """Offer a once-off ride to every nearby driver; the first to accept gets it"""
    matches = await match_drivers(request.pickupLocation, drivers_ref, radius_meters, limit, policy, location_cache)
    if not matches:
        return RideRequestCreated(
            rideRequestId=request.requestId,
            type=request.type,
            status=request.status,
            message="Trip request created but no drivers available nearby. "
                    "We will notify you when a driver becomes available.",
        )

    instance = build_instance(request, request.schedule.startDate)
    instance.notifiedDrivers = [match.driver.driverId for match in matches]
    if not await instances_ref.create(instance.instanceId, instance.model_dump(mode="json")):
        raise ConflictError(f"A ride for request {request.requestId} on {instance.date} already exists")

    for match in matches:
        await notifier.emit_to_user(match.driver.driverId, Event.NEW_TRIP_REQUEST, {
            "rideInstanceId": instance.instanceId,
            "rideRequestId": request.requestId,
            "childName": request.childName,
            "school": request.schoolName,
            "pickupLocation": request.pickupLocation.address,
            "dropoffLocation": request.dropoffLocation.address,
            "pickupTime": request.pickupTime,
            "date": instance.date,
            "activity": request.activity,
            "distanceMeters": round(match.distanceMeters),
        })

    return RideRequestCreated(
        rideRequestId=request.requestId,
        type=request.type,
        status=request.status,
        rideInstanceId=instance.instanceId,
        notifiedDrivers=len(matches),
        message=f"Request sent to {len(matches)} nearby drivers",
    )


async def get_ride_requests_by_parent(parent_id: str, requests_ref) -> list[RideRequest]:
    docs = await requests_ref.query([("parentId", "==", parent_id)], order_by="createdAt", descending=True)
    return [RideRequest.model_validate(doc) for doc in docs]


async def get_ride_request(request_id: str, requests_ref, viewer: AuthenticatedUser | None = None) -> RideRequest:
    doc = await requests_ref.get(request_id)
    if doc is None:
        raise NotFoundError(f"Ride request {request_id} not found")
    request = RideRequest.model_validate(doc)
    if viewer is not None and viewer.role != Role.ADMIN and viewer.userId not in (request.parentId, request.assignedDriverId):
        raise PermissionDeniedError("Unauthorized to view this request")
    return request


async def list_pending_requests(requests_ref, ride_type: str | None = None, status: str | None = None,
                                limit: int = 50) -> list[RideRequest]:
    """Requests waiting for an admin; recurring and PENDING unless told otherwise"""
    filters = []
    if ride_type:
        filters.append(("type", "==", parse_ride_type(ride_type).value))
    else:
        filters.append(("type", "in", [t.value for t in RECURRING_TYPES]))
    try:
        wanted_status = RideRequestStatus(status.upper()) if status else RideRequestStatus.PENDING
    except ValueError:
        raise ValidationError(f"Unknown request status: {status}")
    filters.append(("status", "==", wanted_status.value))

    docs = await requests_ref.query(filters, order_by="createdAt", descending=True, limit=limit)
    return [RideRequest.model_validate(doc) for doc in docs]


async def cancel_ride_request(request_id: str, actor: AuthenticatedUser, requests_ref, instances_ref, drivers_ref,
                              notifier, today: date | None = None) -> RideRequest:
    """Cancel a request, its upcoming rides, and free the driver's seat"""
    request = await get_ride_request(request_id, requests_ref)
    if actor.role != Role.ADMIN and actor.userId != request.parentId:
        raise PermissionDeniedError("Only the parent who made the request can cancel it")
    if request.status not in (RideRequestStatus.PENDING, RideRequestStatus.ACTIVE):
        raise ConflictError(f"Cannot cancel request with status: {request.status.value}",
                            current_status=request.status)

    applied, current = await requests_ref.compare_and_set(
        request_id,
        {"status": request.status.value, "version": request.version},
        {"status": RideRequestStatus.CANCELLED.value, "assignedDriverId": None,
         "version": request.version + 1, "updatedAt": datetime.now().isoformat()},
    )
    if not applied:
        raise ConflictError("Ride request changed, please retry",
                            current_status=current.get("status") if current else None)
    logger.info(f"Ride request {request_id} cancelled by {actor.userId}")

    today = today or date.today()
    docs = await instances_ref.query([
        ("rideRequestId", "==", request_id),
        ("status", "in", [RideInstanceStatus.SCHEDULED.value, RideInstanceStatus.ACCEPTED.value]),
    ])
    for doc in docs:
        instance = RideInstance.model_validate(doc)
        if instance.date < today:
            continue
        try:
            await cancel_instance(instance.instanceId, actor, instances_ref, notifier, reason="Ride request cancelled")
        except ConflictError as exc:
            logger.info(f"Instance {instance.instanceId} not cancelled: {exc.message}")

    if request.type in RECURRING_TYPES and request.assignedDriverId:
        await release_seat(request.assignedDriverId, drivers_ref)
        await notifier.emit_to_user(request.assignedDriverId, Event.TRIP_CANCELLED, {
            "rideRequestId": request_id,
            "reason": "Ride request cancelled",
            "cancelledBy": actor.role,
        })

    return RideRequest.model_validate(current)


async def get_instances_for_user(user: AuthenticatedUser, instances_ref, status: str | None = None) -> list[RideInstance]:
    field = "driverId" if user.role == Role.DRIVER else "parentId"
    filters = [(field, "==", user.userId)]
    if status:
        try:
            filters.append(("status", "==", RideInstanceStatus(status.upper()).value))
        except ValueError:
            raise ValidationError(f"Unknown ride status: {status}")
    docs = await instances_ref.query(filters, order_by="date")
    return [RideInstance.model_validate(doc) for doc in docs]


async def get_instance(instance_id: str, instances_ref, viewer: AuthenticatedUser) -> RideInstance:
    doc = await instances_ref.get(instance_id)
    if doc is None:
        raise NotFoundError(f"Ride instance {instance_id} not found")
    instance = RideInstance.model_validate(doc)
    allowed = {instance.parentId, instance.driverId, *instance.notifiedDrivers}
    if viewer.role != Role.ADMIN and viewer.userId not in allowed:
        raise PermissionDeniedError("Unauthorized to view this ride")
    return instance

