from datetime import date, datetime
import logging

from errors import CapacityError, ConflictError, NotFoundError, ValidationError
from models import AssignmentResult, Driver, RECURRING_TYPES, RideRequest, RideRequestStatus
from notifier import Event
from .instance_generator import DAYS_AHEAD, generate_instances_for_request

logger = logging.getLogger(__name__)

SEAT_RESERVATION_ATTEMPTS = 3


async def load_driver(driver_id: str, drivers_ref) -> Driver:
    doc = await drivers_ref.get(driver_id)
    if doc is None:
        raise NotFoundError("Driver not found")
    return Driver.model_validate(doc)


async def reserve_seat(driver_id: str, drivers_ref) -> Driver:
    """Take one seat in the driver's vehicle for a recurring passenger.

    Drivers without a known seat count are not capacity checked. The counter
    is only written while it still holds the value the check was made on.
    """
    for _ in range(SEAT_RESERVATION_ATTEMPTS):
        driver = await load_driver(driver_id, drivers_ref)
        if driver.vehicleSeats is None:
            return driver
        if driver.assignedStudents >= driver.vehicleSeats:
            raise CapacityError(
                f"Driver has no free seats ({driver.assignedStudents}/{driver.vehicleSeats})",
                assignedStudents=driver.assignedStudents, vehicleSeats=driver.vehicleSeats,
            )
        applied, current = await drivers_ref.compare_and_set(
            driver_id,
            {"assignedStudents": driver.assignedStudents},
            {"assignedStudents": driver.assignedStudents + 1},
        )
        if current is None:
            raise NotFoundError("Driver not found")
        if applied:
            return Driver.model_validate(current)
    raise ConflictError("Driver capacity is changing, please retry")


async def release_seat(driver_id: str, drivers_ref) -> Driver | None:
    """Give back a seat taken by ``reserve_seat``.

    Nothing is written for drivers without a seat count, and the counter never
    drops below zero.
    """
    for _ in range(SEAT_RESERVATION_ATTEMPTS):
        doc = await drivers_ref.get(driver_id)
        if doc is None:
            logger.warning(f"Driver {driver_id} not found while releasing a seat")
            return None
        driver = Driver.model_validate(doc)
        if driver.vehicleSeats is None or driver.assignedStudents <= 0:
            return driver
        applied, current = await drivers_ref.compare_and_set(
            driver_id,
            {"assignedStudents": driver.assignedStudents},
            {"assignedStudents": driver.assignedStudents - 1},
        )
        if applied:
            return Driver.model_validate(current)
    raise ConflictError("Driver capacity is changing, please retry")


async def assign_driver(request_id: str, driver_id: str, requests_ref, instances_ref, drivers_ref, notifier,
                        today: date | None = None, days_ahead: int = DAYS_AHEAD) -> AssignmentResult:
    """Bind a verified driver to a pending recurring request and schedule its next rides"""
    doc = await requests_ref.get(request_id)
    if doc is None:
        raise NotFoundError("Ride request not found")
    request = RideRequest.model_validate(doc)

    if request.type not in RECURRING_TYPES:
        raise ValidationError("Only weekly or monthly requests are assigned by an admin")
    if request.status == RideRequestStatus.ACTIVE and request.assignedDriverId:
        raise ConflictError("This ride request is already assigned to a driver", current_status=request.status)
    if request.status != RideRequestStatus.PENDING:
        raise ConflictError(f"Cannot assign a driver to a request with status: {request.status.value}",
                            current_status=request.status)

    driver = await load_driver(driver_id, drivers_ref)
    if not driver.isVerified:
        raise ValidationError("Driver is not verified")

    driver = await reserve_seat(driver_id, drivers_ref)

    applied, current = await requests_ref.compare_and_set(
        request_id,
        {"status": RideRequestStatus.PENDING.value, "version": request.version},
        {"status": RideRequestStatus.ACTIVE.value, "assignedDriverId": driver_id,
         "version": request.version + 1, "updatedAt": datetime.now().isoformat()},
    )
    if not applied:
        await release_seat(driver_id, drivers_ref)
        status = current.get("status") if current else None
        raise ConflictError("This ride request is already assigned to a driver", current_status=status)

    request = RideRequest.model_validate(current)
    logger.info(f"Assigned driver {driver_id} to ride request {request_id}")

    instances = await generate_instances_for_request(request, instances_ref, today=today, days_ahead=days_ahead)

    await notifier.emit_to_user(driver_id, Event.RECURRING_TRIP_ASSIGNED, {
        "rideRequestId": request.requestId,
        "type": request.type,
        "childName": request.childName,
        "schoolName": request.schoolName,
        "pickupLocation": request.pickupLocation.address,
        "dropoffLocation": request.dropoffLocation.address,
        "pickupTime": request.pickupTime,
        "schedule": request.schedule,
        "instancesCreated": len(instances),
    })
    await notifier.emit_to_user(request.parentId, Event.DRIVER_ASSIGNED, {
        "rideRequestId": request.requestId,
        "driverId": driver_id,
        "driverName": driver.name,
        "driverPhone": driver.phoneNumber,
        "vehicleInfo": {
            "model": driver.vehicleModel,
            "registration": driver.vehicleRegistration,
            "seats": driver.vehicleSeats,
        },
    })

    return AssignmentResult(
        rideRequestId=request.requestId,
        driverId=driver_id,
        instancesCreated=len(instances),
        status=request.status,
    )
