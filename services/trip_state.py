"""Lifecycle of a direct trip.

    pending --accept--> accepted --start--> in-progress --complete--> completed
    pending --decline--> declined
    pending --pass--> pending            (one notified driver drops out of a broadcast)
    pending|accepted|in-progress --cancel--> cancelled

Each transition is one conditional write on the trip's ``status`` and
``version``; of several concurrent callers exactly one succeeds and the rest
get a ``ConflictError``. Notifications go out only after the write.
"""
from datetime import datetime
import logging

from errors import ConflictError, NotFoundError, PermissionDeniedError
from models import (
    AuthenticatedUser, CancelledBy, LocationUpdate, Role, TrackingPoint, Trip, TripStatus,
)
from notifier import Event

logger = logging.getLogger(__name__)

TRIP_TRANSITIONS = {
    "accept": ((TripStatus.PENDING,), TripStatus.ACCEPTED),
    "decline": ((TripStatus.PENDING,), TripStatus.DECLINED),
    "pass": ((TripStatus.PENDING,), TripStatus.PENDING),
    "start": ((TripStatus.ACCEPTED,), TripStatus.IN_PROGRESS),
    "complete": ((TripStatus.IN_PROGRESS,), TripStatus.COMPLETED),
    "cancel": ((TripStatus.PENDING, TripStatus.ACCEPTED, TripStatus.IN_PROGRESS), TripStatus.CANCELLED),
}

CANCELLED_BY_ROLE = {
    Role.PARENT: CancelledBy.PARENT,
    Role.DRIVER: CancelledBy.DRIVER,
    Role.ADMIN: CancelledBy.ADMIN,
}


def next_trip_status(current: TripStatus, action: str) -> TripStatus:
    allowed, target = TRIP_TRANSITIONS[action]
    if current not in allowed:
        raise ConflictError(f"Cannot {action} trip with status: {current.value}", current_status=current)
    return target


async def load_trip(trip_id: str, trips_ref) -> Trip:
    doc = await trips_ref.get(trip_id)
    if doc is None:
        raise NotFoundError(f"Trip {trip_id} not found")
    return Trip.model_validate(doc)


def _ensure_driver(trip: Trip, actor: AuthenticatedUser):
    if trip.driverId is not None:
        if actor.userId != trip.driverId:
            raise PermissionDeniedError("Only the trip's driver can do this")
    elif actor.userId not in trip.notifiedDrivers:
        raise PermissionDeniedError("This trip was not offered to you")


async def _commit(trip: Trip, action: str, trips_ref, **fields) -> Trip:
    target = next_trip_status(trip.status, action)
    changed = trip.model_copy(update={
        "status": target,
        "updatedAt": datetime.now(),
        "version": trip.version + 1,
        **fields,
    })
    doc = changed.model_dump(mode="json")
    updates = {key: doc[key] for key in ("status", "updatedAt", "version", *fields)}

    applied, current = await trips_ref.compare_and_set(
        trip.tripId, {"status": trip.status.value, "version": trip.version}, updates
    )
    if current is None:
        raise NotFoundError(f"Trip {trip.tripId} not found")
    if not applied:
        status = current.get("status")
        raise ConflictError(f"Cannot {action} trip with status: {status}", current_status=status)

    logger.info(f"Trip {trip.tripId}: {trip.status.value} -> {target.value} ({action})")
    return Trip.model_validate(current)


async def accept_trip(trip_id: str, actor: AuthenticatedUser, trips_ref, notifier) -> Trip:
    """Driver accepts; on a broadcast trip the first notified driver is bound"""
    trip = await load_trip(trip_id, trips_ref)
    next_trip_status(trip.status, "accept")
    _ensure_driver(trip, actor)

    trip = await _commit(trip, "accept", trips_ref, driverId=actor.userId, acceptedAt=datetime.now())

    await notifier.emit_to_trip(trip.tripId, Event.TRIP_ACCEPTED, {
        "tripId": trip.tripId,
        "driverId": trip.driverId,
        "driverName": trip.driverName,
        "driverVehicle": trip.driverVehicle,
        "pickupTime": trip.pickupTime,
        "date": trip.date,
    }, user_ids=[trip.parentId])
    return trip


async def decline_trip(trip_id: str, actor: AuthenticatedUser, reason: str | None, trips_ref, notifier) -> Trip:
    """A bound driver declines the trip; on a broadcast trip only the decliner drops out"""
    trip = await load_trip(trip_id, trips_ref)
    next_trip_status(trip.status, "decline")
    _ensure_driver(trip, actor)

    if trip.driverId is None:
        remaining = [driver_id for driver_id in trip.notifiedDrivers if driver_id != actor.userId]
        if remaining:
            return await _commit(trip, "pass", trips_ref, notifiedDrivers=remaining)
        trip = await _commit(
            trip, "decline", trips_ref, notifiedDrivers=[],
            declinedAt=datetime.now(), declineReason=reason or "No driver accepted the trip",
        )
    else:
        trip = await _commit(
            trip, "decline", trips_ref,
            declinedAt=datetime.now(), declineReason=reason or "Driver declined",
        )

    await notifier.emit_to_trip(trip.tripId, Event.TRIP_DECLINED, {
        "tripId": trip.tripId,
        "driverName": trip.driverName,
        "reason": trip.declineReason,
    }, user_ids=[trip.parentId])
    return trip


async def start_trip(trip_id: str, actor: AuthenticatedUser, trips_ref, notifier,
                     latitude: float | None = None, longitude: float | None = None,
                     location_cache=None) -> Trip:
    trip = await load_trip(trip_id, trips_ref)
    next_trip_status(trip.status, "start")
    _ensure_driver(trip, actor)

    fields = {"startedAt": datetime.now()}
    if latitude is not None and longitude is not None:
        fields["currentLocation"] = TrackingPoint(latitude=latitude, longitude=longitude)
        if location_cache is not None:
            location_cache.update(actor.userId, latitude, longitude)

    trip = await _commit(trip, "start", trips_ref, **fields)

    await notifier.emit_to_trip(trip.tripId, Event.TRIP_STARTED, {
        "tripId": trip.tripId,
        "driverName": trip.driverName,
        "startedAt": trip.startedAt,
        "currentLocation": trip.currentLocation,
    }, user_ids=[trip.parentId])
    return trip


async def complete_trip(trip_id: str, actor: AuthenticatedUser, trips_ref, drivers_ref, notifier,
                        actual_fare: float | None = None, notes: str | None = None) -> Trip:
    """Complete the trip and credit the final fare to the driver's earnings"""
    trip = await load_trip(trip_id, trips_ref)
    next_trip_status(trip.status, "complete")
    _ensure_driver(trip, actor)

    fields = {"completedAt": datetime.now()}
    if actual_fare is not None:
        fields["actualFare"] = actual_fare
    if notes:
        fields["completionNotes"] = notes

    trip = await _commit(trip, "complete", trips_ref, **fields)

    final_fare = trip.actualFare if trip.actualFare is not None else trip.fare
    await drivers_ref.increment(trip.driverId, "totalEarnings", final_fare)
    logger.info(f"Credited {final_fare} to driver {trip.driverId} for trip {trip.tripId}")

    await notifier.emit_to_trip(trip.tripId, Event.TRIP_COMPLETED, {
        "tripId": trip.tripId,
        "driverName": trip.driverName,
        "completedAt": trip.completedAt,
        "fare": final_fare,
    }, user_ids=[trip.parentId])
    return trip


async def cancel_trip(trip_id: str, actor: AuthenticatedUser | None, trips_ref, notifier,
                      reason: str | None = None, cancelled_by: CancelledBy | None = None) -> Trip:
    """Cancel from any non-terminal status. ``actor=None`` means a system cancellation."""
    trip = await load_trip(trip_id, trips_ref)
    next_trip_status(trip.status, "cancel")

    if actor is None:
        cancelled_by = CancelledBy.SYSTEM
    elif actor.role == Role.ADMIN:
        cancelled_by = cancelled_by or CancelledBy.ADMIN
    elif actor.userId in (trip.parentId, trip.driverId):
        cancelled_by = CANCELLED_BY_ROLE[actor.role]
    else:
        raise PermissionDeniedError("Only the trip's parent, driver or an admin can cancel it")

    trip = await _commit(
        trip, "cancel", trips_ref,
        cancelledAt=datetime.now(),
        cancelledBy=cancelled_by,
        cancellationReason=reason or "User cancelled",
    )

    await notifier.emit_to_trip(trip.tripId, Event.TRIP_CANCELLED, {
        "tripId": trip.tripId,
        "reason": trip.cancellationReason,
        "cancelledBy": trip.cancelledBy,
    }, user_ids=[trip.parentId, trip.driverId] if trip.driverId else [trip.parentId, *trip.notifiedDrivers])
    return trip


async def update_trip_location(trip_id: str, actor: AuthenticatedUser, update: LocationUpdate,
                               trips_ref, notifier, location_cache=None) -> TrackingPoint:
    """Record the driver's position on an in-progress trip and fan it out to the trip room"""
    trip = await load_trip(trip_id, trips_ref)
    if trip.status != TripStatus.IN_PROGRESS:
        raise ConflictError("Trip is not in progress", current_status=trip.status)
    _ensure_driver(trip, actor)

    point = TrackingPoint(
        latitude=update.latitude, longitude=update.longitude,
        speed=update.speed, heading=update.heading,
    )
    applied, current = await trips_ref.compare_and_set(
        trip.tripId,
        {"status": TripStatus.IN_PROGRESS.value},
        {"currentLocation": point.model_dump(mode="json"), "updatedAt": datetime.now().isoformat()},
    )
    if current is None:
        raise NotFoundError(f"Trip {trip_id} not found")
    if not applied:
        raise ConflictError("Trip is not in progress", current_status=current.get("status"))

    if location_cache is not None:
        location_cache.update(actor.userId, update.latitude, update.longitude)

    await notifier.emit_to_trip(trip.tripId, Event.LOCATION_UPDATE, {
        "tripId": trip.tripId,
        "location": point,
    })
    return point
