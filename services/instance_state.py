"""Lifecycle of a dated ride instance.

    SCHEDULED --accept--> ACCEPTED --start--> IN_PROGRESS --complete--> COMPLETED
    SCHEDULED|ACCEPTED --miss--> MISSED
    SCHEDULED|ACCEPTED|IN_PROGRESS --cancel--> CANCELLED
    SCHEDULED --decline--> SCHEDULED   (drops the driver from notifiedDrivers)

Independent of the trip machine: no fares or earnings are involved here.
"""
from datetime import datetime
import logging

from errors import ConflictError, NotFoundError, PermissionDeniedError
from models import (
    AuthenticatedUser, RideInstance, RideInstanceStatus, RideRequest, RideRequestStatus, RideType, Role,
)
from notifier import Event

logger = logging.getLogger(__name__)

S = RideInstanceStatus

INSTANCE_TRANSITIONS = {
    "accept": ((S.SCHEDULED,), S.ACCEPTED),
    "decline": ((S.SCHEDULED,), S.SCHEDULED),
    "start": ((S.ACCEPTED,), S.IN_PROGRESS),
    "complete": ((S.IN_PROGRESS,), S.COMPLETED),
    "miss": ((S.SCHEDULED, S.ACCEPTED), S.MISSED),
    "cancel": ((S.SCHEDULED, S.ACCEPTED, S.IN_PROGRESS), S.CANCELLED),
}


def next_instance_status(current: RideInstanceStatus, action: str) -> RideInstanceStatus:
    allowed, target = INSTANCE_TRANSITIONS[action]
    if current not in allowed:
        raise ConflictError(f"Cannot {action} ride with status: {current.value}", current_status=current)
    return target


async def load_instance(instance_id: str, instances_ref) -> RideInstance:
    doc = await instances_ref.get(instance_id)
    if doc is None:
        raise NotFoundError(f"Ride instance {instance_id} not found")
    return RideInstance.model_validate(doc)


def _ensure_driver(instance: RideInstance, actor: AuthenticatedUser):
    if instance.driverId is not None:
        if actor.userId != instance.driverId:
            raise PermissionDeniedError("Only the ride's driver can do this")
    elif actor.userId not in instance.notifiedDrivers:
        raise PermissionDeniedError("This ride was not offered to you")


async def _commit(instance: RideInstance, action: str, instances_ref, **fields) -> RideInstance:
    target = next_instance_status(instance.status, action)
    changed = instance.model_copy(update={
        "status": target,
        "updatedAt": datetime.now(),
        "version": instance.version + 1,
        **fields,
    })
    doc = changed.model_dump(mode="json")
    updates = {key: doc[key] for key in ("status", "updatedAt", "version", *fields)}

    applied, current = await instances_ref.compare_and_set(
        instance.instanceId, {"status": instance.status.value, "version": instance.version}, updates
    )
    if current is None:
        raise NotFoundError(f"Ride instance {instance.instanceId} not found")
    if not applied:
        status = current.get("status")
        raise ConflictError(f"Cannot {action} ride with status: {status}", current_status=status)

    logger.info(f"Ride instance {instance.instanceId}: {instance.status.value} -> {target.value} ({action})")
    return RideInstance.model_validate(current)


async def _follow_once_off_request(instance: RideInstance, requests_ref, from_status, to_status, **fields):
    """Keep a once-off request's status in step with its single instance"""
    doc = await requests_ref.get(instance.rideRequestId)
    if doc is None:
        return
    request = RideRequest.model_validate(doc)
    if request.type != RideType.ONCE_OFF or request.status != from_status:
        return
    applied, _ = await requests_ref.compare_and_set(
        request.requestId,
        {"status": from_status.value, "version": request.version},
        {"status": to_status.value, "version": request.version + 1,
         "updatedAt": datetime.now().isoformat(), **fields},
    )
    if not applied:
        logger.info(f"Once-off request {request.requestId} changed concurrently; left as is")


async def accept_instance(instance_id: str, actor: AuthenticatedUser, instances_ref, requests_ref, notifier) -> RideInstance:
    instance = await load_instance(instance_id, instances_ref)
    next_instance_status(instance.status, "accept")
    _ensure_driver(instance, actor)

    instance = await _commit(instance, "accept", instances_ref, driverId=actor.userId, acceptedAt=datetime.now())
    await _follow_once_off_request(
        instance, requests_ref, RideRequestStatus.PENDING, RideRequestStatus.ACTIVE,
        assignedDriverId=actor.userId,
    )

    await notifier.emit_to_trip(instance.instanceId, Event.TRIP_ACCEPTED, {
        "rideInstanceId": instance.instanceId,
        "rideRequestId": instance.rideRequestId,
        "driverId": instance.driverId,
        "pickupTime": instance.pickupTime,
        "date": instance.date,
    }, user_ids=[instance.parentId])
    return instance


async def decline_instance(instance_id: str, actor: AuthenticatedUser, reason: str | None,
                           instances_ref, notifier) -> RideInstance:
    """A notified driver passes on a broadcast ride; the parent hears once nobody is left"""
    instance = await load_instance(instance_id, instances_ref)
    next_instance_status(instance.status, "decline")
    if instance.driverId is not None:
        raise PermissionDeniedError("Assigned rides can only be cancelled")
    _ensure_driver(instance, actor)

    remaining = [driver_id for driver_id in instance.notifiedDrivers if driver_id != actor.userId]
    instance = await _commit(instance, "decline", instances_ref, notifiedDrivers=remaining)

    if not remaining:
        await notifier.emit_to_user(instance.parentId, Event.TRIP_DECLINED, {
            "rideInstanceId": instance.instanceId,
            "rideRequestId": instance.rideRequestId,
            "reason": reason or "Driver declined",
        })
    return instance


async def start_instance(instance_id: str, actor: AuthenticatedUser, instances_ref, notifier) -> RideInstance:
    instance = await load_instance(instance_id, instances_ref)
    next_instance_status(instance.status, "start")
    _ensure_driver(instance, actor)

    instance = await _commit(instance, "start", instances_ref, startedAt=datetime.now())

    await notifier.emit_to_trip(instance.instanceId, Event.TRIP_STARTED, {
        "rideInstanceId": instance.instanceId,
        "driverId": instance.driverId,
        "startedAt": instance.startedAt,
    }, user_ids=[instance.parentId])
    return instance


async def complete_instance(instance_id: str, actor: AuthenticatedUser, instances_ref, requests_ref,
                            notifier) -> RideInstance:
    instance = await load_instance(instance_id, instances_ref)
    next_instance_status(instance.status, "complete")
    _ensure_driver(instance, actor)

    instance = await _commit(instance, "complete", instances_ref, completedAt=datetime.now())
    await _follow_once_off_request(instance, requests_ref, RideRequestStatus.ACTIVE, RideRequestStatus.COMPLETED)

    await notifier.emit_to_trip(instance.instanceId, Event.TRIP_COMPLETED, {
        "rideInstanceId": instance.instanceId,
        "driverId": instance.driverId,
        "completedAt": instance.completedAt,
    }, user_ids=[instance.parentId])
    return instance


async def miss_instance(instance_id: str, instances_ref, notifier) -> RideInstance:
    """System transition for rides whose date passed without being started"""
    instance = await load_instance(instance_id, instances_ref)
    instance = await _commit(instance, "miss", instances_ref, missedAt=datetime.now())

    await notifier.emit_to_trip(instance.instanceId, Event.TRIP_MISSED, {
        "rideInstanceId": instance.instanceId,
        "date": instance.date,
    }, user_ids=[instance.parentId, instance.driverId])
    return instance


async def cancel_instance(instance_id: str, actor: AuthenticatedUser | None, instances_ref, notifier,
                          reason: str | None = None) -> RideInstance:
    instance = await load_instance(instance_id, instances_ref)
    next_instance_status(instance.status, "cancel")
    if actor is not None and actor.role != Role.ADMIN and actor.userId not in (instance.parentId, instance.driverId):
        raise PermissionDeniedError("Only the ride's parent, driver or an admin can cancel it")

    instance = await _commit(
        instance, "cancel", instances_ref,
        cancelledAt=datetime.now(), cancellationReason=reason or "User cancelled",
    )

    recipients = [instance.parentId, instance.driverId] if instance.driverId else [instance.parentId, *instance.notifiedDrivers]
    await notifier.emit_to_trip(instance.instanceId, Event.TRIP_CANCELLED, {
        "rideInstanceId": instance.instanceId,
        "reason": instance.cancellationReason,
        "cancelledBy": actor.role.value if actor else "system",
    }, user_ids=recipients)
    return instance
