from dataclasses import dataclass, field
from datetime import date, timedelta
import asyncio
import logging

from errors import RideServiceError
from models import (
    RECURRING_TYPES, RideInstance, RideInstanceStatus, RideRequest, RideRequestStatus, instance_id_for,
)
from .instance_state import miss_instance
from .recurrence import expand, is_school_day

logger = logging.getLogger(__name__)

DAYS_AHEAD = 14


@dataclass
class GenerationReport:
    requests: int = 0
    created: int = 0
    failed: list[str] = field(default_factory=list)
    missed: int = 0


def build_instance(request: RideRequest, day: date) -> RideInstance:
    """Snapshot of the request's current details for one day"""
    return RideInstance(
        instanceId=instance_id_for(request.requestId, day),
        rideRequestId=request.requestId,
        date=day,
        pickupTime=request.pickupTime,
        driverId=request.assignedDriverId,
        childId=request.childId,
        parentId=request.parentId,
        status=RideInstanceStatus.SCHEDULED,
        pickupLocation=request.pickupLocation,
        dropoffLocation=request.dropoffLocation,
        activity=request.activity,
        instructions=request.instructions,
    )


async def generate_instances_for_request(request: RideRequest, instances_ref, today: date | None = None,
                                         days_ahead: int = DAYS_AHEAD,
                                         school_days_only: bool = False) -> list[RideInstance]:
    """Create the missing instances of ``request`` for ``[today, today + days_ahead]``"""
    today = today or date.today()
    dates = expand(request.type, request.schedule, today, today + timedelta(days=days_ahead))
    if school_days_only:
        dates = [day for day in dates if is_school_day(day)]

    created = []
    for day in dates:
        instance = build_instance(request, day)
        if await instances_ref.create(instance.instanceId, instance.model_dump(mode="json")):
            created.append(instance)
    logger.info(f"Generated {len(created)} of {len(dates)} instances for request {request.requestId}")
    return created


async def mark_missed_instances(instances_ref, notifier, today: date | None = None) -> int:
    """Move rides dated before ``today`` that never started to MISSED"""
    today = today or date.today()
    docs = await instances_ref.query([
        ("status", "in", [RideInstanceStatus.SCHEDULED.value, RideInstanceStatus.ACCEPTED.value]),
        ("date", "<", today.isoformat()),
    ])
    missed = 0
    for doc in docs:
        try:
            await miss_instance(doc["instanceId"], instances_ref, notifier)
            missed += 1
        except RideServiceError as exc:
            logger.warning(f"Could not mark instance {doc.get('instanceId')} as missed: {exc}")
        except Exception:
            logger.exception(f"Error marking instance {doc.get('instanceId')} as missed")
    return missed


async def run_generation(requests_ref, instances_ref, notifier=None, today: date | None = None,
                         days_ahead: int = DAYS_AHEAD, school_days_only: bool = True) -> GenerationReport:
    """One pass over every active recurring request.

    A request that fails is logged and skipped; the others are still processed.
    """
    today = today or date.today()
    report = GenerationReport()

    docs = await requests_ref.query([
        ("type", "in", [ride_type.value for ride_type in RECURRING_TYPES]),
        ("status", "==", RideRequestStatus.ACTIVE.value),
    ])
    logger.info(f"Found {len(docs)} active recurring requests")

    for doc in docs:
        request_id = doc.get("requestId")
        if not doc.get("assignedDriverId"):
            continue
        report.requests += 1
        try:
            request = RideRequest.model_validate(doc)
            created = await generate_instances_for_request(
                request, instances_ref, today=today, days_ahead=days_ahead, school_days_only=school_days_only
            )
            report.created += len(created)
        except Exception:
            logger.exception(f"Error generating instances for request {request_id}")
            report.failed.append(request_id)

    if notifier is not None:
        report.missed = await mark_missed_instances(instances_ref, notifier, today)

    logger.info(
        f"Instance generation complete: {report.created} created for {report.requests} requests, "
        f"{len(report.failed)} failed, {report.missed} marked missed"
    )
    return report


async def run_generation_forever(state, interval_seconds: int, days_ahead: int, school_days_only: bool):
    """Background loop started from the app lifespan"""
    while True:
        try:
            await run_generation(
                state.requests_ref, state.instances_ref, state.notifier,
                days_ahead=days_ahead, school_days_only=school_days_only,
            )
            state.location_cache.purge_stale()
        except Exception:
            logger.exception("Scheduled instance generation failed")
        await asyncio.sleep(interval_seconds)
