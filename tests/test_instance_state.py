from datetime import date
import asyncio

import pytest

from errors import ConflictError, PermissionDeniedError
from models import AuthenticatedUser, RideInstance, RideInstanceStatus, RideType, Role, Schedule
from notifier import Event
from services.instance_generator import build_instance
from services.instance_state import (
    INSTANCE_TRANSITIONS, accept_instance, cancel_instance, complete_instance, decline_instance, miss_instance,
    next_instance_status, start_instance,
)

DAY = date(2024, 1, 8)


@pytest.fixture
def once_off(make_request, requests_ref):
    request = make_request(RideType.ONCE_OFF, schedule=Schedule(dates=[DAY], startDate=DAY, endDate=DAY))
    requests_ref.docs[request.requestId] = request.model_dump(mode="json")
    return request


def seed_instance(instances_ref, request, status=RideInstanceStatus.SCHEDULED, **fields):
    instance = build_instance(request, DAY).model_copy(update={"status": status, **fields})
    instances_ref.docs[instance.instanceId] = instance.model_dump(mode="json")
    return instance.instanceId


@pytest.mark.parametrize("status", list(RideInstanceStatus))
@pytest.mark.parametrize("action", list(INSTANCE_TRANSITIONS))
def test_instance_transition_table_is_exhaustive(status, action):
    allowed, target = INSTANCE_TRANSITIONS[action]
    if status in allowed:
        assert next_instance_status(status, action) == target
    else:
        with pytest.raises(ConflictError):
            next_instance_status(status, action)


@pytest.mark.asyncio
async def test_accept_activates_once_off_request(instances_ref, requests_ref, online, once_off, driver, emitted):
    instance_id = seed_instance(instances_ref, once_off, notifiedDrivers=["driver-1", "driver-2"])

    instance = await accept_instance(instance_id, driver, instances_ref, requests_ref, online)

    assert instance.status == RideInstanceStatus.ACCEPTED
    assert instance.driverId == "driver-1"
    request = requests_ref.docs[once_off.requestId]
    assert request["status"] == "ACTIVE"
    assert request["assignedDriverId"] == "driver-1"
    [(payload, target)] = emitted(Event.TRIP_ACCEPTED)
    assert payload["rideInstanceId"] == instance_id
    assert "parent-1" in target


@pytest.mark.asyncio
async def test_concurrent_accepts_bind_exactly_one_driver(instances_ref, requests_ref, notifier, once_off):
    drivers = [AuthenticatedUser(userId=f"driver-{n}", role=Role.DRIVER) for n in range(1, 6)]
    instance_id = seed_instance(instances_ref, once_off, notifiedDrivers=[d.userId for d in drivers])

    results = await asyncio.gather(
        *(accept_instance(instance_id, d, instances_ref, requests_ref, notifier) for d in drivers),
        return_exceptions=True,
    )

    winners = [r for r in results if isinstance(r, RideInstance)]
    losers = [r for r in results if isinstance(r, ConflictError)]
    assert len(winners) == 1
    assert len(losers) == len(drivers) - 1
    stored = instances_ref.docs[instance_id]
    assert stored["status"] == "ACCEPTED"
    assert stored["driverId"] == winners[0].driverId
    request = requests_ref.docs[once_off.requestId]
    assert request["status"] == "ACTIVE"
    assert request["assignedDriverId"] == winners[0].driverId


@pytest.mark.asyncio
async def test_full_lifecycle_completes_once_off_request(instances_ref, requests_ref, notifier, once_off, driver):
    instance_id = seed_instance(instances_ref, once_off, notifiedDrivers=["driver-1"])

    await accept_instance(instance_id, driver, instances_ref, requests_ref, notifier)
    await start_instance(instance_id, driver, instances_ref, notifier)
    instance = await complete_instance(instance_id, driver, instances_ref, requests_ref, notifier)

    assert instance.status == RideInstanceStatus.COMPLETED
    assert instance.startedAt is not None
    assert instance.completedAt is not None
    assert instance.version == 3
    assert requests_ref.docs[once_off.requestId]["status"] == "COMPLETED"


@pytest.mark.asyncio
async def test_decline_removes_driver_and_tells_parent_when_nobody_is_left(
        instances_ref, online, once_off, driver, other_driver, emitted):
    instance_id = seed_instance(instances_ref, once_off, notifiedDrivers=["driver-1", "driver-2"])

    instance = await decline_instance(instance_id, driver, None, instances_ref, online)
    assert instance.status == RideInstanceStatus.SCHEDULED
    assert instance.notifiedDrivers == ["driver-2"]
    assert emitted(Event.TRIP_DECLINED) == []

    instance = await decline_instance(instance_id, other_driver, "Too far", instances_ref, online)
    assert instance.notifiedDrivers == []
    [(payload, target)] = emitted(Event.TRIP_DECLINED)
    assert payload["reason"] == "Too far"
    assert target == "parent-1"


@pytest.mark.asyncio
async def test_assigned_instance_cannot_be_declined(instances_ref, notifier, make_request, driver):
    request = make_request(status="ACTIVE", assignedDriverId="driver-1")
    instance_id = seed_instance(instances_ref, request)

    with pytest.raises(PermissionDeniedError):
        await decline_instance(instance_id, driver, None, instances_ref, notifier)


@pytest.mark.asyncio
async def test_other_driver_cannot_start_assigned_instance(instances_ref, notifier, make_request, other_driver):
    request = make_request(status="ACTIVE", assignedDriverId="driver-1")
    instance_id = seed_instance(instances_ref, request, status=RideInstanceStatus.ACCEPTED)

    with pytest.raises(PermissionDeniedError):
        await start_instance(instance_id, other_driver, instances_ref, notifier)


@pytest.mark.asyncio
async def test_miss_only_from_scheduled_or_accepted(instances_ref, notifier, make_request):
    request = make_request(status="ACTIVE", assignedDriverId="driver-1")
    instance_id = seed_instance(instances_ref, request, status=RideInstanceStatus.IN_PROGRESS)

    with pytest.raises(ConflictError):
        await miss_instance(instance_id, instances_ref, notifier)

    instances_ref.docs[instance_id]["status"] = "ACCEPTED"
    instance = await miss_instance(instance_id, instances_ref, notifier)
    assert instance.status == RideInstanceStatus.MISSED
    assert instance.missedAt is not None


@pytest.mark.asyncio
async def test_cancel_by_parent(instances_ref, online, make_request, parent, emitted):
    request = make_request(status="ACTIVE", assignedDriverId="driver-1")
    instance_id = seed_instance(instances_ref, request)

    instance = await cancel_instance(instance_id, parent, instances_ref, online, reason="Holiday")

    assert instance.status == RideInstanceStatus.CANCELLED
    assert instance.cancellationReason == "Holiday"
    [(payload, target)] = emitted(Event.TRIP_CANCELLED)
    assert payload["cancelledBy"] == "parent"
    assert {"parent-1", "driver-1"} <= set(target)


@pytest.mark.asyncio
async def test_cancel_completed_instance_is_a_conflict(instances_ref, notifier, make_request, admin):
    request = make_request(status="ACTIVE", assignedDriverId="driver-1")
    instance_id = seed_instance(instances_ref, request, status=RideInstanceStatus.COMPLETED)

    with pytest.raises(ConflictError) as exc:
        await cancel_instance(instance_id, admin, instances_ref, notifier)
    assert exc.value.detail["currentStatus"] == "COMPLETED"
