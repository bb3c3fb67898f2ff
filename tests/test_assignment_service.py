from datetime import date

import pytest

from errors import CapacityError, ConflictError, NotFoundError, ValidationError
from models import RideRequestStatus, RideType, Schedule
from notifier import Event
from services.assignment_service import assign_driver

MONDAY = date(2024, 1, 1)


@pytest.fixture
def pending(make_request, requests_ref):
    request = make_request()
    requests_ref.docs[request.requestId] = request.model_dump(mode="json")
    return request


async def assign(request_id, requests_ref, instances_ref, drivers_ref, notifier, driver_id="driver-1"):
    return await assign_driver(request_id, driver_id, requests_ref, instances_ref, drivers_ref, notifier, today=MONDAY)


@pytest.mark.asyncio
async def test_assignment_activates_request_and_generates_instances(
        pending, requests_ref, instances_ref, drivers_ref, online, make_driver, emitted):
    drivers_ref.docs["driver-1"] = make_driver("driver-1")

    result = await assign(pending.requestId, requests_ref, instances_ref, drivers_ref, online)

    assert result.status == RideRequestStatus.ACTIVE
    assert result.instancesCreated == 5
    stored = requests_ref.docs[pending.requestId]
    assert stored["status"] == "ACTIVE"
    assert stored["assignedDriverId"] == "driver-1"
    assert drivers_ref.docs["driver-1"]["assignedStudents"] == 1
    assert sorted(doc["date"] for doc in instances_ref.docs.values()) == [
        "2024-01-01", "2024-01-03", "2024-01-08", "2024-01-10", "2024-01-15",
    ]
    assert all(doc["driverId"] == "driver-1" for doc in instances_ref.docs.values())

    [(driver_payload, driver_target)] = emitted(Event.RECURRING_TRIP_ASSIGNED)
    assert driver_target == "driver-1"
    assert driver_payload["instancesCreated"] == 5
    [(parent_payload, parent_target)] = emitted(Event.DRIVER_ASSIGNED)
    assert parent_target == "parent-1"
    assert parent_payload["vehicleInfo"]["registration"] == "CA 123-456"


@pytest.mark.asyncio
async def test_second_assignment_is_a_conflict(pending, requests_ref, instances_ref, drivers_ref, notifier, make_driver):
    drivers_ref.docs["driver-1"] = make_driver("driver-1")
    await assign(pending.requestId, requests_ref, instances_ref, drivers_ref, notifier)

    with pytest.raises(ConflictError) as exc:
        await assign(pending.requestId, requests_ref, instances_ref, drivers_ref, notifier)

    assert "already assigned" in exc.value.message
    assert drivers_ref.docs["driver-1"]["assignedStudents"] == 1


@pytest.mark.asyncio
async def test_full_vehicle_is_rejected_without_changes(
        pending, requests_ref, instances_ref, drivers_ref, notifier, make_driver, sio):
    drivers_ref.docs["driver-1"] = make_driver("driver-1", vehicleSeats=2, assignedStudents=2)

    with pytest.raises(CapacityError):
        await assign(pending.requestId, requests_ref, instances_ref, drivers_ref, notifier)

    assert drivers_ref.docs["driver-1"]["assignedStudents"] == 2
    assert requests_ref.docs[pending.requestId]["status"] == "PENDING"
    assert instances_ref.docs == {}
    sio.emit.assert_not_awaited()


@pytest.mark.asyncio
async def test_driver_without_seat_count_is_not_capacity_checked(
        pending, requests_ref, instances_ref, drivers_ref, notifier, make_driver):
    drivers_ref.docs["driver-1"] = make_driver("driver-1", vehicleSeats=None, assignedStudents=12)

    result = await assign(pending.requestId, requests_ref, instances_ref, drivers_ref, notifier)

    assert result.status == RideRequestStatus.ACTIVE
    assert drivers_ref.docs["driver-1"]["assignedStudents"] == 12


@pytest.mark.asyncio
async def test_unverified_driver_is_rejected(pending, requests_ref, instances_ref, drivers_ref, notifier, make_driver):
    drivers_ref.docs["driver-1"] = make_driver("driver-1", isVerified=False)
    with pytest.raises(ValidationError):
        await assign(pending.requestId, requests_ref, instances_ref, drivers_ref, notifier)
    assert requests_ref.docs[pending.requestId]["status"] == "PENDING"


@pytest.mark.asyncio
async def test_missing_request_or_driver(pending, requests_ref, instances_ref, drivers_ref, notifier):
    with pytest.raises(NotFoundError):
        await assign("req_missing", requests_ref, instances_ref, drivers_ref, notifier)
    with pytest.raises(NotFoundError):
        await assign(pending.requestId, requests_ref, instances_ref, drivers_ref, notifier)


@pytest.mark.asyncio
async def test_once_off_requests_are_not_assigned_by_admin(
        make_request, requests_ref, instances_ref, drivers_ref, notifier, make_driver):
    request = make_request(RideType.ONCE_OFF, schedule=Schedule(dates=[MONDAY], startDate=MONDAY, endDate=MONDAY))
    requests_ref.docs[request.requestId] = request.model_dump(mode="json")
    drivers_ref.docs["driver-1"] = make_driver("driver-1")

    with pytest.raises(ValidationError):
        await assign(request.requestId, requests_ref, instances_ref, drivers_ref, notifier)


@pytest.mark.asyncio
async def test_cancelled_request_cannot_be_assigned(
        make_request, requests_ref, instances_ref, drivers_ref, notifier, make_driver):
    request = make_request(status="CANCELLED")
    requests_ref.docs[request.requestId] = request.model_dump(mode="json")
    drivers_ref.docs["driver-1"] = make_driver("driver-1")

    with pytest.raises(ConflictError) as exc:
        await assign(request.requestId, requests_ref, instances_ref, drivers_ref, notifier)
    assert exc.value.detail["currentStatus"] == "CANCELLED"
