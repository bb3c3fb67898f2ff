from datetime import date
from unittest.mock import AsyncMock

import pytest

from errors import ConflictError, PermissionDeniedError, ValidationError
from models import AuthenticatedUser, Location, RideRequestCreate, RideRequestStatus, RideType, Role
from notifier import Event
from services.instance_generator import build_instance
from services.request_service import (
    build_schedule, cancel_ride_request, create_ride_request, get_ride_request, list_pending_requests,
    parse_ride_type,
)

START = date(2024, 1, 8)


def body(trip_type="once-off", **fields):
    values = {
        "tripType": trip_type,
        "date": START,
        "pickupTime": "07:15",
        "pickupLocation": {"address": "12 Main Rd", "latitude": 0, "longitude": 0},
        "dropoffLocation": {"address": "School Ln", "latitude": 0.05, "longitude": 0.05},
        "childId": "child-1",
        "childName": "Ayanda",
        "school": "Rondebosch Primary",
    }
    values.update(fields)
    return RideRequestCreate(**values)


async def create(request_body, requests_ref, instances_ref, drivers_ref, notifier, **kwargs):
    return await create_ride_request(request_body, "parent-1", requests_ref, instances_ref, drivers_ref, notifier,
                                     **kwargs)


@pytest.mark.parametrize("value, expected", [
    ("once-off", RideType.ONCE_OFF), ("Weekly", RideType.WEEKLY), ("MONTHLY", RideType.MONTHLY),
])
def test_parse_ride_type(value, expected):
    assert parse_ride_type(value) == expected


def test_parse_ride_type_rejects_unknown():
    with pytest.raises(ValidationError):
        parse_ride_type("daily")


def test_weekly_schedule_from_day_names_with_default_end():
    schedule = build_schedule(RideType.WEEKLY, START, ["Monday", "wednesday", 5])
    assert schedule.daysOfWeek == [1, 3, 5]
    assert schedule.endDate == date(2024, 4, 8)


def test_monthly_schedule_defaults_to_six_months():
    schedule = build_schedule(RideType.MONTHLY, START, ["1", "15"])
    assert schedule.daysOfMonth == [1, 15]
    assert schedule.endDate == date(2024, 7, 8)


@pytest.mark.parametrize("days", [[], ["Funday"], [9]])
def test_invalid_weekly_days(days):
    with pytest.raises(ValidationError):
        build_schedule(RideType.WEEKLY, START, days)


@pytest.mark.asyncio
async def test_once_off_is_broadcast_to_nearby_drivers(
        requests_ref, instances_ref, drivers_ref, online, make_driver, emitted):
    drivers_ref.docs["driver-1"] = make_driver("driver-1", 0, 0)
    drivers_ref.docs["driver-2"] = make_driver("driver-2", 1, 0)

    created = await create(body(), requests_ref, instances_ref, drivers_ref, online, radius_meters=10_000)

    assert created.notifiedDrivers == 1
    instance = instances_ref.docs[created.rideInstanceId]
    assert instance["notifiedDrivers"] == ["driver-1"]
    assert instance["date"] == "2024-01-08"
    assert requests_ref.docs[created.rideRequestId]["status"] == "PENDING"
    [(payload, target)] = emitted(Event.NEW_TRIP_REQUEST)
    assert target == "driver-1"
    assert payload["rideInstanceId"] == created.rideInstanceId


@pytest.mark.asyncio
async def test_once_off_without_drivers_is_saved_without_instance(requests_ref, instances_ref, drivers_ref, notifier):
    created = await create(body(), requests_ref, instances_ref, drivers_ref, notifier)

    assert created.rideInstanceId is None
    assert "no drivers available" in created.message
    assert created.rideRequestId in requests_ref.docs
    assert instances_ref.docs == {}


@pytest.mark.asyncio
async def test_recurring_request_waits_for_admin(requests_ref, instances_ref, drivers_ref, online, emitted):
    created = await create(body("weekly", selectedDays=["Monday", "Wednesday"]),
                           requests_ref, instances_ref, drivers_ref, online)

    assert created.type == RideType.WEEKLY
    assert created.status == RideRequestStatus.PENDING
    assert instances_ref.docs == {}
    [(payload, target)] = emitted(Event.NEW_RECURRING_TRIP_REQUEST)
    assert target == "admin"
    assert payload["selectedDays"] == [1, 3]


@pytest.mark.asyncio
async def test_address_only_locations_are_geocoded(requests_ref, instances_ref, drivers_ref, notifier):
    geocoder = AsyncMock()
    geocoder.geocode.return_value = Location(address="Resolved", latitude=-33.9, longitude=18.4)
    request_body = body(pickupLocation={"address": "12 Main Rd"}, dropoffLocation={"address": "School Ln"})

    created = await create(request_body, requests_ref, instances_ref, drivers_ref, notifier, geocoder=geocoder)

    stored = requests_ref.docs[created.rideRequestId]
    assert stored["pickupLocation"] == {"address": "12 Main Rd", "latitude": -33.9, "longitude": 18.4}
    assert geocoder.geocode.await_count == 2


@pytest.mark.asyncio
async def test_unresolvable_pickup_is_rejected(requests_ref, instances_ref, drivers_ref, notifier):
    geocoder = AsyncMock()
    geocoder.geocode.return_value = None
    request_body = body(pickupLocation={"address": "Nowhere"})

    with pytest.raises(ValidationError):
        await create(request_body, requests_ref, instances_ref, drivers_ref, notifier, geocoder=geocoder)
    assert requests_ref.docs == {}


@pytest.mark.asyncio
async def test_pending_list_defaults_to_recurring_newest_first(make_request, requests_ref):
    older = make_request(createdAt="2024-01-01T08:00:00")
    newer = make_request(type=RideType.MONTHLY, createdAt="2024-01-02T08:00:00",
                         schedule={"daysOfMonth": [1], "startDate": "2024-01-01", "endDate": "2024-06-30"})
    active = make_request(status="ACTIVE", assignedDriverId="driver-1")
    once_off = make_request(RideType.ONCE_OFF,
                            schedule={"dates": ["2024-01-08"], "startDate": "2024-01-08", "endDate": "2024-01-08"})
    for request in (older, newer, active, once_off):
        requests_ref.docs[request.requestId] = request.model_dump(mode="json")

    listed = await list_pending_requests(requests_ref)
    assert [r.requestId for r in listed] == [newer.requestId, older.requestId]

    weekly_active = await list_pending_requests(requests_ref, ride_type="weekly", status="active")
    assert [r.requestId for r in weekly_active] == [active.requestId]


@pytest.mark.asyncio
async def test_parent_cancel_frees_seat_and_cancels_future_rides(
        make_request, make_driver, requests_ref, instances_ref, drivers_ref, online, parent, emitted):
    request = make_request(status="ACTIVE", assignedDriverId="driver-1")
    requests_ref.docs[request.requestId] = request.model_dump(mode="json")
    drivers_ref.docs["driver-1"] = make_driver("driver-1", assignedStudents=3)
    past = build_instance(request, date(2024, 1, 1))
    future = build_instance(request, date(2024, 1, 10))
    for instance in (past, future):
        instances_ref.docs[instance.instanceId] = instance.model_dump(mode="json")

    cancelled = await cancel_ride_request(request.requestId, parent, requests_ref, instances_ref, drivers_ref,
                                          online, today=START)

    assert cancelled.status == RideRequestStatus.CANCELLED
    assert instances_ref.docs[future.instanceId]["status"] == "CANCELLED"
    assert instances_ref.docs[past.instanceId]["status"] == "SCHEDULED"
    assert drivers_ref.docs["driver-1"]["assignedStudents"] == 2
    assert any(payload.get("rideRequestId") == request.requestId for payload, _ in emitted(Event.TRIP_CANCELLED))


@pytest.mark.asyncio
@pytest.mark.parametrize("seats, assigned", [(None, 0), (4, 0)])
async def test_cancel_never_drives_seat_count_negative(
        make_request, make_driver, requests_ref, instances_ref, drivers_ref, notifier, parent, seats, assigned):
    request = make_request(status="ACTIVE", assignedDriverId="driver-1")
    requests_ref.docs[request.requestId] = request.model_dump(mode="json")
    drivers_ref.docs["driver-1"] = make_driver("driver-1", vehicleSeats=seats, assignedStudents=assigned)

    await cancel_ride_request(request.requestId, parent, requests_ref, instances_ref, drivers_ref, notifier,
                              today=START)

    assert drivers_ref.docs["driver-1"]["assignedStudents"] == 0


@pytest.mark.asyncio
async def test_other_parent_cannot_cancel_or_view(make_request, requests_ref, instances_ref, drivers_ref, notifier):
    request = make_request()
    requests_ref.docs[request.requestId] = request.model_dump(mode="json")
    stranger = AuthenticatedUser(userId="parent-9", role=Role.PARENT)

    with pytest.raises(PermissionDeniedError):
        await cancel_ride_request(request.requestId, stranger, requests_ref, instances_ref, drivers_ref, notifier)
    with pytest.raises(PermissionDeniedError):
        await get_ride_request(request.requestId, requests_ref, viewer=stranger)


@pytest.mark.asyncio
async def test_cancelled_request_cannot_be_cancelled_again(
        make_request, requests_ref, instances_ref, drivers_ref, notifier, parent):
    request = make_request(status="CANCELLED")
    requests_ref.docs[request.requestId] = request.model_dump(mode="json")

    with pytest.raises(ConflictError):
        await cancel_ride_request(request.requestId, parent, requests_ref, instances_ref, drivers_ref, notifier)
