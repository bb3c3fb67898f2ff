import os
from datetime import date
from unittest.mock import AsyncMock

os.environ.setdefault("PORT", "8000")
os.environ.setdefault("DATABASE_URL", "https://example.firebaseio.com")

import pytest
import pytest_asyncio

from models import AuthenticatedUser, Location, RideRequest, RideType, Role, Schedule
from notifier import RealtimeNotifier
from tests.memory_store import MemoryCollection


@pytest.fixture
def requests_ref():
    return MemoryCollection()


@pytest.fixture
def instances_ref():
    return MemoryCollection()


@pytest.fixture
def trips_ref():
    return MemoryCollection()


@pytest.fixture
def drivers_ref():
    return MemoryCollection()


@pytest.fixture
def sio():
    return AsyncMock()


@pytest.fixture
def notifier(sio):
    return RealtimeNotifier(sio, emit_timeout=1)


@pytest.fixture
def parent():
    return AuthenticatedUser(userId="parent-1", role=Role.PARENT)


@pytest.fixture
def driver():
    return AuthenticatedUser(userId="driver-1", role=Role.DRIVER)


@pytest.fixture
def other_driver():
    return AuthenticatedUser(userId="driver-2", role=Role.DRIVER)


@pytest.fixture
def admin():
    return AuthenticatedUser(userId="admin-1", role=Role.ADMIN)


@pytest_asyncio.fixture
async def online(notifier, parent, driver, other_driver, admin):
    """Parent, both drivers and the admin connected with one socket each"""
    for user in (parent, driver, other_driver, admin):
        await notifier.connect(f"sid-{user.userId}", user)
    return notifier


@pytest.fixture
def emitted(sio):
    def events(event):
        """(payload, target) of every emit of ``event`` on the mocked server"""
        name = getattr(event, "value", event)
        return [(call.args[1], call.kwargs.get("to")) for call in sio.emit.await_args_list if call.args[0] == name]
    return events


@pytest.fixture
def make_driver():
    def factory(driver_id="driver-1", latitude=0.0, longitude=0.0, **fields):
        doc = {
            "driverId": driver_id,
            "name": f"Driver {driver_id}",
            "phoneNumber": "+27 82 000 0000",
            "vehicleModel": "Toyota Quantum",
            "vehicleRegistration": "CA 123-456",
            "vehicleSeats": 4,
            "assignedStudents": 0,
            "location": {"address": None, "latitude": latitude, "longitude": longitude},
            "status": "available",
            "isActive": True,
            "isVerified": True,
            "rating": 5,
            "totalEarnings": 0,
        }
        doc.update(fields)
        return doc
    return factory


@pytest.fixture
def make_request():
    def factory(ride_type=RideType.WEEKLY, **fields):
        values = {
            "parentId": "parent-1",
            "childId": "child-1",
            "childName": "Ayanda",
            "schoolName": "Rondebosch Primary",
            "pickupLocation": Location(address="12 Main Rd", latitude=-33.95, longitude=18.47),
            "dropoffLocation": Location(address="School Ln", latitude=-33.96, longitude=18.48),
            "pickupTime": "07:15",
            "type": ride_type,
            "schedule": Schedule(daysOfWeek=[1, 3], startDate=date(2024, 1, 1), endDate=date(2024, 1, 31)),
        }
        values.update(fields)
        return RideRequest(**values)
    return factory
