from pydantic import BaseModel, Field, model_validator
from datetime import date as Date, datetime
from typing import List, Literal
from enum import Enum
from uuid import uuid4

PICKUP_TIME_PATTERN = r"^([01]\d|2[0-3]):[0-5]\d$"

class Location(BaseModel):
    address: str | None = None
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)

class LocationInput(BaseModel):
    """A location as sent by clients: coordinates, an address, or both"""
    address: str | None = None
    latitude: float | None = Field(None, ge=-90, le=90)
    longitude: float | None = Field(None, ge=-180, le=180)

    @model_validator(mode="after")
    def check_resolvable(self):
        has_coordinates = self.latitude is not None and self.longitude is not None
        if not has_coordinates and not self.address:
            raise ValueError("Location needs either coordinates or an address")
        return self

class Role(str, Enum):
    PARENT = "parent"
    DRIVER = "driver"
    ADMIN = "admin"

class AuthenticatedUser(BaseModel):
    userId: str
    role: Role = Role.PARENT

# --- Ride requests and instances ---

class RideType(str, Enum):
    ONCE_OFF = "ONCE_OFF"
    WEEKLY = "WEEKLY"
    MONTHLY = "MONTHLY"

RECURRING_TYPES = (RideType.WEEKLY, RideType.MONTHLY)

class RideRequestStatus(str, Enum):
    PENDING = "PENDING"
    ACTIVE = "ACTIVE"
    CANCELLED = "CANCELLED"
    COMPLETED = "COMPLETED"

class Schedule(BaseModel):
    dates: List[Date] | None = None
    daysOfWeek: List[int] | None = None
    daysOfMonth: List[int] | None = None
    startDate: Date
    endDate: Date

    @model_validator(mode="after")
    def check_bounds(self):
        if self.startDate > self.endDate:
            raise ValueError("Schedule startDate must not be after endDate")
        if any(day < 0 or day > 6 for day in self.daysOfWeek or []):
            raise ValueError("daysOfWeek values must be between 0 (Sunday) and 6 (Saturday)")
        if any(day < 1 or day > 31 for day in self.daysOfMonth or []):
            raise ValueError("daysOfMonth values must be between 1 and 31")
        return self

class RideRequest(BaseModel):
    """A parent's standing or one-time request for transport"""
    requestId: str = Field(default_factory=lambda: f"req_{uuid4().hex}")
    parentId: str
    childId: str
    childName: str | None = None
    schoolName: str | None = None
    pickupLocation: Location
    dropoffLocation: Location
    pickupTime: str = Field(pattern=PICKUP_TIME_PATTERN)
    type: RideType
    schedule: Schedule
    status: RideRequestStatus = RideRequestStatus.PENDING
    assignedDriverId: str | None = None
    activity: str | None = None
    instructions: str | None = None
    createdAt: datetime = Field(default_factory=datetime.now)
    updatedAt: datetime = Field(default_factory=datetime.now)
    version: int = 0

    @model_validator(mode="after")
    def check_schedule(self):
        if self.type == RideType.WEEKLY and not self.schedule.daysOfWeek:
            raise ValueError("Please select at least one day for weekly trips")
        if self.type == RideType.MONTHLY and not self.schedule.daysOfMonth:
            raise ValueError("Please select at least one day for monthly trips")
        if self.type in RECURRING_TYPES:
            if self.status == RideRequestStatus.ACTIVE and not self.assignedDriverId:
                raise ValueError("An active recurring request needs an assigned driver")
            if self.status == RideRequestStatus.PENDING and self.assignedDriverId:
                raise ValueError("A pending recurring request cannot have an assigned driver")
        return self

class RideInstanceStatus(str, Enum):
    SCHEDULED = "SCHEDULED"
    ACCEPTED = "ACCEPTED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    MISSED = "MISSED"
    CANCELLED = "CANCELLED"

def instance_id_for(ride_request_id: str, day: Date) -> str:
    """One instance per request and calendar day"""
    return f"{ride_request_id}_{day.isoformat()}"

class RideInstance(BaseModel):
    """One concrete, dated occurrence of a ride request"""
    instanceId: str
    rideRequestId: str
    date: Date
    pickupTime: str
    driverId: str | None = None
    childId: str
    parentId: str
    status: RideInstanceStatus = RideInstanceStatus.SCHEDULED
    pickupLocation: Location
    dropoffLocation: Location
    activity: str | None = None
    instructions: str | None = None
    notifiedDrivers: List[str] = Field(default_factory=list)
    acceptedAt: datetime | None = None
    startedAt: datetime | None = None
    completedAt: datetime | None = None
    cancelledAt: datetime | None = None
    missedAt: datetime | None = None
    cancellationReason: str | None = None
    createdAt: datetime = Field(default_factory=datetime.now)
    updatedAt: datetime = Field(default_factory=datetime.now)
    version: int = 0

# --- Direct trips ---

class TripStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

class CancelledBy(str, Enum):
    PARENT = "parent"
    DRIVER = "driver"
    ADMIN = "admin"
    SYSTEM = "system"

class TrackingPoint(BaseModel):
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)
    speed: float = 0
    heading: float = 0
    timestamp: datetime = Field(default_factory=datetime.now)

class TripRoute(BaseModel):
    distance: float | None = None  # meters
    duration: float | None = None  # seconds
    polyline: str | None = None

class Trip(BaseModel):
    """A standalone ride session between a parent and a driver"""
    tripId: str = Field(default_factory=lambda: f"trip_{uuid4().hex}")
    tripType: Literal["once-off", "recurring", "scheduled"] = "once-off"
    parentId: str
    parentName: str | None = None
    childId: str | None = None
    driverId: str | None = None
    driverName: str | None = None
    driverVehicle: str | None = None
    notifiedDrivers: List[str] = Field(default_factory=list)
    date: Date
    pickupTime: str = Field(pattern=PICKUP_TIME_PATTERN)
    pickupLocation: Location
    dropoffLocation: Location
    route: TripRoute = Field(default_factory=TripRoute)
    activity: str = ""
    instructions: str = ""
    status: TripStatus = TripStatus.PENDING
    fare: float = Field(0, ge=0)
    actualFare: float | None = Field(None, ge=0)
    currentLocation: TrackingPoint | None = None
    acceptedAt: datetime | None = None
    startedAt: datetime | None = None
    completedAt: datetime | None = None
    cancelledAt: datetime | None = None
    declinedAt: datetime | None = None
    cancelledBy: CancelledBy | None = None
    cancellationReason: str | None = None
    declineReason: str | None = None
    completionNotes: str | None = None
    createdAt: datetime = Field(default_factory=datetime.now)
    updatedAt: datetime = Field(default_factory=datetime.now)
    version: int = 0

# --- Drivers ---

class DriverStatus(str, Enum):
    AVAILABLE = "available"
    BUSY = "busy"
    OFFLINE = "offline"

class Driver(BaseModel):
    """Matching and assignment view of a user with the driver role"""
    driverId: str
    name: str | None = None
    phoneNumber: str | None = None
    vehicleModel: str | None = None
    vehicleRegistration: str | None = None
    vehicleSeats: int | None = None
    assignedStudents: int = 0
    location: Location | None = None
    status: DriverStatus = DriverStatus.OFFLINE
    isActive: bool = False
    isVerified: bool = False
    rating: float = 5
    totalEarnings: float = 0
    updatedAt: datetime = Field(default_factory=datetime.now)

class DriverMatch(BaseModel):
    driver: Driver
    distanceMeters: float

# --- Request bodies ---

class RideRequestCreate(BaseModel):
    tripType: str
    date: Date
    pickupTime: str = Field(pattern=PICKUP_TIME_PATTERN)
    pickupLocation: LocationInput
    dropoffLocation: LocationInput
    childId: str
    childName: str | None = None
    school: str | None = None
    activity: str | None = None
    instructions: str | None = None
    selectedDays: List[str | int] = Field(default_factory=list)
    endDate: Date | None = None

class TripCreate(BaseModel):
    driverId: str | None = None
    childId: str | None = None
    parentName: str | None = None
    tripType: Literal["once-off", "recurring", "scheduled"] = "once-off"
    date: Date
    pickupTime: str = Field(pattern=PICKUP_TIME_PATTERN)
    pickupLocation: LocationInput
    dropoffLocation: LocationInput
    fare: float | None = Field(None, ge=0)
    activity: str = ""
    instructions: str = ""

class DeclineBody(BaseModel):
    reason: str | None = None

class StartBody(BaseModel):
    latitude: float | None = Field(None, ge=-90, le=90)
    longitude: float | None = Field(None, ge=-180, le=180)

class CompleteBody(BaseModel):
    actualFare: float | None = Field(None, ge=0)
    notes: str | None = None

class CancelBody(BaseModel):
    reason: str | None = None
    cancelledBy: CancelledBy | None = None

class LocationUpdate(BaseModel):
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)
    speed: float = 0
    heading: float = 0

class AssignDriverBody(BaseModel):
    rideRequestId: str
    driverId: str

class DriverActiveBody(BaseModel):
    isActive: bool

class DriverLocationBody(BaseModel):
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)
    address: str | None = None

# --- Responses ---

class RideRequestCreated(BaseModel):
    rideRequestId: str
    type: RideType
    status: RideRequestStatus
    rideInstanceId: str | None = None
    notifiedDrivers: int = 0
    message: str

class AssignmentResult(BaseModel):
    rideRequestId: str
    driverId: str
    instancesCreated: int
    status: RideRequestStatus

class TripTracking(BaseModel):
    tripId: str
    status: TripStatus
    pickupLocation: Location
    dropoffLocation: Location
    currentLocation: TrackingPoint | None = None
    routeCoordinates: List[List[float]] = Field(default_factory=list)
    driverId: str | None = None
    driverName: str | None = None
    driverVehicle: str | None = None
    startedAt: datetime | None = None
