from fastapi import APIRouter, Depends, HTTPException, Request, Query
from typing import List, Optional
from auth import get_current_user, require_role
from config import settings
from errors import RideServiceError
from models import (
    AuthenticatedUser, CancelBody, CompleteBody, DeclineBody, LocationUpdate, Role, StartBody,
    TrackingPoint, Trip, TripCreate, TripTracking
)
from services.geo_matcher import AvailabilityPolicy
from services.trip_service import (
    create_trip, get_driver_pending_trips, get_driver_upcoming_trips, get_parent_trips, get_trip, get_trip_tracking
)
from services.trip_state import accept_trip, decline_trip, start_trip, complete_trip, cancel_trip, update_trip_location

router = APIRouter(prefix="/trips")

driver_only = require_role(Role.DRIVER)

def _trips_ref(request: Request):
    trips_ref = request.app.state.trips_ref
    if not trips_ref:
        raise HTTPException(status_code=500, detail="Firestore not initialized")
    return trips_ref

@router.post("", response_model=Trip)
async def book_trip(
    trip_data: TripCreate,
    request: Request,
    user: AuthenticatedUser = Depends(require_role(Role.PARENT, Role.ADMIN)),
):
    state = request.app.state
    try:
        return await create_trip(
            trip_data, user.userId, _trips_ref(request), state.drivers_ref, state.notifier,
            routes_client=state.routes_client,
            geocoder=state.geocoder,
            location_cache=state.location_cache,
            fare_rates={
                "base_fare": settings.BASE_FARE,
                "per_km": settings.FARE_PER_KM,
                "per_minute": settings.FARE_PER_MINUTE,
            },
            radius_meters=settings.MATCH_RADIUS_METERS,
            limit=settings.MATCH_LIMIT,
            policy=AvailabilityPolicy(settings.MATCH_POLICY),
        )
    except RideServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)

@router.get("/mine", response_model=List[Trip])
async def get_my_trips(
    request: Request,
    status: Optional[str] = Query(None, description="Only trips with this status"),
    user: AuthenticatedUser = Depends(get_current_user),
):
    try:
        return await get_parent_trips(user.userId, _trips_ref(request), status)
    except RideServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)

@router.get("/requests", response_model=List[Trip])
async def get_trip_requests(request: Request, user: AuthenticatedUser = Depends(driver_only)):
    return await get_driver_pending_trips(user.userId, _trips_ref(request))

@router.get("/upcoming", response_model=List[Trip])
async def get_upcoming_trips(request: Request, user: AuthenticatedUser = Depends(driver_only)):
    return await get_driver_upcoming_trips(user.userId, _trips_ref(request))

@router.get("/{trip_id}", response_model=Trip)
async def get_trip_details(trip_id: str, request: Request, user: AuthenticatedUser = Depends(get_current_user)):
    try:
        return await get_trip(trip_id, _trips_ref(request), user)
    except RideServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)

@router.get("/{trip_id}/tracking", response_model=TripTracking)
async def get_tracking(trip_id: str, request: Request, user: AuthenticatedUser = Depends(get_current_user)):
    try:
        return await get_trip_tracking(trip_id, _trips_ref(request), user)
    except RideServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)

@router.put("/{trip_id}/accept", response_model=Trip)
async def accept(trip_id: str, request: Request, user: AuthenticatedUser = Depends(driver_only)):
    try:
        return await accept_trip(trip_id, user, _trips_ref(request), request.app.state.notifier)
    except RideServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)

@router.put("/{trip_id}/decline", response_model=Trip)
async def decline(trip_id: str, request: Request, body: Optional[DeclineBody] = None,
                  user: AuthenticatedUser = Depends(driver_only)):
    try:
        return await decline_trip(
            trip_id, user, body.reason if body else None, _trips_ref(request), request.app.state.notifier
        )
    except RideServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)

@router.put("/{trip_id}/start", response_model=Trip)
async def start(trip_id: str, request: Request, body: Optional[StartBody] = None,
                user: AuthenticatedUser = Depends(driver_only)):
    state = request.app.state
    body = body or StartBody()
    try:
        return await start_trip(
            trip_id, user, _trips_ref(request), state.notifier,
            latitude=body.latitude, longitude=body.longitude, location_cache=state.location_cache,
        )
    except RideServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)

@router.put("/{trip_id}/complete", response_model=Trip)
async def complete(trip_id: str, request: Request, body: Optional[CompleteBody] = None,
                   user: AuthenticatedUser = Depends(driver_only)):
    state = request.app.state
    body = body or CompleteBody()
    try:
        return await complete_trip(
            trip_id, user, _trips_ref(request), state.drivers_ref, state.notifier,
            actual_fare=body.actualFare, notes=body.notes,
        )
    except RideServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)

@router.put("/{trip_id}/cancel", response_model=Trip)
async def cancel(trip_id: str, request: Request, body: Optional[CancelBody] = None,
                 user: AuthenticatedUser = Depends(get_current_user)):
    body = body or CancelBody()
    try:
        return await cancel_trip(
            trip_id, user, _trips_ref(request), request.app.state.notifier,
            reason=body.reason, cancelled_by=body.cancelledBy,
        )
    except RideServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)

@router.put("/{trip_id}/location", response_model=TrackingPoint)
async def push_location(trip_id: str, update: LocationUpdate, request: Request,
                        user: AuthenticatedUser = Depends(driver_only)):
    state = request.app.state
    try:
        return await update_trip_location(
            trip_id, user, update, _trips_ref(request), state.notifier, state.location_cache
        )
    except RideServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)
