from fastapi import APIRouter, Depends, HTTPException, Request
from typing import List
from auth import get_current_user, require_role
from config import settings
from errors import RideServiceError
from models import AuthenticatedUser, RideRequest, RideRequestCreate, RideRequestCreated, Role
from services.geo_matcher import AvailabilityPolicy
from services.request_service import (
    create_ride_request, get_ride_requests_by_parent, get_ride_request, cancel_ride_request
)

router = APIRouter()

@router.post("/requests", response_model=RideRequestCreated)
async def request_ride(
    request_data: RideRequestCreate,
    request: Request,
    user: AuthenticatedUser = Depends(require_role(Role.PARENT, Role.ADMIN)),
):
    state = request.app.state
    if not state.requests_ref or not state.instances_ref or not state.drivers_ref:
        raise HTTPException(status_code=500, detail="Firestore not initialized")

    try:
        return await create_ride_request(
            request_data, user.userId, state.requests_ref, state.instances_ref, state.drivers_ref, state.notifier,
            geocoder=state.geocoder,
            location_cache=state.location_cache,
            radius_meters=settings.MATCH_RADIUS_METERS,
            limit=settings.MATCH_LIMIT,
            policy=AvailabilityPolicy(settings.MATCH_POLICY),
        )
    except RideServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)

@router.get("/requests/mine", response_model=List[RideRequest])
async def get_my_requests(request: Request, user: AuthenticatedUser = Depends(get_current_user)):
    requests_ref = request.app.state.requests_ref
    if not requests_ref:
        raise HTTPException(status_code=500, detail="Firestore not initialized")

    return await get_ride_requests_by_parent(user.userId, requests_ref)

@router.get("/requests/{request_id}", response_model=RideRequest)
async def get_request(request_id: str, request: Request, user: AuthenticatedUser = Depends(get_current_user)):
    requests_ref = request.app.state.requests_ref
    if not requests_ref:
        raise HTTPException(status_code=500, detail="Firestore not initialized")

    try:
        return await get_ride_request(request_id, requests_ref, viewer=user)
    except RideServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)

@router.put("/requests/{request_id}/cancel", response_model=RideRequest)
async def cancel_request(request_id: str, request: Request, user: AuthenticatedUser = Depends(get_current_user)):
    state = request.app.state
    if not state.requests_ref or not state.instances_ref or not state.drivers_ref:
        raise HTTPException(status_code=500, detail="Firestore not initialized")

    try:
        return await cancel_ride_request(
            request_id, user, state.requests_ref, state.instances_ref, state.drivers_ref, state.notifier
        )
    except RideServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)
