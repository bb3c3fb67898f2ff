from fastapi import APIRouter, Depends, HTTPException, Request, Query
from typing import List, Optional
from auth import get_current_user, require_role
from config import settings
from errors import RideServiceError
from models import AuthenticatedUser, Driver, DriverActiveBody, DriverLocationBody, DriverMatch, Location, Role
from services.driver_service import set_driver_active, update_driver_location, get_available_drivers

router = APIRouter(prefix="/drivers")

driver_only = require_role(Role.DRIVER)

def _drivers_ref(request: Request):
    drivers_ref = request.app.state.drivers_ref
    if not drivers_ref:
        raise HTTPException(status_code=500, detail="Firestore not initialized")
    return drivers_ref

@router.put("/me/active", response_model=Driver)
async def toggle_active(body: DriverActiveBody, request: Request, user: AuthenticatedUser = Depends(driver_only)):
    try:
        return await set_driver_active(
            user.userId, body.isActive, _drivers_ref(request), request.app.state.location_cache
        )
    except RideServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)

@router.put("/me/location", response_model=Location)
async def push_location(body: DriverLocationBody, request: Request, user: AuthenticatedUser = Depends(driver_only)):
    try:
        return await update_driver_location(
            user.userId, body.latitude, body.longitude, _drivers_ref(request),
            request.app.state.location_cache, address=body.address,
        )
    except RideServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)

@router.get("/available", response_model=List[DriverMatch])
async def available_drivers(
    request: Request,
    latitude: float = Query(..., ge=-90, le=90),
    longitude: float = Query(..., ge=-180, le=180),
    radius: Optional[float] = Query(None, gt=0, description="Search radius in meters"),
    user: AuthenticatedUser = Depends(get_current_user),
):
    return await get_available_drivers(
        latitude, longitude, _drivers_ref(request),
        radius_meters=radius or settings.AVAILABLE_DRIVERS_RADIUS_METERS,
        location_cache=request.app.state.location_cache,
    )
