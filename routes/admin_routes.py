from fastapi import APIRouter, Depends, HTTPException, Request, Query
from typing import List, Optional
from auth import require_role
from config import settings
from errors import RideServiceError
from models import AssignDriverBody, AssignmentResult, AuthenticatedUser, RideRequest, Role
from services.assignment_service import assign_driver
from services.instance_generator import run_generation
from services.request_service import list_pending_requests

router = APIRouter(prefix="/admin")

admin_only = require_role(Role.ADMIN)

@router.get("/pending-requests", response_model=List[RideRequest])
async def pending_requests(
    request: Request,
    type: Optional[str] = Query(None, description="once-off, weekly or monthly"),
    status: Optional[str] = Query(None, description="Defaults to PENDING"),
    limit: int = Query(50, gt=0, le=500),
    user: AuthenticatedUser = Depends(admin_only),
):
    requests_ref = request.app.state.requests_ref
    if not requests_ref:
        raise HTTPException(status_code=500, detail="Firestore not initialized")

    try:
        return await list_pending_requests(requests_ref, ride_type=type, status=status, limit=limit)
    except RideServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)

@router.post("/assign-driver", response_model=AssignmentResult)
async def assign(body: AssignDriverBody, request: Request, user: AuthenticatedUser = Depends(admin_only)):
    state = request.app.state
    if not state.requests_ref or not state.instances_ref or not state.drivers_ref:
        raise HTTPException(status_code=500, detail="Firestore not initialized")

    try:
        return await assign_driver(
            body.rideRequestId, body.driverId,
            state.requests_ref, state.instances_ref, state.drivers_ref, state.notifier,
            days_ahead=settings.INSTANCE_WINDOW_DAYS,
        )
    except RideServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)

@router.post("/generate-instances")
async def generate_instances(request: Request, user: AuthenticatedUser = Depends(admin_only)):
    state = request.app.state
    if not state.requests_ref or not state.instances_ref:
        raise HTTPException(status_code=500, detail="Firestore not initialized")

    report = await run_generation(
        state.requests_ref, state.instances_ref, state.notifier,
        days_ahead=settings.INSTANCE_WINDOW_DAYS,
        school_days_only=settings.SCHOOL_DAYS_ONLY,
    )
    return {
        "requestsProcessed": report.requests,
        "instancesCreated": report.created,
        "failedRequests": report.failed,
        "instancesMissed": report.missed,
    }

@router.get("/realtime/stats")
async def realtime_stats(request: Request, user: AuthenticatedUser = Depends(admin_only)):
    return {
        **request.app.state.notifier.stats(),
        "cachedDriverLocations": len(request.app.state.location_cache),
    }
