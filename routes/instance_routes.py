from fastapi import APIRouter, Depends, HTTPException, Request, Query
from typing import List, Optional
from auth import get_current_user, require_role
from errors import RideServiceError
from models import AuthenticatedUser, CancelBody, DeclineBody, RideInstance, Role
from services.instance_state import (
    accept_instance, decline_instance, start_instance, complete_instance, cancel_instance
)
from services.request_service import get_instances_for_user, get_instance

router = APIRouter(prefix="/instances")

driver_only = require_role(Role.DRIVER)

def _instances_ref(request: Request):
    instances_ref = request.app.state.instances_ref
    if not instances_ref:
        raise HTTPException(status_code=500, detail="Firestore not initialized")
    return instances_ref

@router.get("/mine", response_model=List[RideInstance])
async def get_my_instances(
    request: Request,
    status: Optional[str] = Query(None, description="Only rides with this status"),
    user: AuthenticatedUser = Depends(get_current_user),
):
    try:
        return await get_instances_for_user(user, _instances_ref(request), status)
    except RideServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)

@router.get("/{instance_id}", response_model=RideInstance)
async def get_ride_instance(instance_id: str, request: Request, user: AuthenticatedUser = Depends(get_current_user)):
    try:
        return await get_instance(instance_id, _instances_ref(request), user)
    except RideServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)

@router.put("/{instance_id}/accept", response_model=RideInstance)
async def accept(instance_id: str, request: Request, user: AuthenticatedUser = Depends(driver_only)):
    state = request.app.state
    try:
        return await accept_instance(instance_id, user, _instances_ref(request), state.requests_ref, state.notifier)
    except RideServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)

@router.put("/{instance_id}/decline", response_model=RideInstance)
async def decline(instance_id: str, request: Request, body: Optional[DeclineBody] = None,
                  user: AuthenticatedUser = Depends(driver_only)):
    try:
        return await decline_instance(instance_id, user, body.reason if body else None, _instances_ref(request), request.app.state.notifier)
    except RideServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)

@router.put("/{instance_id}/start", response_model=RideInstance)
async def start(instance_id: str, request: Request, user: AuthenticatedUser = Depends(driver_only)):
    try:
        return await start_instance(instance_id, user, _instances_ref(request), request.app.state.notifier)
    except RideServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)

@router.put("/{instance_id}/complete", response_model=RideInstance)
async def complete(instance_id: str, request: Request, user: AuthenticatedUser = Depends(driver_only)):
    state = request.app.state
    try:
        return await complete_instance(instance_id, user, _instances_ref(request), state.requests_ref, state.notifier)
    except RideServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)

@router.put("/{instance_id}/cancel", response_model=RideInstance)
async def cancel(instance_id: str, request: Request, body: Optional[CancelBody] = None,
                 user: AuthenticatedUser = Depends(get_current_user)):
    try:
        return await cancel_instance(
            instance_id, user, _instances_ref(request), request.app.state.notifier, reason=body.reason if body else None
        )
    except RideServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)
