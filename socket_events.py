"""Socket.IO event handlers.

A connection authenticates once with the token in its ``auth`` payload and is
then placed in its user room (and the admin room for admins). Failures of
client-initiated events are answered with an ``error`` event to the sender.
"""
from datetime import datetime
import logging

from pydantic import ValidationError as ModelValidationError
from socketio.exceptions import ConnectionRefusedError

from auth import AuthError
from errors import RideServiceError, UpstreamUnavailable
from models import AuthenticatedUser, LocationUpdate, RideInstance, Role, Trip
from notifier import ADMIN_ROOM, Event, trip_room
from services.driver_service import set_driver_active, update_driver_location
from services.trip_service import trip_participants
from services.trip_state import update_trip_location

logger = logging.getLogger(__name__)


async def room_participants(trip_id: str, trips_ref, instances_ref) -> set[str] | None:
    """Users allowed in a trip room; the id may name a trip or a ride instance"""
    doc = await trips_ref.get(trip_id)
    if doc is not None:
        return trip_participants(Trip.model_validate(doc))
    doc = await instances_ref.get(trip_id)
    if doc is not None:
        instance = RideInstance.model_validate(doc)
        return {user_id for user_id in (instance.parentId, instance.driverId, *instance.notifiedDrivers) if user_id}
    return None


def register_socket_events(sio, app):
    state = app.state

    async def send_error(sid, message, **extra):
        await sio.emit("error", {"message": message, **extra}, to=sid)

    def session_user(sid) -> AuthenticatedUser | None:
        return state.notifier.user_for(sid)

    @sio.event
    async def connect(sid, environ, auth=None):
        authenticator = getattr(state, "authenticator", None)
        if authenticator is None:
            raise ConnectionRefusedError("Authentication not initialized")
        token = (auth or {}).get("token") if isinstance(auth, dict) else None
        try:
            user = await authenticator(token)
        except AuthError as exc:
            logger.info(f"Refused socket {sid}: {exc}")
            raise ConnectionRefusedError("Authentication error")

        await state.notifier.connect(sid, user)
        logger.info(f"Socket {sid} connected as {user.role.value} {user.userId}")

    @sio.event
    async def disconnect(sid, *args):
        user = state.notifier.disconnect(sid)
        if user is None:
            return
        if user.role == Role.DRIVER:
            state.location_cache.evict(user.userId)
        logger.info(f"Socket {sid} of user {user.userId} disconnected")

    async def may_use_trip(sid, user, trip_id, action) -> bool:
        """Admins and the trip's participants pass; everyone else gets an error event"""
        try:
            participants = await room_participants(trip_id, state.trips_ref, state.instances_ref)
        except UpstreamUnavailable:
            await send_error(sid, "Service temporarily unavailable")
            return False
        if participants is None:
            await send_error(sid, f"Trip {trip_id} not found")
            return False
        if user.role != Role.ADMIN and user.userId not in participants:
            await send_error(sid, f"Unauthorized to {action} this trip")
            return False
        return True

    @sio.event
    async def join_trip(sid, data):
        user = session_user(sid)
        trip_id = (data or {}).get("tripId")
        if user is None or not trip_id:
            await send_error(sid, "tripId is required")
            return
        if not await may_use_trip(sid, user, trip_id, "join"):
            return

        await state.notifier.join(sid, trip_room(trip_id))
        return {"room": trip_room(trip_id)}

    @sio.event
    async def leave_trip(sid, data):
        trip_id = (data or {}).get("tripId")
        if trip_id:
            await state.notifier.leave(sid, trip_room(trip_id))

    @sio.event
    async def driver_location_update(sid, data):
        user = session_user(sid)
        if user is None or user.role != Role.DRIVER:
            await send_error(sid, "Only drivers can send trip locations")
            return
        data = data or {}
        try:
            update = LocationUpdate.model_validate(data)
            await update_trip_location(
                data.get("tripId", ""), user, update, state.trips_ref, state.notifier, state.location_cache
            )
        except ModelValidationError as exc:
            await send_error(sid, f"Invalid location: {exc.errors()[0]['msg']}")
        except RideServiceError as exc:
            await send_error(sid, exc.message, **exc.context)
        except UpstreamUnavailable:
            await send_error(sid, "Service temporarily unavailable")

    @sio.event
    async def update_location(sid, data):
        user = session_user(sid)
        if user is None or user.role != Role.DRIVER:
            await send_error(sid, "Only drivers can update their location")
            return
        data = data or {}
        try:
            await update_driver_location(
                user.userId, float(data["latitude"]), float(data["longitude"]),
                state.drivers_ref, state.location_cache, address=data.get("address"),
            )
        except (KeyError, TypeError, ValueError):
            await send_error(sid, "latitude and longitude are required")
        except RideServiceError as exc:
            await send_error(sid, exc.message, **exc.context)
        except UpstreamUnavailable:
            await send_error(sid, "Service temporarily unavailable")

    @sio.event
    async def go_offline(sid, data=None):
        user = session_user(sid)
        if user is None or user.role != Role.DRIVER:
            return
        try:
            await set_driver_active(user.userId, False, state.drivers_ref, state.location_cache)
        except RideServiceError as exc:
            await send_error(sid, exc.message, **exc.context)
        except UpstreamUnavailable:
            await send_error(sid, "Service temporarily unavailable")

    @sio.event
    async def emergency_alert(sid, data):
        user = session_user(sid)
        data = data or {}
        trip_id = data.get("tripId")
        if user is None or not trip_id:
            await send_error(sid, "tripId is required")
            return
        if not await may_use_trip(sid, user, trip_id, "raise an alert on"):
            return

        logger.warning(f"Emergency alert from {user.userId} on trip {trip_id}")
        await state.notifier.emit([trip_room(trip_id), ADMIN_ROOM], Event.EMERGENCY_ALERT, {
            "tripId": trip_id,
            "userId": user.userId,
            "role": user.role,
            "message": data.get("message"),
            "location": data.get("location"),
        })

    @sio.event
    async def ping(sid, data=None):
        await sio.emit("pong", {"timestamp": datetime.now().isoformat()}, to=sid)
