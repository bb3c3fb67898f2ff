"""Room-scoped realtime delivery over Socket.IO.

Rooms are named after a user id, a trip (``trip_<id>``) or a role
(``admin``). The notifier owns the membership of every room it joins a
connection to, so an event addressed to rooms without members is dropped
without touching the socket server. Delivery is best effort: failures are
logged and never raised to the caller.
"""
from collections import defaultdict
from datetime import datetime
from enum import Enum
import asyncio
import logging

from fastapi.encoders import jsonable_encoder

from models import AuthenticatedUser, Role

logger = logging.getLogger(__name__)

ADMIN_ROOM = "admin"


class Event(str, Enum):
    NEW_TRIP_REQUEST = "new-trip-request"
    NEW_RECURRING_TRIP_REQUEST = "new-recurring-trip-request"
    DRIVER_ASSIGNED = "driver-assigned"
    RECURRING_TRIP_ASSIGNED = "recurring-trip-assigned"
    TRIP_ACCEPTED = "trip-accepted"
    TRIP_DECLINED = "trip-declined"
    TRIP_STARTED = "trip-started"
    TRIP_COMPLETED = "trip-completed"
    TRIP_CANCELLED = "trip-cancelled"
    TRIP_MISSED = "trip-missed"
    LOCATION_UPDATE = "location-update"
    EMERGENCY_ALERT = "emergency-alert"


def user_room(user_id) -> str:
    return str(user_id)


def trip_room(trip_id) -> str:
    return f"trip_{trip_id}"


class RealtimeNotifier:
    def __init__(self, sio, emit_timeout: float = 5):
        self._sio = sio
        self._emit_timeout = emit_timeout
        self._rooms: dict[str, set[str]] = defaultdict(set)
        self._sessions: dict[str, AuthenticatedUser] = {}

    # --- membership ---

    async def connect(self, sid: str, user: AuthenticatedUser):
        """Register an authenticated connection and join its own rooms"""
        self._sessions[sid] = user
        await self.join(sid, user_room(user.userId))
        if user.role == Role.ADMIN:
            await self.join(sid, ADMIN_ROOM)

    def disconnect(self, sid: str) -> AuthenticatedUser | None:
        # The socket server drops its own room state for a closed connection.
        user = self._sessions.pop(sid, None)
        for room in [room for room, members in self._rooms.items() if sid in members]:
            self._forget(sid, room)
        return user

    async def join(self, sid: str, room: str):
        await self._sio.enter_room(sid, room)
        self._rooms[room].add(sid)
        logger.debug(f"Socket {sid} joined room {room}")

    async def leave(self, sid: str, room: str):
        await self._sio.leave_room(sid, room)
        self._forget(sid, room)
        logger.debug(f"Socket {sid} left room {room}")

    def _forget(self, sid, room):
        members = self._rooms.get(room)
        if members is None:
            return
        members.discard(sid)
        if not members:
            del self._rooms[room]

    def user_for(self, sid: str) -> AuthenticatedUser | None:
        return self._sessions.get(sid)

    def members(self, room: str) -> set[str]:
        return set(self._rooms.get(room, ()))

    def stats(self) -> dict:
        return {
            "totalConnections": len(self._sessions),
            "rooms": {room: len(members) for room, members in self._rooms.items()},
            "timestamp": datetime.now().isoformat(),
        }

    # --- delivery ---

    async def emit(self, rooms, event: Event, payload: dict) -> bool:
        """Send ``event`` once to every member of ``rooms``. Returns False if dropped."""
        rooms = [room for room in dict.fromkeys(rooms) if room]
        if not any(self._rooms.get(room) for room in rooms):
            logger.debug(f"Dropped {event.value}: no connected members in {rooms}")
            return False

        message = jsonable_encoder({**payload, "timestamp": datetime.now()})
        target = rooms[0] if len(rooms) == 1 else rooms
        try:
            await asyncio.wait_for(self._sio.emit(event.value, message, to=target), timeout=self._emit_timeout)
        except Exception as exc:
            logger.warning(f"Failed to deliver {event.value} to {rooms}: {type(exc).__name__} - {exc}")
            return False

        logger.info(f"Event '{event.value}' emitted to {rooms}")
        return True

    async def emit_to_user(self, user_id, event: Event, payload: dict) -> bool:
        if not user_id:
            return False
        return await self.emit([user_room(user_id)], event, payload)

    async def emit_to_trip(self, trip_id, event: Event, payload: dict, user_ids=()) -> bool:
        """Trip room plus the given users' own rooms, each member reached once"""
        rooms = [trip_room(trip_id)] + [user_room(user_id) for user_id in user_ids if user_id]
        return await self.emit(rooms, event, payload)

    async def emit_to_role(self, role: Role, event: Event, payload: dict) -> bool:
        room = ADMIN_ROOM if role == Role.ADMIN else role.value
        return await self.emit([room], event, payload)
