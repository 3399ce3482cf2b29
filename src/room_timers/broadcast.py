"""Room-scoped fan-out of events to connected sessions."""

import logging
from typing import Any, Protocol


logger = logging.getLogger(__name__)


class Socket(Protocol):
    async def send_json(self, data: Any) -> None: ...


class RoomBroadcaster:
    """Tracks which sessions are in which rooms and delivers events to them.

    Delivery is fire-and-forget: a session whose send fails is dropped
    from every room, nothing is retried.
    """

    def __init__(self):
        self.sockets: dict[str, Socket] = {}
        self.rooms: dict[str, dict[str, None]] = {}

    def connect(self, session_id: str, socket: Socket):
        self.sockets[session_id] = socket

    def join(self, room_id: str, session_id: str, socket: Socket | None = None):
        """Subscribe a session to a room."""
        if socket is not None:
            self.sockets[session_id] = socket
        if session_id not in self.sockets:
            logger.debug("Unknown session %s cannot join room %s", session_id, room_id)
            return
        # dict keeps join order, so delivery order is stable
        self.rooms.setdefault(room_id, {})[session_id] = None

    def leave(self, room_id: str, session_id: str):
        """Unsubscribe a session from a room."""
        members = self.rooms.get(room_id)
        if members is None:
            return
        members.pop(session_id, None)
        if not members:
            del self.rooms[room_id]

    def disconnect(self, session_id: str):
        """Forget a session and all its room memberships."""
        self.sockets.pop(session_id, None)
        for room_id in [r for r, members in self.rooms.items() if session_id in members]:
            self.leave(room_id, session_id)

    def members(self, room_id: str) -> list[str]:
        return list(self.rooms.get(room_id, {}))

    def rooms_of(self, session_id: str) -> list[str]:
        return [room_id for room_id, members in self.rooms.items() if session_id in members]

    @staticmethod
    def envelope(event: str, payload: Any) -> dict:
        return {"type": str(event), "data": payload}

    async def to_room(self, room_id: str, event: str, payload: Any):
        """Send an event to every session in the room."""
        message = self.envelope(event, payload)
        disconnected = []

        for session_id in self.members(room_id):
            socket = self.sockets.get(session_id)
            if socket is None:
                disconnected.append(session_id)
                continue
            try:
                await socket.send_json(message)
            except Exception:
                disconnected.append(session_id)

        for session_id in disconnected:
            logger.info("Dropping session %s after failed delivery", session_id)
            self.disconnect(session_id)

    async def to_session(self, session_id: str, event: str, payload: Any):
        """Send an event to a single session."""
        socket = self.sockets.get(session_id)
        if socket is None:
            return
        try:
            await socket.send_json(self.envelope(event, payload))
        except Exception:
            logger.info("Dropping session %s after failed delivery", session_id)
            self.disconnect(session_id)
