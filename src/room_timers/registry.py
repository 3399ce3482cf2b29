"""Authoritative in-memory map of active rooms and their timers."""

import logging

from room_timers.models import Room, Timer, TimerRecord

logger = logging.getLogger(__name__)


class RoomRegistry:
    """Owns room creation and the timers inside each room.

    The registry takes no locks; callers hold ``room.lock`` around any
    mutation.
    """

    def __init__(self):
        self.rooms: dict[str, Room] = {}

    def ensure_room(self, room_id: str) -> Room:
        room = self.rooms.get(room_id)
        if room is None:
            room = Room(room_id)
            self.rooms[room_id] = room
            logger.info("Room %s created", room_id)
        return room

    def get_room(self, room_id: str) -> Room | None:
        return self.rooms.get(room_id)

    def get_timer(self, room_id: str, timer_id: str) -> Timer | None:
        room = self.rooms.get(room_id)
        if room is None:
            return None
        return room.timers.get(timer_id)

    def create_timer(self, room_id: str) -> Timer | None:
        room = self.rooms.get(room_id)
        if room is None:
            return None

        timer = Timer(room.allocate_timer_id())
        room.timers[timer.id] = timer
        return timer

    def delete_timer(self, room_id: str, timer_id: str) -> Timer | None:
        room = self.rooms.get(room_id)
        if room is None:
            return None
        return room.timers.pop(timer_id, None)

    def add_restored(self, room_id: str, record: TimerRecord) -> bool:
        """Insert a timer loaded from the store unless memory already has it."""
        room = self.rooms.get(room_id)
        if room is None or record.timer_id in room.timers:
            return False

        room.timers[record.timer_id] = Timer.from_record(record)

        # Keep new identifiers clear of restored ones
        if record.timer_id.isdigit():
            room.next_timer_id = max(room.next_timer_id, int(record.timer_id) + 1)
        return True

    def list_rooms(self) -> list[Room]:
        return list(self.rooms.values())

    def running_timers(self) -> list[tuple[Room, Timer]]:
        return [
            (room, timer)
            for room in self.rooms.values()
            for timer in room.timers.values()
            if timer.is_running
        ]
