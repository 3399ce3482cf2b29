"""Timer entity model, rooms, and wire payloads."""

from __future__ import annotations

import asyncio
from enum import StrEnum
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

if TYPE_CHECKING:
    from room_timers.ticker import TickHandle

# ============================================================
# CONSTANTS
# ============================================================

MAX_ROOM_ID_LENGTH = 200
MAX_NOTE_LENGTH = 10_000


# ============================================================
# EVENTS
# ============================================================


class ClientEvent(StrEnum):
    JOIN_ROOM = "join_room"
    LEAVE_ROOM = "leave_room"
    CREATE_TIMER = "create_timer"
    RESUME_TIMER = "resume_timer"
    STOP_TIMER = "stop_timer"
    RESET_TIMER = "reset_timer"
    DELETE_TIMER = "delete_timer"
    UPDATE_NOTE = "update_note"
    PING = "ping"


class ServerEvent(StrEnum):
    ALL_TIMERS = "all_timers"
    TIMER_CREATED = "timer_created"
    TIMER_STATUS = "timer_status"
    TIMER_UPDATE = "timer_update"
    TIMER_DELETED = "timer_deleted"
    NOTE_UPDATED = "note_updated"
    PONG = "pong"
    ERROR = "error"


# ============================================================
# WIRE MODELS
# ============================================================


class WireModel(BaseModel):
    """Base for camelCase payloads exchanged with clients."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        coerce_numbers_to_str=True,
    )

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


class ClientMessage(BaseModel):
    type: str = Field(..., min_length=1, max_length=64)
    data: Any = None


class RoomRequest(WireModel):
    room_id: str = Field(..., min_length=1, max_length=MAX_ROOM_ID_LENGTH)


class TimerRequest(RoomRequest):
    timer_id: str = Field(..., min_length=1, max_length=64)


class NoteRequest(TimerRequest):
    note: str = Field("", max_length=MAX_NOTE_LENGTH)


class TimerSnapshot(WireModel):
    timer_id: str
    count: float
    note: str
    is_running: bool


class TimerRecord(WireModel):
    """Durable projection of a timer, keyed by (room_id, timer_id)."""

    room_id: str
    timer_id: str
    count: float = 0.0
    note: str = ""
    is_running: bool = False


# ============================================================
# ENTITIES
# ============================================================


class Timer:
    """A counter inside a room.

    ``tick_handle`` is set exactly while the timer is running, so
    ``is_running`` is derived from it rather than stored separately.
    """

    def __init__(self, timer_id: str, count: float = 0.0, note: str = ""):
        self.id = timer_id
        self.count = count
        self.note = note
        self.tick_handle: TickHandle | None = None

    @property
    def is_running(self) -> bool:
        return self.tick_handle is not None

    def to_snapshot(self) -> TimerSnapshot:
        return TimerSnapshot(
            timer_id=self.id,
            count=self.count,
            note=self.note,
            is_running=self.is_running,
        )

    def to_record(self, room_id: str) -> TimerRecord:
        # Ticking state is never durable.
        return TimerRecord(
            room_id=room_id,
            timer_id=self.id,
            count=self.count,
            note=self.note,
            is_running=False,
        )

    @classmethod
    def from_record(cls, record: TimerRecord) -> Timer:
        return cls(timer_id=record.timer_id, count=record.count, note=record.note)

    def __repr__(self) -> str:
        return f"<Timer id={self.id} count={self.count:.1f} running={self.is_running}>"


class Room:
    """Timers of one room plus the lock that serializes work on them."""

    def __init__(self, room_id: str):
        self.id = room_id
        self.timers: dict[str, Timer] = {}
        self.next_timer_id = 1

        # Serialization domain for lifecycle operations and ticks
        self.lock = asyncio.Lock()

    def allocate_timer_id(self) -> str:
        timer_id = str(self.next_timer_id)
        self.next_timer_id += 1
        return timer_id

    def snapshot(self) -> list[TimerSnapshot]:
        return [timer.to_snapshot() for timer in self.timers.values()]
