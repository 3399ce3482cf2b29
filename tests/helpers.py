"""Test doubles shared across the test suite."""

import time

from room_timers.models import TimerRecord
from room_timers.store import TimerStore

# Fast ticks keep timing tests short
TEST_TICK_PERIOD = 0.05
TEST_TICK_INCREMENT = 0.1


class RecordingSocket:
    """Stands in for a WebSocket; keeps every frame sent to it."""

    def __init__(self, fail: bool = False):
        self.sent: list[dict] = []
        self.fail = fail

    async def send_json(self, data):
        if self.fail:
            raise ConnectionError("socket closed")
        self.sent.append(data)

    def types(self) -> list[str]:
        return [m["type"] for m in self.sent]

    def of_type(self, event: str) -> list:
        return [m["data"] for m in self.sent if m["type"] == event]

    def clear(self):
        self.sent.clear()


class FailingStore(TimerStore):
    """Every call raises, like a database that is down."""

    def __init__(self):
        self.calls: list[str] = []

    def _fail(self, name):
        self.calls.append(name)
        raise RuntimeError(f"store unavailable during {name}")

    def find(self, room_id: str) -> list[TimerRecord]:
        self._fail("find")

    def create(self, record):
        self._fail("create")

    def upsert(self, room_id, timer_id, **fields):
        self._fail("upsert")

    def update_field(self, room_id, timer_id, field, value):
        self._fail("update_field")

    def delete(self, room_id, timer_id):
        self._fail("delete")


class SlowStore(TimerStore):
    """Every call blocks for ``delay`` seconds before succeeding."""

    def __init__(self, delay: float):
        self.delay = delay

    def find(self, room_id):
        time.sleep(self.delay)
        return []

    def create(self, record):
        time.sleep(self.delay)

    def upsert(self, room_id, timer_id, **fields):
        time.sleep(self.delay)

    def update_field(self, room_id, timer_id, field, value):
        time.sleep(self.delay)

    def delete(self, room_id, timer_id):
        time.sleep(self.delay)


class DelayedStore(TimerStore):
    """Delegates to ``inner``, blocking first on the chosen methods (and room)."""

    def __init__(self, inner: TimerStore, delay: float, methods=("create",), room_id: str | None = None):
        self.inner = inner
        self.delay = delay
        self.methods = set(methods)
        self.room_id = room_id

    def _pause(self, name, room_id):
        if name in self.methods and self.room_id in (None, room_id):
            time.sleep(self.delay)

    def find(self, room_id):
        self._pause("find", room_id)
        return self.inner.find(room_id)

    def create(self, record):
        self._pause("create", record.room_id)
        self.inner.create(record)

    def upsert(self, room_id, timer_id, **fields):
        self._pause("upsert", room_id)
        self.inner.upsert(room_id, timer_id, **fields)

    def update_field(self, room_id, timer_id, field, value):
        self._pause("update_field", room_id)
        self.inner.update_field(room_id, timer_id, field, value)

    def delete(self, room_id, timer_id):
        self._pause("delete", room_id)
        self.inner.delete(room_id, timer_id)
