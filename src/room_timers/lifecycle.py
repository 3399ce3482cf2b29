"""
Timer lifecycle.

Every operation runs under the owning room's lock: the in-memory
transition is applied first, the store write is queued behind the
room's earlier writes, the room is notified, and only then (lock
released) is the store write awaited.
Store failures are logged and never undo memory or suppress a broadcast.
"""

import asyncio
import functools
import logging
from typing import Any

from room_timers.broadcast import RoomBroadcaster, Socket
from room_timers.models import Room, ServerEvent, Timer, TimerSnapshot
from room_timers.registry import RoomRegistry
from room_timers.store import TimerStore
from room_timers.ticker import TickerScheduler

logger = logging.getLogger(__name__)

DEFAULT_STORE_TIMEOUT = 5.0


class TimerLifecycle:
    """Create/resume/stop/reset/rename/delete timers across rooms."""

    def __init__(
        self,
        registry: RoomRegistry,
        ticker: TickerScheduler,
        store: TimerStore,
        gateway: RoomBroadcaster,
        store_timeout: float = DEFAULT_STORE_TIMEOUT,
    ):
        self.registry = registry
        self.ticker = ticker
        self.store = store
        self.gateway = gateway
        self.store_timeout = store_timeout

        # Tail of each room's store queue; calls within a room run in submission order
        self._queues: dict[str, asyncio.Task] = {}

    # ------------------------------------------------------------
    # store plumbing
    # ------------------------------------------------------------

    def _submit(self, room_id: str, fn, *args: Any, **kwargs: Any) -> asyncio.Task:
        """Queue a store call behind the room's earlier calls."""
        call = functools.partial(fn, *args, **kwargs)
        task = asyncio.create_task(self._run_after(self._queues.get(room_id), call))
        self._queues[room_id] = task
        task.add_done_callback(functools.partial(self._dequeue, room_id))
        return task

    @staticmethod
    async def _run_after(previous: asyncio.Task | None, call):
        if previous is not None:
            # The earlier call's outcome is reported by whoever queued it
            await asyncio.wait([previous])
        return await asyncio.to_thread(call)

    def _dequeue(self, room_id: str, task: asyncio.Task):
        if self._queues.get(room_id) is task:
            del self._queues[room_id]

    @staticmethod
    def _report_late(description: str, task: asyncio.Task):
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error("Failed to %s after timing out", description, exc_info=error)

    async def _wait(self, pending: asyncio.Task, description: str):
        """Bound the wait on a queued call; a timeout leaves the call queued."""
        try:
            return await asyncio.wait_for(asyncio.shield(pending), timeout=self.store_timeout)
        except TimeoutError:
            pending.add_done_callback(functools.partial(self._report_late, description))
            raise

    async def _settle(self, pending: asyncio.Task, action: str, room_id: str, timer_id: str) -> bool:
        """Wait for a queued store call; log instead of raising."""
        description = f"persist {action} of timer {timer_id} in room {room_id}"
        try:
            await self._wait(pending, description)
            return True
        except TimeoutError:
            logger.warning(
                "Timed out after %.1fs persisting %s of timer %s in room %s; the write stays queued",
                self.store_timeout, action, timer_id, room_id,
            )
        except Exception:
            logger.exception("Failed to persist %s of timer %s in room %s", action, timer_id, room_id)
        return False

    async def _reconcile(self, room: Room) -> int:
        """Load stored timers the room does not already hold in memory."""
        try:
            pending = self._submit(room.id, self.store.find, room.id)
            records = await self._wait(pending, f"load timers for room {room.id}")
        except TimeoutError:
            logger.warning("Timed out loading timers for room %s; serving memory only", room.id)
            return 0
        except Exception:
            logger.exception("Failed to load timers for room %s; serving memory only", room.id)
            return 0

        restored = 0
        for record in records:
            if self.registry.add_restored(room.id, record):
                restored += 1
        if restored:
            logger.info("Restored %d timer(s) into room %s", restored, room.id)
        return restored

    # ------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------

    @staticmethod
    def _ignored(action: str, room_id: str, timer_id: str | None = None):
        if timer_id is None:
            logger.debug("Ignoring %s for unknown room %s", action, room_id)
        else:
            logger.debug("Ignoring %s for timer %s in room %s", action, timer_id, room_id)

    async def _on_tick(self, room_id: str, timer_id: str, count: float):
        await self.gateway.to_room(room_id, ServerEvent.TIMER_UPDATE, {"timerId": timer_id, "count": count})

    # ------------------------------------------------------------
    # membership
    # ------------------------------------------------------------

    async def join(self, room_id: str, session_id: str, socket: Socket | None = None) -> list[dict]:
        """Subscribe a session, reconcile the room with the store, send it the room's timers."""
        room = self.registry.ensure_room(room_id)

        async with room.lock:
            await self._reconcile(room)
            timers = [snapshot.to_wire() for snapshot in room.snapshot()]
            # Subscribed under the lock so no room event can precede the snapshot
            self.gateway.join(room_id, session_id, socket)
            await self.gateway.to_session(session_id, ServerEvent.ALL_TIMERS, timers)

        logger.info("Session %s joined room %s (%d timers)", session_id, room_id, len(timers))
        return timers

    def leave(self, room_id: str, session_id: str):
        self.gateway.leave(room_id, session_id)
        logger.info("Session %s left room %s", session_id, room_id)

    def disconnect(self, session_id: str):
        self.gateway.disconnect(session_id)

    def snapshot(self, room_id: str) -> list[TimerSnapshot] | None:
        room = self.registry.get_room(room_id)
        if room is None:
            return None
        return room.snapshot()

    # ------------------------------------------------------------
    # timer operations
    # ------------------------------------------------------------

    async def create(self, room_id: str) -> Timer | None:
        room = self.registry.get_room(room_id)
        if room is None:
            self._ignored("create", room_id)
            return None

        async with room.lock:
            timer = self.registry.create_timer(room_id)
            pending = self._submit(room_id, self.store.create, timer.to_record(room_id))
            await self.gateway.to_room(
                room_id,
                ServerEvent.TIMER_CREATED,
                {"timerId": timer.id, "count": timer.count, "note": timer.note},
            )

        logger.info("Timer %s created in room %s", timer.id, room_id)
        await self._settle(pending, "create", room_id, timer.id)
        return timer

    async def resume(self, room_id: str, timer_id: str) -> bool:
        room = self.registry.get_room(room_id)
        if room is None:
            self._ignored("resume", room_id)
            return False

        async with room.lock:
            timer = self.registry.get_timer(room_id, timer_id)
            if timer is None or timer.is_running:
                self._ignored("resume", room_id, timer_id)
                return False

            self.ticker.start(timer, functools.partial(self._on_tick, room_id, timer_id), room.lock)
            await self.gateway.to_room(
                room_id, ServerEvent.TIMER_STATUS, {"timerId": timer_id, "isRunning": True}
            )
        return True

    async def stop(self, room_id: str, timer_id: str) -> bool:
        room = self.registry.get_room(room_id)
        if room is None:
            self._ignored("stop", room_id)
            return False

        async with room.lock:
            timer = self.registry.get_timer(room_id, timer_id)
            if timer is None or not timer.is_running:
                self._ignored("stop", room_id, timer_id)
                return False

            self.ticker.stop(timer)
            pending = self._submit(
                room_id, self.store.upsert, room_id, timer_id, count=timer.count, is_running=False
            )
            await self.gateway.to_room(
                room_id, ServerEvent.TIMER_STATUS, {"timerId": timer_id, "isRunning": False}
            )

        await self._settle(pending, "stop", room_id, timer_id)
        return True

    async def reset(self, room_id: str, timer_id: str) -> bool:
        """Zero the count. A running timer keeps ticking from zero."""
        room = self.registry.get_room(room_id)
        if room is None:
            self._ignored("reset", room_id)
            return False

        async with room.lock:
            timer = self.registry.get_timer(room_id, timer_id)
            if timer is None:
                self._ignored("reset", room_id, timer_id)
                return False

            timer.count = 0.0
            pending = self._submit(
                room_id, self.store.upsert, room_id, timer_id, count=0.0, is_running=False
            )
            await self.gateway.to_room(room_id, ServerEvent.TIMER_UPDATE, {"timerId": timer_id, "count": 0})

        await self._settle(pending, "reset", room_id, timer_id)
        return True

    async def delete(self, room_id: str, timer_id: str) -> bool:
        room = self.registry.get_room(room_id)
        if room is None:
            self._ignored("delete", room_id)
            return False

        async with room.lock:
            timer = self.registry.delete_timer(room_id, timer_id)
            if timer is None:
                self._ignored("delete", room_id, timer_id)
                return False

            self.ticker.stop(timer)
            pending = self._submit(room_id, self.store.delete, room_id, timer_id)
            await self.gateway.to_room(room_id, ServerEvent.TIMER_DELETED, timer_id)

        logger.info("Timer %s deleted from room %s", timer_id, room_id)
        await self._settle(pending, "delete", room_id, timer_id)
        return True

    async def update_note(self, room_id: str, timer_id: str, note: str) -> bool:
        room = self.registry.get_room(room_id)
        if room is None:
            self._ignored("update_note", room_id)
            return False

        async with room.lock:
            timer = self.registry.get_timer(room_id, timer_id)
            if timer is None:
                self._ignored("update_note", room_id, timer_id)
                return False

            timer.note = note
            pending = self._submit(room_id, self.store.update_field, room_id, timer_id, "note", note)
            await self.gateway.to_room(
                room_id, ServerEvent.NOTE_UPDATED, {"timerId": timer_id, "note": note}
            )

        await self._settle(pending, "note update", room_id, timer_id)
        return True

    # ------------------------------------------------------------
    # teardown
    # ------------------------------------------------------------

    async def shutdown(self):
        """Stop all tickers, checkpoint running counts, and drain queued store calls."""
        checkpoints = []
        for room, timer in self.registry.running_timers():
            async with room.lock:
                if self.ticker.stop(timer):
                    pending = self._submit(
                        room.id, self.store.upsert, room.id, timer.id, count=timer.count, is_running=False
                    )
                    checkpoints.append((pending, room.id, timer.id))
        self.ticker.shutdown()

        for pending, room_id, timer_id in checkpoints:
            await self._settle(pending, "checkpoint", room_id, timer_id)
        if checkpoints:
            logger.info("Checkpointed %d running timer(s)", len(checkpoints))

        # Writes that outlived their caller's timeout still finish before the store closes
        if self._queues:
            await asyncio.wait(list(self._queues.values()))
