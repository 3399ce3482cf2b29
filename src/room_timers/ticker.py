"""Recurring tick sources for running timers."""

import asyncio
import logging
from collections.abc import Awaitable, Callable

from room_timers.models import Timer

logger = logging.getLogger(__name__)

# ============================================================
# CONSTANTS
# ============================================================

DEFAULT_TICK_PERIOD = 0.1
DEFAULT_TICK_INCREMENT = 0.1

TickCallback = Callable[[float], Awaitable[None]]


# ============================================================
# TICK HANDLE
# ============================================================


class TickHandle:
    """Ownership token for one timer's tick task."""

    def __init__(self, timer_id: str):
        self.timer_id = timer_id
        self._task: asyncio.Task | None = None
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        """Cancel the tick task. Safe to call more than once."""
        self._cancelled = True
        if self._task and not self._task.done():
            self._task.cancel()

    def __repr__(self) -> str:
        return f"<TickHandle timer={self.timer_id} cancelled={self._cancelled}>"


# ============================================================
# SCHEDULER
# ============================================================


class TickerScheduler:
    """Runs at most one tick task per timer.

    Each tick takes ``guard`` (the owning room's lock) before touching the
    timer, so a tick can never interleave with a stop or delete of the
    same timer.
    """

    def __init__(self, period: float = DEFAULT_TICK_PERIOD, increment: float = DEFAULT_TICK_INCREMENT):
        if period <= 0:
            raise ValueError("Tick period must be positive")
        if increment <= 0:
            raise ValueError("Tick increment must be positive")
        self.period = period
        self.increment = increment
        self._handles: set[TickHandle] = set()

    @property
    def active_count(self) -> int:
        return len(self._handles)

    def start(self, timer: Timer, on_tick: TickCallback, guard: asyncio.Lock) -> TickHandle:
        """Start ticking ``timer``; returns the existing handle if already ticking."""
        if timer.tick_handle is not None:
            return timer.tick_handle

        handle = TickHandle(timer.id)
        handle._task = asyncio.create_task(
            self._run(timer, handle, on_tick, guard), name=f"ticker-{timer.id}"
        )
        timer.tick_handle = handle
        self._handles.add(handle)
        return handle

    def stop(self, timer: Timer) -> bool:
        """Cancel the timer's tick task. Returns False if it was not ticking."""
        handle = timer.tick_handle
        if handle is None:
            return False

        timer.tick_handle = None
        handle.cancel()
        self._handles.discard(handle)
        return True

    def shutdown(self) -> None:
        """Cancel every tick task still alive."""
        for handle in list(self._handles):
            handle.cancel()
        self._handles.clear()

    async def _run(self, timer: Timer, handle: TickHandle, on_tick: TickCallback, guard: asyncio.Lock):
        """Tick loop - advances the count every period."""
        try:
            while not handle.cancelled:
                await asyncio.sleep(self.period)
                async with guard:
                    if handle.cancelled:
                        return
                    timer.count += self.increment
                    await on_tick(timer.count)

        except asyncio.CancelledError:
            pass
        except Exception:
            logger.exception("Tick loop for timer %s failed", timer.id)
            if timer.tick_handle is handle:
                timer.tick_handle = None
        finally:
            self._handles.discard(handle)
