"""Tests for the ticker scheduler."""

import asyncio

import pytest

from room_timers.models import Timer
from room_timers.ticker import TickerScheduler

from helpers import TEST_TICK_INCREMENT, TEST_TICK_PERIOD


class TickLog:
    def __init__(self):
        self.counts: list[float] = []

    async def __call__(self, count: float):
        self.counts.append(count)


class TestTickerScheduler:
    def test_rejects_bad_period(self):
        with pytest.raises(ValueError):
            TickerScheduler(period=0)

    def test_rejects_bad_increment(self):
        with pytest.raises(ValueError):
            TickerScheduler(increment=-1)

    async def test_start_sets_handle(self, ticker):
        timer = Timer("1")
        handle = ticker.start(timer, TickLog(), asyncio.Lock())
        assert timer.tick_handle is handle
        assert timer.is_running is True
        assert ticker.active_count == 1
        ticker.stop(timer)

    async def test_ticks_advance_count(self, ticker):
        timer = Timer("1")
        log = TickLog()
        ticker.start(timer, log, asyncio.Lock())
        await asyncio.sleep(TEST_TICK_PERIOD * 5.5)
        ticker.stop(timer)

        assert len(log.counts) >= 3
        assert log.counts[-1] == pytest.approx(timer.count)
        for previous, current in zip(log.counts, log.counts[1:]):
            assert current - previous == pytest.approx(TEST_TICK_INCREMENT)

    async def test_start_twice_keeps_one_ticker(self, ticker):
        timer = Timer("1")
        lock = asyncio.Lock()
        first = ticker.start(timer, TickLog(), lock)
        second = ticker.start(timer, TickLog(), lock)
        assert first is second
        assert ticker.active_count == 1
        ticker.stop(timer)

    async def test_stop(self, ticker):
        timer = Timer("1")
        log = TickLog()
        handle = ticker.start(timer, log, asyncio.Lock())
        await asyncio.sleep(TEST_TICK_PERIOD * 2.5)

        assert ticker.stop(timer) is True
        assert timer.tick_handle is None
        assert handle.cancelled is True
        assert ticker.active_count == 0

        frozen = timer.count
        ticks = len(log.counts)
        await asyncio.sleep(TEST_TICK_PERIOD * 3)
        assert timer.count == frozen
        assert len(log.counts) == ticks

    async def test_stop_when_idle_is_noop(self, ticker):
        assert ticker.stop(Timer("1")) is False

    async def test_stop_twice(self, ticker):
        timer = Timer("1")
        ticker.start(timer, TickLog(), asyncio.Lock())
        assert ticker.stop(timer) is True
        assert ticker.stop(timer) is False

    async def test_tick_waiting_on_guard_never_fires_after_stop(self, ticker):
        timer = Timer("1")
        lock = asyncio.Lock()
        log = TickLog()
        async with lock:
            ticker.start(timer, log, lock)
            # The tick is now blocked on the lock
            await asyncio.sleep(TEST_TICK_PERIOD * 3)
            ticker.stop(timer)

        await asyncio.sleep(TEST_TICK_PERIOD * 3)
        assert timer.count == 0
        assert log.counts == []

    async def test_handle_cancels_without_timer(self, ticker):
        timer = Timer("1")
        log = TickLog()
        handle = ticker.start(timer, log, asyncio.Lock())
        # Cancellation goes through the handle alone
        handle.cancel()
        await asyncio.sleep(TEST_TICK_PERIOD * 3)
        assert log.counts == []

    async def test_failing_callback_ends_loop(self, ticker, caplog):
        timer = Timer("1")

        async def explode(count):
            raise RuntimeError("boom")

        ticker.start(timer, explode, asyncio.Lock())
        await asyncio.sleep(TEST_TICK_PERIOD * 3)
        assert ticker.active_count == 0
        assert "Tick loop for timer 1 failed" in caplog.text
        assert timer.tick_handle is None
        assert timer.is_running is False

    async def test_timer_restarts_after_failed_loop(self, ticker):
        timer = Timer("1")

        async def explode(count):
            raise RuntimeError("boom")

        ticker.start(timer, explode, asyncio.Lock())
        await asyncio.sleep(TEST_TICK_PERIOD * 3)

        log = TickLog()
        handle = ticker.start(timer, log, asyncio.Lock())
        assert timer.tick_handle is handle
        await asyncio.sleep(TEST_TICK_PERIOD * 2.5)
        assert len(log.counts) >= 1
        ticker.stop(timer)

    async def test_shutdown_cancels_all(self, ticker):
        timers = [Timer(str(i)) for i in range(3)]
        logs = [TickLog() for _ in timers]
        for timer, log in zip(timers, logs):
            ticker.start(timer, log, asyncio.Lock())

        ticker.shutdown()
        assert ticker.active_count == 0
        await asyncio.sleep(TEST_TICK_PERIOD * 3)
        assert all(log.counts == [] for log in logs)
