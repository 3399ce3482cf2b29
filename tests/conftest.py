"""Shared pytest fixtures."""

import pytest

from room_timers.broadcast import RoomBroadcaster
from room_timers.lifecycle import TimerLifecycle
from room_timers.registry import RoomRegistry
from room_timers.store import SqlTimerStore
from room_timers.ticker import TickerScheduler

from helpers import TEST_TICK_INCREMENT, TEST_TICK_PERIOD, RecordingSocket


@pytest.fixture
def store():
    """Fresh in-memory SQLite store per test."""
    s = SqlTimerStore("sqlite:///:memory:")
    s.init()
    yield s
    s.close()


@pytest.fixture
def registry():
    return RoomRegistry()


@pytest.fixture
def ticker():
    return TickerScheduler(period=TEST_TICK_PERIOD, increment=TEST_TICK_INCREMENT)


@pytest.fixture
def gateway():
    return RoomBroadcaster()


@pytest.fixture
async def lifecycle(registry, ticker, store, gateway):
    lc = TimerLifecycle(registry, ticker, store, gateway, store_timeout=2.0)
    yield lc
    await lc.shutdown()


@pytest.fixture
def socket():
    return RecordingSocket()


@pytest.fixture
async def joined(lifecycle, socket):
    """Lifecycle with session ``s1`` already joined to room ``r``."""
    await lifecycle.join("r", "s1", socket)
    socket.clear()
    return lifecycle
