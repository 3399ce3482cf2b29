"""
Room Timers Service

Rooms of shared timers kept in sync over WebSockets.
Every change is broadcast to the room and persisted so rooms survive restarts.
"""

import asyncio
import logging
import uuid
from contextlib import asynccontextmanager

from fastapi import APIRouter, FastAPI, HTTPException, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from pydantic import ValidationError

from room_timers import __version__
from room_timers.broadcast import RoomBroadcaster
from room_timers.config import Settings
from room_timers.lifecycle import TimerLifecycle
from room_timers.models import (
    ClientEvent,
    ClientMessage,
    NoteRequest,
    RoomRequest,
    ServerEvent,
    TimerRequest,
    TimerSnapshot,
)
from room_timers.registry import RoomRegistry
from room_timers.store import SqlTimerStore, TimerStore
from room_timers.ticker import TickerScheduler

logger = logging.getLogger(__name__)

# ============================================================
# CONSTANTS
# ============================================================

KEEPALIVE_SECONDS = 30

TIMER_ACTIONS = {
    ClientEvent.RESUME_TIMER: TimerLifecycle.resume,
    ClientEvent.STOP_TIMER: TimerLifecycle.stop,
    ClientEvent.RESET_TIMER: TimerLifecycle.reset,
    ClientEvent.DELETE_TIMER: TimerLifecycle.delete,
}


# ============================================================
# MESSAGE HANDLING
# ============================================================


def _room_request(data) -> RoomRequest:
    # join_room / leave_room may carry the bare room id
    if isinstance(data, str):
        data = {"roomId": data}
    return RoomRequest.model_validate(data)


def _describe(error: ValidationError) -> str:
    first = error.errors()[0]
    location = ".".join(str(part) for part in first["loc"]) or "message"
    return f"Invalid {location}: {first['msg']}"


async def dispatch(lifecycle: TimerLifecycle, session_id: str, message: ClientMessage):
    """Route one client message to the lifecycle manager."""
    event = message.type
    data = message.data

    if event == ClientEvent.PING:
        await lifecycle.gateway.to_session(session_id, ServerEvent.PONG, data)

    elif event == ClientEvent.JOIN_ROOM:
        await lifecycle.join(_room_request(data).room_id, session_id)

    elif event == ClientEvent.LEAVE_ROOM:
        lifecycle.leave(_room_request(data).room_id, session_id)

    elif event == ClientEvent.CREATE_TIMER:
        await lifecycle.create(RoomRequest.model_validate(data).room_id)

    elif event == ClientEvent.UPDATE_NOTE:
        request = NoteRequest.model_validate(data)
        await lifecycle.update_note(request.room_id, request.timer_id, request.note)

    elif event in TIMER_ACTIONS:
        request = TimerRequest.model_validate(data)
        await TIMER_ACTIONS[ClientEvent(event)](lifecycle, request.room_id, request.timer_id)

    else:
        await lifecycle.gateway.to_session(
            session_id, ServerEvent.ERROR, {"message": f"Unknown message type: {event}"}
        )


async def handle_message(lifecycle: TimerLifecycle, session_id: str, raw: str):
    """Parse and dispatch a raw client frame; malformed frames get an error reply."""
    try:
        await dispatch(lifecycle, session_id, ClientMessage.model_validate_json(raw))
    except ValidationError as e:
        await lifecycle.gateway.to_session(session_id, ServerEvent.ERROR, {"message": _describe(e)})


# ============================================================
# ROUTES
# ============================================================

router = APIRouter()


@router.get("/health")
async def health(request: Request):
    """Health check endpoint."""
    lifecycle: TimerLifecycle = request.app.state.lifecycle
    return {
        "status": "healthy",
        "rooms_active": len(lifecycle.registry.rooms),
        "timers_running": lifecycle.ticker.active_count,
    }


@router.get("/rooms/{room_id}/timers", response_model=list[TimerSnapshot])
async def list_room_timers(room_id: str, request: Request):
    """Current in-memory timers of an active room."""
    timers = request.app.state.lifecycle.snapshot(room_id)
    if timers is None:
        raise HTTPException(status_code=404, detail="Room not found")
    return timers


@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    """
    WebSocket session. Frames are ``{"type": <event>, "data": <payload>}``.

    Events accepted:
    - join_room, leave_room: roomId (or a bare room id string)
    - create_timer: roomId
    - resume_timer, stop_timer, reset_timer, delete_timer: roomId, timerId
    - update_note: roomId, timerId, note
    - ping

    Events sent:
    - all_timers: snapshot of the room, to the joining session only
    - timer_created, timer_status, timer_update, timer_deleted, note_updated
    - pong, keepalive, error
    """
    lifecycle: TimerLifecycle = websocket.app.state.lifecycle
    session_id = f"session_{uuid.uuid4().hex[:8]}"

    await websocket.accept()
    lifecycle.gateway.connect(session_id, websocket)
    logger.info("Client connected: %s", session_id)

    try:
        while True:
            try:
                message = await asyncio.wait_for(websocket.receive(), timeout=KEEPALIVE_SECONDS)
            except TimeoutError:
                await websocket.send_json({"type": "keepalive", "data": None})
                continue

            if message["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(message.get("code", 1000))
            if message.get("text") is None:
                await lifecycle.gateway.to_session(
                    session_id, ServerEvent.ERROR, {"message": "Binary frames are not supported"}
                )
                continue

            await handle_message(lifecycle, session_id, message["text"])

    except WebSocketDisconnect:
        pass
    except Exception:
        logger.warning("WebSocket error for session %s", session_id, exc_info=True)
    finally:
        lifecycle.disconnect(session_id)
        logger.info("Client disconnected: %s", session_id)


# ============================================================
# FASTAPI APP
# ============================================================


def create_app(settings: Settings | None = None, store: TimerStore | None = None) -> FastAPI:
    """Build an app with its own registry, ticker, gateway and store."""
    settings = settings or Settings.from_env()
    store = store or SqlTimerStore(settings.database_url)

    lifecycle = TimerLifecycle(
        registry=RoomRegistry(),
        ticker=TickerScheduler(period=settings.tick_period, increment=settings.tick_increment),
        store=store,
        gateway=RoomBroadcaster(),
        store_timeout=settings.store_timeout,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        store.init()
        logger.info("Room Timers Service started")
        yield
        await lifecycle.shutdown()
        store.close()
        logger.info("Room Timers Service stopped")

    app = FastAPI(
        title="Room Timers Service",
        description="Real-time multi-room timer synchronization",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.lifecycle = lifecycle

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(router)
    return app


app = create_app()


# ============================================================
# MAIN
# ============================================================


def main():
    import uvicorn

    settings: Settings = app.state.settings
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    uvicorn.run(app, host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
