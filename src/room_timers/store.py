"""Durable store adapter for timer records."""

import logging
import threading
from abc import ABC, abstractmethod
from typing import Any

from sqlalchemy import Boolean, Float, Integer, String, Text, UniqueConstraint, create_engine, delete, select
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, sessionmaker
from sqlalchemy.pool import StaticPool

from room_timers.models import TimerRecord

logger = logging.getLogger(__name__)

# Fields a caller may change on an existing record
UPDATABLE_FIELDS = frozenset({"count", "note", "is_running"})


# ============================================================
# INTERFACE
# ============================================================


class TimerStore(ABC):
    """Keyed access to timer records by (room_id, timer_id).

    Implementations are synchronous; callers on the event loop are
    expected to run them off-loop.
    """

    def init(self) -> None:
        """Prepare the backing storage (create tables, etc.)."""

    def close(self) -> None:
        """Release backing resources."""

    @abstractmethod
    def find(self, room_id: str) -> list[TimerRecord]: ...

    @abstractmethod
    def create(self, record: TimerRecord) -> None: ...

    @abstractmethod
    def upsert(self, room_id: str, timer_id: str, **fields: Any) -> None: ...

    @abstractmethod
    def update_field(self, room_id: str, timer_id: str, field: str, value: Any) -> None: ...

    @abstractmethod
    def delete(self, room_id: str, timer_id: str) -> None: ...


def _check_fields(fields: dict[str, Any]) -> None:
    unknown = set(fields) - UPDATABLE_FIELDS
    if unknown:
        raise ValueError(f"Unknown timer record field(s): {', '.join(sorted(unknown))}")


# ============================================================
# SQLALCHEMY IMPLEMENTATION
# ============================================================


class Base(DeclarativeBase):
    pass


class TimerRow(Base):
    """Persisted timer. ``is_running`` is kept for record shape and is always False."""

    __tablename__ = "timers"
    __table_args__ = (UniqueConstraint("room_id", "timer_id", name="uq_timers_room_timer"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    room_id: Mapped[str] = mapped_column(String(200), nullable=False, index=True)
    timer_id: Mapped[str] = mapped_column(String(64), nullable=False)
    count: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    note: Mapped[str] = mapped_column(Text, nullable=False, default="")
    is_running: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    def to_record(self) -> TimerRecord:
        return TimerRecord(
            room_id=self.room_id,
            timer_id=self.timer_id,
            count=self.count,
            note=self.note,
            is_running=self.is_running,
        )

    def __repr__(self) -> str:
        return f"<TimerRow room={self.room_id} timer={self.timer_id} count={self.count}>"


class SqlTimerStore(TimerStore):
    """TimerStore backed by any SQLAlchemy database URL."""

    def __init__(self, url: str, echo: bool = False):
        self.url = url
        kwargs: dict[str, Any] = {"echo": echo}
        if url.startswith("sqlite"):
            kwargs["connect_args"] = {"check_same_thread": False}
            if ":memory:" in url or url in ("sqlite://", "sqlite:///"):
                # One shared connection, or every thread sees its own empty database
                kwargs["poolclass"] = StaticPool
        self._engine = create_engine(url, **kwargs)
        self._sessions = sessionmaker(bind=self._engine, expire_on_commit=False)
        # Serializes access to the shared connection of in-memory databases
        self._lock = threading.Lock()

    def init(self) -> None:
        Base.metadata.create_all(self._engine)
        logger.info("Timer store ready at %s", self._engine.url.render_as_string(hide_password=True))

    def close(self) -> None:
        self._engine.dispose()

    def _get_row(self, session, room_id: str, timer_id: str) -> TimerRow | None:
        return session.scalars(
            select(TimerRow).where(TimerRow.room_id == room_id, TimerRow.timer_id == timer_id)
        ).first()

    def find(self, room_id: str) -> list[TimerRecord]:
        with self._lock, self._sessions() as session:
            rows = session.scalars(
                select(TimerRow).where(TimerRow.room_id == room_id).order_by(TimerRow.id)
            ).all()
            return [row.to_record() for row in rows]

    def create(self, record: TimerRecord) -> None:
        self.upsert(
            record.room_id,
            record.timer_id,
            count=record.count,
            note=record.note,
            is_running=record.is_running,
        )

    def upsert(self, room_id: str, timer_id: str, **fields: Any) -> None:
        _check_fields(fields)
        with self._lock, self._sessions() as session, session.begin():
            row = self._get_row(session, room_id, timer_id)
            if row is None:
                row = TimerRow(room_id=room_id, timer_id=timer_id, count=0.0, note="", is_running=False)
                session.add(row)
            for name, value in fields.items():
                setattr(row, name, value)

    def update_field(self, room_id: str, timer_id: str, field: str, value: Any) -> None:
        _check_fields({field: value})
        with self._lock, self._sessions() as session, session.begin():
            row = self._get_row(session, room_id, timer_id)
            if row is None:
                logger.debug("No record for timer %s in room %s; %s not updated", timer_id, room_id, field)
                return
            setattr(row, field, value)

    def delete(self, room_id: str, timer_id: str) -> None:
        with self._lock, self._sessions() as session, session.begin():
            session.execute(
                delete(TimerRow).where(TimerRow.room_id == room_id, TimerRow.timer_id == timer_id)
            )
