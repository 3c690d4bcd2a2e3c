"""Shared test fixtures for the reminder test suite.

Provides reminder factories, a local-time helper, and mock transport,
store and Redis objects so scheduler tests run without infrastructure.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import date, datetime, timedelta, timezone
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from modules.scheduler.store import ReminderRegistry, StoreSnapshot
from modules.scheduler.worker import ReminderScheduler
from shared.schemas.reminders import (
    DateRangeMode,
    IntervalSchedule,
    OneTimeSchedule,
    Reminder,
    ReminderContent,
    ReminderTarget,
    SpecificTimesSchedule,
    TimeOfDay,
)

# Friday, weekday index 5
TODAY = date(2026, 10, 16)


def local(day: date, hhmm: str, offset: int = 0, second: int = 0) -> datetime:
    """UTC instant of the local wall-clock ``hhmm`` on ``day`` for ``offset``."""
    t = TimeOfDay.parse(hhmm)
    naive = datetime(day.year, day.month, day.day, t.hours, t.minutes, second)
    return (naive + timedelta(minutes=offset)).replace(tzinfo=timezone.utc)


@pytest.fixture
def at_local():
    return local


class FakeClock:
    """Callable clock returning a settable instant."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def clock():
    """Clock fixed at 09:45 UTC on the reference Friday."""
    return FakeClock(local(TODAY, "09:45"))


# ---------------------------------------------------------------------------
# Schedule and reminder factories
# ---------------------------------------------------------------------------


def one_time(hhmm: str) -> OneTimeSchedule:
    return OneTimeSchedule(time=TimeOfDay.parse(hhmm))


def interval(start: str, end: str, minutes: int) -> IntervalSchedule:
    return IntervalSchedule(
        start_time=TimeOfDay.parse(start),
        end_time=TimeOfDay.parse(end),
        interval_minutes=minutes,
    )


def specific(*times: str) -> SpecificTimesSchedule:
    return SpecificTimesSchedule(times=[TimeOfDay.parse(t) for t in times])


@pytest.fixture
def schedules():
    """Namespace of schedule builders: ``schedules.one_time("08:00")`` etc."""
    return SimpleNamespace(one_time=one_time, interval=interval, specific=specific)


@pytest.fixture
def make_reminder():
    """Factory for Reminder instances with sensible defaults."""

    def _make(
        schedule=None,
        reminder_id: int = 1,
        channel_id: str = "123456789",
        role_id: str | None = None,
        message: str = "Stand-up {relative}",
        days_of_week: list[int] | None = None,
        date_range_mode: DateRangeMode = DateRangeMode.NONE,
        start_date: date | None = None,
        end_date: date | None = None,
        offset: int = 0,
        next_run: datetime | None = None,
        created_at: datetime | None = None,
        **kwargs,
    ) -> Reminder:
        return Reminder(
            id=reminder_id,
            target=ReminderTarget(channel_id=channel_id, role_id=role_id),
            content=ReminderContent(message=message),
            schedule=schedule or interval("09:00", "17:00", 30),
            days_of_week=days_of_week,
            date_range_mode=date_range_mode,
            start_date=start_date,
            end_date=end_date,
            timezone_offset_minutes=offset,
            next_run=next_run,
            created_at=created_at or local(TODAY, "08:00", offset),
            **kwargs,
        )

    return _make


# ---------------------------------------------------------------------------
# Collaborator mocks
# ---------------------------------------------------------------------------


@pytest.fixture
def mock_transport():
    """Transport whose deliveries succeed unless reconfigured."""
    transport = AsyncMock()
    transport.deliver = AsyncMock(return_value=True)
    transport.deliver_pre_warning = AsyncMock(return_value=True)
    return transport


@pytest.fixture
def mock_store():
    """Durable store that starts empty and accepts every save."""
    store = AsyncMock()
    store.load_all = AsyncMock(return_value=StoreSnapshot())
    store.save_all = AsyncMock(return_value=True)
    store.close = AsyncMock()
    return store


@pytest.fixture
def mock_redis():
    """Mock async Redis client; one subscriber receives every publish."""
    redis = AsyncMock()
    redis.publish = AsyncMock(return_value=1)
    return redis


@pytest.fixture
def memory_redis():
    """Mock async Redis whose get, set and delete work against a plain dict."""
    data: dict[str, str] = {}
    redis = AsyncMock()
    redis.get = AsyncMock(side_effect=lambda key: data.get(key))
    redis.set = AsyncMock(side_effect=lambda key, value, ex=None: data.__setitem__(key, value))
    redis.delete = AsyncMock(side_effect=lambda key: data.pop(key, None))
    return redis


@pytest.fixture
def mock_db_session():
    session = AsyncMock()
    default_result = MagicMock()
    default_result.scalars.return_value.all.return_value = []
    session.execute = AsyncMock(return_value=default_result)
    session.add = MagicMock()
    return session


@pytest.fixture
def mock_session_factory(mock_db_session):
    """Mock async session factory compatible with ``async with factory() as session:``."""

    @asynccontextmanager
    async def _session_ctx():
        yield mock_db_session

    return MagicMock(side_effect=lambda: _session_ctx())


# ---------------------------------------------------------------------------
# Scheduler
# ---------------------------------------------------------------------------


@pytest.fixture
async def scheduler(mock_store, mock_transport, clock):
    """Scheduler over an empty, already-loaded registry; tasks cancelled on teardown."""
    registry = ReminderRegistry()
    registry.loaded = True
    sched = ReminderScheduler(registry, mock_store, mock_transport, clock=clock)
    yield sched
    await sched.shutdown()
