"""Reminder domain model.

A reminder pairs a delivery target and message with a schedule
descriptor (one-time, interval window or a list of specific times) and
a set of gates (weekdays, every-N-weeks, calendar date range) evaluated
in the reminder's own fixed-offset timezone.

``timezone_offset_minutes`` follows the browser convention: it is the
number of minutes local time lags UTC, so UTC-8 is ``480`` and UTC+2 is
``-120``.  Weekdays are numbered 0 (Sunday) to 6 (Saturday).
"""

from __future__ import annotations

import re
from datetime import date, datetime, timezone
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

MIN_INTERVAL_MINUTES = 5
MAX_TIMEZONE_OFFSET_MINUTES = 14 * 60

_TIME_RE = re.compile(r"^(\d{1,2}):(\d{2})$")
_COLOR_RE = re.compile(r"^#[0-9a-fA-F]{6}$")


class TimeOfDay(BaseModel):
    """A wall-clock time with minute precision."""

    model_config = ConfigDict(frozen=True)

    hours: int = Field(ge=0, le=23)
    minutes: int = Field(ge=0, le=59)

    @classmethod
    def parse(cls, value: str) -> TimeOfDay:
        """Parse a 24-hour ``HH:MM`` string. Raises ValueError when malformed."""
        match = _TIME_RE.match(value.strip()) if isinstance(value, str) else None
        if not match:
            raise ValueError(f"Invalid time {value!r}, use HH:MM (24-hour format)")
        hours, minutes = int(match.group(1)), int(match.group(2))
        if hours > 23 or minutes > 59:
            raise ValueError(f"Invalid time {value!r}, use HH:MM (24-hour format)")
        return cls(hours=hours, minutes=minutes)

    @classmethod
    def from_minutes(cls, total: int) -> TimeOfDay:
        return cls(hours=total // 60, minutes=total % 60)

    @property
    def total_minutes(self) -> int:
        return self.hours * 60 + self.minutes

    def format_12h(self) -> str:
        suffix = "PM" if self.hours >= 12 else "AM"
        return f"{self.hours % 12 or 12}:{self.minutes:02d} {suffix}"

    def __str__(self) -> str:
        return f"{self.hours:02d}:{self.minutes:02d}"


# ---------------------------------------------------------------------------
# Schedule descriptors
# ---------------------------------------------------------------------------


class OneTimeSchedule(BaseModel):
    kind: Literal["one_time"] = "one_time"
    time: TimeOfDay

    def slots(self) -> list[int]:
        return [self.time.total_minutes]


class IntervalSchedule(BaseModel):
    """Fire every ``interval_minutes`` from ``start_time`` up to and including ``end_time``."""

    kind: Literal["interval"] = "interval"
    start_time: TimeOfDay
    end_time: TimeOfDay
    interval_minutes: int

    @field_validator("interval_minutes")
    @classmethod
    def check_interval(cls, v: int) -> int:
        if v < MIN_INTERVAL_MINUTES:
            raise ValueError(f"Interval must be at least {MIN_INTERVAL_MINUTES} minutes")
        return v

    @model_validator(mode="after")
    def check_window(self) -> IntervalSchedule:
        if self.end_time.total_minutes < self.start_time.total_minutes:
            raise ValueError("End time must not be before start time")
        return self

    def slots(self) -> list[int]:
        return list(
            range(
                self.start_time.total_minutes,
                self.end_time.total_minutes + 1,
                self.interval_minutes,
            )
        )


class SpecificTimesSchedule(BaseModel):
    kind: Literal["specific_times"] = "specific_times"
    times: list[TimeOfDay]

    @field_validator("times")
    @classmethod
    def sort_times(cls, v: list[TimeOfDay]) -> list[TimeOfDay]:
        if not v:
            raise ValueError("At least one time is required")
        unique = {t.total_minutes: t for t in v}
        return [unique[m] for m in sorted(unique)]

    def slots(self) -> list[int]:
        return [t.total_minutes for t in self.times]


Schedule = Annotated[
    Union[OneTimeSchedule, IntervalSchedule, SpecificTimesSchedule],
    Field(discriminator="kind"),
]


# ---------------------------------------------------------------------------
# Gates and presentation
# ---------------------------------------------------------------------------


class DateRangeMode(str, Enum):
    NONE = "none"
    TODAY = "today"
    START = "start"
    END = "end"
    RANGE = "range"


class WeekRepeat(BaseModel):
    every_n_weeks: int = Field(default=1, ge=1)
    anchor_date: date | None = None


def _check_color(v: str | None) -> str | None:
    if v is not None and not _COLOR_RE.match(v):
        raise ValueError(f"Invalid color {v!r}, use #rrggbb")
    return v


class ReminderTarget(BaseModel):
    channel_id: str = Field(min_length=1)
    guild_id: str | None = None
    role_id: str | None = None  # role to mention in front of the message

    @property
    def mention(self) -> str | None:
        return f"<@&{self.role_id}>" if self.role_id else None


class ReminderContent(BaseModel):
    message: str = Field(min_length=1)  # supports {time} and {relative}
    title: str | None = None
    color: str | None = None

    @field_validator("color")
    @classmethod
    def check_color(cls, v: str | None) -> str | None:
        return _check_color(v)


class PreWarning(BaseModel):
    minutes_before: int = Field(ge=1)
    message: str = Field(min_length=1)
    title: str | None = None
    color: str | None = None

    @field_validator("color")
    @classmethod
    def check_color(cls, v: str | None) -> str | None:
        return _check_color(v)


# ---------------------------------------------------------------------------
# Reminder
# ---------------------------------------------------------------------------


def _as_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class Reminder(BaseModel):
    """A configured recurring or one-shot reminder."""

    id: int
    target: ReminderTarget
    content: ReminderContent
    schedule: Schedule

    days_of_week: list[int] | None = None
    week_repeat: WeekRepeat | None = None
    date_range_mode: DateRangeMode = DateRangeMode.NONE
    start_date: date | None = None
    end_date: date | None = None
    timezone_offset_minutes: int = 0

    pre_warning: PreWarning | None = None

    # Runtime state; next_run is None exactly when the reminder is inactive
    next_run: datetime | None = None
    is_active: bool = False
    fired_at: datetime | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @field_validator("days_of_week")
    @classmethod
    def normalise_days(cls, v: list[int] | None) -> list[int] | None:
        if not v:
            return None
        if any(d < 0 or d > 6 for d in v):
            raise ValueError("Days of week must be between 0 (Sunday) and 6 (Saturday)")
        return sorted(set(v))

    @field_validator("timezone_offset_minutes")
    @classmethod
    def check_offset(cls, v: int) -> int:
        if abs(v) > MAX_TIMEZONE_OFFSET_MINUTES:
            raise ValueError("Timezone offset must be within 14 hours of UTC")
        return v

    @field_validator("next_run", "fired_at", "created_at")
    @classmethod
    def normalise_instants(cls, v: datetime | None) -> datetime | None:
        return _as_utc(v)

    @model_validator(mode="after")
    def check_gates(self) -> Reminder:
        mode = self.date_range_mode
        if mode in (DateRangeMode.START, DateRangeMode.RANGE, DateRangeMode.TODAY) and not self.start_date:
            raise ValueError(f"Date range mode '{mode.value}' requires a start date")
        if mode in (DateRangeMode.END, DateRangeMode.RANGE) and not self.end_date:
            raise ValueError(f"Date range mode '{mode.value}' requires an end date")
        if self.start_date and self.end_date and self.end_date < self.start_date:
            raise ValueError("End date must not be before start date")
        self.is_active = self.next_run is not None
        return self

    def set_next_run(self, value: datetime | None) -> None:
        """Update ``next_run`` and keep ``is_active`` consistent with it."""
        self.next_run = _as_utc(value)
        self.is_active = self.next_run is not None

    def to_record(self) -> dict[str, Any]:
        """Serialise to the JSON-safe record kept by the durable store."""
        return self.model_dump(mode="json")

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> Reminder:
        return cls.model_validate(record)
