"""Pydantic schemas for the reminder services."""

from shared.schemas.common import HealthResponse, StatusResponse
from shared.schemas.notifications import EmbedField, Notification
from shared.schemas.reminders import (
    DateRangeMode,
    IntervalSchedule,
    OneTimeSchedule,
    PreWarning,
    Reminder,
    ReminderContent,
    ReminderTarget,
    SpecificTimesSchedule,
    TimeOfDay,
    WeekRepeat,
)

__all__ = [
    "DateRangeMode",
    "EmbedField",
    "HealthResponse",
    "IntervalSchedule",
    "Notification",
    "OneTimeSchedule",
    "PreWarning",
    "Reminder",
    "ReminderContent",
    "ReminderTarget",
    "SpecificTimesSchedule",
    "StatusResponse",
    "TimeOfDay",
    "WeekRepeat",
]
