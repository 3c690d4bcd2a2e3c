"""Request bodies for the reminder admin API.

Fields are snake_case in Python; the camelCase names used by the web
form (``channelId``, ``intervalMinutes``, ...) are accepted as aliases.
"""

from __future__ import annotations

from datetime import date

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from shared.schemas.reminders import DateRangeMode


class _RequestModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ReminderCreateRequest(_RequestModel):
    channel_id: str
    guild_id: str | None = None
    role_id: str | None = None
    message: str

    # Schedule: specific_times wins; otherwise start_time with interval_minutes
    # (0 or missing = once, or daily on days_of_week)
    start_time: str | None = None
    end_time: str | None = None
    interval_minutes: int | None = None
    specific_times: list[str] | None = None

    days_of_week: list[int] | None = None
    every_n_weeks: int = 1
    week_anchor_date: date | None = None

    # Derived from the dates when omitted
    date_range_mode: DateRangeMode | None = None
    start_date: date | None = None
    end_date: date | None = None
    timezone_offset: int = 0

    main_title: str | None = None
    main_color: str | None = None

    pre_warning_minutes: int | None = None
    pre_warning_message: str | None = None
    pre_warning_title: str | None = None
    pre_warning_color: str | None = None


class ReminderUpdateRequest(_RequestModel):
    """Partial edit: only the fields present in the body are changed."""

    channel_id: str | None = None
    guild_id: str | None = None
    role_id: str | None = None
    message: str | None = None

    start_time: str | None = None
    end_time: str | None = None
    interval_minutes: int | None = None
    specific_times: list[str] | None = None

    days_of_week: list[int] | None = None
    every_n_weeks: int | None = None
    week_anchor_date: date | None = None

    date_range_mode: DateRangeMode | None = None
    start_date: date | None = None
    end_date: date | None = None
    timezone_offset: int | None = None

    main_title: str | None = None
    main_color: str | None = None

    pre_warning_minutes: int | None = None
    pre_warning_message: str | None = None
    pre_warning_title: str | None = None
    pre_warning_color: str | None = None
