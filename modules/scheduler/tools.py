"""Reminder admin operations: validation, building and CRUD on the scheduler."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import ValidationError

from modules.scheduler.clock import Clock, utcnow
from modules.scheduler.errors import InvalidScheduleError, ReminderNotFoundError
from modules.scheduler.formatting import describe_schedule
from modules.scheduler.models import ReminderCreateRequest, ReminderUpdateRequest
from modules.scheduler.recurrence import local_date
from modules.scheduler.worker import ReminderScheduler
from shared.schemas.reminders import (
    MIN_INTERVAL_MINUTES,
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

# Fields that describe a start/interval schedule rather than a list of times
_WINDOW_FIELDS = ("start_time", "end_time", "interval_minutes")
# Fields an edit cannot clear
_NON_NULL_FIELDS = ("channel_id", "message", "every_n_weeks", "timezone_offset")


def _parse_time(value: str, label: str) -> TimeOfDay:
    try:
        return TimeOfDay.parse(value)
    except ValueError as e:
        raise InvalidScheduleError(f"{label}: {e}") from e


def _validation_message(error: ValidationError) -> str:
    first = error.errors()[0]
    location = ".".join(str(part) for part in first.get("loc", ()))
    message = first.get("msg", str(error)).removeprefix("Value error, ")
    return f"{location}: {message}" if location else message


def build_schedule(
    start_time: str | None,
    end_time: str | None,
    interval_minutes: int | None,
    specific_times: list[str] | None,
    days_of_week: list[int] | None,
) -> OneTimeSchedule | IntervalSchedule | SpecificTimesSchedule:
    """Turn the form fields into a schedule descriptor.

    An interval of 0 means "once": a one-time reminder, or a daily
    reminder at ``start_time`` when weekdays are selected.
    """
    if specific_times is not None:
        try:
            return SpecificTimesSchedule(times=[_parse_time(t, "specific_times") for t in specific_times])
        except ValidationError as e:
            raise InvalidScheduleError(_validation_message(e)) from e

    if not start_time:
        raise InvalidScheduleError("Start time is required")
    start = _parse_time(start_time, "start_time")

    interval = interval_minutes or 0
    if interval < 0 or 0 < interval < MIN_INTERVAL_MINUTES:
        raise InvalidScheduleError(
            f"Interval must be 0 (one-time) or at least {MIN_INTERVAL_MINUTES} minutes"
        )
    if interval == 0:
        if days_of_week:
            return SpecificTimesSchedule(times=[start])
        return OneTimeSchedule(time=start)

    if not end_time:
        raise InvalidScheduleError("End time is required for recurring reminders")
    end = _parse_time(end_time, "end_time")
    if end.total_minutes < start.total_minutes:
        raise InvalidScheduleError("End time must not be before start time")
    return IntervalSchedule(start_time=start, end_time=end, interval_minutes=interval)


def resolve_date_range_mode(request: ReminderCreateRequest) -> DateRangeMode:
    if request.date_range_mode is not None:
        return request.date_range_mode
    if request.start_date and request.end_date:
        return DateRangeMode.RANGE
    if request.start_date:
        return DateRangeMode.START
    if request.end_date:
        return DateRangeMode.END
    return DateRangeMode.NONE


def build_reminder(
    request: ReminderCreateRequest,
    reminder_id: int,
    now: datetime,
    created_at: datetime | None = None,
) -> Reminder:
    """Validate a request and build the (not yet scheduled) reminder.

    Raises InvalidScheduleError before anything is registered.
    """
    schedule = build_schedule(
        request.start_time,
        request.end_time,
        request.interval_minutes,
        request.specific_times,
        request.days_of_week,
    )

    pre_warning = None
    if request.pre_warning_minutes:
        if not request.pre_warning_message:
            raise InvalidScheduleError("Pre-warning message is required when pre-warning minutes are set")
        if (
            isinstance(schedule, IntervalSchedule)
            and request.pre_warning_minutes >= schedule.interval_minutes
        ):
            raise InvalidScheduleError("Pre-warning time must be less than interval")

    mode = resolve_date_range_mode(request)
    start_date = request.start_date
    if mode == DateRangeMode.TODAY:
        # Pin "today" to the local calendar date the reminder is created on
        start_date = local_date(created_at or now, request.timezone_offset)

    try:
        if request.pre_warning_minutes:
            pre_warning = PreWarning(
                minutes_before=request.pre_warning_minutes,
                message=request.pre_warning_message,
                title=request.pre_warning_title or None,
                color=request.pre_warning_color or None,
            )
        week_repeat = None
        if request.every_n_weeks != 1 or request.week_anchor_date:
            week_repeat = WeekRepeat(
                every_n_weeks=request.every_n_weeks,
                anchor_date=request.week_anchor_date,
            )
        return Reminder(
            id=reminder_id,
            target=ReminderTarget(
                channel_id=request.channel_id,
                guild_id=request.guild_id or None,
                role_id=request.role_id or None,
            ),
            content=ReminderContent(
                message=request.message,
                title=request.main_title or None,
                color=request.main_color or None,
            ),
            schedule=schedule,
            days_of_week=request.days_of_week,
            week_repeat=week_repeat,
            date_range_mode=mode,
            start_date=start_date,
            end_date=request.end_date,
            timezone_offset_minutes=request.timezone_offset,
            pre_warning=pre_warning,
            created_at=created_at or now,
        )
    except ValidationError as e:
        raise InvalidScheduleError(_validation_message(e)) from e


def request_from_reminder(reminder: Reminder) -> dict[str, Any]:
    """Express an existing reminder in request form, for partial edits."""
    schedule = reminder.schedule
    fields: dict[str, Any] = {
        "channel_id": reminder.target.channel_id,
        "guild_id": reminder.target.guild_id,
        "role_id": reminder.target.role_id,
        "message": reminder.content.message,
        "main_title": reminder.content.title,
        "main_color": reminder.content.color,
        "days_of_week": reminder.days_of_week,
        "every_n_weeks": reminder.week_repeat.every_n_weeks if reminder.week_repeat else 1,
        "week_anchor_date": reminder.week_repeat.anchor_date if reminder.week_repeat else None,
        "date_range_mode": reminder.date_range_mode,
        "start_date": reminder.start_date,
        "end_date": reminder.end_date,
        "timezone_offset": reminder.timezone_offset_minutes,
    }
    if isinstance(schedule, OneTimeSchedule):
        fields.update(start_time=str(schedule.time), interval_minutes=0)
    elif isinstance(schedule, IntervalSchedule):
        fields.update(
            start_time=str(schedule.start_time),
            end_time=str(schedule.end_time),
            interval_minutes=schedule.interval_minutes,
        )
    else:
        fields["specific_times"] = [str(t) for t in schedule.times]

    if reminder.pre_warning:
        fields.update(
            pre_warning_minutes=reminder.pre_warning.minutes_before,
            pre_warning_message=reminder.pre_warning.message,
            pre_warning_title=reminder.pre_warning.title,
            pre_warning_color=reminder.pre_warning.color,
        )
    return fields


def reminder_summary(reminder: Reminder) -> dict[str, Any]:
    data = reminder.to_record()
    data["schedule_description"] = describe_schedule(reminder)
    return data


class ReminderTools:
    """Admin operations over the running scheduler."""

    def __init__(self, scheduler: ReminderScheduler, clock: Clock = utcnow):
        self.scheduler = scheduler
        self.registry = scheduler.registry
        self.clock = clock

    async def create_reminder(self, request: ReminderCreateRequest) -> dict:
        # Validate before taking an id so a rejected request does not consume one
        reminder = build_reminder(request, reminder_id=0, now=self.clock())
        reminder.id = self.registry.next_id()
        await self.scheduler.add(reminder)
        return reminder_summary(reminder)

    async def update_reminder(self, reminder_id: int, request: ReminderUpdateRequest) -> dict:
        existing = self.registry.get(reminder_id)
        if existing is None:
            raise ReminderNotFoundError(reminder_id)

        changes = {
            name: value
            for name, value in request.model_dump(exclude_unset=True).items()
            if value is not None or name not in _NON_NULL_FIELDS
        }
        merged = request_from_reminder(existing)
        if any(name in changes for name in _WINDOW_FIELDS) and "specific_times" not in changes:
            merged.pop("specific_times", None)
        merged.update(changes)
        if "start_date" in changes or "end_date" in changes:
            if "date_range_mode" not in changes and existing.date_range_mode != DateRangeMode.TODAY:
                merged["date_range_mode"] = None

        try:
            merged_request = ReminderCreateRequest.model_validate(merged)
        except ValidationError as e:
            raise InvalidScheduleError(_validation_message(e)) from e

        reminder = build_reminder(
            merged_request,
            reminder_id=reminder_id,
            now=self.clock(),
            created_at=existing.created_at,
        )
        await self.scheduler.update(reminder)
        return reminder_summary(reminder)

    async def delete_reminder(self, reminder_id: int) -> dict:
        await self.scheduler.remove(reminder_id)
        return {"success": True, "id": reminder_id}

    async def reactivate_reminder(self, reminder_id: int) -> dict:
        reminder = await self.scheduler.reactivate(reminder_id)
        return reminder_summary(reminder)

    async def get_reminder(self, reminder_id: int) -> dict:
        reminder = self.registry.get(reminder_id)
        if reminder is None:
            raise ReminderNotFoundError(reminder_id)
        return reminder_summary(reminder)

    async def list_reminders(self, channel_id: str | None = None, active_only: bool = False) -> list[dict]:
        reminders = self.registry.all()
        if channel_id:
            reminders = [r for r in reminders if r.target.channel_id == channel_id]
        if active_only:
            reminders = [r for r in reminders if r.is_active]
        return [reminder_summary(r) for r in reminders]
