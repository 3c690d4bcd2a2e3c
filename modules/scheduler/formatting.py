"""Rendering of reminder deliveries into Notification payloads."""

from __future__ import annotations

from datetime import date, datetime

from shared.schemas.notifications import EmbedField, Notification
from shared.schemas.reminders import IntervalSchedule, OneTimeSchedule, Reminder

DEFAULT_MAIN_TITLE = "🔔 Reminder!"
DEFAULT_MAIN_COLOR = "#00ff00"
DEFAULT_PRE_WARNING_TITLE = "⚠️ Upcoming Event"
DEFAULT_PRE_WARNING_COLOR = "#ffaa00"

DAY_NAMES = ("Sun", "Mon", "Tue", "Wed", "Thu", "Fri", "Sat")


def discord_timestamp(instant: datetime, style: str) -> str:
    """Discord timestamp markup, e.g. ``<t:1760000000:R>``."""
    return f"<t:{int(instant.timestamp())}:{style}>"


def render_template(template: str, event_time: datetime) -> str:
    """Resolve ``{time}`` and ``{relative}`` against the logical fire instant."""
    return (
        template.replace("{time}", discord_timestamp(event_time, "t"))
        .replace("{relative}", discord_timestamp(event_time, "R"))
    )


def parse_color(value: str | None, default: str) -> int:
    return int((value or default).lstrip("#"), 16)


def _format_day(day: date) -> str:
    return f"{day.month}/{day.day}/{day.year}"


def describe_schedule(reminder: Reminder) -> str:
    """Short human description used in footers and listings."""
    schedule = reminder.schedule
    if isinstance(schedule, OneTimeSchedule):
        return "One-time"
    if isinstance(schedule, IntervalSchedule):
        return f"Every {schedule.interval_minutes} min"
    text = "Daily at " + ", ".join(t.format_12h() for t in schedule.times)
    if reminder.days_of_week:
        text += " on " + ", ".join(DAY_NAMES[d] for d in reminder.days_of_week)
    return text


def build_footer(reminder: Reminder) -> str:
    return f"Reminder ID: {reminder.id} | {describe_schedule(reminder)}"


def build_fields(reminder: Reminder) -> list[EmbedField]:
    fields: list[EmbedField] = []
    schedule = reminder.schedule
    if isinstance(schedule, IntervalSchedule):
        fields.append(
            EmbedField(
                name="Active Hours",
                value=f"{schedule.start_time.format_12h()} - {schedule.end_time.format_12h()}",
            )
        )
    dates = []
    if reminder.start_date:
        dates.append(f"From: {_format_day(reminder.start_date)}")
    if reminder.end_date:
        dates.append(f"Until: {_format_day(reminder.end_date)}")
    if dates:
        fields.append(EmbedField(name="Active Dates", value="\n".join(dates)))
    return fields


def build_main_notification(reminder: Reminder, event_time: datetime, now: datetime) -> Notification:
    content = reminder.content
    return Notification(
        platform_channel_id=reminder.target.channel_id,
        platform_server_id=reminder.target.guild_id,
        kind="main",
        mention=reminder.target.mention,
        title=content.title or DEFAULT_MAIN_TITLE,
        content=render_template(content.message, event_time),
        color=parse_color(content.color, DEFAULT_MAIN_COLOR),
        footer=build_footer(reminder),
        fields=build_fields(reminder),
        timestamp=now,
        reminder_id=reminder.id,
        event_time=event_time,
    )


def build_pre_warning_notification(reminder: Reminder, event_time: datetime, now: datetime) -> Notification:
    """Pre-warning payload; placeholders reference the main event, not ``now``."""
    warning = reminder.pre_warning
    if warning is None:
        raise ValueError(f"Reminder {reminder.id} has no pre-warning configured")
    return Notification(
        platform_channel_id=reminder.target.channel_id,
        platform_server_id=reminder.target.guild_id,
        kind="pre_warning",
        mention=reminder.target.mention,
        title=warning.title or DEFAULT_PRE_WARNING_TITLE,
        content=render_template(warning.message, event_time),
        color=parse_color(warning.color, DEFAULT_PRE_WARNING_COLOR),
        footer=f"Reminder ID: {reminder.id}",
        fields=[
            EmbedField(
                name="Main Event",
                value=f"{discord_timestamp(event_time, 'R')} ({discord_timestamp(event_time, 't')})",
            )
        ],
        timestamp=now,
        reminder_id=reminder.id,
        event_time=event_time,
    )
