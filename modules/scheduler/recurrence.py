"""Recurrence calculator: next eligible fire instant for a reminder.

Everything here is pure: no I/O, no clock reads.  ``now`` is always an
aware UTC datetime supplied by the caller.

Local time for a reminder is ``now - timezone_offset_minutes``.  Local
values are naive datetimes/dates; they are only ever compared with other
local values of the same reminder.

All schedule kinds funnel through the same three day gates:

- date range (``none | today | start | end | range``)
- weekday filter
- every-N-weeks parity relative to an anchor date
"""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone

from shared.schemas.reminders import DateRangeMode, OneTimeSchedule, Reminder

DEFAULT_HORIZON_DAYS = 365


# ---------------------------------------------------------------------------
# Local time helpers
# ---------------------------------------------------------------------------


def to_local(now: datetime, offset_minutes: int) -> datetime:
    """Shift an aware instant to the reminder's naive local wall clock."""
    return now.astimezone(timezone.utc).replace(tzinfo=None) - timedelta(minutes=offset_minutes)


def to_utc(local: datetime, offset_minutes: int) -> datetime:
    """Inverse of ``to_local``."""
    return (local + timedelta(minutes=offset_minutes)).replace(tzinfo=timezone.utc)


def local_date(instant: datetime, offset_minutes: int) -> date:
    return to_local(instant, offset_minutes).date()


def minute_of_day(local: datetime) -> int:
    return local.hour * 60 + local.minute


def slot_instant(day: date, minute: int, offset_minutes: int) -> datetime:
    """UTC instant of ``minute`` past local midnight on ``day``."""
    local = datetime(day.year, day.month, day.day) + timedelta(minutes=minute)
    return to_utc(local, offset_minutes)


def weekday_index(day: date) -> int:
    """Weekday with 0 = Sunday to 6 = Saturday."""
    return (day.weekday() + 1) % 7


# ---------------------------------------------------------------------------
# Gates
# ---------------------------------------------------------------------------


def passes_date_range(reminder: Reminder, day: date) -> bool:
    mode = reminder.date_range_mode
    if mode == DateRangeMode.NONE:
        return True
    if mode == DateRangeMode.TODAY:
        # "today" is anchored to the day the reminder was created for
        return day == reminder.start_date
    if mode in (DateRangeMode.START, DateRangeMode.RANGE) and day < reminder.start_date:
        return False
    if mode in (DateRangeMode.END, DateRangeMode.RANGE) and day > reminder.end_date:
        return False
    return True


def passes_day_filter(reminder: Reminder, day: date) -> bool:
    if not reminder.days_of_week:
        return True
    return weekday_index(day) in reminder.days_of_week


def week_anchor(reminder: Reminder) -> date:
    """Anchor for every-N-weeks counting.

    Explicit anchor first, then the start date when the range has one,
    then the local creation date.
    """
    if reminder.week_repeat and reminder.week_repeat.anchor_date:
        return reminder.week_repeat.anchor_date
    if reminder.start_date and reminder.date_range_mode in (
        DateRangeMode.START,
        DateRangeMode.RANGE,
        DateRangeMode.TODAY,
    ):
        return reminder.start_date
    return local_date(reminder.created_at, reminder.timezone_offset_minutes)


def passes_week_parity(reminder: Reminder, day: date) -> bool:
    repeat = reminder.week_repeat
    if repeat is None or repeat.every_n_weeks <= 1:
        return True
    weeks = (day - week_anchor(reminder)).days // 7
    return weeks >= 0 and weeks % repeat.every_n_weeks == 0


def is_day_eligible(reminder: Reminder, day: date) -> bool:
    return (
        passes_date_range(reminder, day)
        and passes_day_filter(reminder, day)
        and passes_week_parity(reminder, day)
    )


def range_exhausted(reminder: Reminder, day: date) -> bool:
    """True when no day on or after ``day`` can pass the date-range gate."""
    mode = reminder.date_range_mode
    if mode == DateRangeMode.TODAY:
        return day > reminder.start_date
    if mode in (DateRangeMode.END, DateRangeMode.RANGE):
        return day > reminder.end_date
    return False


def scan_horizon(reminder: Reminder, horizon_days: int = DEFAULT_HORIZON_DAYS) -> int:
    if reminder.week_repeat and reminder.week_repeat.every_n_weeks > 1:
        return max(horizon_days, reminder.week_repeat.every_n_weeks * 14)
    return horizon_days


def first_eligible_day(
    reminder: Reminder,
    start: date,
    horizon_days: int = DEFAULT_HORIZON_DAYS,
) -> date | None:
    """First day on or after ``start`` passing every gate, within the horizon."""
    for offset in range(scan_horizon(reminder, horizon_days) + 1):
        day = start + timedelta(days=offset)
        if range_exhausted(reminder, day):
            return None
        if is_day_eligible(reminder, day):
            return day
    return None


# ---------------------------------------------------------------------------
# Next run
# ---------------------------------------------------------------------------


def compute_next_run(
    reminder: Reminder,
    now: datetime,
    horizon_days: int = DEFAULT_HORIZON_DAYS,
) -> datetime | None:
    """Return the next eligible fire instant (UTC).

    Recurring schedules look strictly after the current local minute, which
    the fire gate owns.  A one-time reminder whose minute is the current one
    is still due, so its ``next_run`` is the start of this minute.

    - one-time: today at ``time`` if not yet passed, else the next eligible day
    - interval: the next ``start + k*step`` boundary inside ``[start, end]``,
      else the next eligible day's ``start``
    - specific times: the first listed time after now, else the next
      eligible day's first time

    ``None`` means no instant within the horizon satisfies the schedule and
    its gates; the reminder should be deactivated.
    """
    offset = reminder.timezone_offset_minutes
    local_now = to_local(now, offset)
    today = local_now.date()
    current = minute_of_day(local_now)
    slots = reminder.schedule.slots()
    earliest = current if isinstance(reminder.schedule, OneTimeSchedule) else current + 1

    if is_day_eligible(reminder, today):
        upcoming = [m for m in slots if m >= earliest]
        if upcoming:
            return slot_instant(today, upcoming[0], offset)

    day = first_eligible_day(reminder, today + timedelta(days=1), horizon_days)
    if day is None:
        return None
    return slot_instant(day, slots[0], offset)
