"""Fire gate: decides whether a reminder fires at the current tick.

The gate may be evaluated several times inside the same eligible minute,
so every ``True`` result claims the slot in the reminder's ``FireDedup``
record and later evaluations of that slot return ``False``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime

from modules.scheduler.recurrence import is_day_eligible, minute_of_day, to_local
from shared.schemas.reminders import IntervalSchedule, OneTimeSchedule, Reminder, SpecificTimesSchedule


@dataclass
class FireDedup:
    """Per-reminder record of the slots that already fired."""

    # Local minute stamp (naive, truncated to the minute) of the last interval fire
    last_fired_minute: datetime | None = None
    # (local date, minute-of-day) pairs already fired for specific-times mode
    fired_slots: set[tuple[date, int]] = field(default_factory=set)

    def prune(self, today: date) -> None:
        """Forget specific-time slots from previous days."""
        self.fired_slots = {slot for slot in self.fired_slots if slot[0] >= today}


def should_fire_now(reminder: Reminder, now: datetime, dedup: FireDedup) -> bool:
    """Return True exactly once per eligible slot and claim it."""
    schedule = reminder.schedule

    if isinstance(schedule, OneTimeSchedule):
        return reminder.is_active and reminder.next_run is not None and now >= reminder.next_run

    local = to_local(now, reminder.timezone_offset_minutes)
    today = local.date()
    minute = minute_of_day(local)

    if isinstance(schedule, IntervalSchedule):
        start = schedule.start_time.total_minutes
        end = schedule.end_time.total_minutes
        if minute < start or minute > end:
            return False
        if (minute - start) % schedule.interval_minutes != 0:
            return False
        if not is_day_eligible(reminder, today):
            return False
        stamp = local.replace(second=0, microsecond=0)
        if dedup.last_fired_minute == stamp:
            return False
        dedup.last_fired_minute = stamp
        return True

    if isinstance(schedule, SpecificTimesSchedule):
        dedup.prune(today)
        if minute not in schedule.slots():
            return False
        if not is_day_eligible(reminder, today):
            return False
        slot = (today, minute)
        if slot in dedup.fired_slots:
            return False
        dedup.fired_slots.add(slot)
        return True

    return False
