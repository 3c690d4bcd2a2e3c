"""Pre-warning sub-scheduler.

A reminder with a pre-warning gets one deferred task that fires
``minutes_before`` ahead of its ``next_run``.  The scheduler cancels and
re-arms it whenever ``next_run`` changes.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta
from typing import Callable

import structlog

from modules.scheduler.clock import Clock, sleep_until, utcnow
from modules.scheduler.formatting import build_pre_warning_notification
from modules.scheduler.recurrence import is_day_eligible, local_date
from modules.scheduler.transport import Transport
from shared.schemas.reminders import Reminder

logger = structlog.get_logger()


def pre_warning_time(reminder: Reminder) -> datetime | None:
    if reminder.pre_warning is None or reminder.next_run is None:
        return None
    return reminder.next_run - timedelta(minutes=reminder.pre_warning.minutes_before)


class PreWarningScheduler:
    def __init__(
        self,
        transport: Transport,
        lookup: Callable[[int], Reminder | None],
        clock: Clock = utcnow,
    ) -> None:
        self.transport = transport
        self.lookup = lookup
        self.clock = clock

    def arm(self, reminder: Reminder, now: datetime) -> asyncio.Task | None:
        """Start the deferred pre-warning for the current ``next_run``.

        Returns None when no pre-warning is configured or its instant has
        already passed for this cycle.
        """
        fire_at = pre_warning_time(reminder)
        if fire_at is None:
            return None
        if fire_at <= now:
            logger.debug("pre_warning_skipped", reminder_id=reminder.id, reason="already_past")
            return None

        logger.info(
            "pre_warning_armed",
            reminder_id=reminder.id,
            fire_at=fire_at.isoformat(),
            event_time=reminder.next_run.isoformat(),
        )
        return asyncio.create_task(
            self._run(reminder.id, reminder.next_run, fire_at),
            name=f"reminder-{reminder.id}-pre-warning",
        )

    async def _run(self, reminder_id: int, event_time: datetime, fire_at: datetime) -> None:
        await sleep_until(fire_at, self.clock)
        try:
            await self.fire(reminder_id, event_time)
        except Exception:
            logger.exception("pre_warning_error", reminder_id=reminder_id)

    async def fire(self, reminder_id: int, event_time: datetime) -> bool:
        """Deliver the pre-warning for the event at ``event_time``.

        The reminder is re-read so edits made since arming are honoured;
        the gates are checked against the local date at the moment it fires.
        """
        reminder = self.lookup(reminder_id)
        if reminder is None or not reminder.is_active or reminder.pre_warning is None:
            logger.info("pre_warning_skipped", reminder_id=reminder_id, reason="inactive")
            return False

        now = self.clock()
        today = local_date(now, reminder.timezone_offset_minutes)
        if not is_day_eligible(reminder, today):
            logger.info(
                "pre_warning_skipped",
                reminder_id=reminder_id,
                reason="gates",
                day=today.isoformat(),
            )
            return False

        notification = build_pre_warning_notification(reminder, event_time, now)
        try:
            delivered = await self.transport.deliver_pre_warning(reminder.target, notification)
        except Exception as e:
            logger.error("pre_warning_delivery_failed", reminder_id=reminder_id, error=str(e))
            return False

        if delivered:
            logger.info("pre_warning_sent", reminder_id=reminder_id, event_time=event_time.isoformat())
        else:
            logger.warning("pre_warning_delivery_failed", reminder_id=reminder_id)
        return delivered
