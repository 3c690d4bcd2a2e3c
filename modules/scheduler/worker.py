"""Reminder scheduler: arms, fires and rolls reminders forward.

Every reminder owns a ``ScheduleRecord`` holding its live tasks:

- one-time reminders get a single deferred task sleeping until ``next_run``
- interval / specific-time reminders get a polling task that asks the
  fire gate every ``poll_interval_seconds``
- a separate pre-warning task when one is configured

Re-arming always cancels the previous tasks first.  All state changes
run on the event loop; the durable store is written after delivery.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any

import structlog

from modules.scheduler.clock import Clock, sleep_until, utcnow
from modules.scheduler.errors import ReminderNotFoundError, ReminderStateError, StoreError
from modules.scheduler.formatting import build_main_notification
from modules.scheduler.gate import FireDedup, should_fire_now
from modules.scheduler.prewarning import PreWarningScheduler
from modules.scheduler.recurrence import DEFAULT_HORIZON_DAYS, compute_next_run
from modules.scheduler.store import ReminderRegistry, Store
from modules.scheduler.transport import Transport
from shared.schemas.reminders import OneTimeSchedule, Reminder

logger = structlog.get_logger()

# How often recurring reminders re-check the fire gate
POLL_INTERVAL_SECONDS = 10.0

# A recurring reminder whose next_run is this far behind missed its slot
_MISSED_SLOT_GRACE = timedelta(minutes=1)


class ScheduleState(str, Enum):
    UNSCHEDULED = "unscheduled"
    ARMED = "armed"
    INACTIVE = "inactive"


def _cancel(task: asyncio.Task | None) -> None:
    # A task re-arming its own reminder must not cancel itself
    if task is None or task.done() or task is asyncio.current_task():
        return
    task.cancel()


@dataclass
class ScheduleRecord:
    reminder_id: int
    state: ScheduleState = ScheduleState.UNSCHEDULED
    main_task: asyncio.Task | None = None
    pre_warning_task: asyncio.Task | None = None
    dedup: FireDedup = field(default_factory=FireDedup)

    def cancel(self) -> None:
        _cancel(self.main_task)
        _cancel(self.pre_warning_task)
        self.main_task = None
        self.pre_warning_task = None

    def cancel_pre_warning(self) -> None:
        _cancel(self.pre_warning_task)
        self.pre_warning_task = None

    def tasks(self) -> list[asyncio.Task]:
        return [t for t in (self.main_task, self.pre_warning_task) if t is not None]


class ReminderScheduler:
    def __init__(
        self,
        registry: ReminderRegistry,
        store: Store,
        transport: Transport,
        poll_interval_seconds: float = POLL_INTERVAL_SECONDS,
        horizon_days: int = DEFAULT_HORIZON_DAYS,
        clock: Clock = utcnow,
    ) -> None:
        self.registry = registry
        self.store = store
        self.transport = transport
        self.poll_interval_seconds = poll_interval_seconds
        self.horizon_days = horizon_days
        self.clock = clock
        self.records: dict[int, ScheduleRecord] = {}
        self.pre_warnings = PreWarningScheduler(transport, registry.get, clock)
        self._save_lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Load the durable store and arm every active reminder."""
        try:
            snapshot = await self.store.load_all()
        except StoreError as e:
            # persist() retries the load before its first save
            logger.error("reminder_store_load_failed", error=str(e))
        else:
            self.registry.load(snapshot)

        for reminder in self.registry.all():
            self.restore(reminder)

        logger.info(
            "reminder_scheduler_started",
            reminders=len(self.registry),
            armed=self.armed_count(),
        )

    async def shutdown(self) -> None:
        tasks: list[asyncio.Task] = []
        for record in self.records.values():
            tasks.extend(record.tasks())
            record.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("reminder_scheduler_stopped", cancelled=len(tasks))

    # ------------------------------------------------------------------
    # Admin transitions
    # ------------------------------------------------------------------

    def compute(self, reminder: Reminder, now: datetime | None = None) -> datetime | None:
        return compute_next_run(reminder, now or self.clock(), self.horizon_days)

    def restore(self, reminder: Reminder) -> None:
        """Arm a reminder loaded from the durable store."""
        if reminder.is_active:
            reminder.set_next_run(self.compute(reminder))
            if not reminder.is_active:
                logger.info("reminder_deactivated", reminder_id=reminder.id, reason="no_eligible_instant")
        self.arm(reminder)

    async def add(self, reminder: Reminder) -> Reminder:
        """Register a newly built reminder; it may be inactive on arrival."""
        reminder.set_next_run(self.compute(reminder))
        self.registry.add(reminder)
        self.arm(reminder)
        await self.persist()
        logger.info(
            "reminder_created",
            reminder_id=reminder.id,
            kind=reminder.schedule.kind,
            next_run=reminder.next_run.isoformat() if reminder.next_run else None,
        )
        return reminder

    async def update(self, reminder: Reminder) -> Reminder:
        """Replace a reminder's definition and re-arm it.

        Active reminders get a freshly computed ``next_run``; an inactive
        reminder stays inactive until it is reactivated.
        """
        existing = self._require(reminder.id)
        self._record(reminder.id).cancel()

        reminder.fired_at = existing.fired_at
        reminder.created_at = existing.created_at
        reminder.set_next_run(self.compute(reminder) if existing.is_active else None)

        self.registry.replace(reminder)
        self.arm(reminder)
        await self.persist()
        logger.info(
            "reminder_updated",
            reminder_id=reminder.id,
            is_active=reminder.is_active,
            next_run=reminder.next_run.isoformat() if reminder.next_run else None,
        )
        return reminder

    async def remove(self, reminder_id: int) -> Reminder:
        reminder = self._require(reminder_id)
        record = self.records.pop(reminder_id, None)
        if record is not None:
            record.cancel()
        self.registry.remove(reminder_id)
        await self.persist()
        logger.info("reminder_deleted", reminder_id=reminder_id)
        return reminder

    async def reactivate(self, reminder_id: int) -> Reminder:
        """Clear ``fired_at`` and recompute; the result may still be inactive."""
        reminder = self._require(reminder_id)
        if reminder.is_active:
            raise ReminderStateError(f"Reminder {reminder_id} is already active")

        reminder.fired_at = None
        reminder.set_next_run(self.compute(reminder))
        self.arm(reminder)
        await self.persist()
        logger.info("reminder_reactivated", reminder_id=reminder_id, is_active=reminder.is_active)
        return reminder

    # ------------------------------------------------------------------
    # Arming
    # ------------------------------------------------------------------

    def arm(self, reminder: Reminder) -> ScheduleRecord:
        record = self._record(reminder.id)
        record.cancel()

        if not reminder.is_active:
            record.state = ScheduleState.INACTIVE
            return record

        if isinstance(reminder.schedule, OneTimeSchedule):
            record.main_task = asyncio.create_task(
                self._run_one_time(reminder.id, reminder.next_run),
                name=f"reminder-{reminder.id}-one-time",
            )
        else:
            record.main_task = asyncio.create_task(
                self._poll_loop(reminder.id),
                name=f"reminder-{reminder.id}-poll",
            )
        record.pre_warning_task = self.pre_warnings.arm(reminder, self.clock())
        record.state = ScheduleState.ARMED
        return record

    def _rearm_pre_warning(self, reminder: Reminder, record: ScheduleRecord) -> None:
        record.cancel_pre_warning()
        record.pre_warning_task = self.pre_warnings.arm(reminder, self.clock())

    # ------------------------------------------------------------------
    # Recurring reminders
    # ------------------------------------------------------------------

    async def _poll_loop(self, reminder_id: int) -> None:
        while True:
            reminder = self.registry.get(reminder_id)
            if reminder is None or not reminder.is_active:
                return
            try:
                await self.tick(reminder_id)
            except Exception:
                logger.exception("reminder_tick_error", reminder_id=reminder_id)
            await asyncio.sleep(self.poll_interval_seconds)

    async def tick(self, reminder_id: int, now: datetime | None = None) -> bool:
        """Evaluate the fire gate once; returns True when the reminder fired."""
        reminder = self.registry.get(reminder_id)
        record = self.records.get(reminder_id)
        if reminder is None or record is None or not reminder.is_active:
            return False

        now = now or self.clock()
        if not should_fire_now(reminder, now, record.dedup):
            if reminder.next_run is not None and now - reminder.next_run >= _MISSED_SLOT_GRACE:
                logger.warning(
                    "reminder_slot_missed",
                    reminder_id=reminder_id,
                    next_run=reminder.next_run.isoformat(),
                )
                await self._advance(reminder, record, now)
            return False

        # The slot instant is the start of the current minute
        event_time = now.replace(second=0, microsecond=0)
        if await self._deliver(reminder, event_time, now):
            reminder.fired_at = now
        await self._advance(reminder, record, now)
        return True

    async def _advance(self, reminder: Reminder, record: ScheduleRecord, now: datetime) -> None:
        reminder.set_next_run(self.compute(reminder, now))
        if reminder.is_active:
            self._rearm_pre_warning(reminder, record)
        else:
            record.cancel()
            record.state = ScheduleState.INACTIVE
            logger.info("reminder_deactivated", reminder_id=reminder.id, reason="no_eligible_instant")
        await self.persist()

    # ------------------------------------------------------------------
    # One-time reminders
    # ------------------------------------------------------------------

    async def _run_one_time(self, reminder_id: int, fire_at: datetime) -> None:
        await sleep_until(fire_at, self.clock)
        try:
            await self.fire_one_time(reminder_id)
        except Exception:
            logger.exception("reminder_fire_error", reminder_id=reminder_id)

    async def fire_one_time(self, reminder_id: int, now: datetime | None = None) -> bool:
        reminder = self.registry.get(reminder_id)
        record = self.records.get(reminder_id)
        if reminder is None or record is None:
            return False

        now = now or self.clock()
        if not should_fire_now(reminder, now, record.dedup):
            return False

        if await self._deliver(reminder, reminder.next_run, now):
            reminder.fired_at = now
            reminder.set_next_run(None)
            record.cancel()
            record.state = ScheduleState.INACTIVE
            logger.info("reminder_deactivated", reminder_id=reminder_id, reason="one_time_fired")
        else:
            # Try again at the same time on the next eligible day
            next_minute = now.replace(second=0, microsecond=0) + timedelta(minutes=1)
            reminder.set_next_run(self.compute(reminder, next_minute))
            self.arm(reminder)
        await self.persist()
        return True

    # ------------------------------------------------------------------
    # Delivery and persistence
    # ------------------------------------------------------------------

    async def _deliver(self, reminder: Reminder, event_time: datetime, now: datetime) -> bool:
        notification = build_main_notification(reminder, event_time, now)
        try:
            delivered = await self.transport.deliver(reminder.target, notification)
        except Exception as e:
            logger.error("reminder_delivery_failed", reminder_id=reminder.id, error=str(e))
            return False

        if delivered:
            logger.info("reminder_fired", reminder_id=reminder.id, event_time=event_time.isoformat())
        else:
            logger.warning(
                "reminder_delivery_failed",
                reminder_id=reminder.id,
                channel_id=reminder.target.channel_id,
            )
        return delivered

    async def persist(self) -> bool:
        """Write the whole registry to the durable store.

        If the startup load failed, the load is retried first and the stored
        reminders are merged in, so a save never overwrites data that was
        never read.
        """
        async with self._save_lock:
            if not self.registry.loaded and not await self._reload():
                logger.warning("reminder_persist_skipped", reason="store_not_loaded")
                return False
            # Snapshot inside the lock so saves land in mutation order
            records = self.registry.to_records()
            counter = self.registry.counter
            return await self.store.save_all(records, counter)

    async def _reload(self) -> bool:
        try:
            snapshot = await self.store.load_all()
        except StoreError as e:
            logger.error("reminder_store_load_failed", error=str(e))
            return False
        added = self.registry.merge(snapshot)
        for reminder in added:
            self.restore(reminder)
        logger.info("reminder_store_reloaded", merged=len(added), reminders=len(self.registry))
        return True

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def _record(self, reminder_id: int) -> ScheduleRecord:
        record = self.records.get(reminder_id)
        if record is None:
            record = self.records[reminder_id] = ScheduleRecord(reminder_id)
        return record

    def _require(self, reminder_id: int) -> Reminder:
        reminder = self.registry.get(reminder_id)
        if reminder is None:
            raise ReminderNotFoundError(reminder_id)
        return reminder

    def state_of(self, reminder_id: int) -> ScheduleState:
        record = self.records.get(reminder_id)
        return record.state if record else ScheduleState.UNSCHEDULED

    def armed_count(self) -> int:
        return sum(1 for r in self.records.values() if r.state == ScheduleState.ARMED)

    def status(self) -> dict[str, Any]:
        reminders = self.registry.all()
        active = sum(1 for r in reminders if r.is_active)
        return {
            "online": True,
            "reminders": len(reminders),
            "active": active,
            "inactive": len(reminders) - active,
            "armed": self.armed_count(),
        }
