"""Tests for the pre-warning sub-scheduler."""

from __future__ import annotations

import asyncio
from datetime import date, timedelta
from unittest.mock import AsyncMock

import pytest

from modules.scheduler.prewarning import PreWarningScheduler, pre_warning_time
from shared.schemas.reminders import DateRangeMode, PreWarning

TODAY = date(2026, 10, 16)
WARNING = PreWarning(minutes_before=10, message="Heads up {relative}")


@pytest.fixture
def reminders():
    return {}


@pytest.fixture
def pre_warnings(mock_transport, reminders, clock):
    return PreWarningScheduler(mock_transport, reminders.get, clock)


class TestArm:
    def test_pre_warning_time(self, make_reminder, at_local):
        reminder = make_reminder(pre_warning=WARNING, next_run=at_local(TODAY, "10:00"))
        assert pre_warning_time(reminder) == at_local(TODAY, "09:50")

    def test_no_pre_warning_configured(self, pre_warnings, make_reminder, at_local):
        reminder = make_reminder(next_run=at_local(TODAY, "10:00"))
        assert pre_warning_time(reminder) is None
        assert pre_warnings.arm(reminder, at_local(TODAY, "09:45")) is None

    def test_past_instant_is_skipped(self, pre_warnings, make_reminder, at_local):
        reminder = make_reminder(pre_warning=WARNING, next_run=at_local(TODAY, "10:00"))
        assert pre_warnings.arm(reminder, at_local(TODAY, "09:55")) is None

    @pytest.mark.asyncio
    async def test_future_instant_is_armed(self, pre_warnings, make_reminder, at_local):
        reminder = make_reminder(pre_warning=WARNING, next_run=at_local(TODAY, "10:00"))

        task = pre_warnings.arm(reminder, at_local(TODAY, "09:45"))

        assert task is not None
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)


class TestFire:
    @pytest.mark.asyncio
    async def test_delivers_with_event_time(self, pre_warnings, reminders, mock_transport, make_reminder, at_local):
        event = at_local(TODAY, "10:00")
        reminders[1] = make_reminder(pre_warning=WARNING, next_run=event)

        assert await pre_warnings.fire(1, event) is True

        target, notification = mock_transport.deliver_pre_warning.call_args.args
        assert target.channel_id == "123456789"
        assert notification.kind == "pre_warning"
        assert notification.event_time == event
        mock_transport.deliver.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_deleted_reminder(self, pre_warnings, mock_transport, at_local):
        assert await pre_warnings.fire(1, at_local(TODAY, "10:00")) is False
        mock_transport.deliver_pre_warning.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_inactive_reminder(self, pre_warnings, reminders, mock_transport, make_reminder, at_local):
        reminders[1] = make_reminder(pre_warning=WARNING)
        assert await pre_warnings.fire(1, at_local(TODAY, "10:00")) is False
        mock_transport.deliver_pre_warning.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_pre_warning_removed_since_arming(self, pre_warnings, reminders, make_reminder, at_local):
        reminders[1] = make_reminder(next_run=at_local(TODAY, "10:00"))
        assert await pre_warnings.fire(1, at_local(TODAY, "10:00")) is False

    @pytest.mark.asyncio
    async def test_gates_changed_since_arming(self, pre_warnings, reminders, mock_transport, make_reminder, at_local):
        reminders[1] = make_reminder(
            pre_warning=WARNING,
            next_run=at_local(TODAY + timedelta(days=1), "10:00"),
            date_range_mode=DateRangeMode.START,
            start_date=TODAY + timedelta(days=1),
        )
        # today is before the new start date
        assert await pre_warnings.fire(1, at_local(TODAY, "10:00")) is False
        mock_transport.deliver_pre_warning.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_gates_checked_on_current_day(
        self, pre_warnings, reminders, mock_transport, clock, make_reminder, schedules, at_local
    ):
        event = at_local(TODAY + timedelta(days=1), "00:05")
        reminders[1] = make_reminder(
            schedule=schedules.specific("00:05"),
            days_of_week=[6],
            pre_warning=WARNING,
            next_run=event,
        )
        # Friday 23:55 is not a Saturday, so the warning is suppressed
        clock.now = at_local(TODAY, "23:55")

        assert await pre_warnings.fire(1, event) is False
        mock_transport.deliver_pre_warning.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_current_day_eligible(self, pre_warnings, reminders, clock, make_reminder, schedules, at_local):
        event = at_local(TODAY + timedelta(days=1), "00:05")
        reminders[1] = make_reminder(
            schedule=schedules.specific("00:05"),
            days_of_week=[5, 6],
            pre_warning=WARNING,
            next_run=event,
        )
        clock.now = at_local(TODAY, "23:55")

        assert await pre_warnings.fire(1, event) is True

    @pytest.mark.asyncio
    async def test_transport_error(self, pre_warnings, reminders, mock_transport, make_reminder, at_local):
        mock_transport.deliver_pre_warning = AsyncMock(side_effect=ConnectionError("redis down"))
        reminders[1] = make_reminder(pre_warning=WARNING, next_run=at_local(TODAY, "10:00"))

        assert await pre_warnings.fire(1, at_local(TODAY, "10:00")) is False

    @pytest.mark.asyncio
    async def test_run_fires_after_sleep(self, pre_warnings, reminders, mock_transport, clock, make_reminder, at_local):
        event = at_local(TODAY, "10:00")
        reminders[1] = make_reminder(pre_warning=WARNING, next_run=event)
        # clock already past the warning instant, so the sleep returns at once
        clock.now = at_local(TODAY, "09:50", second=1)

        await pre_warnings._run(1, event, at_local(TODAY, "09:50"))

        mock_transport.deliver_pre_warning.assert_awaited_once()
