"""
Tests for reminder scheduling
"""
import json
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest

from prefsync.core.exceptions import LocalStoreError, NotificationPermissionError, ScheduleRejectedError
from prefsync.notifications.scheduler import NotificationScheduler, TriggerKind
from prefsync.preferences.preference_models import NotificationFrequency


class TestReminderSchedules:
    """Test daily, weekly and one-time reminders"""

    @pytest.mark.asyncio
    async def test_daily_is_idempotent(self, scheduler, trigger_backend, local_store):
        await scheduler.schedule_daily(9, 30)
        trigger_id = await scheduler.schedule_daily(9, 30)

        scheduled = await scheduler.list_scheduled()
        assert len(scheduled) == 1
        assert scheduled[0].kind == TriggerKind.DAILY
        assert (scheduled[0].hour, scheduled[0].minute) == (9, 30)
        assert await local_store.get("reminderNotificationId") == trigger_id

    @pytest.mark.asyncio
    async def test_weekly_registers_one_trigger_per_day(self, scheduler, local_store):
        trigger_ids = await scheduler.schedule_weekly(18, 0, [6, 2, 4])

        scheduled = await scheduler.list_scheduled()
        assert sorted(t.weekday for t in scheduled) == [2, 4, 6]
        assert all(t.kind == TriggerKind.WEEKLY for t in scheduled)
        assert json.loads(await local_store.get("reminderNotificationIds")) == trigger_ids

    @pytest.mark.asyncio
    async def test_new_schedule_replaces_previous(self, scheduler, local_store):
        await scheduler.schedule_weekly(18, 0, [2, 3])
        await scheduler.schedule_daily(8, 0)

        scheduled = await scheduler.list_scheduled()
        assert [t.kind for t in scheduled] == [TriggerKind.DAILY]
        assert await local_store.get("reminderNotificationIds") is None

    @pytest.mark.asyncio
    async def test_weekly_without_days_rejected(self, scheduler):
        with pytest.raises(ScheduleRejectedError):
            await scheduler.schedule_weekly(9, 0, [])
        with pytest.raises(ScheduleRejectedError):
            await scheduler.schedule_weekly(9, 0, [0, 8])

    @pytest.mark.asyncio
    async def test_invalid_time_rejected(self, scheduler):
        with pytest.raises(ScheduleRejectedError):
            await scheduler.schedule_daily(24, 0)

    @pytest.mark.asyncio
    async def test_past_one_time_keeps_existing_schedule(self, scheduler, clock, local_store):
        daily_id = await scheduler.schedule_daily(9, 0)

        with pytest.raises(ScheduleRejectedError) as exc_info:
            await scheduler.schedule_once(clock.now - timedelta(minutes=1))

        assert exc_info.value.requested_at == clock.now - timedelta(minutes=1)
        scheduled = await scheduler.list_scheduled()
        assert [t.kind for t in scheduled] == [TriggerKind.DAILY]
        assert await local_store.get("reminderNotificationId") == daily_id

    @pytest.mark.asyncio
    async def test_now_is_not_in_the_future(self, scheduler, clock):
        with pytest.raises(ScheduleRejectedError):
            await scheduler.schedule_once(clock.now)

    @pytest.mark.asyncio
    async def test_future_one_time(self, scheduler, clock):
        await scheduler.schedule_daily(9, 0)
        fire_at = clock.now + timedelta(days=1)

        await scheduler.schedule_once(fire_at)

        scheduled = await scheduler.list_scheduled()
        assert len(scheduled) == 1
        assert scheduled[0].kind == TriggerKind.DATE
        assert scheduled[0].fire_at == fire_at

    @pytest.mark.asyncio
    async def test_naive_times_are_utc(self, scheduler, clock):
        naive = (clock.now + timedelta(hours=2)).replace(tzinfo=None)
        await scheduler.schedule_once(naive)

        scheduled = await scheduler.list_scheduled()
        assert scheduled[0].fire_at.tzinfo is timezone.utc

    @pytest.mark.asyncio
    async def test_cancel_all_after_restart(self, scheduler, trigger_backend, local_store, mock_logger, clock):
        await scheduler.schedule_weekly(9, 0, [2, 3, 4])

        restarted = NotificationScheduler(trigger_backend, local_store, mock_logger, clock=clock)
        await restarted.cancel_all()

        assert await trigger_backend.list_scheduled() == []


class TestApplyFrequency:
    """Test frequency dispatch"""

    @pytest.mark.asyncio
    async def test_none_cancels_everything(self, scheduler):
        await scheduler.schedule_daily(9, 0)

        assert await scheduler.apply_frequency(NotificationFrequency.NONE) == []
        assert await scheduler.list_scheduled() == []

    @pytest.mark.asyncio
    async def test_dispatch(self, scheduler, clock):
        assert len(await scheduler.apply_frequency("daily", 7, 15)) == 1
        assert len(await scheduler.apply_frequency("weekly", 7, 15, weekdays=[1, 7])) == 2
        once = await scheduler.apply_frequency("once", once_at=clock.now + timedelta(hours=3))
        assert len(once) == 1
        assert len(await scheduler.list_scheduled()) == 1

    @pytest.mark.asyncio
    async def test_once_without_date_rejected(self, scheduler):
        with pytest.raises(ScheduleRejectedError):
            await scheduler.apply_frequency(NotificationFrequency.ONCE)

    @pytest.mark.asyncio
    async def test_permission_denied(self, scheduler, trigger_backend):
        await scheduler.schedule_daily(9, 0)
        trigger_backend.permission_granted = False

        with pytest.raises(NotificationPermissionError):
            await scheduler.apply_frequency(NotificationFrequency.WEEKLY, 9, 0, [2])

        assert len(await scheduler.list_scheduled()) == 1
        assert await scheduler.are_notifications_enabled() is False

    @pytest.mark.asyncio
    async def test_permission_query_does_not_prompt(self, scheduler, trigger_backend):
        assert await scheduler.are_notifications_enabled() is True
        assert trigger_backend.permission_requests == 0

        await scheduler.apply_frequency(NotificationFrequency.DAILY)
        assert trigger_backend.permission_requests == 1

    @pytest.mark.asyncio
    async def test_configured_default_time(self, trigger_backend, local_store, mock_logger, clock):
        scheduler = NotificationScheduler(trigger_backend, local_store, mock_logger, clock=clock,
                                          default_hour=20, default_minute=15)

        await scheduler.apply_frequency(NotificationFrequency.DAILY)

        scheduled = await scheduler.list_scheduled()
        assert (scheduled[0].hour, scheduled[0].minute) == (20, 15)


class TestTaskReminders:
    """Test due-date reminders"""

    @pytest.mark.asyncio
    async def test_fires_before_due_date(self, scheduler, clock):
        due_at = clock.now + timedelta(hours=3)

        await scheduler.schedule_task_reminder("task-1", "Pay rent", due_at)

        reminder = (await scheduler.list_scheduled())[0]
        assert reminder.fire_at == due_at - timedelta(minutes=60)
        assert reminder.data == {"taskId": "task-1"}
        assert reminder.body == '"Pay rent" is due in 1 hour'

    @pytest.mark.asyncio
    async def test_not_cancelled_by_reminder_schedule(self, scheduler, clock):
        task_trigger = await scheduler.schedule_task_reminder(
            "task-1", "Pay rent", clock.now + timedelta(hours=3)
        )
        await scheduler.schedule_daily(9, 0)
        await scheduler.cancel_all()

        scheduled = await scheduler.list_scheduled()
        assert [t.data.get("taskId") for t in scheduled] == ["task-1"]

        await scheduler.cancel(task_trigger)
        assert await scheduler.list_scheduled() == []

    @pytest.mark.asyncio
    async def test_passed_reminder_time_rejected(self, scheduler, clock):
        with pytest.raises(ScheduleRejectedError):
            await scheduler.schedule_task_reminder("task-1", "Pay rent", clock.now + timedelta(minutes=30))

    @pytest.mark.asyncio
    async def test_custom_lead_time(self, trigger_backend, local_store, mock_logger, clock):
        scheduler = NotificationScheduler(trigger_backend, local_store, mock_logger, clock=clock, lead_minutes=15)
        await scheduler.schedule_task_reminder("task-2", "Call", clock.now + timedelta(minutes=20))

        reminder = (await scheduler.list_scheduled())[0]
        assert reminder.body == '"Call" is due in 15 minutes'


@pytest.mark.asyncio
async def test_send_immediate(scheduler, trigger_backend):
    await scheduler.send_immediate("Hello", "World")

    assert trigger_backend.delivered[0].title == "Hello"
    assert await scheduler.list_scheduled() == []


@pytest.mark.asyncio
async def test_cancel_all_notifications(scheduler, clock, local_store):
    await scheduler.schedule_task_reminder("task-1", "Pay rent", clock.now + timedelta(hours=3))
    await scheduler.schedule_daily(9, 0)

    await scheduler.cancel_all_notifications()

    assert await scheduler.list_scheduled() == []
    assert await local_store.get("reminderNotificationId") is None


@pytest.fixture
def failing_store():
    """Local store whose writes always fail"""
    store = AsyncMock()
    store.get = AsyncMock(return_value=None)
    store.set = AsyncMock(side_effect=LocalStoreError("storage full"))
    store.remove = AsyncMock(side_effect=LocalStoreError("storage full"))
    return store


class TestLocalStoreFailures:
    """Reminder id persistence failures are logged, never raised"""

    @pytest.mark.asyncio
    async def test_schedule_survives_failed_id_save(self, trigger_backend, failing_store, mock_logger, clock):
        scheduler = NotificationScheduler(trigger_backend, failing_store, mock_logger, clock=clock)

        trigger_id = await scheduler.schedule_daily(9, 0)

        assert [t.kind for t in await trigger_backend.list_scheduled()] == [TriggerKind.DAILY]
        assert trigger_id in trigger_backend.scheduled
        mock_logger.error.assert_called()

    @pytest.mark.asyncio
    async def test_replacing_schedule_leaves_one_active(self, trigger_backend, failing_store, mock_logger, clock):
        scheduler = NotificationScheduler(trigger_backend, failing_store, mock_logger, clock=clock)

        await scheduler.schedule_daily(9, 0)
        await scheduler.schedule_daily(9, 0)
        await scheduler.schedule_weekly(18, 0, [2, 5])

        scheduled = await trigger_backend.list_scheduled()
        assert sorted(t.weekday for t in scheduled) == [2, 5]

        await scheduler.cancel_all()
        assert await trigger_backend.list_scheduled() == []

    @pytest.mark.asyncio
    async def test_unreadable_store_does_not_raise(self, trigger_backend, mock_logger, clock):
        store = AsyncMock()
        store.get = AsyncMock(side_effect=LocalStoreError("locked"))
        store.set = AsyncMock(return_value=None)
        store.remove = AsyncMock(return_value=None)
        scheduler = NotificationScheduler(trigger_backend, store, mock_logger, clock=clock)

        await scheduler.schedule_once(clock.now + timedelta(hours=1))
        await scheduler.cancel_all_notifications()

        assert await trigger_backend.list_scheduled() == []
        mock_logger.error.assert_called()
