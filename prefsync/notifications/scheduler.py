"""
Notification Scheduler
Reminder triggers registered with the OS scheduler, with cancel-all-then-register semantics
"""
import itertools
import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from ..core.exceptions import NotificationPermissionError, ScheduleRejectedError
from ..monitoring.structured_logger import StructuredLogger
from ..preferences.preference_models import NotificationFrequency, WEEKDAYS
from ..preferences.preference_storage import LocalPreferenceStore

Clock = Callable[[], datetime]

REMINDER_TITLE = "Time to check your tasks!"
REMINDER_BODY = "Don't forget to complete your todos"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class TriggerKind(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    DATE = "date"
    IMMEDIATE = "immediate"


@dataclass
class NotificationTrigger:
    """A notification request as handed to the OS scheduler"""
    kind: TriggerKind
    title: str = REMINDER_TITLE
    body: str = REMINDER_BODY
    hour: Optional[int] = None
    minute: Optional[int] = None
    weekday: Optional[int] = None
    fire_at: Optional[datetime] = None
    data: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "title": self.title,
            "body": self.body,
            "hour": self.hour,
            "minute": self.minute,
            "weekday": self.weekday,
            "fire_at": self.fire_at.isoformat() if self.fire_at else None,
            "data": self.data
        }


class TriggerBackend(ABC):
    """Abstract OS notification scheduler"""

    @abstractmethod
    async def request_permissions(self) -> bool:
        """Ask for notification permission, prompting the user if needed"""
        pass

    @abstractmethod
    async def permission_status(self) -> bool:
        """Whether permission is currently granted, without prompting"""
        pass

    @abstractmethod
    async def register(self, trigger: NotificationTrigger) -> str:
        """Register a trigger, returning its id"""
        pass

    @abstractmethod
    async def cancel(self, trigger_id: str) -> None:
        pass

    @abstractmethod
    async def cancel_all(self) -> None:
        """Cancel every trigger, including ones this app did not track"""
        pass

    @abstractmethod
    async def list_scheduled(self) -> List[NotificationTrigger]:
        pass


class InMemoryTriggerBackend(TriggerBackend):
    """In-memory scheduler for testing and development"""

    def __init__(self, permission_granted: bool = True):
        self.permission_granted = permission_granted
        self.permission_requests = 0
        self.scheduled: Dict[str, NotificationTrigger] = {}
        self.delivered: List[NotificationTrigger] = []
        self._ids = itertools.count(1)

    async def request_permissions(self) -> bool:
        self.permission_requests += 1
        return self.permission_granted

    async def permission_status(self) -> bool:
        return self.permission_granted

    async def register(self, trigger: NotificationTrigger) -> str:
        if trigger.kind == TriggerKind.IMMEDIATE:
            self.delivered.append(trigger)
            return f"immediate-{next(self._ids)}"
        trigger_id = f"trigger-{next(self._ids)}"
        self.scheduled[trigger_id] = trigger
        return trigger_id

    async def cancel(self, trigger_id: str) -> None:
        self.scheduled.pop(trigger_id, None)

    async def cancel_all(self) -> None:
        self.scheduled.clear()

    async def list_scheduled(self) -> List[NotificationTrigger]:
        return list(self.scheduled.values())


class NotificationScheduler:
    """Daily, weekly and one-time task reminders

    Registering any reminder schedule first cancels the previous one, so at
    most one schedule is active. Ids of the active schedule are remembered in
    the local store so they can be cancelled after a restart, and in memory so
    a failing local store cannot orphan a registered trigger.
    """

    # unprefixed to stay compatible with ids saved by earlier app versions
    SINGLE_ID_KEY = "reminderNotificationId"
    MULTI_ID_KEY = "reminderNotificationIds"

    def __init__(self, backend: TriggerBackend, local_store: LocalPreferenceStore,
                 logger: StructuredLogger, clock: Optional[Clock] = None,
                 lead_minutes: int = 60, default_hour: int = 9, default_minute: int = 0):
        self.backend = backend
        self.local_store = local_store
        self.logger = logger
        self.clock = clock or utc_now
        self.lead_minutes = lead_minutes
        self.default_hour = default_hour
        self.default_minute = default_minute
        self._active_ids: List[str] = []

    @staticmethod
    def _check_time(hour: int, minute: int):
        if not 0 <= hour <= 23 or not 0 <= minute <= 59:
            raise ScheduleRejectedError(f"Invalid reminder time {hour:02d}:{minute:02d}")

    def _aware(self, moment: datetime) -> datetime:
        if moment.tzinfo is None:
            return moment.replace(tzinfo=timezone.utc)
        return moment

    async def _store_get(self, key: str) -> Optional[str]:
        try:
            return await self.local_store.get(key)
        except Exception as e:
            self.logger.error("Error reading reminder ids", key=key, error=str(e))
            return None

    async def _store_set(self, key: str, value: str) -> bool:
        try:
            await self.local_store.set(key, value)
        except Exception as e:
            self.logger.error("Error saving reminder ids", key=key, error=str(e))
            return False
        return True

    async def _store_remove(self, key: str) -> bool:
        try:
            await self.local_store.remove(key)
        except Exception as e:
            self.logger.error("Error removing reminder ids", key=key, error=str(e))
            return False
        return True

    async def _stored_ids(self) -> List[str]:
        trigger_ids = []

        single_id = await self._store_get(self.SINGLE_ID_KEY)
        if single_id:
            trigger_ids.append(single_id)

        ids_json = await self._store_get(self.MULTI_ID_KEY)
        if ids_json:
            try:
                trigger_ids.extend(json.loads(ids_json))
            except json.JSONDecodeError:
                self.logger.warning("Discarding unreadable reminder ids", value=ids_json)

        return trigger_ids

    async def _remember(self, key: str, trigger_ids: List[str]):
        self._active_ids = list(trigger_ids)
        value = trigger_ids[0] if key == self.SINGLE_ID_KEY else json.dumps(trigger_ids)
        await self._store_set(key, value)

    async def _forget(self):
        self._active_ids = []
        await self._store_remove(self.SINGLE_ID_KEY)
        await self._store_remove(self.MULTI_ID_KEY)

    async def cancel_all(self) -> None:
        """Cancel the reminder schedule this app registered"""
        trigger_ids = await self._stored_ids()
        for trigger_id in self._active_ids:
            if trigger_id not in trigger_ids:
                trigger_ids.append(trigger_id)

        for trigger_id in trigger_ids:
            await self.backend.cancel(trigger_id)
        await self._forget()

    async def cancel_all_notifications(self) -> None:
        """Cancel everything known to the OS scheduler"""
        await self.backend.cancel_all()
        await self._forget()

    async def schedule_daily(self, hour: Optional[int] = None, minute: Optional[int] = None) -> str:
        hour = self.default_hour if hour is None else hour
        minute = self.default_minute if minute is None else minute
        self._check_time(hour, minute)
        await self.cancel_all()

        trigger_id = await self.backend.register(
            NotificationTrigger(kind=TriggerKind.DAILY, hour=hour, minute=minute)
        )
        await self._remember(self.SINGLE_ID_KEY, [trigger_id])

        self.logger.info("Daily reminder scheduled", hour=hour, minute=minute, trigger_id=trigger_id)
        return trigger_id

    async def schedule_weekly(self, hour: int, minute: int, weekdays: List[int]) -> List[str]:
        """One trigger per weekday, 1=Sunday .. 7=Saturday"""
        self._check_time(hour, minute)
        if not weekdays:
            raise ScheduleRejectedError("Select at least one day for weekly reminders")
        invalid = [day for day in weekdays if day not in WEEKDAYS]
        if invalid:
            raise ScheduleRejectedError(f"Invalid weekdays {invalid}")

        await self.cancel_all()

        trigger_ids = []
        for weekday in sorted(set(weekdays)):
            trigger_ids.append(await self.backend.register(
                NotificationTrigger(kind=TriggerKind.WEEKLY, hour=hour, minute=minute, weekday=weekday)
            ))
        await self._remember(self.MULTI_ID_KEY, trigger_ids)

        self.logger.info("Weekly reminders scheduled",
                         hour=hour, minute=minute, weekdays=sorted(set(weekdays)))
        return trigger_ids

    async def schedule_once(self, fire_at: datetime) -> str:
        """Raises ScheduleRejectedError for a past time, leaving the current schedule alone"""
        fire_at = self._aware(fire_at)
        now = self.clock()
        if fire_at <= now:
            self.logger.warning("One-time reminder rejected",
                                fire_at=fire_at.isoformat(), now=now.isoformat())
            raise ScheduleRejectedError("Please select a future date and time", fire_at)

        await self.cancel_all()

        trigger_id = await self.backend.register(
            NotificationTrigger(kind=TriggerKind.DATE, fire_at=fire_at)
        )
        await self._remember(self.SINGLE_ID_KEY, [trigger_id])

        self.logger.info("One-time reminder scheduled",
                         fire_at=fire_at.isoformat(), trigger_id=trigger_id)
        return trigger_id

    async def apply_frequency(self, frequency: NotificationFrequency,
                              hour: Optional[int] = None, minute: Optional[int] = None,
                              weekdays: Optional[List[int]] = None,
                              once_at: Optional[datetime] = None) -> List[str]:
        """Bring the registered triggers in line with a reminder setting"""
        frequency = NotificationFrequency(frequency)
        hour = self.default_hour if hour is None else hour
        minute = self.default_minute if minute is None else minute

        if frequency == NotificationFrequency.NONE:
            await self.cancel_all()
            self.logger.info("Reminders disabled")
            return []

        if frequency == NotificationFrequency.ONCE and once_at is None:
            raise ScheduleRejectedError("One-time reminders need a date")

        if not await self.backend.request_permissions():
            self.logger.warning("Notification permission denied", frequency=frequency.value)
            raise NotificationPermissionError("Notification permission was not granted")

        if frequency == NotificationFrequency.DAILY:
            return [await self.schedule_daily(hour, minute)]
        if frequency == NotificationFrequency.WEEKLY:
            return await self.schedule_weekly(hour, minute, weekdays or [])
        return [await self.schedule_once(once_at)]

    async def schedule_task_reminder(self, task_id: str, title: str, due_at: datetime) -> str:
        """One-time reminder ahead of a task's due date; independent of the reminder schedule"""
        due_at = self._aware(due_at)
        fire_at = due_at - timedelta(minutes=self.lead_minutes)
        if fire_at <= self.clock():
            raise ScheduleRejectedError("Task reminder time has already passed", fire_at)

        trigger_id = await self.backend.register(NotificationTrigger(
            kind=TriggerKind.DATE,
            title="Task reminder",
            body=f'"{title}" is due in {self._lead_text()}',
            fire_at=fire_at,
            data={"taskId": task_id}
        ))

        self.logger.info("Task reminder scheduled",
                         task_id=task_id, fire_at=fire_at.isoformat(), trigger_id=trigger_id)
        return trigger_id

    def _lead_text(self) -> str:
        if self.lead_minutes % 60 == 0:
            hours = self.lead_minutes // 60
            return "1 hour" if hours == 1 else f"{hours} hours"
        return f"{self.lead_minutes} minutes"

    async def send_immediate(self, title: str, body: str) -> str:
        return await self.backend.register(
            NotificationTrigger(kind=TriggerKind.IMMEDIATE, title=title, body=body)
        )

    async def cancel(self, trigger_id: str) -> None:
        await self.backend.cancel(trigger_id)

    async def list_scheduled(self) -> List[NotificationTrigger]:
        return await self.backend.list_scheduled()

    async def are_notifications_enabled(self) -> bool:
        """Current permission state; never prompts the user"""
        return await self.backend.permission_status()

    async def request_permissions(self) -> bool:
        return await self.backend.request_permissions()
