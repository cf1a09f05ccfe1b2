"""
Preference Service Layer
High-level service composing synchronization, connectivity, reminders and cleanup for one user
"""
import asyncio
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Dict, List, Optional, Union

from .preference_manager import SettingsSynchronizer
from .preference_models import (
    FONT_SCALES, NotificationFrequency, PreferenceSchema, PreferenceValue,
    create_default_preference_schema, parse_iso_datetime
)
from .remote_store import DocumentSubscription
from ..cleanup.cleanup_service import CleanupResult, CleanupService, CleanupSettings, CleanupStats
from ..connectivity.monitor import ConnectivityEvent, ConnectivityMonitor, TcpReachabilityProbe
from ..core.dependencies import SyncContext
from ..core.exceptions import PreferenceValidationError
from ..notifications.scheduler import NotificationScheduler

FONT_SIZE_KEY = "font_size"
NOTIFICATION_SETTINGS_KEY = "notification_settings"
CLEANUP_SETTINGS_KEY = "cleanup_settings"
PROFILE_KEYS = ("display_name", "weekly_goal", "monthly_goal")


class PreferenceService:
    """Application-facing settings API for the signed-in user"""

    def __init__(self, context: SyncContext,
                 schema: Optional[PreferenceSchema] = None,
                 reachability_source: Optional[AsyncIterator[ConnectivityEvent]] = None):
        self.context = context
        self.settings = context.settings
        self.logger = context.logger
        self.user_id = context.user_id
        self.schema = schema or create_default_preference_schema(
            reminder_hour=self.settings.default_reminder_hour,
            reminder_minute=self.settings.default_reminder_minute
        )

        prefix = self.settings.local_key_prefix
        self.monitor = ConnectivityMonitor(context.local_store, self.logger, key_prefix=prefix)
        self.remote_profiles = context.remote_profiles()
        self.synchronizer = SettingsSynchronizer(
            user_id=self.user_id,
            local_store=context.local_store,
            remote_store=self.remote_profiles,
            monitor=self.monitor,
            logger=self.logger,
            schema=self.schema,
            key_prefix=prefix
        )
        self.scheduler = NotificationScheduler(
            backend=context.trigger_backend,
            local_store=context.local_store,
            logger=self.logger,
            clock=context.clock,
            lead_minutes=self.settings.task_reminder_lead_minutes,
            default_hour=self.settings.default_reminder_hour,
            default_minute=self.settings.default_reminder_minute
        )
        self.cleanup = CleanupService(
            document_store=context.document_store,
            synchronizer=self.synchronizer,
            local_store=context.local_store,
            logger=self.logger,
            settings=self.settings,
            clock=context.clock
        )

        self._reachability_source = reachability_source
        self._subscription: Optional[DocumentSubscription] = None
        self._tasks: List[asyncio.Task] = []
        self._started = False
        self._started_at: Optional[datetime] = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self):
        """Start the preference service"""
        if self._started:
            return

        await self.monitor.load()
        self.synchronizer.attach()

        self._subscription = self.remote_profiles.watch(self.user_id)
        self._tasks.append(asyncio.create_task(self._consume_snapshots(self._subscription)))

        source = self._reachability_source
        if source is None and self.settings.connectivity_probe_host:
            config = self.settings.get_connectivity_config()
            source = TcpReachabilityProbe(
                host=config["host"],
                port=config["port"],
                interval=config["interval_seconds"],
                timeout=config["timeout_seconds"],
                logger=self.logger
            )
        if source is not None:
            self._tasks.append(asyncio.create_task(self.monitor.run(source)))

        self._started = True
        self._started_at = datetime.now(timezone.utc)

        # changes left pending by a previous run
        await self.synchronizer.sync_pending()

        self.logger.info("Preference service started", user_id=self.user_id,
                         **self.monitor.to_dict())

    async def stop(self):
        """Stop the preference service"""
        if not self._started:
            return

        self._started = False
        self.synchronizer.detach()

        if self._subscription is not None:
            self._subscription.close()
            self._subscription = None

        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._tasks = []

        self.logger.info("Preference service stopped", user_id=self.user_id)

    async def _consume_snapshots(self, subscription: DocumentSubscription):
        async for document in subscription:
            if not self.monitor.effective_online:
                continue
            try:
                await self.synchronizer.apply_remote_document(document)
            except Exception as e:
                self.logger.error("Failed to apply remote profile snapshot",
                                  user_id=self.user_id, error=str(e))

    async def __aenter__(self) -> "PreferenceService":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.stop()

    # ------------------------------------------------------------------
    # Accessibility and connectivity
    # ------------------------------------------------------------------

    async def get_font_size(self) -> str:
        return (await self.synchronizer.load_preference(FONT_SIZE_KEY)).value

    async def set_font_size(self, size: str) -> PreferenceValue:
        return await self.synchronizer.set_preference(FONT_SIZE_KEY, size)

    async def font_scale(self) -> float:
        """Multiplier applied to base font sizes"""
        cached = await self.synchronizer.get_cached_preference(FONT_SIZE_KEY)
        return FONT_SCALES.get(cached.value, 1.0)

    async def toggle_offline_mode(self) -> bool:
        return await self.monitor.toggle_offline_mode()

    async def set_offline_mode(self, enabled: bool) -> bool:
        return await self.monitor.set_offline_mode(enabled)

    def connection_state(self) -> Dict[str, Any]:
        return self.monitor.to_dict()

    # ------------------------------------------------------------------
    # Reminders
    # ------------------------------------------------------------------

    async def load_notification_settings(self) -> Dict[str, Any]:
        return (await self.synchronizer.load_preference(NOTIFICATION_SETTINGS_KEY)).value

    async def save_notification_settings(self, notification_settings: Dict[str, Any]) -> PreferenceValue:
        """Apply the reminder schedule, then persist the settings

        A rejected schedule (past one-time date, denied permission) raises
        and nothing is saved.
        """
        definition = self.schema.definitions[NOTIFICATION_SETTINGS_KEY]
        value = definition.normalize_value(dict(notification_settings))
        value["notifications_enabled"] = value.get("frequency") != NotificationFrequency.NONE.value

        is_valid, errors = await self.synchronizer.validator.validate_preference(
            NOTIFICATION_SETTINGS_KEY, value, self.user_id
        )
        if not is_valid:
            raise PreferenceValidationError("Invalid reminder settings", NOTIFICATION_SETTINGS_KEY, errors)

        frequency = NotificationFrequency(value["frequency"])

        once_at = None
        if frequency == NotificationFrequency.ONCE:
            once_at = parse_iso_datetime(value["one_time_date"])

        trigger_ids = await self.scheduler.apply_frequency(
            frequency,
            hour=value["reminder_hour"],
            minute=value["reminder_minute"],
            weekdays=value["selected_days"],
            once_at=once_at
        )
        self.logger.debug("Reminder schedule applied",
                          frequency=frequency.value, triggers=len(trigger_ids))

        return await self.synchronizer.set_preference(NOTIFICATION_SETTINGS_KEY, value)

    async def schedule_task_reminder(self, task_id: str, title: str, due_at: datetime) -> str:
        return await self.scheduler.schedule_task_reminder(task_id, title, due_at)

    async def send_test_notification(self) -> str:
        return await self.scheduler.send_immediate(
            "Test notification", "Reminders are set up correctly"
        )

    # ------------------------------------------------------------------
    # Data management
    # ------------------------------------------------------------------

    async def load_cleanup_settings(self) -> CleanupSettings:
        loaded = await self.synchronizer.load_preference(CLEANUP_SETTINGS_KEY)
        return CleanupSettings.from_dict(loaded.value)

    async def save_cleanup_settings(self, cleanup_settings: Union[CleanupSettings, Dict[str, Any]]) -> PreferenceValue:
        if isinstance(cleanup_settings, dict):
            cleanup_settings = CleanupSettings.from_dict(cleanup_settings)
        return await self.cleanup.save_cleanup_settings(cleanup_settings)

    async def run_auto_cleanup(self, force: bool = False) -> CleanupResult:
        return await self.cleanup.run_auto_cleanup(self.user_id, force=force)

    async def get_cleanup_stats(self) -> CleanupStats:
        return await self.cleanup.get_cleanup_stats(self.user_id)

    async def bulk_delete_completed_tasks(self) -> int:
        return await self.cleanup.bulk_delete_completed_tasks(self.user_id)

    async def bulk_delete_old_expenses(self, older_than_days: int) -> int:
        return await self.cleanup.bulk_delete_old_expenses(self.user_id, older_than_days)

    # ------------------------------------------------------------------
    # Profile
    # ------------------------------------------------------------------

    async def load_profile(self) -> Dict[str, Any]:
        loaded = await self.synchronizer.load_preferences(PROFILE_KEYS)
        return {key: value.value for key, value in loaded.items()}

    async def update_profile(self, display_name: Optional[str] = None,
                             weekly_goal: Optional[int] = None,
                             monthly_goal: Optional[int] = None) -> Dict[str, PreferenceValue]:
        """Save the given profile fields in one remote write"""
        updates = {
            key: value for key, value in (
                ("display_name", display_name.strip() if display_name is not None else None),
                ("weekly_goal", weekly_goal),
                ("monthly_goal", monthly_goal),
            ) if value is not None
        }
        if not updates:
            return {}
        return await self.synchronizer.set_preferences(updates)

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    async def sync_now(self) -> Dict[str, Any]:
        return await self.synchronizer.sync_pending()

    async def get_sync_overview(self) -> Dict[str, str]:
        overview = await self.synchronizer.get_sync_overview()
        return {key: status.value for key, status in overview.items()}

    async def get_service_health(self) -> Dict[str, Any]:
        """Get service health information"""
        overview = await self.synchronizer.get_sync_overview()
        pending = sorted(key for key, status in overview.items() if status.value == "pending")

        health_info = {
            "service": "preference_service",
            "status": "healthy" if self._started else "stopped",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "user_id": self.user_id,
            "connectivity": self.monitor.to_dict(),
            "statistics": {
                "schema_version": self.schema.version,
                "preference_definitions": len(self.schema.definitions),
                "pending_preferences": pending,
                "background_tasks": len(self._tasks)
            }
        }

        if self._started_at is not None:
            health_info["statistics"]["uptime_seconds"] = int(
                (datetime.now(timezone.utc) - self._started_at).total_seconds()
            )

        return health_info
