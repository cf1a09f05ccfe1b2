"""
Cleanup Service
Retention-based deletion of completed tasks and old expenses
"""
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

from ..core.config import Settings
from ..monitoring.structured_logger import StructuredLogger
from ..preferences.preference_manager import SettingsSynchronizer
from ..preferences.preference_models import parse_iso_datetime
from ..preferences.preference_storage import LocalPreferenceStore
from ..preferences.remote_store import Document, DocumentStore

TODOS_COLLECTION = "todos"
EXPENSES_COLLECTION = "expenses"
CLEANUP_SETTINGS_KEY = "cleanup_settings"
STATS_EXPENSE_AGE_DAYS = 30


def _as_datetime(value: Any) -> Optional[datetime]:
    """Normalize stored timestamps (datetime, ISO string or epoch seconds)"""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    if isinstance(value, str):
        try:
            return parse_iso_datetime(value)
        except ValueError:
            return None
    return None


@dataclass
class CleanupSettings:
    """Retention rules, as stored in the cleanup_settings preference"""
    auto_delete_completed_tasks: bool = True
    task_retention_hours: int = 24
    auto_delete_old_expenses: bool = False
    expense_retention_days: int = 30

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "CleanupSettings":
        data = data or {}
        defaults = cls()
        return cls(
            auto_delete_completed_tasks=data.get("auto_delete_completed_tasks",
                                                 defaults.auto_delete_completed_tasks),
            task_retention_hours=data.get("task_retention_hours", defaults.task_retention_hours),
            auto_delete_old_expenses=data.get("auto_delete_old_expenses",
                                              defaults.auto_delete_old_expenses),
            expense_retention_days=data.get("expense_retention_days", defaults.expense_retention_days)
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "auto_delete_completed_tasks": self.auto_delete_completed_tasks,
            "task_retention_hours": self.task_retention_hours,
            "auto_delete_old_expenses": self.auto_delete_old_expenses,
            "expense_retention_days": self.expense_retention_days
        }


@dataclass
class CleanupResult:
    tasks: int = 0
    expenses: int = 0
    skipped: bool = False
    reason: Optional[str] = None
    ran_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tasks": self.tasks,
            "expenses": self.expenses,
            "skipped": self.skipped,
            "reason": self.reason,
            "ran_at": self.ran_at.isoformat() if self.ran_at else None
        }


@dataclass
class CleanupStats:
    completed_tasks: int = 0
    old_expenses: int = 0
    oldest_completed_task: Optional[datetime] = None
    oldest_expense: Optional[datetime] = None
    errors: List[str] = field(default_factory=list)


class CleanupService:
    """Deletes the signed-in user's stale todos and expenses

    Retention rules come from the ``cleanup_settings`` preference, read
    through the synchronizer so they are cached locally and synced like any
    other setting. Automatic runs are throttled; the last run is remembered
    in the local store.
    """

    LAST_RUN_KEY = "cleanup_last_run"

    def __init__(self, document_store: DocumentStore, synchronizer: SettingsSynchronizer,
                 local_store: LocalPreferenceStore, logger: StructuredLogger,
                 settings: Optional[Settings] = None,
                 clock: Optional[Callable[[], datetime]] = None):
        self.document_store = document_store
        self.synchronizer = synchronizer
        self.local_store = local_store
        self.logger = logger
        self.settings = settings or Settings()
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    @property
    def last_run_storage_key(self) -> str:
        return f"{self.settings.local_key_prefix}{self.LAST_RUN_KEY}"

    async def get_cleanup_settings(self) -> CleanupSettings:
        cached = await self.synchronizer.get_cached_preference(CLEANUP_SETTINGS_KEY)
        return CleanupSettings.from_dict(cached.value)

    async def save_cleanup_settings(self, cleanup_settings: CleanupSettings):
        return await self.synchronizer.set_preference(CLEANUP_SETTINGS_KEY, cleanup_settings.to_dict())

    async def _user_documents(self, collection: str, user_id: str, **equals: Any) -> List[Document]:
        return await self.document_store.query(collection, userId=user_id, **equals)

    async def _delete_matching(self, collection: str, user_id: str, timestamp_field: Optional[str],
                               cutoff: Optional[datetime], **equals: Any) -> int:
        documents = await self._user_documents(collection, user_id, **equals)
        deleted_count = 0
        for document in documents:
            if timestamp_field is not None:
                stamp = _as_datetime(document.data.get(timestamp_field))
                if stamp is None or stamp > cutoff:
                    continue
            await self.document_store.delete_document(collection, document.id)
            deleted_count += 1
        return deleted_count

    async def cleanup_completed_tasks(self, user_id: str, retention_hours: int = 24) -> int:
        """Delete completed todos whose completedAt is at least retention_hours old"""
        cutoff = self.clock() - timedelta(hours=retention_hours)
        try:
            deleted_count = await self._delete_matching(
                TODOS_COLLECTION, user_id, "completedAt", cutoff, completed=True
            )
        except Exception as e:
            self.logger.error("Error cleaning up completed tasks", user_id=user_id, error=str(e))
            return 0

        self.logger.info("Cleaned up completed tasks", user_id=user_id, deleted=deleted_count)
        return deleted_count

    async def cleanup_old_expenses(self, user_id: str, retention_days: int = 30) -> int:
        """Delete expenses whose createdAt is at least retention_days old"""
        cutoff = self.clock() - timedelta(days=retention_days)
        try:
            deleted_count = await self._delete_matching(
                EXPENSES_COLLECTION, user_id, "createdAt", cutoff
            )
        except Exception as e:
            self.logger.error("Error cleaning up old expenses", user_id=user_id, error=str(e))
            return 0

        self.logger.info("Cleaned up old expenses", user_id=user_id, deleted=deleted_count)
        return deleted_count

    async def bulk_delete_completed_tasks(self, user_id: str) -> int:
        """Delete every completed todo regardless of age"""
        try:
            deleted_count = await self._delete_matching(
                TODOS_COLLECTION, user_id, None, None, completed=True
            )
        except Exception as e:
            self.logger.error("Error bulk deleting completed tasks", user_id=user_id, error=str(e))
            return 0

        self.logger.info("Bulk deleted completed tasks", user_id=user_id, deleted=deleted_count)
        return deleted_count

    async def bulk_delete_old_expenses(self, user_id: str, older_than_days: int) -> int:
        try:
            deleted_count = await self._delete_matching(
                EXPENSES_COLLECTION, user_id, "createdAt",
                self.clock() - timedelta(days=older_than_days)
            )
        except Exception as e:
            self.logger.error("Error bulk deleting old expenses", user_id=user_id, error=str(e))
            return 0

        self.logger.info("Bulk deleted old expenses", user_id=user_id, deleted=deleted_count)
        return deleted_count

    async def _last_run(self) -> Optional[datetime]:
        try:
            stored = await self.local_store.get(self.last_run_storage_key)
        except Exception as e:
            self.logger.error("Error reading last cleanup time", error=str(e))
            return None
        return _as_datetime(stored)

    async def _record_run(self, ran_at: datetime):
        try:
            await self.local_store.set(self.last_run_storage_key, ran_at.isoformat())
        except Exception as e:
            self.logger.error("Error saving last cleanup time", error=str(e))

    async def run_auto_cleanup(self, user_id: str, force: bool = False) -> CleanupResult:
        """Apply the enabled retention rules, at most once per throttle window unless forced"""
        now = self.clock()

        if not self.synchronizer.monitor.effective_online:
            self.logger.debug("Skipping cleanup while offline", user_id=user_id)
            return CleanupResult(skipped=True, reason="offline")

        if not force:
            last_run = await self._last_run()
            min_interval = timedelta(hours=self.settings.cleanup_min_interval_hours)
            if last_run is not None and now - last_run < min_interval:
                self.logger.debug("Cleanup already ran recently, skipping",
                                  user_id=user_id, last_run=last_run.isoformat())
                return CleanupResult(skipped=True, reason="recent", ran_at=last_run)

        cleanup_settings = await self.get_cleanup_settings()
        result = CleanupResult(ran_at=now)

        if cleanup_settings.auto_delete_completed_tasks:
            result.tasks = await self.cleanup_completed_tasks(
                user_id, cleanup_settings.task_retention_hours
            )

        if cleanup_settings.auto_delete_old_expenses:
            result.expenses = await self.cleanup_old_expenses(
                user_id, cleanup_settings.expense_retention_days
            )

        await self._record_run(now)
        self.logger.info("Automatic cleanup finished", user_id=user_id, **result.to_dict())
        return result

    async def get_cleanup_stats(self, user_id: str) -> CleanupStats:
        stats = CleanupStats()

        try:
            tasks = await self._user_documents(TODOS_COLLECTION, user_id, completed=True)
            stats.completed_tasks = len(tasks)
            for task in tasks:
                completed_at = _as_datetime(task.data.get("completedAt"))
                if completed_at and (stats.oldest_completed_task is None
                                     or completed_at < stats.oldest_completed_task):
                    stats.oldest_completed_task = completed_at

            cutoff = self.clock() - timedelta(days=STATS_EXPENSE_AGE_DAYS)
            for expense in await self._user_documents(EXPENSES_COLLECTION, user_id):
                created_at = _as_datetime(expense.data.get("createdAt"))
                if created_at is None:
                    continue
                if created_at <= cutoff:
                    stats.old_expenses += 1
                if stats.oldest_expense is None or created_at < stats.oldest_expense:
                    stats.oldest_expense = created_at
        except Exception as e:
            self.logger.error("Error getting cleanup stats", user_id=user_id, error=str(e))
            return CleanupStats(errors=[str(e)])

        return stats
