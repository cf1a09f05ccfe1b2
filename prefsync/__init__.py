"""
Offline-first preference synchronization
Local-first settings with write-through to a remote user profile, reminders and data cleanup
"""

from .core.config import Settings
from .core.exceptions import (
    PrefSyncError,
    PreferenceValidationError,
    LocalStoreError,
    RemoteStoreError,
    ScheduleRejectedError,
    NotificationPermissionError
)
from .core.dependencies import UserSession, SyncContext, build_context
from .monitoring.structured_logger import StructuredLogger, get_logger
from .preferences.preference_models import PreferenceSyncStatus, NotificationFrequency
from .preferences.preference_manager import SettingsSynchronizer
from .preferences.preference_service import PreferenceService
from .connectivity.monitor import ConnectivityMonitor, ConnectivityEvent
from .notifications.scheduler import NotificationScheduler
from .cleanup.cleanup_service import CleanupService

__version__ = "1.0.0"

__all__ = [
    "Settings",
    "PrefSyncError",
    "PreferenceValidationError",
    "LocalStoreError",
    "RemoteStoreError",
    "ScheduleRejectedError",
    "NotificationPermissionError",
    "UserSession",
    "SyncContext",
    "build_context",
    "StructuredLogger",
    "get_logger",
    "PreferenceSyncStatus",
    "NotificationFrequency",
    "SettingsSynchronizer",
    "PreferenceService",
    "ConnectivityMonitor",
    "ConnectivityEvent",
    "NotificationScheduler",
    "CleanupService"
]
