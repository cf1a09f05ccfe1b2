"""
User Preference Management System
Offline-first preference storage, synchronization and application services
"""

from .preference_models import (
    PreferenceCategory,
    PreferenceType,
    PreferenceDefinition,
    PreferenceValue,
    PreferenceSchema,
    PreferenceSyncStatus,
    PendingChange,
    NotificationFrequency,
    create_default_preference_schema
)

from .preference_storage import (
    LocalPreferenceStore,
    InMemoryLocalStore,
    FileLocalStore,
    RedisLocalStore
)

from .remote_store import (
    Document,
    DocumentSubscription,
    DocumentStore,
    InMemoryDocumentStore,
    RemoteProfileStore
)

from .pending_log import PendingLog

from .preference_manager import (
    PreferenceValidator,
    SettingsSynchronizer
)

__all__ = [
    # Models
    "PreferenceCategory",
    "PreferenceType",
    "PreferenceDefinition",
    "PreferenceValue",
    "PreferenceSchema",
    "PreferenceSyncStatus",
    "PendingChange",
    "NotificationFrequency",
    "create_default_preference_schema",

    # Storage Layer
    "LocalPreferenceStore",
    "InMemoryLocalStore",
    "FileLocalStore",
    "RedisLocalStore",
    "Document",
    "DocumentSubscription",
    "DocumentStore",
    "InMemoryDocumentStore",
    "RemoteProfileStore",
    "PendingLog",

    # Synchronization
    "PreferenceValidator",
    "SettingsSynchronizer"
]
