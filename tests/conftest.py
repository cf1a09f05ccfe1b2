"""
Shared fixtures for the preference synchronization test suite
"""
from datetime import datetime, timedelta, timezone
from unittest.mock import Mock

import pytest

from prefsync.connectivity.monitor import ConnectivityMonitor
from prefsync.core.config import Settings
from prefsync.core.dependencies import UserSession, build_context
from prefsync.notifications.scheduler import InMemoryTriggerBackend, NotificationScheduler
from prefsync.preferences.preference_manager import SettingsSynchronizer
from prefsync.preferences.preference_models import create_default_preference_schema
from prefsync.preferences.preference_storage import InMemoryLocalStore
from prefsync.preferences.remote_store import InMemoryDocumentStore, RemoteProfileStore

USER_ID = "user123"


class FakeClock:
    """Controllable replacement for datetime.now(timezone.utc)"""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def mock_logger():
    """Mock structured logger"""
    logger = Mock()
    logger.debug = Mock()
    logger.info = Mock()
    logger.warning = Mock()
    logger.error = Mock()
    logger.bind = Mock(return_value=logger)
    return logger


@pytest.fixture
def clock():
    return FakeClock(datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def local_store(mock_logger):
    return InMemoryLocalStore(mock_logger)


@pytest.fixture
def document_store(mock_logger):
    return InMemoryDocumentStore(mock_logger)


@pytest.fixture
def remote_profiles(document_store):
    return RemoteProfileStore(document_store, "users")


@pytest.fixture
def preference_schema():
    return create_default_preference_schema()


@pytest.fixture
def monitor(local_store, mock_logger):
    return ConnectivityMonitor(local_store, mock_logger, key_prefix="@", initially_connected=True)


@pytest.fixture
def synchronizer(local_store, remote_profiles, monitor, mock_logger, preference_schema):
    synchronizer = SettingsSynchronizer(
        user_id=USER_ID,
        local_store=local_store,
        remote_store=remote_profiles,
        monitor=monitor,
        logger=mock_logger,
        schema=preference_schema,
        key_prefix="@"
    )
    synchronizer.attach()
    return synchronizer


@pytest.fixture
def trigger_backend():
    return InMemoryTriggerBackend(permission_granted=True)


@pytest.fixture
def scheduler(trigger_backend, local_store, mock_logger, clock):
    return NotificationScheduler(trigger_backend, local_store, mock_logger, clock=clock, lead_minutes=60)


@pytest.fixture
def settings():
    return Settings(connectivity_probe_host="")


@pytest.fixture
def context(settings, mock_logger, local_store, document_store, trigger_backend, clock):
    return build_context(
        UserSession(user_id=USER_ID, email="user@example.com"),
        settings=settings,
        logger=mock_logger,
        local_store=local_store,
        document_store=document_store,
        trigger_backend=trigger_backend,
        clock=clock
    )
