"""
Dependency wiring
Explicit context carrying the configured stores, scheduler backend and signed-in user
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Optional

from .config import LocalStoreBackend, Settings
from ..monitoring.structured_logger import StructuredLogger
from ..notifications.scheduler import InMemoryTriggerBackend, TriggerBackend
from ..preferences.preference_storage import (
    FileLocalStore, InMemoryLocalStore, LocalPreferenceStore, RedisLocalStore
)
from ..preferences.remote_store import DocumentStore, InMemoryDocumentStore, RemoteProfileStore


@dataclass
class UserSession:
    """The authenticated user as reported by the auth provider; no credentials are kept"""
    user_id: str
    email: Optional[str] = None


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class SyncContext:
    """Everything a preference service needs for one signed-in user"""
    settings: Settings
    logger: StructuredLogger
    local_store: LocalPreferenceStore
    document_store: DocumentStore
    trigger_backend: TriggerBackend
    session: UserSession
    clock: Callable[[], datetime] = field(default=_utc_now)

    @property
    def user_id(self) -> str:
        return self.session.user_id

    def remote_profiles(self) -> RemoteProfileStore:
        return RemoteProfileStore(self.document_store, self.settings.remote_profile_collection)

    async def aclose(self):
        """Release resources owned by the configured backends"""
        await self.local_store.aclose()
        self.logger.debug("Sync context closed", user_id=self.user_id)


def create_logger(settings: Settings) -> StructuredLogger:
    return StructuredLogger(
        service_name=settings.service_name,
        environment=settings.environment.value,
        log_level=settings.log_level.value
    )


def create_local_store(settings: Settings, logger: StructuredLogger) -> LocalPreferenceStore:
    """Create the local store backend selected by configuration"""
    if settings.local_store_backend == LocalStoreBackend.MEMORY:
        return InMemoryLocalStore(logger)

    elif settings.local_store_backend == LocalStoreBackend.FILE:
        return FileLocalStore(logger, settings.local_store_path)

    elif settings.local_store_backend == LocalStoreBackend.REDIS:
        if not settings.redis_url:
            raise ValueError("redis_url is required for the redis local store")
        return RedisLocalStore.from_url(logger, settings.redis_url, key_prefix=settings.service_name)

    else:
        raise ValueError(f"Unknown local store backend: {settings.local_store_backend}")


def build_context(session: UserSession,
                  settings: Optional[Settings] = None,
                  logger: Optional[StructuredLogger] = None,
                  local_store: Optional[LocalPreferenceStore] = None,
                  document_store: Optional[DocumentStore] = None,
                  trigger_backend: Optional[TriggerBackend] = None,
                  clock: Optional[Callable[[], datetime]] = None) -> SyncContext:
    """Build a context, creating any backend that was not supplied

    The remote document store and trigger backend wrap vendor SDKs; when
    they are not supplied the in-memory implementations are used.
    """
    settings = settings or Settings()

    issues = settings.validate_configuration()
    if issues:
        raise ValueError("Invalid configuration: " + "; ".join(issues))

    logger = logger or create_logger(settings)
    logger = logger.bind(user_id=session.user_id)

    context = SyncContext(
        settings=settings,
        logger=logger,
        local_store=local_store or create_local_store(settings, logger),
        document_store=document_store or InMemoryDocumentStore(logger),
        trigger_backend=trigger_backend or InMemoryTriggerBackend(),
        session=session,
        clock=clock or _utc_now
    )

    logger.info("Sync context created",
                local_store=type(context.local_store).__name__,
                document_store=type(context.document_store).__name__)
    return context
