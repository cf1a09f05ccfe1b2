"""
Settings Synchronizer
Offline-first reconciliation of preferences between the local store and the remote profile
"""
import asyncio
from contextlib import AsyncExitStack
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .pending_log import PendingLog
from .preference_models import (
    NotificationFrequency, PendingChange, PreferenceDefinition, PreferenceSchema,
    PreferenceSyncStatus, PreferenceValue, create_default_preference_schema
)
from .preference_storage import LocalPreferenceStore
from .remote_store import RemoteProfileStore
from ..connectivity.monitor import ConnectivityMonitor
from ..core.exceptions import PreferenceValidationError
from ..monitoring.structured_logger import StructuredLogger


class PreferenceValidator:
    """Validates preferences against schema and cross-field rules"""

    def __init__(self, schema: PreferenceSchema, logger: StructuredLogger):
        self.schema = schema
        self.logger = logger

    async def validate_preference(self, key: str, value: Any,
                                  user_id: Optional[str] = None) -> Tuple[bool, List[str]]:
        """Validate a single preference value"""
        definition = self.schema.get(key)
        if definition is None:
            return False, [f"Unknown preference key: {key}"]

        errors = definition.validation_errors(value)
        if not errors:
            errors.extend(self._validate_business_rules(definition, value))

        if errors:
            self.logger.warning("Preference validation failed",
                                key=key, user_id=user_id, errors=errors)

        return not errors, errors

    async def validate_preferences(self, preferences: Dict[str, Any],
                                   user_id: Optional[str] = None) -> Tuple[bool, Dict[str, List[str]]]:
        """Validate multiple preferences"""
        all_errors = {}

        for key, value in preferences.items():
            is_valid, errors = await self.validate_preference(key, value, user_id)
            if not is_valid:
                all_errors[key] = errors

        return not all_errors, all_errors

    def _validate_business_rules(self, definition: PreferenceDefinition, value: Any) -> List[str]:
        errors = []

        if definition.key == "notification_settings":
            frequency = value.get("frequency")
            if frequency == NotificationFrequency.WEEKLY.value and not value.get("selected_days"):
                errors.append("Weekly reminders need at least one selected day")
            if frequency == NotificationFrequency.ONCE.value and not value.get("one_time_date"):
                errors.append("One-time reminders need a date")
            enabled = value.get("notifications_enabled")
            if enabled is not None and enabled != (frequency != NotificationFrequency.NONE.value):
                errors.append("notifications_enabled must match the selected frequency")

        return errors


class SettingsSynchronizer:
    """Keeps named preferences consistent between device and remote profile

    Every write lands in the local store first. While effectively online the
    change is written through to the remote profile with merge semantics;
    otherwise, or when that write fails, the change stays in the pending log
    and is replayed on the next reconnect. Reads are served from the local
    store and refreshed from the remote profile only when nothing is
    pending for the key.
    """

    def __init__(self, user_id: str,
                 local_store: LocalPreferenceStore,
                 remote_store: RemoteProfileStore,
                 monitor: ConnectivityMonitor,
                 logger: StructuredLogger,
                 schema: Optional[PreferenceSchema] = None,
                 key_prefix: str = "@"):
        self.user_id = user_id
        self.local_store = local_store
        self.remote_store = remote_store
        self.monitor = monitor
        self.logger = logger
        self.schema = schema or create_default_preference_schema()
        self.key_prefix = key_prefix

        self.validator = PreferenceValidator(self.schema, self.logger)
        self.pending_log = PendingLog(local_store, logger, key_prefix)

        self._locks: Dict[str, asyncio.Lock] = {}
        self._generations: Dict[str, int] = {}
        self._unsubscribe_reconnect = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def attach(self):
        """Run the pending sweep on every reconnect"""
        if self._unsubscribe_reconnect is None:
            self._unsubscribe_reconnect = self.monitor.add_reconnect_listener(
                self.on_connectivity_restored
            )

    def detach(self):
        if self._unsubscribe_reconnect is not None:
            self._unsubscribe_reconnect()
            self._unsubscribe_reconnect = None

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def storage_key(self, key: str) -> str:
        return f"{self.key_prefix}{key}"

    def _definition(self, key: str) -> PreferenceDefinition:
        definition = self.schema.get(key)
        if definition is None:
            raise PreferenceValidationError(
                f"Unknown preference {key}", key, [f"Unknown preference key: {key}"]
            )
        return definition

    def _lock(self, key: str) -> asyncio.Lock:
        if key not in self._locks:
            self._locks[key] = asyncio.Lock()
        return self._locks[key]

    def _generation(self, key: str) -> int:
        return self._generations.get(key, 0)

    def _bump_generation(self, key: str):
        """Mark a local write; held under the key lock"""
        self._generations[key] = self._generation(key) + 1

    def _value(self, key: str, value: Any, source: str,
               status: PreferenceSyncStatus) -> PreferenceValue:
        return PreferenceValue(
            definition_key=key,
            value=value,
            user_id=self.user_id,
            source=source,
            sync_status=status
        )

    async def _local_get(self, key: str) -> Any:
        try:
            raw = await self.local_store.get(self.storage_key(key))
        except Exception as e:
            self.logger.error("Error reading local preference", key=key, error=str(e))
            return None
        return PreferenceValue.deserialize_value(raw)

    async def _local_set(self, key: str, value: Any) -> bool:
        try:
            await self.local_store.set(
                self.storage_key(key),
                PreferenceValue(definition_key=key, value=value, user_id=self.user_id).serialize_value()
            )
        except Exception as e:
            self.logger.error("Error saving preference locally", key=key, error=str(e))
            return False
        return True

    async def _is_pending(self, key: str) -> bool:
        try:
            return await self.pending_log.is_pending(key)
        except Exception as e:
            self.logger.error("Error reading pending flag", key=key, error=str(e))
            return False

    async def _record_pending(self, key: str, value: Any) -> Optional[PendingChange]:
        try:
            return await self.pending_log.append(key, value)
        except Exception as e:
            self.logger.error("Error recording pending change", key=key, error=str(e))
            return None

    async def _acknowledge(self, key: str, sequence: Optional[int]) -> bool:
        try:
            if sequence is None:
                await self.pending_log.clear(key)
            else:
                await self.pending_log.acknowledge(key, sequence)
        except Exception as e:
            self.logger.error("Error clearing pending flag", key=key, error=str(e))
            return False
        return True

    async def _remote_write(self, fields: Dict[str, Any]):
        await self.remote_store.write(self.user_id, fields, merge=True)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def set_preference(self, key: str, value: Any, source: str = "user") -> PreferenceValue:
        """Write locally, then through to the remote profile when online

        Raises :class:`PreferenceValidationError` for invalid input; storage
        and network failures are logged and reflected in the returned sync
        status only.
        """
        definition = self._definition(key)
        value = definition.normalize_value(value)

        is_valid, errors = await self.validator.validate_preference(key, value, self.user_id)
        if not is_valid:
            raise PreferenceValidationError(f"Validation failed for preference {key}", key, errors)

        async with self._lock(key):
            self._bump_generation(key)
            if await self._local_set(key, value):
                self.logger.debug("Preference saved locally", key=key)

            if not definition.synced:
                return self._value(key, value, source, PreferenceSyncStatus.LOCAL_ONLY)

            entry = await self._record_pending(key, value)

            if not self.monitor.effective_online:
                self.logger.info("Offline - preference will sync when connection is restored",
                                 key=key, user_id=self.user_id)
                return self._value(key, value, source, PreferenceSyncStatus.PENDING)

            try:
                await self._remote_write(definition.to_remote_fields(value))
            except Exception as e:
                self.logger.warning("Remote write failed, preference kept pending",
                                    key=key, user_id=self.user_id, error=str(e))
                return self._value(key, value, source, PreferenceSyncStatus.PENDING)

            acknowledged = await self._acknowledge(key, entry.sequence if entry else None)
            status = PreferenceSyncStatus.SYNCED if acknowledged else PreferenceSyncStatus.PENDING
            self.logger.info("Preference synced", key=key, user_id=self.user_id)
            return self._value(key, value, source, status)

    async def set_preferences(self, preferences: Dict[str, Any],
                              source: str = "user") -> Dict[str, PreferenceValue]:
        """Write several preferences with a single remote merge write"""
        normalized = {}
        for key, value in preferences.items():
            normalized[key] = self._definition(key).normalize_value(value)

        is_valid, errors = await self.validator.validate_preferences(normalized, self.user_id)
        if not is_valid:
            raise PreferenceValidationError(
                "Validation failed for multiple preferences",
                "batch", [f"{k}: {v}" for k, v in errors.items()]
            )

        keys = sorted(normalized)
        async with AsyncExitStack() as stack:
            for key in keys:
                await stack.enter_async_context(self._lock(key))

            result = {}
            entries: Dict[str, Optional[PendingChange]] = {}
            remote_fields: Dict[str, Any] = {}

            for key in keys:
                definition = self.schema.definitions[key]
                value = normalized[key]
                self._bump_generation(key)
                await self._local_set(key, value)
                if not definition.synced:
                    result[key] = self._value(key, value, source, PreferenceSyncStatus.LOCAL_ONLY)
                    continue
                entries[key] = await self._record_pending(key, value)
                remote_fields.update(definition.to_remote_fields(value))

            status = PreferenceSyncStatus.PENDING
            if entries and self.monitor.effective_online:
                try:
                    await self._remote_write(remote_fields)
                    status = PreferenceSyncStatus.SYNCED
                except Exception as e:
                    self.logger.warning("Remote batch write failed, preferences kept pending",
                                        keys=list(entries), user_id=self.user_id, error=str(e))

            for key, entry in entries.items():
                key_status = status
                if status == PreferenceSyncStatus.SYNCED:
                    if not await self._acknowledge(key, entry.sequence if entry else None):
                        key_status = PreferenceSyncStatus.PENDING
                result[key] = self._value(key, normalized[key], source, key_status)

        self.logger.info("Preferences saved", user_id=self.user_id, count=len(result))
        return result

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_sync_state(self, key: str) -> PreferenceSyncStatus:
        """Synced unless the persisted pending flag is set"""
        definition = self._definition(key)
        if not definition.synced:
            return PreferenceSyncStatus.LOCAL_ONLY
        if await self._is_pending(key):
            return PreferenceSyncStatus.PENDING
        return PreferenceSyncStatus.SYNCED

    async def get_cached_preference(self, key: str) -> PreferenceValue:
        """Local value, or the default; never touches the network"""
        definition = self._definition(key)
        status = await self.get_sync_state(key)

        stored = await self._local_get(key)
        if stored is not None:
            stored = definition.normalize_value(stored)
            if definition.validate_value(stored):
                return self._value(key, stored, "cache", status)
            self.logger.warning("Ignoring invalid cached preference", key=key)

        return self._value(key, definition.normalize_value(definition.default_value), "default", status)

    async def _refresh_from_document(self, key: str, document: Optional[Dict[str, Any]],
                                     generation: int) -> Optional[PreferenceValue]:
        """Adopt the remote value for key unless local changes are outstanding

        ``generation`` is the key's write generation taken before the document
        was read; any local write since then makes the document stale for key.
        """
        definition = self.schema.definitions[key]
        remote_value = definition.from_remote_document(document)
        if remote_value is None:
            return None

        remote_value = definition.normalize_value(remote_value)
        if not definition.validate_value(remote_value):
            self.logger.warning("Ignoring invalid remote preference", key=key, user_id=self.user_id)
            return None

        async with self._lock(key):
            # a local write may have landed while the remote read was in flight
            if self._generation(key) != generation or await self._is_pending(key):
                self.logger.debug("Discarding stale remote value", key=key, user_id=self.user_id)
                return None
            await self._local_set(key, remote_value)

        return self._value(key, remote_value, "remote", PreferenceSyncStatus.SYNCED)

    async def load_preferences(self, keys: Optional[Iterable[str]] = None) -> Dict[str, PreferenceValue]:
        """Cached values first, refreshed from one remote read where safe"""
        keys = list(keys) if keys is not None else list(self.schema.definitions)
        generations = {key: self._generation(key) for key in keys}
        result = {key: await self.get_cached_preference(key) for key in keys}

        refreshable = [
            key for key, cached in result.items()
            if self.schema.definitions[key].synced and not cached.is_pending
        ]
        skipped = [key for key, cached in result.items() if cached.is_pending]
        if skipped:
            self.logger.info("Skipping remote load - pending changes will sync first",
                             keys=skipped, user_id=self.user_id)

        if not refreshable or not self.monitor.effective_online:
            return result

        try:
            document = await self.remote_store.read(self.user_id)
        except Exception as e:
            self.logger.info("Using cached preferences (remote unavailable)",
                             user_id=self.user_id, error=str(e))
            return result

        for key in refreshable:
            refreshed = await self._refresh_from_document(key, document, generations[key])
            if refreshed is not None:
                result[key] = refreshed
            elif self._generation(key) != generations[key]:
                result[key] = await self.get_cached_preference(key)

        return result

    async def load_preference(self, key: str) -> PreferenceValue:
        """Load one preference; a pending local change is never overwritten"""
        self._definition(key)
        loaded = await self.load_preferences([key])
        return loaded[key]

    async def apply_remote_document(self, document: Optional[Dict[str, Any]]) -> List[str]:
        """Apply a live profile snapshot; returns the keys whose cache changed"""
        updated = []
        for key, definition in self.schema.synced_definitions().items():
            if await self._is_pending(key):
                continue
            generation = self._generation(key)
            cached = await self._local_get(key)
            refreshed = await self._refresh_from_document(key, document, generation)
            if refreshed is not None and refreshed.value != cached:
                updated.append(key)

        if updated:
            self.logger.debug("Applied remote profile snapshot", keys=updated, user_id=self.user_id)
        return updated

    # ------------------------------------------------------------------
    # Reconnect sweep
    # ------------------------------------------------------------------

    async def _replay(self, key: str, definition: PreferenceDefinition) -> PreferenceSyncStatus:
        async with self._lock(key):
            if not await self._is_pending(key):
                return PreferenceSyncStatus.SYNCED
            if not self.monitor.effective_online:
                return PreferenceSyncStatus.PENDING

            try:
                entries = await self.pending_log.entries(key)
            except Exception as e:
                self.logger.error("Error reading pending changes", key=key, error=str(e))
                return PreferenceSyncStatus.PENDING

            if not entries:
                # flag set without recorded changes: push the current local value
                value = await self._local_get(key)
                if value is not None:
                    try:
                        await self._remote_write(definition.to_remote_fields(value))
                    except Exception as e:
                        self.logger.warning("Pending preference sync failed",
                                            key=key, user_id=self.user_id, error=str(e))
                        return PreferenceSyncStatus.PENDING
                await self._acknowledge(key, None)
                return PreferenceSyncStatus.SYNCED

            for entry in entries:
                try:
                    await self._remote_write(definition.to_remote_fields(entry.value))
                except Exception as e:
                    self.logger.warning("Pending preference sync failed",
                                        key=key, sequence=entry.sequence,
                                        user_id=self.user_id, error=str(e))
                    return PreferenceSyncStatus.PENDING
                if not await self._acknowledge(key, entry.sequence):
                    return PreferenceSyncStatus.PENDING

            self.logger.info("Pending preference synced",
                             key=key, replayed=len(entries), user_id=self.user_id)
            return PreferenceSyncStatus.SYNCED

    async def on_connectivity_restored(self) -> Dict[str, PreferenceSyncStatus]:
        """Replay every pending key against the remote profile"""
        try:
            pending_keys = await self.pending_log.pending_keys()
        except Exception as e:
            self.logger.error("Error listing pending preferences", error=str(e))
            return {}

        results = {}
        for key in pending_keys:
            definition = self.schema.get(key)
            if definition is None or not definition.synced:
                self.logger.warning("Pending flag for unknown preference", key=key)
                continue
            results[key] = await self._replay(key, definition)

        if results:
            self.logger.info("Reconnect sync finished", user_id=self.user_id,
                             results={k: v.value for k, v in results.items()})
        return results

    async def sync_pending(self) -> Dict[str, Any]:
        """Opportunistic sweep, e.g. when the app returns to the foreground"""
        sync_result = {
            "user_id": self.user_id,
            "sync_time": datetime.now(timezone.utc),
            "online": self.monitor.effective_online,
            "preferences_synced": 0,
            "still_pending": [],
        }

        if self.monitor.effective_online:
            results = await self.on_connectivity_restored()
        else:
            results = {}

        sync_result["preferences_synced"] = sum(
            1 for status in results.values() if status == PreferenceSyncStatus.SYNCED
        )
        try:
            sync_result["still_pending"] = await self.pending_log.pending_keys()
        except Exception as e:
            self.logger.error("Error listing pending preferences", error=str(e))

        self.logger.debug("Preference sync completed", **sync_result)
        return sync_result

    async def get_sync_overview(self) -> Dict[str, PreferenceSyncStatus]:
        return {key: await self.get_sync_state(key) for key in self.schema.definitions}
