"""
Pending Change Log
Append-only record of local preference mutations not yet confirmed remotely
"""
import json
import time
from typing import Any, List, Optional

from .preference_models import PendingChange
from .preference_storage import LocalPreferenceStore
from ..monitoring.structured_logger import StructuredLogger


class PendingLog:
    """Per-key pending entries persisted next to the cached value

    The presence of ``<prefix><key>_pending`` in the local store is the
    pending-sync flag. Its content is the ordered list of unsynced changes;
    markers written by older builds (a bare ``"true"``) count as pending
    with no recorded entries.
    """

    SUFFIX = "_pending"

    def __init__(self, local_store: LocalPreferenceStore, logger: StructuredLogger,
                 key_prefix: str = "@"):
        self.local_store = local_store
        self.logger = logger
        self.key_prefix = key_prefix

    def storage_key(self, key: str) -> str:
        return f"{self.key_prefix}{key}{self.SUFFIX}"

    async def _read(self, key: str) -> Optional[str]:
        return await self.local_store.get(self.storage_key(key))

    def _parse(self, key: str, raw: Optional[str]) -> List[PendingChange]:
        if raw is None:
            return []
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            return []
        if not isinstance(data, list):
            return []

        entries = []
        for item in data:
            try:
                entries.append(PendingChange.from_dict(item))
            except (KeyError, TypeError, ValueError) as e:
                self.logger.warning("Dropping unreadable pending entry", key=key, error=str(e))
        entries.sort(key=lambda entry: entry.sequence)
        return entries

    async def _write(self, key: str, entries: List[PendingChange]) -> None:
        if entries:
            payload = json.dumps([entry.to_dict() for entry in entries])
            await self.local_store.set(self.storage_key(key), payload)
        else:
            await self.local_store.remove(self.storage_key(key))

    async def is_pending(self, key: str) -> bool:
        return await self._read(key) is not None

    async def entries(self, key: str) -> List[PendingChange]:
        return self._parse(key, await self._read(key))

    async def append(self, key: str, value: Any) -> PendingChange:
        """Record a local change; sets the pending flag"""
        entries = await self.entries(key)
        last_sequence = entries[-1].sequence if entries else 0
        entry = PendingChange(
            key=key,
            value=value,
            sequence=max(time.time_ns(), last_sequence + 1)
        )
        entries.append(entry)
        await self._write(key, entries)
        self.logger.debug("Pending change recorded",
                          key=key, sequence=entry.sequence, depth=len(entries))
        return entry

    async def acknowledge(self, key: str, up_to_sequence: int) -> int:
        """Drop entries confirmed remotely; clears the flag once the log is empty"""
        raw = await self._read(key)
        if raw is None:
            return 0
        entries = self._parse(key, raw)
        remaining = [entry for entry in entries if entry.sequence > up_to_sequence]
        await self._write(key, remaining)
        return len(entries) - len(remaining)

    async def clear(self, key: str) -> None:
        await self.local_store.remove(self.storage_key(key))

    async def pending_keys(self) -> List[str]:
        """Keys whose flag is currently set"""
        result = []
        for stored_key in await self.local_store.keys():
            if stored_key.startswith(self.key_prefix) and stored_key.endswith(self.SUFFIX):
                result.append(stored_key[len(self.key_prefix):-len(self.SUFFIX)])
        return sorted(result)
