"""
Local Preference Store
Device-side string key-value persistence with multiple implementation options
"""
import asyncio
import json
import os
import tempfile
from abc import ABC, abstractmethod
from typing import Dict, List, Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from ..core.exceptions import LocalStoreError
from ..monitoring.structured_logger import StructuredLogger


class LocalPreferenceStore(ABC):
    """Abstract get/set/remove string store, the device's local cache"""

    def __init__(self, logger: StructuredLogger):
        self.logger = logger

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        """Get the stored string, None when absent"""
        pass

    @abstractmethod
    async def set(self, key: str, value: str) -> None:
        """Store a string under key, replacing any previous value"""
        pass

    @abstractmethod
    async def remove(self, key: str) -> None:
        """Remove key; removing an absent key is not an error"""
        pass

    @abstractmethod
    async def keys(self) -> List[str]:
        """List every stored key"""
        pass

    async def aclose(self) -> None:
        """Release backend resources"""
        return None


class InMemoryLocalStore(LocalPreferenceStore):
    """In-memory local store for testing and development"""

    def __init__(self, logger: StructuredLogger, initial: Optional[Dict[str, str]] = None):
        super().__init__(logger)
        self._data: Dict[str, str] = dict(initial or {})

    async def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    async def set(self, key: str, value: str) -> None:
        if not isinstance(value, str):
            raise LocalStoreError(f"Local store only accepts strings, got {type(value).__name__}")
        self._data[key] = value
        self.logger.debug("Local value set", key=key)

    async def remove(self, key: str) -> None:
        if self._data.pop(key, None) is not None:
            self.logger.debug("Local value removed", key=key)

    async def keys(self) -> List[str]:
        return list(self._data.keys())

    def snapshot(self) -> Dict[str, str]:
        """Copy of the raw contents, used to simulate an app restart"""
        return dict(self._data)


class FileLocalStore(LocalPreferenceStore):
    """JSON-file local store; contents survive process restarts"""

    def __init__(self, logger: StructuredLogger, path: str):
        super().__init__(logger)
        self.path = path
        self._data: Optional[Dict[str, str]] = None
        self._lock = asyncio.Lock()

    def _read_file(self) -> Dict[str, str]:
        if not os.path.exists(self.path):
            return {}
        with open(self.path, "r", encoding="utf-8") as handle:
            content = handle.read()
        if not content.strip():
            return {}
        data = json.loads(content)
        if not isinstance(data, dict):
            raise LocalStoreError(f"Local store file {self.path} is not a JSON object")
        return {str(k): str(v) for k, v in data.items()}

    def _write_file(self, data: Dict[str, str]) -> None:
        directory = os.path.dirname(os.path.abspath(self.path))
        os.makedirs(directory, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=".local_store.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(data, handle, sort_keys=True)
            os.replace(tmp_path, self.path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    async def _load(self) -> Dict[str, str]:
        if self._data is None:
            try:
                self._data = await asyncio.to_thread(self._read_file)
            except (OSError, ValueError) as e:
                self.logger.error("Failed to read local store file",
                                  path=self.path, error=str(e))
                raise LocalStoreError(f"Cannot read {self.path}: {e}") from e
        return self._data

    async def _persist(self, data: Dict[str, str]) -> None:
        try:
            await asyncio.to_thread(self._write_file, dict(data))
        except OSError as e:
            self.logger.error("Failed to write local store file",
                              path=self.path, error=str(e))
            raise LocalStoreError(f"Cannot write {self.path}: {e}") from e

    async def get(self, key: str) -> Optional[str]:
        data = await self._load()
        return data.get(key)

    async def set(self, key: str, value: str) -> None:
        async with self._lock:
            data = await self._load()
            updated = dict(data)
            updated[key] = value
            await self._persist(updated)
            self._data = updated

    async def remove(self, key: str) -> None:
        async with self._lock:
            data = await self._load()
            if key not in data:
                return
            updated = dict(data)
            del updated[key]
            await self._persist(updated)
            self._data = updated

    async def keys(self) -> List[str]:
        data = await self._load()
        return list(data.keys())


class RedisLocalStore(LocalPreferenceStore):
    """Redis-backed local store for desktop and server-side clients"""

    def __init__(self, logger: StructuredLogger, redis_client=None, key_prefix: str = "prefsync"):
        super().__init__(logger)
        self.redis_client = redis_client
        self.key_prefix = key_prefix
        self._owns_client = False

    @classmethod
    def from_url(cls, logger: StructuredLogger, redis_url: str,
                 key_prefix: str = "prefsync") -> "RedisLocalStore":
        store = cls(logger, redis.from_url(redis_url, decode_responses=True), key_prefix)
        store._owns_client = True
        return store

    def _make_key(self, key: str) -> str:
        return f"{self.key_prefix}:{key}"

    def _require_client(self):
        if not self.redis_client:
            raise RuntimeError("Redis client not configured")
        return self.redis_client

    async def get(self, key: str) -> Optional[str]:
        client = self._require_client()
        try:
            data = await client.get(self._make_key(key))
        except RedisError as e:
            self.logger.error("Failed to get local value from Redis", key=key, error=str(e))
            raise LocalStoreError(str(e)) from e
        if isinstance(data, bytes):
            data = data.decode("utf-8")
        return data

    async def set(self, key: str, value: str) -> None:
        client = self._require_client()
        try:
            await client.set(self._make_key(key), value)
        except RedisError as e:
            self.logger.error("Failed to set local value in Redis", key=key, error=str(e))
            raise LocalStoreError(str(e)) from e

    async def remove(self, key: str) -> None:
        client = self._require_client()
        try:
            await client.delete(self._make_key(key))
        except RedisError as e:
            self.logger.error("Failed to remove local value from Redis", key=key, error=str(e))
            raise LocalStoreError(str(e)) from e

    async def keys(self) -> List[str]:
        client = self._require_client()
        prefix = self._make_key("")
        result = []
        try:
            async for redis_key in client.scan_iter(match=f"{prefix}*"):
                if isinstance(redis_key, bytes):
                    redis_key = redis_key.decode("utf-8")
                result.append(redis_key[len(prefix):])
        except RedisError as e:
            self.logger.error("Failed to list local keys in Redis", error=str(e))
            raise LocalStoreError(str(e)) from e
        return result

    async def aclose(self) -> None:
        if self._owns_client and self.redis_client is not None:
            await self.redis_client.aclose()
            self.redis_client = None
