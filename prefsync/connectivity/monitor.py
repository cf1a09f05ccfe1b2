"""
Connectivity Monitor
Network reachability, the user's offline-mode override and online/offline edge detection
"""
import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional

from ..preferences.preference_storage import LocalPreferenceStore
from ..monitoring.structured_logger import StructuredLogger

Listener = Callable[[], Awaitable[Any]]


@dataclass
class ConnectivityEvent:
    """Raw reachability report from the platform"""
    reachable: bool
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class ConnectivityMonitor:
    """Derives effective connectivity and fires listeners on transitions

    ``effective_online = is_connected and not offline_mode``. Reconnect
    listeners run on every offline to online edge of the effective state,
    whether caused by the network coming back or by the user leaving
    offline mode.
    """

    OFFLINE_MODE_KEY = "offline_mode"

    def __init__(self, local_store: LocalPreferenceStore, logger: StructuredLogger,
                 key_prefix: str = "@", initially_connected: bool = True):
        self.local_store = local_store
        self.logger = logger
        self.key_prefix = key_prefix
        self._connected = initially_connected
        self._offline_mode = False
        self._reconnect_listeners: List[Listener] = []
        self._disconnect_listeners: List[Listener] = []
        self._last_event_at: Optional[datetime] = None
        self.reconnect_count = 0

    @property
    def is_connected(self) -> bool:
        return self._connected

    @property
    def offline_mode(self) -> bool:
        return self._offline_mode

    @property
    def effective_online(self) -> bool:
        return self._connected and not self._offline_mode

    @property
    def offline_mode_storage_key(self) -> str:
        return f"{self.key_prefix}{self.OFFLINE_MODE_KEY}"

    # ------------------------------------------------------------------
    # Listeners
    # ------------------------------------------------------------------

    def add_reconnect_listener(self, listener: Listener) -> Callable[[], None]:
        """Register a coroutine function fired on offline to online; returns an unsubscribe callable"""
        self._reconnect_listeners.append(listener)
        return lambda: self._remove(self._reconnect_listeners, listener)

    def add_disconnect_listener(self, listener: Listener) -> Callable[[], None]:
        self._disconnect_listeners.append(listener)
        return lambda: self._remove(self._disconnect_listeners, listener)

    @staticmethod
    def _remove(listeners: List[Listener], listener: Listener):
        if listener in listeners:
            listeners.remove(listener)

    async def _fire(self, listeners: List[Listener], edge: str):
        for listener in list(listeners):
            try:
                await listener()
            except Exception as e:
                self.logger.error("Connectivity listener failed", edge=edge, error=str(e))

    async def _transition(self, was_online: bool):
        now_online = self.effective_online
        if was_online == now_online:
            return

        if now_online:
            self.reconnect_count += 1
            self.logger.info("Connectivity restored",
                             connected=self._connected, offline_mode=self._offline_mode)
            await self._fire(self._reconnect_listeners, "online")
        else:
            self.logger.info("Connectivity lost",
                             connected=self._connected, offline_mode=self._offline_mode)
            await self._fire(self._disconnect_listeners, "offline")

    # ------------------------------------------------------------------
    # Inputs
    # ------------------------------------------------------------------

    async def handle_event(self, event: ConnectivityEvent) -> bool:
        """Apply a reachability report; returns the new effective state"""
        was_online = self.effective_online
        self._connected = event.reachable
        self._last_event_at = event.timestamp
        await self._transition(was_online)
        return self.effective_online

    async def run(self, source: AsyncIterator[ConnectivityEvent]) -> None:
        """Consume reachability events until the source ends or the task is cancelled"""
        async for event in source:
            await self.handle_event(event)

    async def load(self) -> bool:
        """Restore the persisted offline-mode override"""
        try:
            stored = await self.local_store.get(self.offline_mode_storage_key)
        except Exception as e:
            self.logger.error("Failed to load offline mode preference", error=str(e))
            return self._offline_mode

        if stored is not None:
            self._offline_mode = stored.strip().lower() == "true"
        return self._offline_mode

    async def set_offline_mode(self, enabled: bool) -> bool:
        """Change the user override; persisted locally, never synced"""
        was_online = self.effective_online
        try:
            await self.local_store.set(self.offline_mode_storage_key, "true" if enabled else "false")
        except Exception as e:
            self.logger.error("Failed to persist offline mode", error=str(e))
        self._offline_mode = enabled
        self.logger.info("Offline mode changed", offline_mode=enabled)
        await self._transition(was_online)
        return enabled

    async def toggle_offline_mode(self) -> bool:
        return await self.set_offline_mode(not self._offline_mode)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "is_connected": self._connected,
            "offline_mode": self._offline_mode,
            "effective_online": self.effective_online,
            "reconnect_count": self.reconnect_count,
            "last_event_at": self._last_event_at.isoformat() if self._last_event_at else None
        }


class TcpReachabilityProbe:
    """Periodic TCP connect probe producing :class:`ConnectivityEvent` values"""

    def __init__(self, host: str, port: int = 443, interval: float = 30.0,
                 timeout: float = 5.0, logger: Optional[StructuredLogger] = None):
        self.host = host
        self.port = port
        self.interval = interval
        self.timeout = timeout
        self.logger = logger

    async def probe(self) -> bool:
        """Single connect attempt"""
        try:
            _, writer = await asyncio.wait_for(
                asyncio.open_connection(self.host, self.port), timeout=self.timeout
            )
        except (OSError, asyncio.TimeoutError) as e:
            if self.logger:
                self.logger.debug("Reachability probe failed",
                                  host=self.host, port=self.port, error=str(e))
            return False

        writer.close()
        try:
            await writer.wait_closed()
        except OSError:
            pass
        return True

    def __aiter__(self):
        return self._events()

    async def _events(self):
        while True:
            yield ConnectivityEvent(reachable=await self.probe())
            await asyncio.sleep(self.interval)
