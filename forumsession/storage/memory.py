from __future__ import annotations

import asyncio
from typing import Callable, Dict, List, Optional

from forumsession.logging import get_logger
from forumsession.storage.errors import StorageUnavailable
from forumsession.storage.models import StorageChange

logger = get_logger(__name__)

ChangeListener = Callable[[StorageChange], None]


class MemoryOrigin:
    """In-process key/value store shared by every page attached to it.

    Each attached :class:`MemoryStorageArea` plays the role of one open tab.
    Writes are visible to all areas immediately; change notifications are
    delivered asynchronously to every area except the writer.
    """

    def __init__(self) -> None:
        self._values: Dict[str, str] = {}
        self._areas: List["MemoryStorageArea"] = []
        # Simulates quota exhaustion or a privacy mode without storage
        self.available = True

    def attach(self) -> "MemoryStorageArea":
        area = MemoryStorageArea(self)
        self._areas.append(area)
        return area

    def detach(self, area: "MemoryStorageArea") -> None:
        if area in self._areas:
            self._areas.remove(area)

    def snapshot(self) -> Dict[str, str]:
        return dict(self._values)

    def _ensure_available(self, operation: str, key: str) -> None:
        if not self.available:
            raise StorageUnavailable(
                "storage unavailable", detail={"operation": operation, "key": key}
            )

    def _broadcast(self, source: "MemoryStorageArea", change: StorageChange) -> None:
        for area in list(self._areas):
            if area is not source:
                area._schedule(change)


class MemoryStorageArea:
    """One page's view of a :class:`MemoryOrigin`."""

    def __init__(self, origin: MemoryOrigin) -> None:
        self.origin = origin
        self._listeners: List[ChangeListener] = []

    def get(self, key: str) -> Optional[str]:
        self.origin._ensure_available("get", key)
        return self.origin._values.get(key)

    def set(self, key: str, value: str) -> None:
        self.origin._ensure_available("set", key)
        old = self.origin._values.get(key)
        self.origin._values[key] = value
        if old != value:
            self.origin._broadcast(self, StorageChange(key, old, value))

    def delete(self, key: str) -> None:
        self.origin._ensure_available("delete", key)
        old = self.origin._values.pop(key, None)
        if old is not None:
            self.origin._broadcast(self, StorageChange(key, old, None))

    def subscribe(self, listener: ChangeListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def close(self) -> None:
        self._listeners.clear()
        self.origin.detach(self)

    def _schedule(self, change: StorageChange) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self.dispatch(change)
            return
        loop.call_soon(self.dispatch, change)

    def dispatch(self, change: StorageChange) -> None:
        """Deliver a change notification to this page's listeners."""
        for listener in list(self._listeners):
            try:
                listener(change)
            except Exception as exc:
                logger.error("storage_listener_failed", key=change.key, error=str(exc))
