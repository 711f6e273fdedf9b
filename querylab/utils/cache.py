"""Instance-owned TTL cache."""

import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Hashable, Optional


@dataclass(frozen=True)
class CacheEntry:
    """A cached value and the clock reading at which it was fetched."""

    data: Any
    fetched_at: float

    def is_fresh(self, now: float, ttl_seconds: float) -> bool:
        """Check whether the entry is younger than the TTL."""
        return now - self.fetched_at < ttl_seconds


class TTLCache:
    """Small time-boxed cache with an injectable clock."""

    def __init__(
        self,
        ttl_seconds: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self._entries: Dict[Hashable, CacheEntry] = {}
        self._lock = threading.Lock()

    def get(self, key: Hashable) -> Optional[Any]:
        """Return the cached value if it has not expired."""
        with self._lock:
            entry = self._entries.get(key)
        if entry is not None and entry.is_fresh(self.clock(), self.ttl_seconds):
            return entry.data
        return None

    def get_stale(self, key: Hashable) -> Optional[Any]:
        """Return the cached value regardless of age."""
        with self._lock:
            entry = self._entries.get(key)
        return entry.data if entry is not None else None

    def set(self, key: Hashable, data: Any) -> None:
        with self._lock:
            self._entries[key] = CacheEntry(data=data, fetched_at=self.clock())

    def get_or_load(self, key: Hashable, loader: Callable[[], Any]) -> Any:
        """Return the fresh cached value or load, store and return a new one."""
        data = self.get(key)
        if data is not None:
            return data
        data = loader()
        self.set(key, data)
        return data

    def invalidate(self, key: Optional[Hashable] = None) -> None:
        """Drop one key, or every key when none is given."""
        with self._lock:
            if key is None:
                self._entries.clear()
            else:
                self._entries.pop(key, None)
