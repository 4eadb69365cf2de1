"""Process-local cache implementations."""

from __future__ import annotations

import threading
import time
from typing import Any, Callable, Dict, Optional

from ...domain.ports.cache import Cache, CacheEntry


class InMemoryTTLCache(Cache):
    """Dictionary-backed cache; expired entries stay readable through ``get_entry``
    until they are overwritten, deleted or purged.

    Entries more than ``retention_seconds`` past their TTL are swept from ``set``,
    at most once every ``sweep_interval_seconds``, so the map does not keep
    every account ever seen.
    """

    def __init__(
        self,
        clock: Callable[[], float] = time.monotonic,
        retention_seconds: float = 86400,
        sweep_interval_seconds: float = 60,
    ) -> None:
        self._entries: Dict[str, CacheEntry] = {}
        self._clock = clock
        self._lock = threading.Lock()
        self._retention = retention_seconds
        self._sweep_interval = sweep_interval_seconds
        self._last_sweep = clock()

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            entry = self._entries.get(key)
        if entry is None or not entry.is_fresh(self._clock()):
            return None
        return entry.value

    def get_entry(self, key: str) -> Optional[CacheEntry]:
        with self._lock:
            return self._entries.get(key)

    def set(self, key: str, value: Any, ttl: float) -> None:
        now = self._clock()
        entry = CacheEntry(key=key, value=value, recorded_at=now, ttl=ttl)
        with self._lock:
            self._entries[key] = entry
            due = now - self._last_sweep >= self._sweep_interval
            if due:
                self._last_sweep = now
        if due:
            self.purge_expired(grace=self._retention)

    def delete(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def delete_prefix(self, prefix: str) -> int:
        with self._lock:
            doomed = [key for key in self._entries if key.startswith(prefix)]
            for key in doomed:
                del self._entries[key]
        return len(doomed)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def purge_expired(self, grace: float = 0) -> int:
        """Remove entries that expired more than ``grace`` seconds ago."""
        now = self._clock()
        with self._lock:
            stale = [key for key, entry in self._entries.items() if not entry.is_fresh(now - grace)]
            for key in stale:
                del self._entries[key]
        return len(stale)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class NullCache(Cache):
    """Cache that stores nothing; every lookup goes to the source."""

    def get(self, key: str) -> Optional[Any]:
        return None

    def get_entry(self, key: str) -> Optional[CacheEntry]:
        return None

    def set(self, key: str, value: Any, ttl: float) -> None:
        return None

    def delete(self, key: str) -> None:
        return None

    def delete_prefix(self, prefix: str) -> int:
        return 0

    def clear(self) -> None:
        return None
