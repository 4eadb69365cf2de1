from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional, Protocol


@dataclass(slots=True, frozen=True)
class CacheEntry:
    key: str
    value: Any
    recorded_at: float
    ttl: float

    def is_fresh(self, now: float) -> bool:
        return now - self.recorded_at <= self.ttl


class Cache(Protocol):
    """Best-effort key/value cache with per-entry TTL (seconds).

    Dropping any entry must never change a query result, only its cost.
    """

    def get(self, key: str) -> Optional[Any]:
        ...

    def get_entry(self, key: str) -> Optional[CacheEntry]:
        """Return the stored entry even if it has expired."""
        ...

    def set(self, key: str, value: Any, ttl: float) -> None:
        ...

    def delete(self, key: str) -> None:
        ...

    def delete_prefix(self, prefix: str) -> int:
        """Drop every entry whose key starts with ``prefix``; returns the count."""
        ...

    def clear(self) -> None:
        ...
