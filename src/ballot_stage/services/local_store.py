"""In-process stand-in for the shared cache.

Used by the cache adapter and the lock manager while Redis is unreachable.
State held here is visible to one process only, so anything built on it
(tallies, locks) is correct within this process and nowhere else.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from threading import Lock
from typing import Any

logger = logging.getLogger(__name__)


@dataclass
class _Entry:
    value: Any
    expires_at: float | None = None

    def expired(self, now: float) -> bool:
        return self.expires_at is not None and self.expires_at <= now


class LocalFallbackStore:
    """Bounded, thread-safe key/value and hash store with per-key expiry."""

    def __init__(
        self,
        max_entries: int = 10_000,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.max_entries = max(1, int(max_entries))
        self._clock = clock
        self._data: dict[str, _Entry] = {}
        self._lock = Lock()

    # --- Plain values ---------------------------------------------------------------
    def get(self, key: str) -> Any | None:
        with self._lock:
            entry = self._live(key)
            return None if entry is None else entry.value

    def set(self, key: str, value: Any, ttl: float | None = None) -> None:
        with self._lock:
            self._store(key, value, ttl)

    def set_if_absent(self, key: str, value: Any, ttl: float | None = None) -> bool:
        """Store ``value`` only when no live entry exists; return True if stored."""
        with self._lock:
            if self._live(key) is not None:
                return False
            self._store(key, value, ttl)
            return True

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._data.pop(key, None) is not None

    def delete_if_value(self, key: str, value: Any) -> bool:
        """Delete ``key`` only while it still holds ``value``."""
        with self._lock:
            entry = self._live(key)
            if entry is None or entry.value != value:
                return False
            del self._data[key]
            return True

    def expire_if_value(self, key: str, value: Any, ttl: float) -> bool:
        """Reset the expiry of ``key`` only while it still holds ``value``."""
        with self._lock:
            entry = self._live(key)
            if entry is None or entry.value != value:
                return False
            entry.expires_at = self._clock() + ttl
            return True

    def expire(self, key: str, ttl: float) -> bool:
        with self._lock:
            entry = self._live(key)
            if entry is None:
                return False
            entry.expires_at = self._clock() + ttl
            return True

    def ttl(self, key: str) -> float | None:
        """Return seconds left before ``key`` expires, or None if it never does or is absent."""
        with self._lock:
            entry = self._live(key)
            if entry is None or entry.expires_at is None:
                return None
            return max(0.0, entry.expires_at - self._clock())

    # --- Hashes ---------------------------------------------------------------------
    def hgetall(self, key: str) -> dict[str, Any]:
        with self._lock:
            entry = self._live(key)
            if entry is None:
                return {}
            return dict(entry.value)

    def hset_many(self, key: str, mapping: Mapping[str, Any], ttl: float | None = None) -> None:
        """Merge ``mapping`` into the hash; an existing expiry is kept unless ``ttl`` is given."""
        with self._lock:
            entry = self._live(key)
            if entry is None:
                self._store(key, dict(mapping), ttl)
                return
            entry.value.update(mapping)
            if ttl is not None:
                entry.expires_at = self._clock() + ttl

    def hincrby(self, key: str, field: str, amount: int = 1) -> int:
        with self._lock:
            entry = self._live(key)
            if entry is None:
                entry = self._store(key, {}, None)
            new_value = int(entry.value.get(field, 0)) + amount
            entry.value[field] = new_value
            return new_value

    def hincrby_if_exists(self, key: str, field: str, amount: int = 1) -> int | None:
        """Increment ``field`` only when the hash already exists."""
        with self._lock:
            entry = self._live(key)
            if entry is None:
                return None
            new_value = int(entry.value.get(field, 0)) + amount
            entry.value[field] = new_value
            return new_value

    # --- Maintenance ----------------------------------------------------------------
    def keys(self, prefix: str = "") -> list[str]:
        with self._lock:
            now = self._clock()
            return [
                key
                for key, entry in self._data.items()
                if key.startswith(prefix) and not entry.expired(now)
            ]

    def purge_expired(self) -> int:
        """Drop every expired entry and return how many were removed."""
        with self._lock:
            return self._purge_locked()

    def size(self) -> int:
        with self._lock:
            return len(self._data)

    def clear(self) -> None:
        with self._lock:
            self._data.clear()

    def _live(self, key: str) -> _Entry | None:
        entry = self._data.get(key)
        if entry is None:
            return None
        if entry.expired(self._clock()):
            del self._data[key]
            return None
        return entry

    def _store(self, key: str, value: Any, ttl: float | None) -> _Entry:
        if key not in self._data and len(self._data) >= self.max_entries:
            self._make_room()
        expires_at = self._clock() + ttl if ttl is not None else None
        entry = _Entry(value=value, expires_at=expires_at)
        self._data[key] = entry
        return entry

    def _make_room(self) -> None:
        if self._purge_locked():
            return
        # Nothing expired: evict whichever entry would expire first, else the oldest.
        victim = min(
            self._data,
            key=lambda k: (
                self._data[k].expires_at is None,
                self._data[k].expires_at or 0.0,
            ),
        )
        logger.warning("Local fallback store full (%d entries), evicting %s", self.max_entries, victim)
        del self._data[victim]

    def _purge_locked(self) -> int:
        now = self._clock()
        expired = [key for key, entry in self._data.items() if entry.expired(now)]
        for key in expired:
            del self._data[key]
        return len(expired)
