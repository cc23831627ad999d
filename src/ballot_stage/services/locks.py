"""Mutually exclusive, TTL-bounded leases built on the cache adapter.

A lease is granted by a conditional SET-if-absent carrying a random token;
release and extend only succeed while the stored token still matches, so a
holder whose lease has already expired cannot disturb the next holder.

When Redis is unavailable the adapter grants leases from the in-process
fallback store. Those leases exclude other threads of this process only; they
are tagged ``LockBackend.LOCAL``, logged and counted separately.
"""

from __future__ import annotations

import logging
import secrets
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from threading import Lock

from ballot_stage.core.settings import settings
from ballot_stage.services.cache import CacheAdapter, CacheBackend, get_cache_adapter

logger = logging.getLogger(__name__)

VOTE_LOCK_PREFIX = "vote_lock:"


class LockBackend(Enum):
    """Where a lease lives."""
    DISTRIBUTED = "redis"
    LOCAL = "local"


class LockError(RuntimeError):
    """Base class for lock failures."""


class LockNotAcquiredError(LockError):
    """Raised by :meth:`LockManager.hold` when the lease could not be obtained."""

    def __init__(self, key: str, attempts: int) -> None:
        super().__init__(f"Failed to acquire lock {key} after {attempts} attempts")
        self.key = key
        self.attempts = attempts


@dataclass(frozen=True)
class Lease:
    """Proof of ownership for a held lock."""

    key: str
    token: str
    ttl: float
    expires_at: float
    backend: LockBackend


@dataclass
class LockMetrics:
    """Lock outcomes split by backend."""

    distributed_grants: int = 0
    local_grants: int = 0
    not_acquired: int = 0
    stale_releases: int = 0
    _lock: Lock = field(default_factory=Lock, repr=False, compare=False)

    def record(self, counter: str) -> None:
        with self._lock:
            setattr(self, counter, getattr(self, counter) + 1)

    def as_dict(self) -> dict[str, int]:
        with self._lock:
            return {
                "distributed_grants": self.distributed_grants,
                "local_grants": self.local_grants,
                "not_acquired": self.not_acquired,
                "stale_releases": self.stale_releases,
            }


def vote_lock_key(award_id: str, nominee_id: str) -> str:
    """Return the lock key for one (award, nominee) cached counter."""
    return f"{VOTE_LOCK_PREFIX}{award_id}:{nominee_id}"


class LockManager:
    """Grants, releases and extends leases keyed by arbitrary strings."""

    def __init__(
        self,
        cache: CacheAdapter,
        *,
        retry_delay: float | None = None,
        max_attempts: int | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._cache = cache
        self.retry_delay = settings.lock_retry_delay_seconds if retry_delay is None else retry_delay
        self.max_attempts = max(
            1, settings.lock_max_attempts if max_attempts is None else max_attempts
        )
        self._sleep = sleep
        self._clock = clock
        self.metrics = LockMetrics()

    def acquire(self, key: str, ttl: float) -> Lease | None:
        """Try to take the lock, retrying with a fixed delay.

        Returns:
            The lease, or None once ``max_attempts`` tries have failed.
        """
        token = secrets.token_hex(16)
        for attempt in range(1, self.max_attempts + 1):
            stored, backend = self._cache.set_if_absent(key, token, ttl)
            if stored:
                return self._grant(key, token, ttl, backend)
            if attempt < self.max_attempts:
                self._sleep(self.retry_delay)

        self.metrics.record("not_acquired")
        logger.warning("Lock %s not acquired after %d attempts", key, self.max_attempts)
        return None

    def release(self, lease: Lease) -> bool:
        """Release ``lease`` if it still owns the key."""
        released = self._cache.delete_if_value(lease.key, lease.token, _cache_backend(lease))
        if not released:
            self.metrics.record("stale_releases")
            logger.warning(
                "Lock %s not released: lease no longer owned (backend=%s)",
                lease.key,
                lease.backend.value,
            )
        return released

    def extend(self, lease: Lease, extra_ttl: float) -> Lease | None:
        """Push the expiry of an owned lease out to ``extra_ttl`` seconds from now.

        Returns the refreshed lease, or None if the caller no longer owns it.
        """
        extended = self._cache.expire_if_value(
            lease.key, lease.token, extra_ttl, _cache_backend(lease)
        )
        if not extended:
            logger.warning("Lock %s not extended: lease no longer owned", lease.key)
            return None
        return Lease(
            key=lease.key,
            token=lease.token,
            ttl=extra_ttl,
            expires_at=self._clock() + extra_ttl,
            backend=lease.backend,
        )

    @contextmanager
    def hold(self, key: str, ttl: float) -> Iterator[Lease]:
        """Hold ``key`` for the duration of the block.

        Raises:
            LockNotAcquiredError: If the lease could not be obtained.
        """
        lease = self.acquire(key, ttl)
        if lease is None:
            raise LockNotAcquiredError(key, self.max_attempts)
        try:
            yield lease
        finally:
            self.release(lease)

    def _grant(self, key: str, token: str, ttl: float, backend: CacheBackend) -> Lease:
        if backend is CacheBackend.LOCAL:
            lock_backend = LockBackend.LOCAL
            self.metrics.record("local_grants")
            if self._cache.distributed:
                logger.warning(
                    "Lock %s granted by in-process fallback (backend=local); "
                    "exclusion holds within this process only",
                    key,
                )
        else:
            lock_backend = LockBackend.DISTRIBUTED
            self.metrics.record("distributed_grants")
        return Lease(
            key=key,
            token=token,
            ttl=ttl,
            expires_at=self._clock() + ttl,
            backend=lock_backend,
        )


def _cache_backend(lease: Lease) -> CacheBackend:
    if lease.backend is LockBackend.LOCAL:
        return CacheBackend.LOCAL
    return CacheBackend.REDIS


class _LockManagerSingleton:
    _instance: LockManager | None = None

    @classmethod
    def get_instance(cls) -> LockManager:
        if cls._instance is None:
            cls._instance = LockManager(get_cache_adapter())
        return cls._instance


def get_lock_manager() -> LockManager:
    """Return the process-wide lock manager."""
    return _LockManagerSingleton.get_instance()
