"""Typed access to the shared tally cache with an in-process fallback.

Every operation is attempted against Redis through the cache circuit breaker.
When Redis is disabled, unreachable or the breaker is open, the
:class:`~ballot_stage.services.local_store.LocalFallbackStore` serves the call
instead, so callers never see a transport error from the cache.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from threading import Lock
from typing import Any, TypeVar

import redis
from redis.exceptions import RedisError

from ballot_stage.core.settings import settings
from ballot_stage.services.circuit_breaker import (
    CircuitBreaker,
    CircuitOpenError,
    get_cache_breaker,
)
from ballot_stage.services.local_store import LocalFallbackStore

logger = logging.getLogger(__name__)

T = TypeVar("T")

TALLY_KEY_PREFIX = "award_votes:"
# Hash field marking tallies that already include the bias overlay.
OVERLAY_FIELD = "__overlay__"

_INCREMENT_IF_EXISTS = """
if redis.call('EXISTS', KEYS[1]) == 1 then
    return redis.call('HINCRBY', KEYS[1], ARGV[1], ARGV[2])
end
return nil
"""

_DELETE_IF_VALUE = """
if redis.call('GET', KEYS[1]) == ARGV[1] then
    return redis.call('DEL', KEYS[1])
end
return 0
"""

_EXPIRE_IF_VALUE = """
if redis.call('GET', KEYS[1]) == ARGV[1] then
    return redis.call('PEXPIRE', KEYS[1], ARGV[2])
end
return 0
"""


class CacheBackend(Enum):
    """Which store answered a cache operation."""
    REDIS = "redis"
    LOCAL = "local"


def tally_key(award_id: str) -> str:
    """Return the cache key holding an award's tally hash."""
    return f"{TALLY_KEY_PREFIX}{award_id}"


@dataclass(frozen=True)
class TallySnapshot:
    """Cached nominee counts for one award.

    ``corrupt_fields`` names nominees whose cached value was not an integer;
    they are left out of ``counts``.
    """

    counts: dict[str, int]
    overlay_applied: bool = False
    corrupt_fields: tuple[str, ...] = ()

    @property
    def corrupt(self) -> bool:
        return bool(self.corrupt_fields)


@dataclass
class CacheMetrics:
    """Counters distinguishing Redis-served calls from degraded ones."""

    redis_calls: int = 0
    fallback_calls: int = 0
    errors_by_operation: dict[str, int] = field(default_factory=lambda: defaultdict(int))
    _lock: Lock = field(default_factory=Lock, repr=False, compare=False)

    def record_redis_call(self) -> None:
        with self._lock:
            self.redis_calls += 1

    def record_fallback_call(self) -> None:
        with self._lock:
            self.fallback_calls += 1

    def record_error(self, operation: str) -> None:
        with self._lock:
            self.errors_by_operation[operation] += 1

    def as_dict(self) -> dict[str, Any]:
        with self._lock:
            return {
                "redis_calls": self.redis_calls,
                "fallback_calls": self.fallback_calls,
                "errors_by_operation": dict(self.errors_by_operation),
            }


class CacheAdapter:
    """Try-Redis-else-local wrapper exposing the operations the vote engine needs."""

    def __init__(
        self,
        client: redis.Redis | None,
        fallback: LocalFallbackStore | None = None,
        breaker: CircuitBreaker | None = None,
    ) -> None:
        self._client = client
        self._fallback = fallback or LocalFallbackStore(settings.local_fallback_max_entries)
        self._breaker = breaker or get_cache_breaker()
        self._metrics = CacheMetrics()
        self._scripts: dict[str, Any] = {}
        if client is not None:
            self._scripts = {
                "increment_if_exists": client.register_script(_INCREMENT_IF_EXISTS),
                "delete_if_value": client.register_script(_DELETE_IF_VALUE),
                "expire_if_value": client.register_script(_EXPIRE_IF_VALUE),
            }

    @property
    def fallback(self) -> LocalFallbackStore:
        return self._fallback

    @property
    def distributed(self) -> bool:
        """Return True when a Redis client is configured."""
        return self._client is not None

    # --- Tallies --------------------------------------------------------------------
    def get_tally(self, award_id: str) -> TallySnapshot | None:
        """Return the cached tally for an award, or None on a miss."""
        key = tally_key(award_id)

        def primary() -> dict[str, Any]:
            return self._redis().hgetall(key)

        raw, _ = self._execute("get_tally", primary, lambda: self._fallback.hgetall(key))
        return _snapshot(raw)

    def put_tally(
        self,
        award_id: str,
        counts: Mapping[str, int],
        *,
        overlay_applied: bool,
        ttl: int | None = None,
    ) -> None:
        """Replace the award's cached tally with ``counts``."""
        key = tally_key(award_id)
        ttl = settings.tally_cache_ttl_seconds if ttl is None else ttl
        mapping: dict[str, Any] = {nominee_id: int(count) for nominee_id, count in counts.items()}
        if overlay_applied and mapping:
            mapping[OVERLAY_FIELD] = 1

        def primary() -> None:
            pipe = self._redis().pipeline(transaction=True)
            pipe.delete(key)
            if mapping:
                pipe.hset(key, mapping=mapping)
                if ttl:
                    pipe.expire(key, ttl)
            pipe.execute()

        def fallback() -> None:
            self._fallback.delete(key)
            if mapping:
                self._fallback.hset_many(key, mapping, ttl or None)

        self._execute("put_tally", primary, fallback)

    def increment_tally(self, award_id: str, nominee_id: str, amount: int = 1) -> int | None:
        """Atomically bump one nominee's cached count.

        Returns the new count, or None when the award has no cached tally; a
        partial tally is never created by an increment.
        """
        key = tally_key(award_id)

        def primary() -> int | None:
            result = self._scripts["increment_if_exists"](keys=[key], args=[nominee_id, amount])
            return None if result is None else int(result)

        value, _ = self._execute(
            "increment_tally",
            primary,
            lambda: self._fallback.hincrby_if_exists(key, nominee_id, amount),
        )
        return value

    def set_tally_field(self, award_id: str, nominee_id: str, count: int) -> None:
        """Overwrite one nominee's cached count (administrative repair and testing)."""
        key = tally_key(award_id)

        def primary() -> None:
            self._redis().hset(key, nominee_id, int(count))

        self._execute(
            "set_tally_field",
            primary,
            lambda: self._fallback.hset_many(key, {nominee_id: int(count)}),
        )

    def clear_tally(self, award_id: str) -> bool:
        """Drop the award's cached tally; return True if something was removed."""
        key = tally_key(award_id)

        def primary() -> bool:
            # The local copy may hold counts written during an outage.
            self._fallback.delete(key)
            return bool(self._redis().delete(key))

        removed, _ = self._execute("clear_tally", primary, lambda: self._fallback.delete(key))
        return bool(removed)

    def tally_keys(self) -> list[str]:
        """Return every cached tally key."""

        def primary() -> list[str]:
            return sorted(self._redis().scan_iter(match=f"{TALLY_KEY_PREFIX}*"))

        keys, _ = self._execute(
            "tally_keys", primary, lambda: sorted(self._fallback.keys(TALLY_KEY_PREFIX))
        )
        return keys

    # --- Lock primitives ------------------------------------------------------------
    def set_if_absent(self, key: str, value: str, ttl: float) -> tuple[bool, CacheBackend]:
        """SET NX with expiry; return whether it was stored and by which backend."""

        def primary() -> bool:
            return bool(self._redis().set(key, value, nx=True, px=_millis(ttl)))

        stored, backend = self._execute(
            "set_if_absent", primary, lambda: self._fallback.set_if_absent(key, value, ttl)
        )
        return bool(stored), backend

    def delete_if_value(self, key: str, value: str, backend: CacheBackend) -> bool:
        """Compare-and-delete against the backend that granted the value."""
        if backend is CacheBackend.LOCAL:
            return self._fallback.delete_if_value(key, value)

        def primary() -> bool:
            return bool(self._scripts["delete_if_value"](keys=[key], args=[value]))

        deleted, _ = self._execute("delete_if_value", primary, lambda: False)
        return bool(deleted)

    def expire_if_value(
        self, key: str, value: str, ttl: float, backend: CacheBackend
    ) -> bool:
        """Compare-and-extend against the backend that granted the value."""
        if backend is CacheBackend.LOCAL:
            return self._fallback.expire_if_value(key, value, ttl)

        def primary() -> bool:
            return bool(self._scripts["expire_if_value"](keys=[key], args=[value, _millis(ttl)]))

        extended, _ = self._execute("expire_if_value", primary, lambda: False)
        return bool(extended)

    # --- Health ---------------------------------------------------------------------
    def ping(self) -> bool:
        """Return True if Redis answered a PING."""
        if self._client is None:
            return False
        try:
            return bool(self._breaker.run(lambda: self._redis().ping()))
        except (RedisError, OSError, CircuitOpenError):
            return False

    def status(self) -> dict[str, Any]:
        """Return backend, breaker and fallback details for monitoring."""
        if self._client is None:
            backend = "disabled"
        elif self._breaker.is_open():
            backend = CacheBackend.LOCAL.value
        else:
            backend = CacheBackend.REDIS.value
        return {
            "backend": backend,
            "breaker": self._breaker.health_status(),
            "fallback_entries": self._fallback.size(),
            "metrics": self._metrics.as_dict(),
        }

    def purge_fallback(self) -> int:
        """Drop expired entries from the in-process fallback."""
        return self._fallback.purge_expired()

    def close(self) -> None:
        """Release the Redis connection pool."""
        if self._client is not None:
            try:
                self._client.close()
            except (RedisError, OSError) as exc:  # pragma: no cover - shutdown path
                logger.warning("Error closing Redis client: %s", exc)

    # --- Internals ------------------------------------------------------------------
    def _redis(self) -> redis.Redis:
        if self._client is None:
            raise CircuitOpenError("cache")
        return self._client

    def _execute(
        self,
        operation: str,
        primary: Callable[[], T],
        fallback: Callable[[], T],
    ) -> tuple[T, CacheBackend]:
        if self._client is None:
            return self._degraded(operation, fallback), CacheBackend.LOCAL

        served_locally = False

        def local() -> T:
            nonlocal served_locally
            served_locally = True
            return self._degraded(operation, fallback)

        try:
            result = self._breaker.run(primary, local)
        except (RedisError, OSError, CircuitOpenError) as exc:
            self._metrics.record_error(operation)
            logger.warning("Redis %s failed, using in-process fallback: %s", operation, exc)
            return self._degraded(operation, fallback), CacheBackend.LOCAL

        if served_locally:
            return result, CacheBackend.LOCAL
        self._metrics.record_redis_call()
        return result, CacheBackend.REDIS

    def _degraded(self, operation: str, fallback: Callable[[], T]) -> T:
        self._metrics.record_fallback_call()
        if self._client is not None:
            logger.warning("Cache operation %s served by in-process fallback", operation)
        return fallback()


def _snapshot(raw: Mapping[Any, Any]) -> TallySnapshot | None:
    if not raw:
        return None
    counts: dict[str, int] = {}
    corrupt: list[str] = []
    overlay_applied = False
    for raw_field, raw_value in raw.items():
        name = raw_field.decode() if isinstance(raw_field, bytes) else str(raw_field)
        if name == OVERLAY_FIELD:
            overlay_applied = True
            continue
        try:
            counts[name] = int(raw_value)
        except (TypeError, ValueError):
            logger.warning("Cached tally field %s holds a non-integer value %r", name, raw_value)
            corrupt.append(name)
    if not counts and not corrupt:
        return None
    return TallySnapshot(
        counts=counts, overlay_applied=overlay_applied, corrupt_fields=tuple(corrupt)
    )


def _millis(seconds: float) -> int:
    return max(1, int(seconds * 1000))


def build_redis_client() -> redis.Redis | None:
    """Create the Redis client from settings, or None when Redis is disabled."""
    if not settings.redis_enabled:
        logger.info("Redis disabled; tallies and locks use the in-process store")
        return None
    return redis.Redis.from_url(
        settings.redis_url,
        decode_responses=True,
        socket_timeout=settings.redis_socket_timeout_seconds,
        socket_connect_timeout=settings.redis_socket_timeout_seconds,
    )


class _CacheAdapterSingleton:
    """Singleton wrapper for CacheAdapter."""

    _instance: CacheAdapter | None = None

    @classmethod
    def get_instance(cls) -> CacheAdapter:
        """Get or create the singleton CacheAdapter instance."""
        if cls._instance is None:
            cls._instance = CacheAdapter(build_redis_client())
        return cls._instance


def get_cache_adapter() -> CacheAdapter:
    """Return the process-wide cache adapter."""
    return _CacheAdapterSingleton.get_instance()
