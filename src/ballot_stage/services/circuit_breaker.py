"""Circuit breakers guarding the durable store and the tally cache.

A breaker executes a primary operation and substitutes a fallback once the
dependency behind it is judged unhealthy, so a failing store or cache degrades
availability instead of stacking up slow failures.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from threading import RLock
from typing import Any, TypeVar

from ballot_stage.core.settings import settings

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CircuitState(Enum):
    """Circuit breaker states for fault tolerance."""
    CLOSED = "closed"      # Normal operation - requests allowed
    OPEN = "open"          # Circuit is open - requests short-circuit to the fallback
    HALF_OPEN = "half_open"  # Testing if the dependency is back


class CircuitOpenError(RuntimeError):
    """Raised when a breaker is open and the caller supplied no fallback."""

    def __init__(self, name: str) -> None:
        super().__init__(f"{name} circuit breaker is open - dependency unavailable")
        self.name = name


@dataclass
class BreakerStats:
    """Running totals exposed through health checks."""

    total_requests: int = 0
    total_failures: int = 0
    total_successes: int = 0
    total_fallbacks: int = 0


@dataclass
class CircuitBreaker:
    """Circuit breaker with a ``run(primary, fallback)`` contract."""

    name: str
    failure_threshold: int = 5
    recovery_timeout: float = 60.0
    success_threshold: int = 1
    # Errors that signal a bad request rather than an unhealthy dependency.
    expected_errors: tuple[type[BaseException], ...] = ()
    clock: Callable[[], float] = time.monotonic

    _state: CircuitState = CircuitState.CLOSED
    _failure_count: int = 0
    _success_count: int = 0
    _last_failure_time: float = 0.0
    _stats: BreakerStats = field(default_factory=BreakerStats)
    _lock: RLock = field(default_factory=RLock, repr=False)

    def run(self, primary: Callable[[], T], fallback: Callable[[], T] | None = None) -> T:
        """Execute ``primary``; use ``fallback`` when the dependency is unhealthy.

        Raises:
            CircuitOpenError: If the breaker is open and no fallback was given.
        """
        with self._lock:
            self._stats.total_requests += 1
            short_circuit = self.is_open()

        if short_circuit:
            return self._run_fallback(fallback)

        try:
            result = primary()
        except self.expected_errors:
            # The dependency answered; the request itself was rejected.
            self.record_success()
            raise
        except Exception:
            self.record_failure()
            if fallback is not None and self.get_state() is CircuitState.OPEN:
                logger.warning("%s circuit breaker opened after failure, using fallback", self.name)
                return self._run_fallback(fallback)
            raise

        self.record_success()
        return result

    def _run_fallback(self, fallback: Callable[[], T] | None) -> T:
        if fallback is None:
            raise CircuitOpenError(self.name)
        with self._lock:
            self._stats.total_fallbacks += 1
        logger.debug("%s circuit breaker open, executing fallback", self.name)
        return fallback()

    def is_open(self) -> bool:
        """Check if circuit is open."""
        with self._lock:
            if self._state == CircuitState.OPEN:
                # Check if we should transition to half-open
                if self.clock() - self._last_failure_time >= self.recovery_timeout:
                    self._state = CircuitState.HALF_OPEN
                    self._success_count = 0
                    logger.info("%s circuit breaker transitioning to HALF_OPEN", self.name)
                return self._state == CircuitState.OPEN
            return False

    def record_success(self) -> None:
        """Record a successful operation."""
        with self._lock:
            self._stats.total_successes += 1
            if self._state == CircuitState.HALF_OPEN:
                self._success_count += 1
                if self._success_count >= self.success_threshold:
                    self._state = CircuitState.CLOSED
                    self._failure_count = 0
                    logger.info("%s circuit breaker reset to CLOSED", self.name)
            elif self._state == CircuitState.CLOSED:
                self._failure_count = 0

    def record_failure(self) -> None:
        """Record a failed operation."""
        with self._lock:
            self._stats.total_failures += 1
            self._failure_count += 1
            self._last_failure_time = self.clock()

            if self._state == CircuitState.HALF_OPEN or (
                self._failure_count >= self.failure_threshold
            ):
                if self._state != CircuitState.OPEN:
                    logger.warning(
                        "%s circuit breaker opened after %d failures",
                        self.name,
                        self._failure_count,
                    )
                self._state = CircuitState.OPEN

    def get_state(self) -> CircuitState:
        """Get the current circuit breaker state."""
        with self._lock:
            return self._state

    def reset(self) -> None:
        """Force the breaker back to CLOSED."""
        with self._lock:
            self._state = CircuitState.CLOSED
            self._failure_count = 0
            self._success_count = 0
            self._last_failure_time = 0.0

    def health_status(self) -> dict[str, Any]:
        """Return breaker state and counters for monitoring."""
        with self._lock:
            total = self._stats.total_requests
            failure_rate = (self._stats.total_failures / total * 100) if total else 0.0
            return {
                "name": self.name,
                "state": self._state.value,
                "healthy": self._state != CircuitState.OPEN,
                "failure_count": self._failure_count,
                "failure_rate": round(failure_rate, 2),
                "total_requests": total,
                "total_failures": self._stats.total_failures,
                "total_successes": self._stats.total_successes,
                "total_fallbacks": self._stats.total_fallbacks,
            }


class _BreakerRegistry:
    """Process-wide breakers, one per guarded dependency."""

    _database: CircuitBreaker | None = None
    _cache: CircuitBreaker | None = None

    @classmethod
    def database(cls) -> CircuitBreaker:
        if cls._database is None:
            # Imported lazily: repositories depend on the models, which depend on the session.
            from ballot_stage.repositories.errors import StoreConflict
            from ballot_stage.services.errors import EngineError

            cls._database = CircuitBreaker(
                name="database",
                failure_threshold=settings.db_breaker_failure_threshold,
                recovery_timeout=settings.db_breaker_recovery_seconds,
                expected_errors=(EngineError, StoreConflict),
            )
        return cls._database

    @classmethod
    def cache(cls) -> CircuitBreaker:
        if cls._cache is None:
            cls._cache = CircuitBreaker(
                name="cache",
                failure_threshold=settings.cache_breaker_failure_threshold,
                recovery_timeout=settings.cache_breaker_recovery_seconds,
            )
        return cls._cache


def get_database_breaker() -> CircuitBreaker:
    """Return the shared breaker guarding the durable store."""
    return _BreakerRegistry.database()


def get_cache_breaker() -> CircuitBreaker:
    """Return the shared breaker guarding the tally cache."""
    return _BreakerRegistry.cache()


def breaker_states() -> dict[str, dict[str, Any]]:
    """Return health status for every breaker in the process."""
    return {
        breaker.name: breaker.health_status()
        for breaker in (get_database_breaker(), get_cache_breaker())
    }
