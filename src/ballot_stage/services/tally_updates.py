"""Background maintenance of cached tallies after a vote is stored.

Submitting a vote must not wait on, or fail because of, the cache. Each
accepted vote schedules one increment on a small worker pool; the task takes
the (award, nominee) lease, bumps the cached counter and releases the lease.
Failures are retried with backoff, then logged and counted. The cache can
always be rebuilt from the durable store, so nothing here is surfaced to the
voter.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from enum import Enum
from threading import Lock

from ballot_stage.core.settings import settings
from ballot_stage.services.cache import CacheAdapter, get_cache_adapter
from ballot_stage.services.locks import (
    LockManager,
    LockNotAcquiredError,
    get_lock_manager,
    vote_lock_key,
)

logger = logging.getLogger(__name__)


class TallyUpdateOutcome(Enum):
    """Result of one scheduled increment."""
    APPLIED = "applied"
    # No cached tally for the award; the next read rebuilds it from the store.
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class TallyUpdateMetrics:
    """Counters for the tally update channel."""

    scheduled: int = 0
    applied: int = 0
    skipped: int = 0
    failed: int = 0
    last_error: str | None = None
    _lock: Lock = field(default_factory=Lock, repr=False)

    def record_scheduled(self) -> None:
        with self._lock:
            self.scheduled += 1

    def record(self, outcome: TallyUpdateOutcome, error: BaseException | None = None) -> None:
        with self._lock:
            if outcome is TallyUpdateOutcome.APPLIED:
                self.applied += 1
            elif outcome is TallyUpdateOutcome.SKIPPED:
                self.skipped += 1
            else:
                self.failed += 1
                self.last_error = repr(error) if error is not None else None

    def as_dict(self) -> dict[str, int | str | None]:
        with self._lock:
            return {
                "scheduled": self.scheduled,
                "applied": self.applied,
                "skipped": self.skipped,
                "failed": self.failed,
                "last_error": self.last_error,
            }


class TallyUpdateQueue:
    """Worker pool applying best-effort cached tally increments."""

    def __init__(
        self,
        cache: CacheAdapter,
        locks: LockManager,
        *,
        max_attempts: int | None = None,
        backoff_base: float | None = None,
        lock_ttl: float | None = None,
        workers: int | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._cache = cache
        self._locks = locks
        self.max_attempts = max(
            1, settings.tally_update_max_attempts if max_attempts is None else max_attempts
        )
        self.backoff_base = (
            settings.tally_update_backoff_base_seconds if backoff_base is None else backoff_base
        )
        self.lock_ttl = settings.vote_lock_ttl_seconds if lock_ttl is None else lock_ttl
        self._sleep = sleep
        self._executor = ThreadPoolExecutor(
            max_workers=max(1, settings.tally_update_workers if workers is None else workers),
            thread_name_prefix="tally-update",
        )
        self._pending: set[Future[TallyUpdateOutcome]] = set()
        self._pending_lock = Lock()
        self.metrics = TallyUpdateMetrics()

    def schedule(self, award_id: str, nominee_id: str) -> Future[TallyUpdateOutcome]:
        """Queue one increment for (award, nominee) and return its future."""
        self.metrics.record_scheduled()
        future = self._executor.submit(self._apply, award_id, nominee_id)
        with self._pending_lock:
            self._pending.add(future)
        future.add_done_callback(self._on_done)
        return future

    def drain(self, timeout: float | None = None) -> bool:
        """Wait for queued work; return True if nothing is left pending."""
        with self._pending_lock:
            pending = list(self._pending)
        if not pending:
            return True
        _, not_done = wait(pending, timeout=timeout)
        return not not_done

    def shutdown(self, wait_for_pending: bool = True) -> None:
        """Stop accepting work and optionally wait for queued increments."""
        self._executor.shutdown(wait=wait_for_pending)

    def _apply(self, award_id: str, nominee_id: str) -> TallyUpdateOutcome:
        try:
            outcome, error = self._increment_with_retry(award_id, nominee_id)
        except Exception as exc:
            logger.error(
                "Tally update task for award %s nominee %s crashed",
                award_id,
                nominee_id,
                exc_info=True,
            )
            outcome, error = TallyUpdateOutcome.FAILED, exc
        self.metrics.record(outcome, error)
        return outcome

    def _increment_with_retry(
        self, award_id: str, nominee_id: str
    ) -> tuple[TallyUpdateOutcome, Exception | None]:
        key = vote_lock_key(award_id, nominee_id)
        last_error: Exception | None = None

        for attempt in range(1, self.max_attempts + 1):
            try:
                with self._locks.hold(key, self.lock_ttl):
                    new_count = self._cache.increment_tally(award_id, nominee_id)
            except LockNotAcquiredError as exc:
                last_error = exc
                logger.warning(
                    "Tally update attempt %d/%d for %s failed: %s",
                    attempt,
                    self.max_attempts,
                    key,
                    exc,
                )
                if attempt < self.max_attempts:
                    self._sleep(self.backoff_base * 2 ** (attempt - 1))
                continue

            if new_count is None:
                logger.debug("No cached tally for award %s; increment skipped", award_id)
                return TallyUpdateOutcome.SKIPPED, None
            return TallyUpdateOutcome.APPLIED, None

        logger.error(
            "Tally update for award %s nominee %s failed after %d attempts: %s",
            award_id,
            nominee_id,
            self.max_attempts,
            last_error,
        )
        return TallyUpdateOutcome.FAILED, last_error

    def _on_done(self, future: Future[TallyUpdateOutcome]) -> None:
        with self._pending_lock:
            self._pending.discard(future)


class _TallyUpdateQueueSingleton:
    _instance: TallyUpdateQueue | None = None

    @classmethod
    def get_instance(cls) -> TallyUpdateQueue:
        if cls._instance is None:
            cls._instance = TallyUpdateQueue(get_cache_adapter(), get_lock_manager())
        return cls._instance


def get_tally_update_queue() -> TallyUpdateQueue:
    """Return the process-wide tally update queue."""
    return _TallyUpdateQueueSingleton.get_instance()


def shutdown_tally_update_queue(timeout: float | None = None) -> None:
    """Drain and stop the process-wide queue; the next lookup builds a fresh one."""
    queue = _TallyUpdateQueueSingleton._instance
    if queue is None:
        return
    if not queue.drain(timeout):
        logger.warning("Tally update queue still had pending work at shutdown")
    queue.shutdown(wait_for_pending=False)
    _TallyUpdateQueueSingleton._instance = None
