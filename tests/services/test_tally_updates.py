"""Tests for the background tally update queue."""

import threading

import pytest

from ballot_stage.services.locks import LockManager, LockNotAcquiredError, vote_lock_key
from ballot_stage.services.tally_updates import (
    TallyUpdateOutcome,
    TallyUpdateQueue,
    get_tally_update_queue,
    shutdown_tally_update_queue,
)


def test_increment_applied_to_cached_tally(cache, tally_queue) -> None:
    cache.put_tally("award-1", {"n1": 2}, overlay_applied=False)

    outcome = tally_queue.schedule("award-1", "n1").result(timeout=5)

    assert outcome is TallyUpdateOutcome.APPLIED
    assert cache.get_tally("award-1").counts == {"n1": 3}
    assert tally_queue.metrics.as_dict()["applied"] == 1


def test_increment_skipped_without_cached_tally(cache, tally_queue) -> None:
    outcome = tally_queue.schedule("award-1", "n1").result(timeout=5)

    assert outcome is TallyUpdateOutcome.SKIPPED
    assert cache.get_tally("award-1") is None


def test_concurrent_increments_are_not_lost(cache) -> None:
    locks = LockManager(cache, retry_delay=0.001, max_attempts=5000)
    queue = TallyUpdateQueue(cache, locks, backoff_base=0.0, workers=4)
    cache.put_tally("award-1", {"n1": 0}, overlay_applied=False)
    try:
        futures = [queue.schedule("award-1", "n1") for _ in range(50)]
        assert queue.drain(timeout=10) is True
    finally:
        queue.shutdown()

    assert all(f.result() is TallyUpdateOutcome.APPLIED for f in futures)
    assert cache.get_tally("award-1").counts == {"n1": 50}
    assert queue.metrics.scheduled == 50


def test_lock_contention_retries_then_fails(cache) -> None:
    locks = LockManager(cache, retry_delay=0, max_attempts=2, sleep=lambda _: None)
    held = locks.acquire(vote_lock_key("award-1", "n1"), ttl=60)
    assert held is not None
    cache.put_tally("award-1", {"n1": 5}, overlay_applied=False)

    sleeps: list[float] = []
    queue = TallyUpdateQueue(
        cache, locks, max_attempts=3, backoff_base=0.1, workers=1, sleep=sleeps.append
    )
    try:
        outcome = queue.schedule("award-1", "n1").result(timeout=5)
    finally:
        queue.shutdown()

    assert outcome is TallyUpdateOutcome.FAILED
    assert sleeps == [0.1, 0.2]
    assert cache.get_tally("award-1").counts == {"n1": 5}
    metrics = queue.metrics.as_dict()
    assert metrics["failed"] == 1
    assert "LockNotAcquiredError" in metrics["last_error"]


def test_unexpected_error_is_recorded_not_raised(cache, lock_manager, mocker) -> None:
    mocker.patch.object(cache, "increment_tally", side_effect=ValueError("corrupt"))
    queue = TallyUpdateQueue(cache, lock_manager, workers=1)
    try:
        outcome = queue.schedule("award-1", "n1").result(timeout=5)
    finally:
        queue.shutdown()

    assert outcome is TallyUpdateOutcome.FAILED
    assert queue.metrics.failed == 1


def test_schedule_after_shutdown_raises(cache, lock_manager) -> None:
    queue = TallyUpdateQueue(cache, lock_manager, workers=1)
    queue.shutdown()

    with pytest.raises(RuntimeError):
        queue.schedule("award-1", "n1")


def test_drain_waits_for_pending_work(cache, lock_manager) -> None:
    gate = threading.Event()
    original = cache.increment_tally

    def slow_increment(award_id: str, nominee_id: str, amount: int = 1):
        gate.wait(timeout=5)
        return original(award_id, nominee_id, amount)

    cache.increment_tally = slow_increment
    queue = TallyUpdateQueue(cache, lock_manager, workers=1)
    try:
        queue.schedule("award-1", "n1")
        assert queue.drain(timeout=0.05) is False
        gate.set()
        assert queue.drain(timeout=5) is True
    finally:
        queue.shutdown()


def test_shutdown_resets_process_queue(mocker) -> None:
    first = get_tally_update_queue()
    drain = mocker.spy(first, "drain")

    shutdown_tally_update_queue(timeout=1)

    drain.assert_called_once_with(1)
    assert get_tally_update_queue() is not first
    shutdown_tally_update_queue(timeout=1)


def test_lock_not_acquired_error_message() -> None:
    error = LockNotAcquiredError("vote_lock:a:n", 50)
    assert "vote_lock:a:n" in str(error)
    assert error.attempts == 50
