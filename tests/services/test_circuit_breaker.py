"""Tests for the circuit breaker run/fallback contract."""

import pytest

from ballot_stage.services.circuit_breaker import (
    CircuitBreaker,
    CircuitOpenError,
    CircuitState,
    breaker_states,
)


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


class BadRequest(Exception):
    pass


def _boom() -> None:
    raise ConnectionError("down")


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def breaker(clock: FakeClock) -> CircuitBreaker:
    return CircuitBreaker(
        name="test",
        failure_threshold=2,
        recovery_timeout=10,
        expected_errors=(BadRequest,),
        clock=clock,
    )


def test_closed_breaker_runs_primary(breaker) -> None:
    assert breaker.run(lambda: "primary", lambda: "fallback") == "primary"
    assert breaker.get_state() is CircuitState.CLOSED


def test_failures_below_threshold_propagate(breaker) -> None:
    with pytest.raises(ConnectionError):
        breaker.run(_boom, lambda: "fallback")
    assert breaker.get_state() is CircuitState.CLOSED


def test_breaker_opens_at_threshold_and_uses_fallback(breaker) -> None:
    with pytest.raises(ConnectionError):
        breaker.run(_boom, lambda: "fallback")

    # The failure that trips the breaker is answered by the fallback.
    assert breaker.run(_boom, lambda: "fallback") == "fallback"
    assert breaker.get_state() is CircuitState.OPEN

    calls = []
    assert breaker.run(lambda: calls.append("primary"), lambda: "fallback") == "fallback"
    assert calls == []


def test_open_breaker_without_fallback_raises(breaker) -> None:
    breaker.record_failure()
    breaker.record_failure()

    with pytest.raises(CircuitOpenError):
        breaker.run(lambda: "primary")


def test_half_open_success_closes(breaker, clock) -> None:
    breaker.record_failure()
    breaker.record_failure()
    clock.now = 10

    assert breaker.run(lambda: "primary", lambda: "fallback") == "primary"
    assert breaker.get_state() is CircuitState.CLOSED


def test_half_open_failure_reopens(breaker, clock) -> None:
    breaker.record_failure()
    breaker.record_failure()
    clock.now = 10

    assert breaker.run(_boom, lambda: "fallback") == "fallback"
    assert breaker.get_state() is CircuitState.OPEN


def test_expected_errors_do_not_count_as_failures(breaker) -> None:
    def rejected() -> None:
        raise BadRequest()

    for _ in range(5):
        with pytest.raises(BadRequest):
            breaker.run(rejected, lambda: "fallback")

    assert breaker.get_state() is CircuitState.CLOSED
    assert breaker.health_status()["total_failures"] == 0


def test_success_resets_failure_count(breaker) -> None:
    with pytest.raises(ConnectionError):
        breaker.run(_boom)
    breaker.run(lambda: None)
    with pytest.raises(ConnectionError):
        breaker.run(_boom)

    assert breaker.get_state() is CircuitState.CLOSED


def test_health_status_reports_counters(breaker) -> None:
    breaker.run(lambda: None)
    with pytest.raises(ConnectionError):
        breaker.run(_boom)

    status = breaker.health_status()
    assert status["name"] == "test"
    assert status["state"] == "closed"
    assert status["healthy"] is True
    assert status["total_requests"] == 2
    assert status["failure_rate"] == 50.0


def test_process_breakers_are_registered() -> None:
    assert set(breaker_states()) == {"database", "cache"}
