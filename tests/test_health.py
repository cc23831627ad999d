# tests/test_health.py
from typing import Any

from sqlalchemy.exc import OperationalError

from ballot_stage.repositories import VoteStore
from ballot_stage.services.circuit_breaker import get_database_breaker


def test_root_responds(client: Any) -> None:
    r = client.get("/")
    assert r.status_code == 200
    assert r.json()["name"] == "Ballot Stage API"


def test_health_reports_dependencies(client: Any) -> None:
    body = client.get("/health").json()

    assert body["status"] == "ok"
    assert body["cache"] == "disabled"
    assert body["breakers"] == {"database": "closed", "cache": "closed"}


def test_health_degraded_when_breaker_open(client: Any) -> None:
    breaker = get_database_breaker()
    for _ in range(breaker.failure_threshold):
        breaker.record_failure()

    body = client.get("/health").json()

    assert body["status"] == "degraded"
    assert body["breakers"]["database"] == "open"


def test_unhandled_database_error_uses_envelope(client: Any, mocker) -> None:
    mocker.patch.object(
        VoteStore,
        "get_award",
        side_effect=OperationalError("SELECT", {}, Exception("connection refused")),
    )

    response = client.post(
        "/api/v1/admin/vote-bias/",
        json={"awardId": "a1", "nomineeId": "n1", "biasAmount": 1, "reason": "r"},
        headers={"X-Admin-Id": "admin-1"},
    )

    assert response.status_code == 503
    assert response.headers["Retry-After"] == "30"
    assert response.json() == {
        "error": {
            "code": "STORE_UNAVAILABLE",
            "message": "The database is temporarily unavailable",
            "retryable": True,
            "retryAfter": 30,
        }
    }
