# tests/v1/test_votes.py
"""Tests for vote submission and vote count endpoints."""

from datetime import UTC, datetime, timedelta

from fastapi import status
from sqlalchemy.exc import OperationalError

from ballot_stage.repositories import VoteStore
from ballot_stage.services.cache import tally_key

VOTER_HEADERS = {"X-Voter-Id": "voter-1"}


def _vote(client, award, nominee, voter: str = "voter-1", **headers):
    return client.post(
        "/api/v1/votes/",
        json={"awardId": award.id, "nomineeId": nominee.id},
        headers={"X-Voter-Id": voter, **headers},
    )


def test_submit_vote(client, award, nominees) -> None:
    response = _vote(client, award, nominees[0], **{"X-Identity-Verified": "true"})

    assert response.status_code == status.HTTP_201_CREATED
    body = response.json()
    assert body["success"] is True
    assert body["vote"]["voterId"] == "voter-1"
    assert body["vote"]["awardId"] == award.id
    assert body["vote"]["nomineeId"] == nominees[0].id
    assert body["vote"]["identityVerified"] is True
    assert "createdAt" in body["vote"]


def test_submit_vote_accepts_snake_case_body(client, award, nominees) -> None:
    response = client.post(
        "/api/v1/votes/",
        json={"award_id": award.id, "nominee_id": nominees[0].id},
        headers=VOTER_HEADERS,
    )
    assert response.status_code == status.HTTP_201_CREATED


def test_submit_vote_requires_identity(client, award, nominees) -> None:
    response = client.post(
        "/api/v1/votes/", json={"awardId": award.id, "nomineeId": nominees[0].id}
    )
    assert response.status_code == status.HTTP_401_UNAUTHORIZED


def test_submit_vote_missing_body_fields(client) -> None:
    response = client.post("/api/v1/votes/", json={"awardId": "a1"}, headers=VOTER_HEADERS)
    assert response.status_code == 422


def test_blank_ids_use_error_envelope(client) -> None:
    response = client.post(
        "/api/v1/votes/", json={"awardId": " ", "nomineeId": ""}, headers=VOTER_HEADERS
    )

    assert response.status_code == status.HTTP_400_BAD_REQUEST
    error = response.json()["error"]
    assert error["code"] == "MISSING_FIELDS"
    assert error["retryable"] is False
    assert error["details"]["missing"] == ["award_id", "nominee_id"]


def test_duplicate_vote_conflict(client, award, nominees) -> None:
    first = _vote(client, award, nominees[0]).json()["vote"]

    response = _vote(client, award, nominees[1])

    assert response.status_code == status.HTTP_409_CONFLICT
    error = response.json()["error"]
    assert error["code"] == "DUPLICATE_VOTE"
    assert error["details"]["existingVote"]["nomineeId"] == nominees[0].id
    assert datetime.fromisoformat(error["details"]["existingVote"]["timestamp"]) == (
        datetime.fromisoformat(first["createdAt"].replace("Z", "+00:00"))
    )


def test_rule_violations_map_to_status_codes(client, award, nominees, make_award, make_nominee) -> None:
    ended = make_award("Old", voting_end_date=datetime.now(UTC) - timedelta(days=1))
    ended_nominee = make_nominee(ended, "Late")
    other = make_award("Other")
    foreign = make_nominee(other, "Foreign")

    cases = [
        (_vote(client, ended, ended_nominee), 400, "VOTING_ENDED"),
        (_vote(client, award, foreign), 400, "NOMINEE_AWARD_MISMATCH"),
    ]
    missing = client.post(
        "/api/v1/votes/",
        json={"awardId": "nope", "nomineeId": nominees[0].id},
        headers=VOTER_HEADERS,
    )
    cases.append((missing, 404, "AWARD_NOT_FOUND"))

    for response, status_code, code in cases:
        assert response.status_code == status_code
        assert response.json()["error"]["code"] == code


def test_store_outage_returns_retry_after(client, award, nominees, mocker) -> None:
    mocker.patch.object(
        VoteStore,
        "create_vote",
        side_effect=OperationalError("INSERT", {}, Exception("database is locked")),
    )

    response = _vote(client, award, nominees[0])

    assert response.status_code == status.HTTP_503_SERVICE_UNAVAILABLE
    assert response.headers["Retry-After"] == "60"
    error = response.json()["error"]
    assert error["code"] == "SUBMISSION_FAILED"
    assert error["retryable"] is True
    assert error["retryAfter"] == 60


def test_check_vote(client, award, nominees) -> None:
    before = client.get(f"/api/v1/votes/check/{award.id}", headers=VOTER_HEADERS).json()
    assert before == {"awardId": award.id, "hasVoted": False, "vote": None}

    _vote(client, award, nominees[2])
    after = client.get(f"/api/v1/votes/check/{award.id}", headers=VOTER_HEADERS).json()

    assert after["hasVoted"] is True
    assert after["vote"]["nomineeId"] == nominees[2].id


def test_my_history(client, award, nominees) -> None:
    _vote(client, award, nominees[1])

    body = client.get("/api/v1/votes/my-history", headers=VOTER_HEADERS).json()

    assert body["total"] == 1
    assert body["votes"][0]["awardTitle"] == "Best Picture"
    assert body["votes"][0]["nomineeName"] == "Beta"


def test_counts_scenario(client, award, nominees, tally_queue) -> None:
    x = nominees[0]
    assert _vote(client, award, x, voter="U1").status_code == 201
    assert _vote(client, award, nominees[1], voter="U1").status_code == 409
    assert _vote(client, award, x, voter="U2").status_code == 201
    assert tally_queue.drain(timeout=5)

    body = client.get(f"/api/v1/votes/counts/{award.id}").json()

    assert body == {
        "awardId": award.id,
        "counts": [
            {
                "nomineeId": x.id,
                "nomineeName": "Alpha",
                "count": 2,
                "originalCount": 2,
                "biasAmount": 0,
                "hasBias": False,
                "biasReason": None,
            }
        ],
    }


def test_counts_stay_correct_after_cached_increment(client, award, nominees, tally_queue) -> None:
    _vote(client, award, nominees[0], voter="U1")
    assert tally_queue.drain(timeout=5)
    client.get(f"/api/v1/votes/counts/{award.id}")

    _vote(client, award, nominees[1], voter="U2")
    _vote(client, award, nominees[1], voter="U3")
    assert tally_queue.drain(timeout=5)

    counts = client.get(f"/api/v1/votes/counts/{award.id}").json()["counts"]
    assert [(c["nomineeId"], c["count"]) for c in counts] == [
        (nominees[1].id, 2),
        (nominees[0].id, 1),
    ]


def test_counts_survive_corrupt_cached_value(client, cache, award, nominees, cast_votes) -> None:
    cast_votes(award, nominees[0], 2)
    client.post(f"/api/v1/votes/cache/warm/{award.id}", headers={"X-Admin-Id": "admin-1"})
    cache.fallback.hset_many(tally_key(award.id), {nominees[0].id: "garbage"})

    response = client.get(f"/api/v1/votes/counts/{award.id}")

    assert response.status_code == status.HTTP_200_OK
    counts = response.json()["counts"]
    assert [(c["nomineeId"], c["count"]) for c in counts] == [(nominees[0].id, 2)]
    assert cache.get_tally(award.id).counts == {nominees[0].id: 2}


def test_original_counts(client, award, nominees, add_bias, cast_votes) -> None:
    cast_votes(award, nominees[0], 2)
    add_bias(award, nominees[0], 10)

    body = client.get(f"/api/v1/votes/counts/{award.id}/original").json()

    assert body["counts"] == [{"nomineeId": nominees[0].id, "nomineeName": "Alpha", "count": 2}]


def test_counts_unavailable(client, award, mocker) -> None:
    mocker.patch.object(
        VoteStore,
        "count_by_nominee",
        side_effect=OperationalError("SELECT", {}, Exception("connection refused")),
    )

    response = client.get(f"/api/v1/votes/counts/{award.id}")

    assert response.status_code == status.HTTP_503_SERVICE_UNAVAILABLE
    assert response.headers["Retry-After"] == "30"
    assert response.json()["error"]["code"] == "VOTE_COUNTS_UNAVAILABLE"
