# tests/test_repositories.py
"""Tests for the vote and bias stores."""

import hashlib

import pytest
from sqlalchemy.exc import IntegrityError

from ballot_stage.repositories import BiasStore, DuplicateVoteConflict, VoteStore
from ballot_stage.utils.hash import hash_origin


def test_uniqueness_constraint_rejects_second_ballot(db_session, award, nominees) -> None:
    store = VoteStore(db_session)
    store.create_vote(
        voter_id="u1",
        award_id=award.id,
        nominee_id=nominees[0].id,
        identity_verified=False,
        origin_hash=None,
    )

    with pytest.raises(DuplicateVoteConflict) as exc_info:
        store.create_vote(
            voter_id="u1",
            award_id=award.id,
            nominee_id=nominees[1].id,
            identity_verified=False,
            origin_hash=None,
        )
    assert exc_info.value.voter_id == "u1"
    assert exc_info.value.existing.nominee_id == nominees[0].id

    # The session stays usable after the rejected insert.
    assert store.find_vote("u1", award.id).nominee_id == nominees[0].id


def test_other_integrity_errors_are_not_reported_as_duplicates(db_session, award) -> None:
    store = VoteStore(db_session)

    with pytest.raises(IntegrityError):
        store.create_vote(
            voter_id="u1",
            award_id=award.id,
            nominee_id=None,
            identity_verified=False,
            origin_hash=None,
        )

    assert store.find_vote("u1", award.id) is None


def test_bias_store_only_reports_active_pair_conflicts(db_session, award, nominees) -> None:
    store = BiasStore(db_session)
    first = store.create(
        award_id=award.id, nominee_id=nominees[0].id, bias_amount=4, reason="r", applied_by="a"
    )

    with pytest.raises(IntegrityError):
        store.create(
            award_id=award.id, nominee_id=nominees[1].id, bias_amount=1, reason=None, applied_by="a"
        )

    assert store.get_active(award.id, nominees[0].id).id == first.id
    assert store.get_active(award.id, nominees[1].id) is None


def test_count_by_nominee_orders_highest_first(db_session, award, nominees, cast_votes) -> None:
    cast_votes(award, nominees[0], 1)
    cast_votes(award, nominees[2], 3)

    rows = VoteStore(db_session).count_by_nominee(award.id)

    assert [(row.nominee_name, row.count) for row in rows] == [("Gamma", 3), ("Alpha", 1)]


def test_list_active_awards(db_session, award, make_award) -> None:
    make_award("Closed", is_active=False)

    assert [a.id for a in VoteStore(db_session).list_active_awards()] == [award.id]


def test_get_nominees_skips_unknown_ids(db_session, nominees) -> None:
    found = VoteStore(db_session).get_nominees([nominees[0].id, "missing"])

    assert list(found) == [nominees[0].id]
    assert VoteStore(db_session).get_nominees([]) == {}


def test_hash_origin() -> None:
    assert hash_origin(None) is None
    assert hash_origin("") is None
    assert hash_origin(" 10.0.0.1 ") == hashlib.sha256(b"10.0.0.1").hexdigest()
