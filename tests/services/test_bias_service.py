"""Tests for the bias entry lifecycle."""

import pytest

from ballot_stage.repositories import ActiveBiasConflict, BiasStore, VoteStore
from ballot_stage.services.bias_service import DEFAULT_DEACTIVATION_REASON, BiasService
from ballot_stage.services.errors import (
    ActiveBiasExistsError,
    BiasInactiveError,
    BiasNotFoundError,
    BiasTargetMismatchError,
    BiasTargetNotFoundError,
    InvalidBiasError,
)
from ballot_stage.services.vote_counts import VoteCountService


@pytest.fixture
def bias_store(db_session) -> BiasStore:
    return BiasStore(db_session)


@pytest.fixture
def counts(db_session, cache) -> VoteCountService:
    return VoteCountService(VoteStore(db_session), BiasStore(db_session), cache)


@pytest.fixture
def service(db_session, bias_store, counts) -> BiasService:
    return BiasService(bias_store, VoteStore(db_session), counts)


def _create(service, award, nominee, amount=10, reason="Jury adjustment"):
    return service.create(
        award_id=award.id,
        nominee_id=nominee.id,
        bias_amount=amount,
        reason=reason,
        applied_by="admin-1",
    )


def test_create_records_audit_fields(service, award, nominees) -> None:
    entry = _create(service, award, nominees[0], amount=-3, reason="  Duplicate accounts  ")

    assert entry.is_active is True
    assert entry.bias_amount == -3
    assert entry.reason == "Duplicate accounts"
    assert entry.applied_by == "admin-1"
    assert entry.applied_at is not None
    assert entry.deactivated_at is None


def test_zero_amount_is_allowed(service, award, nominees) -> None:
    assert _create(service, award, nominees[0], amount=0).bias_amount == 0


@pytest.mark.parametrize(
    ("amount", "reason"),
    [
        (None, "reason"),
        (5, ""),
        (5, "   "),
        (10_001, "reason"),
        (-10_001, "reason"),
        (True, "reason"),
        (2.5, "reason"),
        (5, "x" * 501),
    ],
)
def test_invalid_input_is_rejected(service, award, nominees, amount, reason) -> None:
    with pytest.raises(InvalidBiasError):
        _create(service, award, nominees[0], amount=amount, reason=reason)


def test_limits_are_inclusive(service, award, nominees) -> None:
    assert _create(service, award, nominees[0], amount=10_000, reason="x" * 500).bias_amount == 10_000
    assert _create(service, award, nominees[1], amount=-10_000).bias_amount == -10_000


def test_unknown_targets(service, award, nominees) -> None:
    with pytest.raises(BiasTargetNotFoundError):
        service.create(
            award_id="nope", nominee_id=nominees[0].id, bias_amount=1, reason="r", applied_by="a"
        )
    with pytest.raises(BiasTargetNotFoundError):
        service.create(
            award_id=award.id, nominee_id="nope", bias_amount=1, reason="r", applied_by="a"
        )


def test_nominee_must_belong_to_award(service, award, make_award, make_nominee) -> None:
    other = make_award("Best Score")
    foreign = make_nominee(other, "Outsider")

    with pytest.raises(BiasTargetMismatchError):
        _create(service, award, foreign)


def test_single_active_entry_per_pair(service, award, nominees) -> None:
    first = _create(service, award, nominees[0], amount=10)

    with pytest.raises(ActiveBiasExistsError) as exc_info:
        _create(service, award, nominees[0], amount=5)
    assert exc_info.value.details == {"existingBiasId": first.id, "currentAmount": 10}

    # Other nominees of the same award are independent.
    _create(service, award, nominees[1], amount=5)

    service.deactivate(first.id, deactivated_by="admin-2")
    second = _create(service, award, nominees[0], amount=5)
    assert second.id != first.id
    assert second.is_active is True


def test_store_conflict_is_reported_as_existing_entry(service, bias_store, award, nominees, mocker) -> None:
    winner = _create(service, award, nominees[0], amount=7)
    mocker.patch.object(bias_store, "get_active", side_effect=[None, winner])
    mocker.patch.object(
        bias_store, "create", side_effect=ActiveBiasConflict(award.id, nominees[0].id)
    )

    with pytest.raises(ActiveBiasExistsError) as exc_info:
        _create(service, award, nominees[0], amount=3)
    assert exc_info.value.existing_id == winner.id


def test_partial_index_rejects_second_active_row(bias_store, award, nominees) -> None:
    bias_store.create(
        award_id=award.id, nominee_id=nominees[0].id, bias_amount=1, reason="r", applied_by="a"
    )

    with pytest.raises(ActiveBiasConflict):
        bias_store.create(
            award_id=award.id, nominee_id=nominees[0].id, bias_amount=2, reason="r", applied_by="a"
        )


def test_update_changes_amount_and_reason(service, award, nominees) -> None:
    entry = _create(service, award, nominees[0], amount=10)

    updated = service.update(entry.id, updated_by="admin-2", bias_amount=-4)
    assert updated.bias_amount == -4
    assert updated.reason == "Jury adjustment"
    assert updated.updated_by == "admin-2"
    assert updated.updated_at is not None

    updated = service.update(entry.id, updated_by="admin-3", reason="Recount")
    assert updated.bias_amount == -4
    assert updated.reason == "Recount"


def test_update_requires_a_change(service, award, nominees) -> None:
    entry = _create(service, award, nominees[0])

    with pytest.raises(InvalidBiasError):
        service.update(entry.id, updated_by="admin-2")
    with pytest.raises(InvalidBiasError):
        service.update(entry.id, updated_by="admin-2", bias_amount=20_000)


def test_update_and_deactivate_unknown_entry(service) -> None:
    with pytest.raises(BiasNotFoundError):
        service.update("missing", updated_by="a", bias_amount=1)
    with pytest.raises(BiasNotFoundError):
        service.deactivate("missing", deactivated_by="a")


def test_deactivate_keeps_entry_for_audit(service, bias_store, award, nominees) -> None:
    entry = _create(service, award, nominees[0])

    retired = service.deactivate(entry.id, deactivated_by="admin-2", reason="Appeal upheld")

    assert retired.is_active is False
    assert retired.deactivated_by == "admin-2"
    assert retired.deactivated_at is not None
    assert retired.deactivation_reason == "Appeal upheld"
    assert bias_store.get(entry.id) is not None
    assert bias_store.get_active(award.id, nominees[0].id) is None


def test_deactivate_default_reason(service, award, nominees) -> None:
    entry = _create(service, award, nominees[0])

    assert service.deactivate(entry.id, deactivated_by="a").deactivation_reason == (
        DEFAULT_DEACTIVATION_REASON
    )


def test_inactive_entries_cannot_change(service, award, nominees) -> None:
    entry = _create(service, award, nominees[0])
    service.deactivate(entry.id, deactivated_by="a")

    with pytest.raises(BiasInactiveError):
        service.update(entry.id, updated_by="a", bias_amount=1)
    with pytest.raises(BiasInactiveError):
        service.deactivate(entry.id, deactivated_by="a")


def test_every_mutation_invalidates_cached_tally(service, counts, cache, award, nominees, cast_votes) -> None:
    n1 = nominees[0]
    cast_votes(award, n1, 5)

    def read() -> int:
        return next(t.count for t in counts.get_counts(award.id) if t.nominee_id == n1.id)

    assert read() == 5
    entry = _create(service, award, n1, amount=10)
    assert cache.get_tally(award.id) is None
    assert read() == 15

    service.update(entry.id, updated_by="a", bias_amount=2)
    assert cache.get_tally(award.id) is None
    assert read() == 7

    service.deactivate(entry.id, deactivated_by="a")
    assert cache.get_tally(award.id) is None
    assert read() == 5


def test_find_and_statistics(service, award, nominees, make_award, make_nominee) -> None:
    first = _create(service, award, nominees[0], amount=10)
    _create(service, award, nominees[1], amount=-2)
    other = make_award("Best Score")
    _create(service, other, make_nominee(other, "Composer"), amount=50)
    service.deactivate(first.id, deactivated_by="a")

    assert len(service.find()) == 2
    assert len(service.find(active=None)) == 3
    assert [e.id for e in service.find(active=False)] == [first.id]
    assert len(service.find(award_id=award.id, active=None)) == 2
    assert len(service.find(nominee_id=nominees[1].id)) == 1
    assert len(service.find(active=None, limit=2)) == 2
    assert len(service.find(active=None, limit=2, offset=2)) == 1

    stats = service.statistics(top=5)
    assert (stats.total_active, stats.total_inactive) == (2, 1)
    assert [(a.award_title, a.total_bias, a.bias_count) for a in stats.top_awards] == [
        ("Best Score", 50, 1),
        ("Best Picture", -2, 1),
    ]
