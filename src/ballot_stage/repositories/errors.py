"""Exceptions raised when the durable store rejects a write."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ballot_stage.models import Vote, VoteBias


class StoreConflict(RuntimeError):
    """Base class for uniqueness violations reported by the database."""


class DuplicateVoteConflict(StoreConflict):
    """The voter already holds a ballot for the award."""

    def __init__(self, voter_id: str, award_id: str, existing: Vote | None = None) -> None:
        super().__init__(f"Vote already recorded for voter {voter_id} in award {award_id}")
        self.voter_id = voter_id
        self.award_id = award_id
        self.existing = existing


class ActiveBiasConflict(StoreConflict):
    """An active bias entry already exists for the (award, nominee) pair."""

    def __init__(
        self, award_id: str, nominee_id: str, existing: VoteBias | None = None
    ) -> None:
        super().__init__(f"Active bias already exists for nominee {nominee_id} in award {award_id}")
        self.award_id = award_id
        self.nominee_id = nominee_id
        self.existing = existing
