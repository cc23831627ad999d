"""Data access helpers for ballots and the awards they reference."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ballot_stage.models import Award, Nominee, Vote
from ballot_stage.repositories.errors import DuplicateVoteConflict

__all__ = ["NomineeCount", "VoteHistoryEntry", "VoteStore"]


@dataclass(frozen=True)
class NomineeCount:
    """Organic vote total for one nominee."""

    nominee_id: str
    nominee_name: str
    count: int


@dataclass(frozen=True)
class VoteHistoryEntry:
    """A past ballot joined with award and nominee display data."""

    vote_id: str
    award_id: str
    award_title: str
    nominee_id: str
    nominee_name: str
    created_at: datetime


class VoteStore:
    """Thin wrapper around database access for votes and their award context."""

    def __init__(self, session: Session) -> None:
        """Initialize the repository with a SQLAlchemy session."""
        self.session = session

    def get_award(self, award_id: str) -> Award | None:
        """Return an award by identifier."""
        return self.session.get(Award, award_id)

    def get_nominee(self, nominee_id: str) -> Nominee | None:
        """Return a nominee by identifier."""
        return self.session.get(Nominee, nominee_id)

    def get_nominees(self, nominee_ids: list[str]) -> dict[str, Nominee]:
        """Return the nominees that exist among ``nominee_ids`` keyed by id."""
        if not nominee_ids:
            return {}
        result = self.session.execute(select(Nominee).where(Nominee.id.in_(nominee_ids)))
        return {nominee.id: nominee for nominee in result.scalars()}

    def list_active_awards(self) -> list[Award]:
        """Return awards currently flagged active."""
        result = self.session.execute(
            select(Award).where(Award.is_active.is_(True)).order_by(Award.created_at)
        )
        return list(result.scalars())

    def find_vote(self, voter_id: str, award_id: str) -> Vote | None:
        """Return the voter's ballot for the award, if any."""
        result = self.session.execute(
            select(Vote).where(Vote.voter_id == voter_id, Vote.award_id == award_id)
        )
        return result.scalars().first()

    def create_vote(
        self,
        *,
        voter_id: str,
        award_id: str,
        nominee_id: str,
        identity_verified: bool,
        origin_hash: str | None,
    ) -> Vote:
        """Insert and commit a ballot.

        Raises:
            DuplicateVoteConflict: If the (voter, award) uniqueness constraint
                rejected the insert, e.g. a concurrent submission won the race.
            IntegrityError: If any other constraint rejected the insert.
        """
        vote = Vote(
            voter_id=voter_id,
            award_id=award_id,
            nominee_id=nominee_id,
            identity_verified=identity_verified,
            origin_hash=origin_hash,
        )
        self.session.add(vote)
        try:
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            # Foreign key and NOT NULL violations have no ballot to report.
            existing = self.find_vote(voter_id, award_id)
            if existing is None:
                raise
            raise DuplicateVoteConflict(voter_id, award_id, existing) from exc
        except SQLAlchemyError:
            self.session.rollback()
            raise
        self.session.refresh(vote)
        return vote

    def rollback(self) -> None:
        """Discard the session's pending state after a failed statement."""
        self.session.rollback()

    def count_by_nominee(self, award_id: str) -> list[NomineeCount]:
        """Return organic vote totals per nominee, highest first.

        Votes whose nominee no longer exists are dropped by the join.
        """
        vote_count = func.count(Vote.id).label("vote_count")
        stmt = (
            select(Vote.nominee_id, Nominee.name, vote_count)
            .join(Nominee, Nominee.id == Vote.nominee_id)
            .where(Vote.award_id == award_id)
            .group_by(Vote.nominee_id, Nominee.name)
            .order_by(vote_count.desc())
        )
        return [
            NomineeCount(nominee_id=nominee_id, nominee_name=name, count=int(count))
            for nominee_id, name, count in self.session.execute(stmt)
        ]

    def voting_history(self, voter_id: str) -> list[VoteHistoryEntry]:
        """Return the voter's ballots, newest first."""
        stmt = (
            select(Vote, Award.title, Nominee.name)
            .join(Award, Award.id == Vote.award_id)
            .join(Nominee, Nominee.id == Vote.nominee_id)
            .where(Vote.voter_id == voter_id)
            .order_by(Vote.created_at.desc())
        )
        return [
            VoteHistoryEntry(
                vote_id=vote.id,
                award_id=vote.award_id,
                award_title=title,
                nominee_id=vote.nominee_id,
                nominee_name=name,
                created_at=vote.created_at,
            )
            for vote, title, name in self.session.execute(stmt)
        ]
