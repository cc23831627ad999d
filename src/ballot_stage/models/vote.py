# src/ballot_stage/models/vote.py
"""Models capturing ballots cast for award nominees."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from ballot_stage.db.session import Base
from ballot_stage.db.time import utcnow
from ballot_stage.models.award import new_id


class Vote(Base):
    """One ballot cast by one voter for one nominee within one award.

    Votes are written once and never mutated by the engine.
    """

    __tablename__ = "vote"
    __table_args__ = (
        # Final arbiter of one-vote-per-voter-per-award; service checks only pre-empt it.
        UniqueConstraint("voter_id", "award_id", name="uq_vote_voter_award"),
        Index("ix_vote_award_created", "award_id", "created_at"),
        Index("ix_vote_nominee_id", "nominee_id"),
    )

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    voter_id: Mapped[str] = mapped_column(String(64), nullable=False)
    award_id: Mapped[str] = mapped_column(
        String(32),
        ForeignKey("award.id"),
        nullable=False,
    )
    nominee_id: Mapped[str] = mapped_column(
        String(32),
        ForeignKey("nominee.id"),
        nullable=False,
    )
    identity_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    # SHA-256 hex digest of the submitter's network origin; raw addresses are never stored.
    origin_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
