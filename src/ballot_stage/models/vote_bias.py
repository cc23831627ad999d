# src/ballot_stage/models/vote_bias.py
"""Administrator adjustments overlaid on organic vote counts."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, String, Text, text
from sqlalchemy.orm import Mapped, mapped_column

from ballot_stage.db.session import Base
from ballot_stage.db.time import utcnow
from ballot_stage.models.award import new_id


class VoteBias(Base):
    """Signed vote-count adjustment for one (award, nominee) pair.

    Entries are updated in place while active and deactivated rather than
    deleted, so the audit trail survives.
    """

    __tablename__ = "vote_bias"
    __table_args__ = (
        # At most one active entry per pair; inactive history is unconstrained.
        Index(
            "uq_vote_bias_active_pair",
            "award_id",
            "nominee_id",
            unique=True,
            sqlite_where=text("is_active = 1"),
            postgresql_where=text("is_active"),
        ),
        Index("ix_vote_bias_award_active", "award_id", "is_active"),
        Index("ix_vote_bias_applied_at", "applied_at"),
    )

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
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
    bias_amount: Mapped[int] = mapped_column(Integer, nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    applied_by: Mapped[str] = mapped_column(String(64), nullable=False)
    applied_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    updated_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Populated only once the entry transitions to inactive.
    deactivated_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    deactivated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    deactivation_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
