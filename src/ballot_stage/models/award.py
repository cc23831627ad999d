# src/ballot_stage/models/award.py
"""Award and nominee records consumed read-only by the vote engine."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from ballot_stage.db.session import Base
from ballot_stage.db.time import utcnow


def new_id() -> str:
    """Return a fresh hex identifier for primary keys."""
    return uuid.uuid4().hex


class Award(Base):
    """An award that members vote on, optionally inside a voting window."""

    __tablename__ = "award"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    # Both bounds are optional; an unset bound leaves that side of the window open.
    voting_start_date: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    voting_end_date: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )


class Nominee(Base):
    """A nominee competing in exactly one award."""

    __tablename__ = "nominee"
    __table_args__ = (Index("ix_nominee_award_id", "award_id"),)

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    award_id: Mapped[str] = mapped_column(
        String(32),
        ForeignKey("award.id", ondelete="CASCADE"),
        nullable=False,
    )
    name: Mapped[str] = mapped_column(Text, nullable=False)
