"""Data access helpers for administrator vote bias entries."""
from __future__ import annotations

from dataclasses import dataclass, field

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ballot_stage.db.time import utcnow
from ballot_stage.models import Award, VoteBias
from ballot_stage.repositories.errors import ActiveBiasConflict

__all__ = ["AwardBiasTotal", "BiasStatistics", "BiasStore"]


@dataclass(frozen=True)
class AwardBiasTotal:
    """Sum of active adjustments applied to one award."""

    award_id: str
    award_title: str
    total_bias: int
    bias_count: int


@dataclass(frozen=True)
class BiasStatistics:
    """Aggregate view of bias usage for administrators."""

    total_active: int
    total_inactive: int
    top_awards: list[AwardBiasTotal] = field(default_factory=list)


class BiasStore:
    """Persistence for bias entries; entries are deactivated, never deleted."""

    def __init__(self, session: Session) -> None:
        """Initialize the repository with a SQLAlchemy session."""
        self.session = session

    def get(self, bias_id: str) -> VoteBias | None:
        """Return a bias entry by identifier."""
        return self.session.get(VoteBias, bias_id)

    def get_active(self, award_id: str, nominee_id: str) -> VoteBias | None:
        """Return the active entry for the pair, if any."""
        result = self.session.execute(
            select(VoteBias).where(
                VoteBias.award_id == award_id,
                VoteBias.nominee_id == nominee_id,
                VoteBias.is_active.is_(True),
            )
        )
        return result.scalars().first()

    def list_active_for_award(self, award_id: str) -> list[VoteBias]:
        """Return active entries for an award, most recently applied first."""
        result = self.session.execute(
            select(VoteBias)
            .where(VoteBias.award_id == award_id, VoteBias.is_active.is_(True))
            .order_by(VoteBias.applied_at.desc())
        )
        return list(result.scalars())

    def find(
        self,
        *,
        award_id: str | None = None,
        nominee_id: str | None = None,
        active: bool | None = True,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[VoteBias]:
        """Return entries matching the filters; ``active=None`` includes both states."""
        stmt = select(VoteBias)
        if award_id is not None:
            stmt = stmt.where(VoteBias.award_id == award_id)
        if nominee_id is not None:
            stmt = stmt.where(VoteBias.nominee_id == nominee_id)
        if active is not None:
            stmt = stmt.where(VoteBias.is_active.is_(active))
        stmt = stmt.order_by(VoteBias.applied_at.desc()).offset(offset)
        if limit is not None:
            stmt = stmt.limit(limit)
        return list(self.session.execute(stmt).scalars())

    def create(
        self,
        *,
        award_id: str,
        nominee_id: str,
        bias_amount: int,
        reason: str,
        applied_by: str,
    ) -> VoteBias:
        """Insert and commit an active bias entry.

        Raises:
            ActiveBiasConflict: If the partial unique index already holds an
                active entry for the pair.
            IntegrityError: If any other constraint rejected the insert.
        """
        entry = VoteBias(
            award_id=award_id,
            nominee_id=nominee_id,
            bias_amount=bias_amount,
            reason=reason,
            applied_by=applied_by,
            is_active=True,
        )
        self.session.add(entry)
        try:
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            existing = self.get_active(award_id, nominee_id)
            if existing is None:
                raise
            raise ActiveBiasConflict(award_id, nominee_id, existing) from exc
        except SQLAlchemyError:
            self.session.rollback()
            raise
        self.session.refresh(entry)
        return entry

    def update(
        self,
        entry: VoteBias,
        *,
        updated_by: str,
        bias_amount: int | None = None,
        reason: str | None = None,
    ) -> VoteBias:
        """Change the amount and/or reason of an active entry in place."""
        if bias_amount is not None:
            entry.bias_amount = bias_amount
        if reason is not None:
            entry.reason = reason
        entry.updated_by = updated_by
        entry.updated_at = utcnow()
        self._commit()
        self.session.refresh(entry)
        return entry

    def deactivate(self, entry: VoteBias, *, deactivated_by: str, reason: str | None) -> VoteBias:
        """Flip an entry to inactive, recording who retired it and why."""
        entry.is_active = False
        entry.deactivated_by = deactivated_by
        entry.deactivated_at = utcnow()
        entry.deactivation_reason = reason
        self._commit()
        self.session.refresh(entry)
        return entry

    def statistics(self, *, top: int = 10) -> BiasStatistics:
        """Return active/inactive totals and the awards carrying the most bias."""
        counts = dict(
            self.session.execute(
                select(VoteBias.is_active, func.count(VoteBias.id)).group_by(VoteBias.is_active)
            ).all()
        )
        total_bias = func.sum(VoteBias.bias_amount).label("total_bias")
        rows = self.session.execute(
            select(VoteBias.award_id, Award.title, total_bias, func.count(VoteBias.id))
            .join(Award, Award.id == VoteBias.award_id)
            .where(VoteBias.is_active.is_(True))
            .group_by(VoteBias.award_id, Award.title)
            .order_by(total_bias.desc())
            .limit(top)
        ).all()
        return BiasStatistics(
            total_active=int(counts.get(True, 0)),
            total_inactive=int(counts.get(False, 0)),
            top_awards=[
                AwardBiasTotal(
                    award_id=award_id,
                    award_title=title,
                    total_bias=int(total or 0),
                    bias_count=int(count),
                )
                for award_id, title, total, count in rows
            ],
        )

    def _commit(self) -> None:
        try:
            self.session.commit()
        except SQLAlchemyError:
            self.session.rollback()
            raise
