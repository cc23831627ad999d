"""Administrator-managed vote bias entries."""

from __future__ import annotations

import logging

from ballot_stage.core.settings import settings
from ballot_stage.models import VoteBias
from ballot_stage.repositories import ActiveBiasConflict, BiasStore, VoteStore
from ballot_stage.repositories.bias_repo import BiasStatistics
from ballot_stage.services.errors import (
    ActiveBiasExistsError,
    BiasInactiveError,
    BiasNotFoundError,
    BiasTargetMismatchError,
    BiasTargetNotFoundError,
    InvalidBiasError,
)
from ballot_stage.services.vote_counts import VoteCountService

logger = logging.getLogger(__name__)

DEFAULT_DEACTIVATION_REASON = "Removed by admin"


class BiasService:
    """Creates, adjusts and retires bias entries.

    Every mutation drops the award's cached tally rather than patching it, so
    an adjustment can never be applied twice; the next read rebuilds the
    overlay from the store.
    """

    def __init__(
        self,
        bias_store: BiasStore,
        vote_store: VoteStore,
        counts: VoteCountService,
    ) -> None:
        self._biases = bias_store
        self._votes = vote_store
        self._counts = counts

    def create(
        self,
        *,
        award_id: str,
        nominee_id: str,
        bias_amount: int | None,
        reason: str | None,
        applied_by: str,
    ) -> VoteBias:
        """Record a new active adjustment for a nominee.

        Raises:
            InvalidBiasError: Missing fields, amount out of range or reason too long.
            BiasTargetNotFoundError: Unknown award or nominee.
            BiasTargetMismatchError: The nominee belongs to another award.
            ActiveBiasExistsError: The pair already has an active entry.
        """
        if not award_id or not nominee_id or bias_amount is None or not (reason or "").strip():
            raise InvalidBiasError("award_id, nominee_id, bias_amount and reason are required")
        amount = _validate_amount(bias_amount)
        reason = _validate_reason(reason)

        award = self._votes.get_award(award_id)
        if award is None:
            raise BiasTargetNotFoundError("Award not found")
        nominee = self._votes.get_nominee(nominee_id)
        if nominee is None:
            raise BiasTargetNotFoundError("Nominee not found")
        if nominee.award_id != award.id:
            raise BiasTargetMismatchError("Nominee does not belong to the specified award")

        existing = self._biases.get_active(award_id, nominee_id)
        if existing is not None:
            raise ActiveBiasExistsError(existing.id, existing.bias_amount)

        try:
            entry = self._biases.create(
                award_id=award_id,
                nominee_id=nominee_id,
                bias_amount=amount,
                reason=reason,
                applied_by=applied_by,
            )
        except ActiveBiasConflict as exc:
            winner = exc.existing or self._biases.get_active(award_id, nominee_id)
            if winner is None:
                raise ActiveBiasExistsError() from exc
            raise ActiveBiasExistsError(winner.id, winner.bias_amount) from exc

        logger.info(
            "Vote bias %s created for award %s nominee %s: %+d by %s",
            entry.id,
            award_id,
            nominee_id,
            amount,
            applied_by,
        )
        self._invalidate(award_id)
        return entry

    def update(
        self,
        bias_id: str,
        *,
        updated_by: str,
        bias_amount: int | None = None,
        reason: str | None = None,
    ) -> VoteBias:
        """Change the amount and/or reason of an active entry."""
        if bias_amount is None and reason is None:
            raise InvalidBiasError("bias_amount or reason is required")
        amount = _validate_amount(bias_amount) if bias_amount is not None else None
        if reason is not None:
            reason = _validate_reason(reason)

        entry = self._get_active(bias_id)
        previous_amount = entry.bias_amount
        entry = self._biases.update(
            entry, updated_by=updated_by, bias_amount=amount, reason=reason
        )
        logger.info(
            "Vote bias %s updated by %s: %+d -> %+d",
            entry.id,
            updated_by,
            previous_amount,
            entry.bias_amount,
        )
        self._invalidate(entry.award_id)
        return entry

    def deactivate(
        self,
        bias_id: str,
        *,
        deactivated_by: str,
        reason: str | None = None,
    ) -> VoteBias:
        """Retire an active entry, keeping it for the audit trail."""
        reason = _validate_reason(reason) if reason else DEFAULT_DEACTIVATION_REASON
        entry = self._get_active(bias_id)
        entry = self._biases.deactivate(entry, deactivated_by=deactivated_by, reason=reason)
        logger.info("Vote bias %s deactivated by %s", entry.id, deactivated_by)
        self._invalidate(entry.award_id)
        return entry

    def find(
        self,
        *,
        award_id: str | None = None,
        nominee_id: str | None = None,
        active: bool | None = True,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[VoteBias]:
        return self._biases.find(
            award_id=award_id,
            nominee_id=nominee_id,
            active=active,
            limit=limit,
            offset=offset,
        )

    def statistics(self, top: int = 10) -> BiasStatistics:
        return self._biases.statistics(top=top)

    def _get_active(self, bias_id: str) -> VoteBias:
        entry = self._biases.get(bias_id)
        if entry is None:
            raise BiasNotFoundError("Vote bias entry not found")
        if not entry.is_active:
            raise BiasInactiveError("Vote bias entry is no longer active")
        return entry

    def _invalidate(self, award_id: str) -> None:
        self._counts.clear(award_id)
        logger.debug("Cached tally for award %s cleared after bias change", award_id)


def _validate_amount(value: int) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidBiasError("Bias amount must be an integer")
    limit = settings.bias_max_abs_amount
    if abs(value) > limit:
        raise InvalidBiasError(
            f"Bias amount must be between -{limit:,} and {limit:,}",
            details={"maxAbsAmount": limit},
        )
    return value


def _validate_reason(value: str | None) -> str:
    reason = (value or "").strip()
    if not reason:
        raise InvalidBiasError("A reason is required")
    if len(reason) > settings.bias_reason_max_length:
        raise InvalidBiasError(
            f"Reason must be at most {settings.bias_reason_max_length} characters",
            details={"maxLength": settings.bias_reason_max_length},
        )
    return reason
