"""Vote submission: validation, durable write and tally scheduling.

The durable store's ``(voter_id, award_id)`` uniqueness constraint is what
guarantees one ballot per voter per award. The duplicate pre-check below only
produces a friendlier error earlier; a concurrent submission that slips past
it is caught by the constraint and reported with the same error shape.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from typing import NoReturn, TypeVar

from sqlalchemy.exc import SQLAlchemyError

from ballot_stage.core.settings import settings
from ballot_stage.db.time import as_utc, utcnow
from ballot_stage.models import Award, Vote
from ballot_stage.repositories import DuplicateVoteConflict, VoteHistoryEntry, VoteStore
from ballot_stage.services.circuit_breaker import CircuitBreaker, get_database_breaker
from ballot_stage.services.errors import (
    AwardNotFoundError,
    DuplicateVoteError,
    MissingFieldsError,
    NomineeAwardMismatchError,
    NomineeNotFoundError,
    StoreUnavailableError,
    SubmissionFailedError,
    VoteError,
    VotingEndedError,
    VotingNotActiveError,
    VotingNotStartedError,
)
from ballot_stage.services.tally_updates import TallyUpdateQueue, get_tally_update_queue
from ballot_stage.utils.hash import hash_origin

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Failures worth another attempt: the request was fine, the store was not.
TRANSIENT_ERRORS: tuple[type[Exception], ...] = (SQLAlchemyError, OSError)


@dataclass(frozen=True)
class VoteRequest:
    """A ballot as received from an authenticated voter."""

    voter_id: str
    award_id: str
    nominee_id: str
    identity_verified: bool = False
    origin_address: str | None = None


@dataclass(frozen=True)
class VoteReceipt:
    """The stored ballot returned to the voter."""

    vote_id: str
    voter_id: str
    award_id: str
    nominee_id: str
    identity_verified: bool
    created_at: datetime

    @classmethod
    def from_vote(cls, vote: Vote) -> VoteReceipt:
        return cls(
            vote_id=vote.id,
            voter_id=vote.voter_id,
            award_id=vote.award_id,
            nominee_id=vote.nominee_id,
            identity_verified=vote.identity_verified,
            created_at=as_utc(vote.created_at),
        )


class VoteSubmissionService:
    """Accepts ballots, enforcing award rules and one vote per voter per award."""

    def __init__(
        self,
        store: VoteStore,
        tally_updates: TallyUpdateQueue | None = None,
        breaker: CircuitBreaker | None = None,
        *,
        clock: Callable[[], datetime] = utcnow,
        max_attempts: int | None = None,
        backoff_base: float | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._store = store
        self._tally_updates = tally_updates or get_tally_update_queue()
        self._breaker = breaker or get_database_breaker()
        self._clock = clock
        self.max_attempts = max(
            1, settings.vote_submit_max_attempts if max_attempts is None else max_attempts
        )
        self.backoff_base = (
            settings.vote_submit_backoff_base_seconds if backoff_base is None else backoff_base
        )
        self._sleep = sleep

    def submit_vote(self, request: VoteRequest) -> VoteReceipt:
        """Validate and persist one ballot.

        Validation failures are raised immediately. Transient store errors are
        retried with exponential backoff before giving up.

        Raises:
            VoteError: A subclass naming the exact reason the ballot was refused.
        """
        _require_fields(request)

        last_error: Exception | None = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                vote = self._breaker.run(
                    lambda: self._validate_and_store(request),
                    self._store_unavailable,
                )
            except VoteError:
                raise
            except TRANSIENT_ERRORS as exc:
                last_error = exc
                self._discard_failed_transaction()
                logger.warning(
                    "Vote submission attempt %d/%d for award %s failed: %s",
                    attempt,
                    self.max_attempts,
                    request.award_id,
                    exc,
                )
                if attempt < self.max_attempts:
                    self._sleep(self.backoff_base * 2 ** (attempt - 1))
                continue

            receipt = VoteReceipt.from_vote(vote)
            self._schedule_tally_update(receipt)
            logger.info(
                "Vote %s recorded for award %s nominee %s",
                receipt.vote_id,
                receipt.award_id,
                receipt.nominee_id,
            )
            return receipt

        logger.error(
            "Vote submission for award %s failed after %d attempts: %s",
            request.award_id,
            self.max_attempts,
            last_error,
        )
        raise SubmissionFailedError(
            "Failed to submit vote after multiple attempts",
            retry_after=settings.submission_failed_retry_after_seconds,
        ) from last_error

    def check_vote(self, voter_id: str, award_id: str) -> VoteReceipt | None:
        """Return the voter's ballot for an award, or None if none is visible.

        While the store breaker is open this answers None.
        """

        def primary() -> VoteReceipt | None:
            vote = self._store.find_vote(voter_id, award_id)
            return VoteReceipt.from_vote(vote) if vote is not None else None

        return self._read("vote check", primary, lambda: None)

    def voting_history(self, voter_id: str) -> list[VoteHistoryEntry]:
        """Return every ballot the voter has cast, newest first."""
        return self._read("voting history", lambda: self._store.voting_history(voter_id), list)

    def _read(self, what: str, primary: Callable[[], T], empty: Callable[[], T]) -> T:
        def fallback() -> T:
            logger.warning("Database unavailable for %s, returning empty result", what)
            return empty()

        try:
            return self._breaker.run(primary, fallback)
        except TRANSIENT_ERRORS as exc:
            self._discard_failed_transaction()
            logger.error("Failed to read %s: %s", what, exc)
            raise StoreUnavailableError(
                f"Failed to retrieve {what}",
                retry_after=settings.store_unavailable_retry_after_seconds,
            ) from exc

    def _validate_and_store(self, request: VoteRequest) -> Vote:
        award = self._store.get_award(request.award_id)
        if award is None:
            raise AwardNotFoundError("Award not found")
        self._check_voting_window(award)

        nominee = self._store.get_nominee(request.nominee_id)
        if nominee is None:
            raise NomineeNotFoundError("Nominee not found")
        if nominee.award_id != award.id:
            raise NomineeAwardMismatchError("Nominee does not belong to this award")

        existing = self._store.find_vote(request.voter_id, request.award_id)
        if existing is not None:
            raise _duplicate(existing)

        try:
            return self._store.create_vote(
                voter_id=request.voter_id,
                award_id=request.award_id,
                nominee_id=request.nominee_id,
                identity_verified=request.identity_verified,
                origin_hash=hash_origin(request.origin_address),
            )
        except DuplicateVoteConflict as exc:
            # A concurrent submission won between the pre-check and the insert.
            logger.info(
                "Duplicate vote for voter %s in award %s rejected by the store",
                request.voter_id,
                request.award_id,
            )
            winner = exc.existing or self._store.find_vote(request.voter_id, request.award_id)
            raise _duplicate(winner) from exc

    def _check_voting_window(self, award: Award) -> None:
        if not award.is_active:
            raise VotingNotActiveError("Voting is not active for this award")

        now = as_utc(self._clock())
        if award.voting_start_date is not None:
            start = as_utc(award.voting_start_date)
            if now < start:
                raise VotingNotStartedError(start)
        if award.voting_end_date is not None:
            end = as_utc(award.voting_end_date)
            if now > end:
                raise VotingEndedError(end)

    def _schedule_tally_update(self, receipt: VoteReceipt) -> None:
        try:
            self._tally_updates.schedule(receipt.award_id, receipt.nominee_id)
        except RuntimeError as exc:
            # Raised once the pool is shut down; the next sweep repairs the tally.
            logger.warning("Could not schedule tally update for vote %s: %s", receipt.vote_id, exc)

    def _discard_failed_transaction(self) -> None:
        try:
            self._store.rollback()
        except TRANSIENT_ERRORS as exc:
            logger.warning("Rollback after failed vote submission also failed: %s", exc)

    @staticmethod
    def _store_unavailable() -> NoReturn:
        raise StoreUnavailableError(
            "Vote storage is temporarily unavailable",
            retry_after=settings.store_unavailable_retry_after_seconds,
        )


def _require_fields(request: VoteRequest) -> None:
    missing = [
        name
        for name in ("voter_id", "award_id", "nominee_id")
        if not (getattr(request, name) or "").strip()
    ]
    if missing:
        raise MissingFieldsError(
            "Missing required fields: voter, award and nominee are all required",
            details={"missing": missing},
        )


def _duplicate(existing: Vote | None) -> DuplicateVoteError:
    if existing is None:
        return DuplicateVoteError()
    return DuplicateVoteError(existing.nominee_id, as_utc(existing.created_at))
