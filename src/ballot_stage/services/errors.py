"""Typed errors raised by the vote engine.

Every error raised across a service boundary carries a machine-readable kind,
a human message, whether the caller may retry, and for retryable kinds a
suggested wait in seconds. Callers branch on ``kind`` (or the subclass)
rather than parsing messages.
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime
from enum import Enum
from typing import Any, ClassVar


class VoteErrorKind(str, Enum):
    """Machine-readable vote submission failure codes."""

    MISSING_FIELDS = "MISSING_FIELDS"
    AWARD_NOT_FOUND = "AWARD_NOT_FOUND"
    VOTING_NOT_ACTIVE = "VOTING_NOT_ACTIVE"
    VOTING_NOT_STARTED = "VOTING_NOT_STARTED"
    VOTING_ENDED = "VOTING_ENDED"
    NOMINEE_NOT_FOUND = "NOMINEE_NOT_FOUND"
    NOMINEE_AWARD_MISMATCH = "NOMINEE_AWARD_MISMATCH"
    DUPLICATE_VOTE = "DUPLICATE_VOTE"
    STORE_UNAVAILABLE = "STORE_UNAVAILABLE"
    SUBMISSION_FAILED = "SUBMISSION_FAILED"


class EngineError(RuntimeError):
    """Base class for errors that carry a client-facing error envelope."""

    code: ClassVar[str] = "ENGINE_ERROR"
    status_code: ClassVar[int] = 500
    retryable: ClassVar[bool] = False

    def __init__(
        self,
        message: str,
        *,
        details: Mapping[str, Any] | None = None,
        retry_after: int | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details: dict[str, Any] = dict(details or {})
        self.retry_after = retry_after

    def to_dict(self) -> dict[str, Any]:
        """Return the JSON error envelope for this error."""
        body: dict[str, Any] = {
            "code": self.code,
            "message": self.message,
            "retryable": self.retryable,
        }
        if self.retry_after is not None:
            body["retryAfter"] = self.retry_after
        if self.details:
            body["details"] = _jsonable(self.details)
        return body


def _jsonable(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Mapping):
        return {key: _jsonable(item) for key, item in value.items()}
    if isinstance(value, list | tuple):
        return [_jsonable(item) for item in value]
    return value


# --- Vote submission ----------------------------------------------------------------


class VoteError(EngineError):
    """Base class for vote submission failures."""

    kind: ClassVar[VoteErrorKind]

    @property
    def code(self) -> str:  # type: ignore[override]
        return self.kind.value


class MissingFieldsError(VoteError):
    """Raised when the voter, award or nominee identity is absent."""

    kind = VoteErrorKind.MISSING_FIELDS
    status_code = 400


class AwardNotFoundError(VoteError):
    kind = VoteErrorKind.AWARD_NOT_FOUND
    status_code = 404


class VotingNotActiveError(VoteError):
    kind = VoteErrorKind.VOTING_NOT_ACTIVE
    status_code = 400


class VotingNotStartedError(VoteError):
    """Raised before the award's voting window opens."""

    kind = VoteErrorKind.VOTING_NOT_STARTED
    status_code = 400

    def __init__(self, voting_start_date: datetime) -> None:
        super().__init__(
            "Voting has not started for this award",
            details={"votingStartDate": voting_start_date},
        )
        self.voting_start_date = voting_start_date


class VotingEndedError(VoteError):
    """Raised after the award's voting window closed."""

    kind = VoteErrorKind.VOTING_ENDED
    status_code = 400

    def __init__(self, voting_end_date: datetime) -> None:
        super().__init__(
            "Voting has ended for this award",
            details={"votingEndDate": voting_end_date},
        )
        self.voting_end_date = voting_end_date


class NomineeNotFoundError(VoteError):
    kind = VoteErrorKind.NOMINEE_NOT_FOUND
    status_code = 404


class NomineeAwardMismatchError(VoteError):
    kind = VoteErrorKind.NOMINEE_AWARD_MISMATCH
    status_code = 400


class DuplicateVoteError(VoteError):
    """Raised when the voter already has a ballot for the award.

    The same shape is produced whether the service pre-check or the store's
    uniqueness constraint caught the duplicate.
    """

    kind = VoteErrorKind.DUPLICATE_VOTE
    status_code = 409

    def __init__(
        self,
        existing_nominee_id: str | None = None,
        existing_timestamp: datetime | None = None,
    ) -> None:
        details: dict[str, Any] = {}
        if existing_nominee_id is not None:
            details["existingVote"] = {
                "nomineeId": existing_nominee_id,
                "timestamp": existing_timestamp,
            }
        super().__init__("User has already voted for this award", details=details)
        self.existing_nominee_id = existing_nominee_id
        self.existing_timestamp = existing_timestamp


class StoreUnavailableError(VoteError):
    kind = VoteErrorKind.STORE_UNAVAILABLE
    status_code = 503
    retryable = True


class SubmissionFailedError(VoteError):
    kind = VoteErrorKind.SUBMISSION_FAILED
    status_code = 503
    retryable = True


# --- Vote counts --------------------------------------------------------------------


class VoteCountError(EngineError):
    """Base class for tally read and maintenance failures."""

    code = "VOTE_COUNTS_ERROR"


class VoteCountsUnavailableError(VoteCountError):
    code = "VOTE_COUNTS_UNAVAILABLE"
    status_code = 503
    retryable = True


class CacheSyncError(VoteCountError):
    """Raised when the cached tally could not be rebuilt from the store."""

    code = "CACHE_SYNC_FAILED"
    status_code = 503
    retryable = True


# --- Bias administration ------------------------------------------------------------


class BiasError(EngineError):
    """Base class for bias administration failures."""

    code = "BIAS_ERROR"


class InvalidBiasError(BiasError):
    code = "INVALID_BIAS"
    status_code = 400


class BiasNotFoundError(BiasError):
    code = "BIAS_NOT_FOUND"
    status_code = 404


class BiasInactiveError(BiasError):
    code = "BIAS_INACTIVE"
    status_code = 409


class ActiveBiasExistsError(BiasError):
    """Raised when a second active entry is requested for the same pair."""

    code = "ACTIVE_BIAS_EXISTS"
    status_code = 409

    def __init__(self, existing_id: str | None = None, current_amount: int | None = None) -> None:
        details: dict[str, Any] = {}
        if existing_id is not None:
            details = {"existingBiasId": existing_id, "currentAmount": current_amount}
        super().__init__(
            "Active vote bias already exists for this nominee; update it instead",
            details=details,
        )
        self.existing_id = existing_id


class BiasTargetNotFoundError(BiasError):
    code = "BIAS_TARGET_NOT_FOUND"
    status_code = 404


class BiasTargetMismatchError(BiasError):
    code = "NOMINEE_AWARD_MISMATCH"
    status_code = 400
