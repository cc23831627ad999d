# src/ballot_stage/api/v1/endpoints/votes.py
"""Vote submission and vote count endpoints."""

from fastapi import APIRouter, Request, status

from ballot_stage.schemas.common import ErrorResponse
from ballot_stage.schemas.vote import (
    NomineeTallyResponse,
    OriginalCountResponse,
    OriginalCountsResponse,
    VoteCheckResponse,
    VoteCountsResponse,
    VoteCreate,
    VoteHistoryItem,
    VoteHistoryResponse,
    VoteResponse,
    VoteSubmitResponse,
)
from ballot_stage.services.vote_submission import VoteRequest

from ..dependencies import (
    IdentityVerifiedDep,
    VoteCountServiceDep,
    VoterIdDep,
    VoteSubmissionServiceDep,
)

router = APIRouter(prefix="/votes", tags=["votes"])

_SUBMIT_ERRORS: dict[int | str, dict[str, object]] = {
    status.HTTP_400_BAD_REQUEST: {"model": ErrorResponse},
    status.HTTP_404_NOT_FOUND: {"model": ErrorResponse},
    status.HTTP_409_CONFLICT: {"model": ErrorResponse},
    status.HTTP_503_SERVICE_UNAVAILABLE: {"model": ErrorResponse},
}


@router.post(
    "/",
    status_code=status.HTTP_201_CREATED,
    response_model=VoteSubmitResponse,
    responses=_SUBMIT_ERRORS,
)
def submit_vote(
    vote_data: VoteCreate,
    request: Request,
    voter_id: VoterIdDep,
    identity_verified: IdentityVerifiedDep,
    service: VoteSubmissionServiceDep,
) -> VoteSubmitResponse:
    """Cast the caller's ballot for a nominee."""
    receipt = service.submit_vote(
        VoteRequest(
            voter_id=voter_id,
            award_id=vote_data.award_id,
            nominee_id=vote_data.nominee_id,
            identity_verified=identity_verified,
            origin_address=request.client.host if request.client else None,
        )
    )
    return VoteSubmitResponse(vote=VoteResponse.model_validate(receipt))


@router.get("/my-history", response_model=VoteHistoryResponse)
def my_voting_history(
    voter_id: VoterIdDep,
    service: VoteSubmissionServiceDep,
) -> VoteHistoryResponse:
    """List the caller's ballots, newest first."""
    history = service.voting_history(voter_id)
    return VoteHistoryResponse(
        votes=[VoteHistoryItem.model_validate(entry) for entry in history],
        total=len(history),
    )


@router.get("/check/{award_id}", response_model=VoteCheckResponse)
def check_vote(
    award_id: str,
    voter_id: VoterIdDep,
    service: VoteSubmissionServiceDep,
) -> VoteCheckResponse:
    """Tell the caller whether, and for whom, they voted in an award."""
    receipt = service.check_vote(voter_id, award_id)
    return VoteCheckResponse(
        award_id=award_id,
        has_voted=receipt is not None,
        vote=VoteResponse.model_validate(receipt) if receipt is not None else None,
    )


@router.get(
    "/counts/{award_id}",
    response_model=VoteCountsResponse,
    responses={status.HTTP_503_SERVICE_UNAVAILABLE: {"model": ErrorResponse}},
)
def get_vote_counts(award_id: str, service: VoteCountServiceDep) -> VoteCountsResponse:
    """Return nominee totals for an award, including administrator bias."""
    tallies = service.get_counts(award_id)
    return VoteCountsResponse(
        award_id=award_id,
        counts=[NomineeTallyResponse.model_validate(tally) for tally in tallies],
    )


@router.get("/counts/{award_id}/original", response_model=OriginalCountsResponse)
def get_original_vote_counts(
    award_id: str,
    service: VoteCountServiceDep,
) -> OriginalCountsResponse:
    """Return organic nominee totals for an award, without bias."""
    counts = service.get_original_counts(award_id)
    return OriginalCountsResponse(
        award_id=award_id,
        counts=[OriginalCountResponse.model_validate(row) for row in counts],
    )
