# src/ballot_stage/schemas/vote.py
"""Vote-related Pydantic schemas."""

from datetime import datetime

from pydantic import Field

from .common import ApiModel


class VoteCreate(ApiModel):
    """Schema for casting a ballot; the voter comes from the request identity."""

    award_id: str = Field(..., description="Award being voted on")
    nominee_id: str = Field(..., description="Nominee receiving the vote")


class VoteResponse(ApiModel):
    """A stored ballot."""

    vote_id: str
    voter_id: str
    award_id: str
    nominee_id: str
    identity_verified: bool
    created_at: datetime


class VoteSubmitResponse(ApiModel):
    success: bool = True
    vote: VoteResponse


class VoteCheckResponse(ApiModel):
    award_id: str
    has_voted: bool
    vote: VoteResponse | None = None


class VoteHistoryItem(ApiModel):
    vote_id: str
    award_id: str
    award_title: str
    nominee_id: str
    nominee_name: str
    created_at: datetime


class VoteHistoryResponse(ApiModel):
    votes: list[VoteHistoryItem]
    total: int


class NomineeTallyResponse(ApiModel):
    """Nominee total with its organic and administrative parts."""

    nominee_id: str
    nominee_name: str
    count: int
    original_count: int
    bias_amount: int = 0
    has_bias: bool = False
    bias_reason: str | None = None


class VoteCountsResponse(ApiModel):
    award_id: str
    counts: list[NomineeTallyResponse]


class OriginalCountResponse(ApiModel):
    nominee_id: str
    nominee_name: str
    count: int


class OriginalCountsResponse(ApiModel):
    award_id: str
    counts: list[OriginalCountResponse]
