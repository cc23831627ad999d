"""Schemas for administrator vote bias endpoints."""

from datetime import datetime

from pydantic import Field

from .common import ApiModel


class BiasCreate(ApiModel):
    """Schema for creating an active bias entry."""

    award_id: str
    nominee_id: str
    bias_amount: int = Field(..., description="Signed adjustment added to the organic count")
    reason: str


class BiasUpdate(ApiModel):
    """Partial update of an active entry; at least one field is required."""

    bias_amount: int | None = None
    reason: str | None = None


class BiasDeactivate(ApiModel):
    reason: str | None = None


class BiasResponse(ApiModel):
    """A bias entry with its audit fields."""

    id: str
    award_id: str
    nominee_id: str
    bias_amount: int
    reason: str
    is_active: bool
    applied_by: str
    applied_at: datetime
    updated_by: str | None = None
    updated_at: datetime | None = None
    deactivated_by: str | None = None
    deactivated_at: datetime | None = None
    deactivation_reason: str | None = None


class BiasListResponse(ApiModel):
    entries: list[BiasResponse]
    limit: int
    offset: int


class AwardBiasTotalResponse(ApiModel):
    award_id: str
    award_title: str
    total_bias: int
    bias_count: int


class BiasStatisticsResponse(ApiModel):
    total_active: int
    total_inactive: int
    top_awards: list[AwardBiasTotalResponse]
