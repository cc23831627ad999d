"""Schemas for cache consistency and maintenance endpoints."""

from typing import Any

from .common import ApiModel


class DiscrepancyResponse(ApiModel):
    nominee_id: str
    database_count: int
    cache_count: int
    difference: int
    corrupt: bool = False


class ConsistencyReportResponse(ApiModel):
    award_id: str
    consistent: bool
    cached: bool
    total_nominees: int
    database_total: int
    cache_total: int
    discrepancies: list[DiscrepancyResponse]


class AwardFailureResponse(ApiModel):
    award_id: str
    title: str
    error: str


class ConsistencySweepResponse(ApiModel):
    total_awards: int
    consistent_awards: int
    inconsistent_awards: int
    reports: list[ConsistencyReportResponse]
    errors: list[AwardFailureResponse]


class SyncResultResponse(ApiModel):
    award_id: str
    action: str
    message: str
    success: bool
    previous: ConsistencyReportResponse | None = None
    current: ConsistencyReportResponse | None = None


class SyncSweepResponse(ApiModel):
    total_awards: int
    synchronized: int
    already_consistent: int
    failed: int
    results: list[SyncResultResponse]
    errors: list[AwardFailureResponse]


class WarmResultResponse(ApiModel):
    total: int
    success: int
    failed: int
    errors: list[AwardFailureResponse]


class WarmAwardResponse(ApiModel):
    award_id: str
    warmed: bool


class ClearCacheResponse(ApiModel):
    award_id: str
    cleared: bool


class CacheStatusResponse(ApiModel):
    """Health of the cache and the components built on it."""

    cache: dict[str, Any]
    breakers: dict[str, dict[str, Any]]
    tally_updates: dict[str, Any]
    locks: dict[str, Any]
    sync_worker: dict[str, Any] | None = None
