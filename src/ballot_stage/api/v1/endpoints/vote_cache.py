"""Administrative endpoints for the cached vote tallies."""

from typing import Annotated

from fastapi import APIRouter, Query, Request

from ballot_stage.schemas.vote_cache import (
    CacheStatusResponse,
    ClearCacheResponse,
    ConsistencyReportResponse,
    ConsistencySweepResponse,
    SyncResultResponse,
    SyncSweepResponse,
    WarmAwardResponse,
    WarmResultResponse,
)
from ballot_stage.services.cache_sync import CacheSyncWorker
from ballot_stage.services.circuit_breaker import breaker_states

from ..dependencies import (
    AdminIdDep,
    CacheDep,
    LockManagerDep,
    TallyQueueDep,
    VoteCountServiceDep,
)

router = APIRouter(prefix="/votes/cache", tags=["vote-cache"])

ForceRebuildQuery = Annotated[
    bool, Query(alias="forceRebuild", description="Rebuild even when already consistent")
]


@router.post("/warm", response_model=WarmResultResponse)
def warm_all(_admin: AdminIdDep, service: VoteCountServiceDep) -> WarmResultResponse:
    """Cache raw counts for every active award."""
    return WarmResultResponse.model_validate(service.warm_all())


@router.post("/warm/{award_id}", response_model=WarmAwardResponse)
def warm_award(
    award_id: str, _admin: AdminIdDep, service: VoteCountServiceDep
) -> WarmAwardResponse:
    return WarmAwardResponse(award_id=award_id, warmed=service.warm_award(award_id))


@router.delete("/{award_id}", response_model=ClearCacheResponse)
def clear_award(
    award_id: str, _admin: AdminIdDep, service: VoteCountServiceDep
) -> ClearCacheResponse:
    """Drop an award's cached tally; the next read rebuilds it."""
    return ClearCacheResponse(award_id=award_id, cleared=service.clear(award_id))


@router.get("/consistency", response_model=ConsistencySweepResponse)
def verify_all(_admin: AdminIdDep, service: VoteCountServiceDep) -> ConsistencySweepResponse:
    return ConsistencySweepResponse.model_validate(service.verify_all())


@router.get("/consistency/{award_id}", response_model=ConsistencyReportResponse)
def verify_award(
    award_id: str, _admin: AdminIdDep, service: VoteCountServiceDep
) -> ConsistencyReportResponse:
    """Compare an award's cached counts with the durable store."""
    return ConsistencyReportResponse.model_validate(service.verify_consistency(award_id))


@router.post("/sync", response_model=SyncSweepResponse)
def synchronize_all(
    _admin: AdminIdDep,
    service: VoteCountServiceDep,
    force_rebuild: ForceRebuildQuery = False,
) -> SyncSweepResponse:
    return SyncSweepResponse.model_validate(service.synchronize_all(force_rebuild))


@router.post("/sync/{award_id}", response_model=SyncResultResponse)
def synchronize_award(
    award_id: str,
    _admin: AdminIdDep,
    service: VoteCountServiceDep,
    force_rebuild: ForceRebuildQuery = False,
) -> SyncResultResponse:
    """Rebuild an award's cached tally if it drifted, or unconditionally when forced."""
    return SyncResultResponse.model_validate(service.synchronize(award_id, force_rebuild))


@router.get("/status", response_model=CacheStatusResponse)
def cache_status(
    request: Request,
    _admin: AdminIdDep,
    cache: CacheDep,
    locks: LockManagerDep,
    tally_updates: TallyQueueDep,
) -> CacheStatusResponse:
    """Report cache backend, breaker, lock and background worker health."""
    worker: CacheSyncWorker | None = getattr(request.app.state, "cache_sync_worker", None)
    sync_worker = None
    if worker is not None:
        report = worker.last_report
        sync_worker = {
            "running": worker.running,
            "interval_seconds": worker.interval,
            "auto_fix": worker.auto_fix,
            "last_run": report.finished_at.isoformat() if report and report.finished_at else None,
            "last_fixed": report.fixed if report else 0,
            "last_errors": len(report.errors) if report else 0,
        }
    return CacheStatusResponse(
        cache=cache.status(),
        breakers=breaker_states(),
        tally_updates=tally_updates.metrics.as_dict(),
        locks=locks.metrics.as_dict(),
        sync_worker=sync_worker,
    )
