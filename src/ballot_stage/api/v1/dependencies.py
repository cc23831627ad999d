"""Shared API dependencies for caller identity and service construction."""

from typing import Annotated

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.orm import Session

from ballot_stage.db.session import get_db
from ballot_stage.repositories import BiasStore, VoteStore
from ballot_stage.services.bias_service import BiasService
from ballot_stage.services.cache import CacheAdapter, get_cache_adapter
from ballot_stage.services.circuit_breaker import CircuitBreaker, get_database_breaker
from ballot_stage.services.locks import LockManager, get_lock_manager
from ballot_stage.services.tally_updates import TallyUpdateQueue, get_tally_update_queue
from ballot_stage.services.vote_counts import VoteCountService
from ballot_stage.services.vote_submission import VoteSubmissionService

# Type alias for database session dependency
SessionDep = Annotated[Session, Depends(get_db)]


def get_voter_id(
    x_voter_id: Annotated[str | None, Header(description="Authenticated voter identity")] = None,
) -> str:
    """Return the voter identity established by the upstream authenticator.

    Raises:
        HTTPException: If the request carries no voter identity.
    """
    if not x_voter_id or not x_voter_id.strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Voter identity required",
        )
    return x_voter_id.strip()


def get_admin_id(
    x_admin_id: Annotated[str | None, Header(description="Authenticated administrator")] = None,
) -> str:
    """Return the administrator identity established by the upstream authenticator."""
    if not x_admin_id or not x_admin_id.strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Administrator identity required",
        )
    return x_admin_id.strip()


def get_identity_verified(
    x_identity_verified: Annotated[bool, Header()] = False,
) -> bool:
    """Return whether the authenticator verified the voter's identity."""
    return x_identity_verified


def get_cache_dep() -> CacheAdapter:
    """Return the shared cache adapter."""
    return get_cache_adapter()


def get_lock_manager_dep() -> LockManager:
    """Return the shared lock manager."""
    return get_lock_manager()


def get_tally_queue_dep() -> TallyUpdateQueue:
    """Return the shared tally update queue."""
    return get_tally_update_queue()


def get_database_breaker_dep() -> CircuitBreaker:
    """Return the breaker guarding the durable store."""
    return get_database_breaker()


VoterIdDep = Annotated[str, Depends(get_voter_id)]
AdminIdDep = Annotated[str, Depends(get_admin_id)]
IdentityVerifiedDep = Annotated[bool, Depends(get_identity_verified)]
CacheDep = Annotated[CacheAdapter, Depends(get_cache_dep)]
LockManagerDep = Annotated[LockManager, Depends(get_lock_manager_dep)]
TallyQueueDep = Annotated[TallyUpdateQueue, Depends(get_tally_queue_dep)]
DatabaseBreakerDep = Annotated[CircuitBreaker, Depends(get_database_breaker_dep)]


def get_vote_submission_service(
    db: SessionDep,
    tally_updates: TallyQueueDep,
    breaker: DatabaseBreakerDep,
) -> VoteSubmissionService:
    return VoteSubmissionService(VoteStore(db), tally_updates, breaker)


def get_vote_count_service(
    db: SessionDep,
    cache: CacheDep,
    breaker: DatabaseBreakerDep,
) -> VoteCountService:
    return VoteCountService(VoteStore(db), BiasStore(db), cache, breaker)


def get_bias_service(
    db: SessionDep,
    counts: Annotated[VoteCountService, Depends(get_vote_count_service)],
) -> BiasService:
    return BiasService(BiasStore(db), VoteStore(db), counts)


VoteSubmissionServiceDep = Annotated[VoteSubmissionService, Depends(get_vote_submission_service)]
VoteCountServiceDep = Annotated[VoteCountService, Depends(get_vote_count_service)]
BiasServiceDep = Annotated[BiasService, Depends(get_bias_service)]
