"""Administrator endpoints for vote bias entries."""

from typing import Annotated, Literal

from fastapi import APIRouter, Query, status

from ballot_stage.schemas.bias import (
    BiasCreate,
    BiasDeactivate,
    BiasListResponse,
    BiasResponse,
    BiasStatisticsResponse,
    BiasUpdate,
)
from ballot_stage.schemas.common import ErrorResponse

from ..dependencies import AdminIdDep, BiasServiceDep

router = APIRouter(prefix="/admin/vote-bias", tags=["vote-bias"])

_STATUS_FILTERS: dict[str, bool | None] = {"active": True, "inactive": False, "all": None}


@router.get("/", response_model=BiasListResponse)
def list_bias_entries(
    _admin: AdminIdDep,
    service: BiasServiceDep,
    award_id: Annotated[str | None, Query(alias="awardId")] = None,
    nominee_id: Annotated[str | None, Query(alias="nomineeId")] = None,
    entry_status: Annotated[Literal["active", "inactive", "all"], Query(alias="status")] = "active",
    limit: Annotated[int, Query(ge=1, le=100)] = 20,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> BiasListResponse:
    """List bias entries, most recently applied first."""
    entries = service.find(
        award_id=award_id,
        nominee_id=nominee_id,
        active=_STATUS_FILTERS[entry_status],
        limit=limit,
        offset=offset,
    )
    return BiasListResponse(
        entries=[BiasResponse.model_validate(entry) for entry in entries],
        limit=limit,
        offset=offset,
    )


@router.get("/statistics", response_model=BiasStatisticsResponse)
def bias_statistics(
    _admin: AdminIdDep,
    service: BiasServiceDep,
    top: Annotated[int, Query(ge=1, le=100)] = 10,
) -> BiasStatisticsResponse:
    return BiasStatisticsResponse.model_validate(service.statistics(top))


@router.post(
    "/",
    status_code=status.HTTP_201_CREATED,
    response_model=BiasResponse,
    responses={
        status.HTTP_400_BAD_REQUEST: {"model": ErrorResponse},
        status.HTTP_404_NOT_FOUND: {"model": ErrorResponse},
        status.HTTP_409_CONFLICT: {"model": ErrorResponse},
    },
)
def create_bias(
    payload: BiasCreate,
    admin_id: AdminIdDep,
    service: BiasServiceDep,
) -> BiasResponse:
    """Apply a signed adjustment to a nominee's vote count."""
    entry = service.create(
        award_id=payload.award_id,
        nominee_id=payload.nominee_id,
        bias_amount=payload.bias_amount,
        reason=payload.reason,
        applied_by=admin_id,
    )
    return BiasResponse.model_validate(entry)


@router.put("/{bias_id}", response_model=BiasResponse)
def update_bias(
    bias_id: str,
    payload: BiasUpdate,
    admin_id: AdminIdDep,
    service: BiasServiceDep,
) -> BiasResponse:
    """Change the amount or reason of an active entry."""
    entry = service.update(
        bias_id,
        updated_by=admin_id,
        bias_amount=payload.bias_amount,
        reason=payload.reason,
    )
    return BiasResponse.model_validate(entry)


@router.delete("/{bias_id}", response_model=BiasResponse)
def deactivate_bias(
    bias_id: str,
    admin_id: AdminIdDep,
    service: BiasServiceDep,
    payload: BiasDeactivate | None = None,
) -> BiasResponse:
    """Deactivate an entry; it stays on record for auditing."""
    entry = service.deactivate(
        bias_id,
        deactivated_by=admin_id,
        reason=payload.reason if payload is not None else None,
    )
    return BiasResponse.model_validate(entry)
