"""Batch API endpoints."""

from typing import Annotated

from fastapi import APIRouter, Path, Query, status

from disbursement_engine.api.dependencies import Service
from disbursement_engine.api.schemas import (
    AuthorizeRequest,
    AuthorizeResponse,
    BatchCreate,
    BatchDetailResponse,
    BatchItemResponse,
    BatchListResponse,
    BatchResponse,
    BatchStatusResponse,
    ErrorResponse,
    JobResponse,
    ReconciliationResponse,
    StatusSummary,
)

router = APIRouter(prefix="/batches", tags=["batches"])


# ============================================================================
# Batch CRUD
# ============================================================================


@router.post(
    "",
    response_model=BatchDetailResponse,
    status_code=status.HTTP_201_CREATED,
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
async def create_batch(service: Service, payload: BatchCreate) -> BatchDetailResponse:
    """Create a PENDING batch for the given (or all active) recipients."""
    batch = await service.create_batch(payload.period, payload.recipient_ids)
    return BatchDetailResponse.model_validate(batch)


@router.get("", response_model=BatchListResponse)
async def list_batches(
    service: Service,
    limit: Annotated[int, Query(ge=1, le=100)] = 20,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> BatchListResponse:
    """List batches, newest first."""
    batches = await service.list_batches(limit=limit, offset=offset)
    return BatchListResponse(
        items=[BatchResponse.model_validate(b) for b in batches],
        limit=limit,
        offset=offset,
    )


@router.post(
    "/authorize",
    response_model=AuthorizeResponse,
    responses={400: {"model": ErrorResponse}, 502: {"model": ErrorResponse}},
)
async def authorize_batch(service: Service, payload: AuthorizeRequest) -> AuthorizeResponse:
    """Authorize a submitted gateway batch with the operator's OTP."""
    outcome = await service.authorize_batch(
        payload.reference,
        payload.authorization_code,
        batch_id=payload.batch_id,
    )
    reconciliation = (
        ReconciliationResponse(**outcome.reconciliation.as_dict())
        if outcome.reconciliation is not None
        else None
    )
    return AuthorizeResponse(
        reference=outcome.authorization.batch_reference,
        batch_status=outcome.authorization.batch_status,
        message=outcome.authorization.message,
        backfilled=outcome.backfilled,
        reconciliation=reconciliation,
        follow_up_error=outcome.follow_up_error,
    )


@router.get(
    "/{batch_id}",
    response_model=BatchDetailResponse,
    responses={404: {"model": ErrorResponse}},
)
async def get_batch(
    service: Service,
    batch_id: Annotated[int, Path()],
) -> BatchDetailResponse:
    """Get a batch with its items."""
    batch = await service.get_batch(batch_id)
    return BatchDetailResponse.model_validate(batch)


@router.get(
    "/{batch_id}/status",
    response_model=BatchStatusResponse,
    responses={404: {"model": ErrorResponse}},
)
async def get_batch_status(
    service: Service,
    batch_id: Annotated[int, Path()],
) -> BatchStatusResponse:
    """Batch status with per-status item counts."""
    report = await service.get_status(batch_id)
    return BatchStatusResponse(
        batch=BatchResponse.model_validate(report.batch),
        items=[BatchItemResponse.model_validate(i) for i in report.items],
        summary=StatusSummary.model_validate(report.summary),
    )


# ============================================================================
# Processing
# ============================================================================


@router.post(
    "/{batch_id}/process",
    response_model=JobResponse,
    status_code=status.HTTP_202_ACCEPTED,
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
async def process_batch(
    service: Service,
    batch_id: Annotated[int, Path()],
    force: Annotated[bool, Query()] = False,
) -> JobResponse:
    """Queue the batch for disbursement by the workers."""
    job = await service.start_processing(batch_id, force=force)
    return JobResponse.model_validate(job)


@router.post(
    "/{batch_id}/reconcile",
    response_model=ReconciliationResponse,
    responses={404: {"model": ErrorResponse}},
)
async def reconcile_batch(
    service: Service,
    batch_id: Annotated[int, Path()],
) -> ReconciliationResponse:
    """Poll the gateway for every referenced item of the batch."""
    summary = await service.reconcile(batch_id)
    return ReconciliationResponse(**summary.as_dict())
