"""Gateway pass-through endpoints."""

from typing import Annotated

from fastapi import APIRouter, Path

from disbursement_engine.api.dependencies import Service
from disbursement_engine.api.schemas import (
    BalanceResponse,
    ErrorResponse,
    TransactionStatusResponse,
)

router = APIRouter(tags=["gateway"])


@router.get(
    "/transactions/{reference}/status",
    response_model=TransactionStatusResponse,
    responses={502: {"model": ErrorResponse}},
)
async def get_transaction_status(
    service: Service,
    reference: Annotated[str, Path(min_length=1)],
) -> TransactionStatusResponse:
    """Ask the gateway for the status of one transaction."""
    result = await service.check_transaction_status(reference)
    return TransactionStatusResponse.model_validate(result)


@router.get(
    "/gateway/balance",
    response_model=BalanceResponse,
    responses={502: {"model": ErrorResponse}},
)
async def get_balance(service: Service) -> BalanceResponse:
    """Source wallet balance."""
    balance = await service.get_balance()
    return BalanceResponse.model_validate(balance)
