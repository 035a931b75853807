"""Disbursement gateway adapters."""

from __future__ import annotations

from disbursement_engine.config import GatewayConfig
from disbursement_engine.gateway.base import (
    FAILED_STATUSES,
    PAID_STATUSES,
    AuthorizationResult,
    Balance,
    BatchDetails,
    BatchSubmissionResult,
    DisbursementGateway,
    TransactionStatus,
    TransferAcceptance,
    TransferRequest,
)
from disbursement_engine.gateway.monnify import MonnifyGateway, validate_transfers
from disbursement_engine.gateway.stub import StubGateway


def build_gateway(config: GatewayConfig) -> DisbursementGateway:
    """Create the gateway adapter selected by config.mode."""
    if config.mode == "live":
        return MonnifyGateway(config)
    return StubGateway(account_number=config.contract_code or "STUB0000001")


__all__ = [
    "PAID_STATUSES",
    "FAILED_STATUSES",
    "AuthorizationResult",
    "Balance",
    "BatchDetails",
    "BatchSubmissionResult",
    "DisbursementGateway",
    "MonnifyGateway",
    "StubGateway",
    "TransactionStatus",
    "TransferAcceptance",
    "TransferRequest",
    "build_gateway",
    "validate_transfers",
]
