"""Pydantic schemas for API request/response models."""

from datetime import datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


# ============================================================================
# Batch schemas
# ============================================================================


class BatchCreate(BaseModel):
    """Schema for creating a batch."""

    period: str = Field(min_length=1, max_length=100)
    recipient_ids: list[int] | None = None


class BatchItemResponse(BaseModel):
    """Schema for batch item response."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    batch_id: int
    recipient_id: int
    amount: Decimal
    status: str
    gateway_reference: str | None = None
    error_message: str | None = None
    processed_at: datetime | None = None
    created_at: datetime
    updated_at: datetime


class BatchResponse(BaseModel):
    """Schema for batch response."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    period: str
    total_amount: Decimal
    item_count: int
    status: str
    completed_count: int
    failed_count: int
    gateway_batch_reference: str | None = None
    processed_at: datetime | None = None
    created_at: datetime
    updated_at: datetime


class BatchDetailResponse(BatchResponse):
    """Batch with its items."""

    items: list[BatchItemResponse]


class BatchListResponse(BaseModel):
    """Schema for listing batches."""

    items: list[BatchResponse]
    limit: int
    offset: int


class StatusSummary(BaseModel):
    """Per-status item counts."""

    model_config = ConfigDict(from_attributes=True)

    total: int
    completed: int
    failed: int
    pending: int
    processing: int


class BatchStatusResponse(BaseModel):
    """Batch, items and live counts."""

    batch: BatchResponse
    items: list[BatchItemResponse]
    summary: StatusSummary


# ============================================================================
# Processing schemas
# ============================================================================


class JobResponse(BaseModel):
    """Schema for a queued processing job."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    batch_id: int
    kind: str
    status: str
    attempts: int
    max_attempts: int
    next_run_at: datetime


class ReconciliationResponse(BaseModel):
    """Reconciliation counts."""

    updated: int
    errors: int
    total: int


class AuthorizeRequest(BaseModel):
    """Schema for authorizing a gateway batch."""

    reference: str = Field(min_length=1)
    authorization_code: str = Field(min_length=1)
    batch_id: int | None = None


class AuthorizeResponse(BaseModel):
    """Result of a batch authorization."""

    reference: str
    batch_status: str
    message: str
    backfilled: int = 0
    reconciliation: ReconciliationResponse | None = None
    follow_up_error: str | None = None


# ============================================================================
# Gateway schemas
# ============================================================================


class TransactionStatusResponse(BaseModel):
    """Gateway view of one transaction."""

    model_config = ConfigDict(from_attributes=True)

    reference: str
    status: str
    gateway_reference: str | None = None
    description: str | None = None
    amount: Decimal | None = None


class BalanceResponse(BaseModel):
    """Source wallet balance."""

    model_config = ConfigDict(from_attributes=True)

    available_balance: Decimal
    ledger_balance: Decimal
    account_number: str


class WebhookResponse(BaseModel):
    """Acknowledgement returned to the gateway."""

    received: bool = True
    outcome: str


# ============================================================================
# Error schemas
# ============================================================================


class ErrorResponse(BaseModel):
    """Schema for error responses."""

    detail: str
    code: str | None = None
    errors: list[dict[str, Any]] | None = None
