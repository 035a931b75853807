"""Batch and item status state machine with transition validation."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Iterable

from disbursement_engine.errors import AlreadyFinalizedError, InvalidTransitionError


class ItemStatus(str, Enum):
    """Batch item status values."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class BatchStatus(str, Enum):
    """Batch status values. PARTIALLY_COMPLETED exists only at batch level."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    PARTIALLY_COMPLETED = "partially_completed"


TERMINAL_ITEM_STATUSES = frozenset({ItemStatus.COMPLETED.value, ItemStatus.FAILED.value})

# Batch statuses that stamp processed_at the first time they are reached
PROCESSED_BATCH_STATUSES = frozenset(
    {BatchStatus.COMPLETED.value, BatchStatus.PARTIALLY_COMPLETED.value}
)


class ItemStateMachine:
    """State machine for batch item status transitions.

    Allowed transitions:
    - pending → processing
    - processing → processing (retry of a submission that never got a reference)
    - processing → completed
    - processing → failed
    - completed, failed: terminal
    """

    VALID_TRANSITIONS: dict[str, list[str]] = {
        ItemStatus.PENDING: [ItemStatus.PROCESSING],
        ItemStatus.PROCESSING: [
            ItemStatus.PROCESSING,
            ItemStatus.COMPLETED,
            ItemStatus.FAILED,
        ],
        ItemStatus.COMPLETED: [],
        ItemStatus.FAILED: [],
    }

    @classmethod
    def is_terminal(cls, status: str) -> bool:
        """Check if no further mutation is permitted."""
        return status in TERMINAL_ITEM_STATUSES

    @classmethod
    def can_transition(cls, from_status: str, to_status: str) -> bool:
        """Check if a transition is valid."""
        allowed = cls.VALID_TRANSITIONS.get(from_status, [])
        return to_status in allowed

    @classmethod
    def validate_transition(cls, item_id: int, from_status: str, to_status: str) -> None:
        """Validate a transition.

        Raises:
            AlreadyFinalizedError: the item is already terminal
            InvalidTransitionError: any other disallowed move
        """
        if cls.is_terminal(from_status):
            raise AlreadyFinalizedError(item_id, from_status)
        if not cls.can_transition(from_status, to_status):
            raise InvalidTransitionError(from_status, to_status)

    @classmethod
    def is_eligible_for_submission(cls, status: str, gateway_reference: str | None) -> bool:
        """Check if an item may be (re)submitted to the gateway.

        A PROCESSING item with a reference has been accepted by the gateway
        already; sending it again would pay twice.
        """
        if status == ItemStatus.PENDING:
            return True
        return status == ItemStatus.PROCESSING and gateway_reference is None


@dataclass(frozen=True)
class AggregateCounts:
    """Item status counts for one batch."""

    total: int
    completed: int
    failed: int
    pending: int
    processing: int

    @classmethod
    def from_statuses(cls, statuses: Iterable[str]) -> AggregateCounts:
        values = list(statuses)
        return cls(
            total=len(values),
            completed=sum(1 for s in values if s == ItemStatus.COMPLETED),
            failed=sum(1 for s in values if s == ItemStatus.FAILED),
            pending=sum(1 for s in values if s == ItemStatus.PENDING),
            processing=sum(1 for s in values if s == ItemStatus.PROCESSING),
        )


def derive_batch_status(completed: int, failed: int, total: int) -> BatchStatus:
    """Derive the aggregate batch status from item counts.

    Any completed item in a batch that is not fully completed makes the
    batch PARTIALLY_COMPLETED, whether the rest are failed or still open.
    """
    if total <= 0:
        return BatchStatus.PENDING
    if completed == total:
        return BatchStatus.COMPLETED
    if failed == total:
        return BatchStatus.FAILED
    if completed > 0 and (completed + failed < total or failed > 0):
        return BatchStatus.PARTIALLY_COMPLETED
    return BatchStatus.PROCESSING
