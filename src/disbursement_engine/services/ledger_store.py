"""Ledger store for batches and items.

Every method runs in its own short transaction, so whatever it writes is
durable before the caller moves on (in particular before a gateway call).
Status-changing writes are conditional UPDATEs; the WHERE clause on the
current status is the only concurrency control between the worker, the
webhook handler and manual reconciliation.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from decimal import Decimal
from enum import Enum
from typing import Any, Sequence

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from disbursement_engine.errors import (
    AlreadyFinalizedError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from disbursement_engine.models import Batch, BatchItem
from disbursement_engine.services.state_machine import (
    PROCESSED_BATCH_STATUSES,
    AggregateCounts,
    BatchStatus,
    ItemStateMachine,
    ItemStatus,
    derive_batch_status,
)

logger = logging.getLogger(__name__)


class UpdateOutcome(str, Enum):
    """Result of a conditional write."""

    APPLIED = "applied"
    ALREADY_FINALIZED = "already_finalized"
    CONFLICT = "conflict"  # row exists but its state no longer matches
    NOT_FOUND = "not_found"


@dataclass(frozen=True)
class ItemPatch:
    """Mutable item fields. None means leave unchanged."""

    status: str | None = None
    gateway_reference: str | None = None
    error_message: str | None = None

    def values(self) -> dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None}


@dataclass(frozen=True)
class BatchPatch:
    """Mutable batch fields. None means leave unchanged."""

    status: str | None = None
    completed_count: int | None = None
    failed_count: int | None = None
    gateway_batch_reference: str | None = None

    def values(self) -> dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None}


@dataclass(frozen=True)
class NewItem:
    """Item to insert with a new batch."""

    recipient_id: int
    amount: Decimal


@dataclass(frozen=True)
class AggregateResult:
    """Outcome of an aggregate recompute."""

    batch_id: int
    status: BatchStatus
    counts: AggregateCounts


class LedgerStore:
    """Durable storage of batches and their items."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    # ------------------------------------------------------------------
    # Creation and queries
    # ------------------------------------------------------------------

    async def create_batch_with_items(self, period: str, items: Sequence[NewItem]) -> Batch:
        """Insert a PENDING batch and its PENDING items atomically."""
        if not period or not period.strip():
            raise ValidationError("Batch period is required")
        if not items:
            raise ValidationError("A batch needs at least one item")
        for item in items:
            if item.amount is None or item.amount <= 0:
                raise ValidationError(
                    f"Amount for recipient {item.recipient_id} must be positive"
                )

        async with self._session_factory.begin() as session:
            batch = Batch(
                period=period.strip(),
                total_amount=sum((i.amount for i in items), Decimal("0")),
                item_count=len(items),
                status=BatchStatus.PENDING.value,
                completed_count=0,
                failed_count=0,
            )
            batch.items = [
                BatchItem(
                    recipient_id=i.recipient_id,
                    amount=i.amount,
                    status=ItemStatus.PENDING.value,
                )
                for i in items
            ]
            session.add(batch)
            await session.flush()
            batch_id = batch.id

        logger.info("Created batch %d (%s) with %d items", batch_id, period, len(items))
        return await self.require_batch(batch_id, with_items=True)

    async def get_batch(self, batch_id: int, *, with_items: bool = False) -> Batch | None:
        """Load a batch, optionally with its items."""
        stmt = select(Batch).where(Batch.id == batch_id)
        if with_items:
            stmt = stmt.options(selectinload(Batch.items))
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return result.scalar_one_or_none()

    async def require_batch(self, batch_id: int, *, with_items: bool = False) -> Batch:
        """Load a batch or raise NotFoundError."""
        batch = await self.get_batch(batch_id, with_items=with_items)
        if batch is None:
            raise NotFoundError("Batch", batch_id)
        return batch

    async def list_batches(self, *, limit: int = 100, offset: int = 0) -> list[Batch]:
        """Batches, newest first."""
        stmt = (
            select(Batch)
            .order_by(Batch.created_at.desc(), Batch.id.desc())
            .limit(limit)
            .offset(offset)
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def list_items(
        self,
        batch_id: int,
        *,
        with_reference: bool | None = None,
    ) -> list[BatchItem]:
        """Items of a batch in id order.

        Args:
            batch_id: Owning batch.
            with_reference: True for items with a gateway reference only,
                False for items without one, None for all.
        """
        stmt = select(BatchItem).where(BatchItem.batch_id == batch_id)
        if with_reference is True:
            stmt = stmt.where(BatchItem.gateway_reference.is_not(None))
        elif with_reference is False:
            stmt = stmt.where(BatchItem.gateway_reference.is_(None))
        stmt = stmt.order_by(BatchItem.id)

        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def get_item(self, item_id: int) -> BatchItem | None:
        async with self._session_factory() as session:
            return await session.get(BatchItem, item_id)

    # ------------------------------------------------------------------
    # Item writes
    # ------------------------------------------------------------------

    async def mark_item_processing(self, item_id: int) -> UpdateOutcome:
        """PENDING → PROCESSING, or re-mark a PROCESSING item that has no reference."""
        return await self._update_item(
            item_id,
            ItemPatch(status=ItemStatus.PROCESSING.value),
            (BatchItem.status == ItemStatus.PENDING.value)
            | (
                (BatchItem.status == ItemStatus.PROCESSING.value)
                & BatchItem.gateway_reference.is_(None)
            ),
        )

    async def record_gateway_reference(self, item_id: int, gateway_reference: str) -> UpdateOutcome:
        """Store the gateway reference once, while the item is PROCESSING."""
        if not gateway_reference:
            raise ValidationError("Gateway reference is required")
        return await self._update_item(
            item_id,
            ItemPatch(gateway_reference=gateway_reference),
            (BatchItem.status == ItemStatus.PROCESSING.value)
            & BatchItem.gateway_reference.is_(None),
            target_status=ItemStatus.PROCESSING.value,
        )

    async def finalize_item(
        self,
        item_id: int,
        status: ItemStatus,
        *,
        error_message: str | None = None,
        gateway_reference: str | None = None,
    ) -> UpdateOutcome:
        """PROCESSING → COMPLETED or FAILED.

        A gateway reference is filled in only if the item has none yet.
        processed_at is stamped by this write and never again.
        """
        if not ItemStateMachine.is_terminal(status):
            raise ValidationError(f"Cannot finalize item with non-terminal status {status}")

        patch = ItemPatch(
            status=ItemStatus(status).value,
            error_message=error_message if status == ItemStatus.FAILED else None,
        )
        extra: dict[str, Any] = {"processed_at": func.now()}
        if gateway_reference:
            extra["gateway_reference"] = func.coalesce(
                BatchItem.gateway_reference, gateway_reference
            )

        return await self._update_item(
            item_id,
            patch,
            BatchItem.status == ItemStatus.PROCESSING.value,
            extra_values=extra,
        )

    async def _update_item(
        self,
        item_id: int,
        patch: ItemPatch,
        condition: Any,
        *,
        target_status: str | None = None,
        extra_values: dict[str, Any] | None = None,
    ) -> UpdateOutcome:
        values = {**patch.values(), **(extra_values or {})}
        stmt = (
            update(BatchItem)
            .where(BatchItem.id == item_id, condition)
            .values(**values)
            .execution_options(synchronize_session=False)
        )

        async with self._session_factory.begin() as session:
            result = await session.execute(stmt)
            if result.rowcount:
                return UpdateOutcome.APPLIED

            current = (
                await session.execute(
                    select(BatchItem.status).where(BatchItem.id == item_id)
                )
            ).scalar_one_or_none()

        if current is None:
            return UpdateOutcome.NOT_FOUND

        try:
            ItemStateMachine.validate_transition(
                item_id, current, target_status or patch.status or current
            )
        except AlreadyFinalizedError:
            return UpdateOutcome.ALREADY_FINALIZED
        except InvalidTransitionError as e:
            logger.debug("Item %d write skipped: %s", item_id, e)
        return UpdateOutcome.CONFLICT

    # ------------------------------------------------------------------
    # Batch writes
    # ------------------------------------------------------------------

    async def mark_batch_processing(self, batch_id: int) -> UpdateOutcome:
        """Processing-start transition: PENDING → PROCESSING."""
        return await self._update_batch(
            batch_id,
            BatchPatch(status=BatchStatus.PROCESSING.value),
            Batch.status == BatchStatus.PENDING.value,
        )

    async def set_gateway_batch_reference(self, batch_id: int, reference: str) -> UpdateOutcome:
        return await self._update_batch(
            batch_id, BatchPatch(gateway_batch_reference=reference), None
        )

    async def _update_batch(
        self,
        batch_id: int,
        patch: BatchPatch,
        condition: Any,
        *,
        extra_values: dict[str, Any] | None = None,
    ) -> UpdateOutcome:
        stmt = update(Batch).where(Batch.id == batch_id)
        if condition is not None:
            stmt = stmt.where(condition)
        stmt = stmt.values(**patch.values(), **(extra_values or {})).execution_options(
            synchronize_session=False
        )

        async with self._session_factory.begin() as session:
            result = await session.execute(stmt)
            if result.rowcount:
                return UpdateOutcome.APPLIED
            exists = (
                await session.execute(select(Batch.id).where(Batch.id == batch_id))
            ).scalar_one_or_none()

        return UpdateOutcome.CONFLICT if exists is not None else UpdateOutcome.NOT_FOUND

    async def recompute_aggregate(self, batch_id: int) -> AggregateResult:
        """Recount items and write the derived status onto the batch.

        Reads every item row fresh in a single query; never trusts the
        stored counters. Safe to run redundantly and concurrently.

        Raises:
            NotFoundError: batch does not exist
        """
        async with self._session_factory.begin() as session:
            exists = (
                await session.execute(select(Batch.id).where(Batch.id == batch_id))
            ).scalar_one_or_none()
            if exists is None:
                raise NotFoundError("Batch", batch_id)

            statuses = (
                await session.execute(
                    select(BatchItem.status).where(BatchItem.batch_id == batch_id)
                )
            ).scalars().all()

            counts = AggregateCounts.from_statuses(statuses)
            status = derive_batch_status(counts.completed, counts.failed, counts.total)

            patch = BatchPatch(
                status=status.value,
                completed_count=counts.completed,
                failed_count=counts.failed,
            )
            processed_at = (
                func.coalesce(Batch.processed_at, func.now())
                if status.value in PROCESSED_BATCH_STATUSES
                else Batch.processed_at
            )

            await session.execute(
                update(Batch)
                .where(Batch.id == batch_id)
                .values(**patch.values(), processed_at=processed_at)
                .execution_options(synchronize_session=False)
            )

        logger.debug(
            "Batch %d recomputed: %s (%d completed, %d failed of %d)",
            batch_id,
            status.value,
            counts.completed,
            counts.failed,
            counts.total,
        )
        return AggregateResult(batch_id=batch_id, status=status, counts=counts)
