"""Disbursement facade - the calls the HTTP layer and CLI make.

Usage:
    service = DisbursementService(store, directory, gateway, orchestrator,
                                  reconciler, receiver, queue)

    # Create a batch for all active recipients
    batch = await service.create_batch("2026-10")

    # Hand it to the workers
    job = await service.start_processing(batch.id)

    # Later: authorize the gateway batch with the OTP the operator received
    outcome = await service.authorize_batch(batch.gateway_batch_reference, "123456",
                                            batch_id=batch.id)

The facade holds no state of its own. Everything it knows comes from the
ledger store or the gateway at call time.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Sequence

from disbursement_engine.errors import NotFoundError, ValidationError
from disbursement_engine.gateway.base import (
    AuthorizationResult,
    Balance,
    DisbursementGateway,
    TransactionStatus,
)
from disbursement_engine.models import Batch, BatchItem, DisbursementJob
from disbursement_engine.services.job_runner import JobQueue
from disbursement_engine.services.ledger_store import LedgerStore, NewItem
from disbursement_engine.services.notifications import NotificationReceiver, NotificationResult
from disbursement_engine.services.orchestrator import BatchOrchestrator
from disbursement_engine.services.recipients import RecipientDirectory, RecipientRecord
from disbursement_engine.services.reconciliation import Reconciler, ReconciliationSummary
from disbursement_engine.services.state_machine import AggregateCounts, BatchStatus

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BatchStatusReport:
    """Batch with its items and live per-status counts."""

    batch: Batch
    items: list[BatchItem]
    summary: AggregateCounts


@dataclass(frozen=True)
class AuthorizationOutcome:
    """Result of authorize_batch, including the optional follow-up."""

    authorization: AuthorizationResult
    batch_id: int | None = None
    backfilled: int = 0
    reconciliation: ReconciliationSummary | None = None
    follow_up_error: str | None = None


class DisbursementService:
    """Single entry point for disbursement operations."""

    def __init__(
        self,
        store: LedgerStore,
        directory: RecipientDirectory,
        gateway: DisbursementGateway,
        orchestrator: BatchOrchestrator,
        reconciler: Reconciler,
        receiver: NotificationReceiver,
        queue: JobQueue,
        *,
        authorization_settle_seconds: float = 3.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.store = store
        self.directory = directory
        self.gateway = gateway
        self.orchestrator = orchestrator
        self.reconciler = reconciler
        self.receiver = receiver
        self.queue = queue
        self.authorization_settle_seconds = authorization_settle_seconds
        self._sleep = sleep

    async def create_batch(
        self,
        period: str,
        recipient_ids: Sequence[int] | None = None,
    ) -> Batch:
        """Create a PENDING batch with one item per recipient.

        Args:
            period: Free-text label, e.g. "2026-10".
            recipient_ids: Explicit recipients, or None for every active one.

        Raises:
            ValidationError: empty period, no payable recipients, or an
                explicitly requested recipient without a positive salary
            NotFoundError: a requested recipient is unknown or inactive
        """
        if not period or not period.strip():
            raise ValidationError("Batch period is required")

        if recipient_ids is None:
            recipients = []
            for recipient in await self.directory.list_active():
                if recipient.salary is None or recipient.salary <= 0:
                    logger.warning(
                        "Skipping recipient %d with non-positive salary", recipient.id
                    )
                    continue
                recipients.append(recipient)
        else:
            recipients = await self._resolve_recipients(recipient_ids)

        if not recipients:
            raise ValidationError("No active recipients to pay")

        return await self.store.create_batch_with_items(
            period,
            [NewItem(recipient_id=r.id, amount=r.salary) for r in recipients],
        )

    async def _resolve_recipients(self, recipient_ids: Sequence[int]) -> list[RecipientRecord]:
        ordered = list(dict.fromkeys(recipient_ids))
        found = await self.directory.get_many(ordered)

        recipients = []
        for recipient_id in ordered:
            recipient = found.get(recipient_id)
            if recipient is None or not recipient.is_active:
                raise NotFoundError("Recipient", recipient_id)
            if recipient.salary is None or recipient.salary <= 0:
                raise ValidationError(f"Recipient {recipient_id} has no positive salary")
            recipients.append(recipient)
        return recipients

    async def get_batch(self, batch_id: int) -> Batch:
        """Batch with items, or NotFoundError."""
        return await self.store.require_batch(batch_id, with_items=True)

    async def list_batches(self, *, limit: int = 100, offset: int = 0) -> list[Batch]:
        """Batches, newest first."""
        return await self.store.list_batches(limit=limit, offset=offset)

    async def start_processing(self, batch_id: int, *, force: bool = False) -> DisbursementJob:
        """Queue the batch for the workers.

        A COMPLETED batch is never re-run. A PROCESSING batch is re-run only
        with force, e.g. after its job went DEAD. Nothing is queued while
        another job for the batch is still queued or running.

        Raises:
            NotFoundError: unknown batch
            ValidationError: batch not in a startable state
        """
        batch = await self.store.require_batch(batch_id)

        if batch.status == BatchStatus.COMPLETED:
            raise ValidationError(f"Batch {batch_id} is already completed")
        if batch.status == BatchStatus.PROCESSING and not force:
            raise ValidationError(f"Batch {batch_id} is already being processed")
        if await self.queue.has_active_job(batch_id):
            raise ValidationError(f"Batch {batch_id} already has a job queued or running")

        if force:
            logger.warning("Forced re-processing of batch %d (status %s)", batch_id, batch.status)
        return await self.queue.enqueue(batch_id)

    async def authorize_batch(
        self,
        gateway_batch_reference: str,
        code: str,
        *,
        batch_id: int | None = None,
    ) -> AuthorizationOutcome:
        """Authorize a gateway batch with the one-time code.

        With batch_id, waits for the gateway to settle, backfills any
        missing item references from the gateway's batch details and
        reconciles. Follow-up failures are logged and reported in the
        outcome; they never fail the authorization itself.
        """
        if batch_id is not None:
            await self.store.require_batch(batch_id)

        authorization = await self.gateway.authorize_batch(gateway_batch_reference, code)
        logger.info(
            "Gateway batch %s authorized (%s)",
            authorization.batch_reference,
            authorization.batch_status,
        )

        if batch_id is None:
            return AuthorizationOutcome(authorization=authorization)

        backfilled = 0
        try:
            if self.authorization_settle_seconds > 0:
                await self._sleep(self.authorization_settle_seconds)

            details = await self.gateway.get_batch_details(gateway_batch_reference)
            backfilled = await self.orchestrator.backfill_references(
                batch_id,
                {t.reference: t.gateway_reference for t in details.transactions},
            )
            if backfilled:
                logger.info("Backfilled %d gateway references for batch %d", backfilled, batch_id)

            summary = await self.reconciler.reconcile(batch_id)
        except Exception as e:
            logger.exception("Post-authorization follow-up for batch %d failed", batch_id)
            return AuthorizationOutcome(
                authorization=authorization,
                batch_id=batch_id,
                backfilled=backfilled,
                follow_up_error=str(e),
            )

        return AuthorizationOutcome(
            authorization=authorization,
            batch_id=batch_id,
            backfilled=backfilled,
            reconciliation=summary,
        )

    async def reconcile(self, batch_id: int) -> ReconciliationSummary:
        """Poll the gateway for every referenced item of the batch."""
        return await self.reconciler.reconcile(batch_id)

    async def get_status(self, batch_id: int) -> BatchStatusReport:
        """Batch, items and per-status counts computed from the items."""
        batch = await self.store.require_batch(batch_id)
        items = await self.store.list_items(batch_id)
        return BatchStatusReport(
            batch=batch,
            items=items,
            summary=AggregateCounts.from_statuses(item.status for item in items),
        )

    async def receive_notification(
        self, raw_body: bytes, signature: str | None
    ) -> NotificationResult:
        """Apply a gateway push notification. Never raises."""
        return await self.receiver.handle(raw_body, signature)

    async def check_transaction_status(self, reference: str) -> TransactionStatus:
        return await self.gateway.get_transaction_status(reference)

    async def get_balance(self) -> Balance:
        return await self.gateway.get_balance()
