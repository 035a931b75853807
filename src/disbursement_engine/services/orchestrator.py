"""Batch orchestrator: eligibility, submission and reference backfill.

One execute() call is one attempt at getting every eligible item of a
batch accepted by the gateway. It is safe to call any number of times:
an item that already carries a gateway reference is never sent again.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Mapping

from disbursement_engine.errors import NotFoundError
from disbursement_engine.gateway.base import DisbursementGateway, TransferRequest
from disbursement_engine.models import BatchItem
from disbursement_engine.services.ledger_store import LedgerStore, UpdateOutcome
from disbursement_engine.services.recipients import RecipientDirectory
from disbursement_engine.services.references import (
    build_item_reference,
    parse_item_reference,
)
from disbursement_engine.services.state_machine import BatchStatus, ItemStateMachine

logger = logging.getLogger(__name__)

TRANSFER_NARRATION = "Payroll payment"


@dataclass(frozen=True)
class ExecutionResult:
    """Result of one orchestrator run over a batch."""

    batch_id: int
    eligible: int
    submitted: int
    referenced: int
    gateway_batch_reference: str | None
    status: BatchStatus

    @property
    def missing_references(self) -> int:
        """Submitted items the gateway response did not acknowledge."""
        return self.submitted - self.referenced


def build_gateway_batch_reference(batch_id: int, now_ms: int) -> str:
    """Fresh reference for one gateway submission of a batch."""
    return f"BATCH_{batch_id}_{now_ms}"


class BatchOrchestrator:
    """Drives batch items from PENDING to gateway-accepted PROCESSING.

    Steps per execute():
    1. Load batch and items, keep the eligible ones
    2. Move the batch and each eligible item to PROCESSING (durable)
    3. Build transfers tagged with the item idempotency reference
    4. Submit all of them as one gateway batch
    5. Persist the returned gateway references
    6. Recompute the batch aggregate
    """

    def __init__(
        self,
        store: LedgerStore,
        directory: RecipientDirectory,
        gateway: DisbursementGateway,
        *,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.directory = directory
        self.gateway = gateway
        self._clock = clock

    async def execute(self, batch_id: int) -> ExecutionResult:
        """Submit every eligible item of a batch.

        Raises:
            NotFoundError: unknown batch, or an item's recipient is gone
            ValidationError: a transfer fails pre-submission checks
            GatewayError / AuthError: the submission itself failed; the
                items stay PROCESSING without reference and are retried
                by the next run
        """
        batch = await self.store.require_batch(batch_id, with_items=True)

        eligible = [
            item
            for item in batch.items
            if ItemStateMachine.is_eligible_for_submission(item.status, item.gateway_reference)
        ]

        if not eligible:
            aggregate = await self.store.recompute_aggregate(batch_id)
            logger.info("Batch %d has no eligible items; nothing to submit", batch_id)
            return ExecutionResult(
                batch_id=batch_id,
                eligible=0,
                submitted=0,
                referenced=0,
                gateway_batch_reference=None,
                status=aggregate.status,
            )

        await self.store.mark_batch_processing(batch_id)

        claimed: list[BatchItem] = []
        for item in eligible:
            outcome = await self.store.mark_item_processing(item.id)
            if outcome == UpdateOutcome.APPLIED:
                claimed.append(item)
            else:
                logger.info(
                    "Item %d of batch %d dropped from submission (%s)",
                    item.id,
                    batch_id,
                    outcome.value,
                )

        if not claimed:
            aggregate = await self.store.recompute_aggregate(batch_id)
            return ExecutionResult(
                batch_id=batch_id,
                eligible=len(eligible),
                submitted=0,
                referenced=0,
                gateway_batch_reference=None,
                status=aggregate.status,
            )

        transfers = await self._build_transfers(batch_id, claimed)

        gateway_batch_reference = build_gateway_batch_reference(
            batch_id, int(self._clock() * 1000)
        )
        await self.store.set_gateway_batch_reference(batch_id, gateway_batch_reference)

        logger.info(
            "Submitting %d items of batch %d as %s",
            len(transfers),
            batch_id,
            gateway_batch_reference,
        )
        result = await self.gateway.submit_batch(
            transfers, batch_reference=gateway_batch_reference
        )

        referenced = await self.backfill_references(
            batch_id,
            {t.reference: result.gateway_reference_for(t.reference) for t in transfers},
        )
        if referenced < len(transfers):
            logger.warning(
                "Gateway acknowledged %d of %d transfers for batch %d; "
                "the rest stay eligible for resubmission",
                referenced,
                len(transfers),
                batch_id,
            )

        aggregate = await self.store.recompute_aggregate(batch_id)
        return ExecutionResult(
            batch_id=batch_id,
            eligible=len(eligible),
            submitted=len(transfers),
            referenced=referenced,
            gateway_batch_reference=gateway_batch_reference,
            status=aggregate.status,
        )

    async def backfill_references(
        self,
        batch_id: int,
        references: Mapping[str, str | None],
    ) -> int:
        """Persist gateway references keyed by item idempotency reference.

        Entries that do not parse, belong to another batch or carry no
        gateway reference are skipped. Items that already have a reference
        are left untouched.

        Returns:
            Number of items whose reference was written by this call
        """
        written = 0
        for reference, gateway_reference in references.items():
            if not gateway_reference:
                continue
            parsed = parse_item_reference(reference)
            if parsed is None or parsed.batch_id != batch_id:
                logger.debug("Skipping foreign reference %s for batch %d", reference, batch_id)
                continue

            outcome = await self.store.record_gateway_reference(parsed.item_id, gateway_reference)
            if outcome == UpdateOutcome.APPLIED:
                written += 1
        return written

    async def _build_transfers(
        self, batch_id: int, items: list[BatchItem]
    ) -> list[TransferRequest]:
        recipients = await self.directory.get_many(item.recipient_id for item in items)

        transfers = []
        for item in items:
            recipient = recipients.get(item.recipient_id)
            if recipient is None:
                raise NotFoundError("Recipient", item.recipient_id)
            transfers.append(
                TransferRequest(
                    reference=build_item_reference(batch_id, item.id),
                    amount=item.amount,
                    account_number=recipient.account_number,
                    bank_code=recipient.bank_code,
                    account_name=recipient.name,
                    narration=TRANSFER_NARRATION,
                )
            )
        return transfers
