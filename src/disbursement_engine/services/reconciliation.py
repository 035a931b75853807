"""Reconciliation against gateway-reported truth.

Polls the gateway for every item of a batch that has a gateway reference
and applies terminal transitions through the same conditional-update gate
the notification receiver uses. Safe to run at any time and concurrently
with notifications.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from disbursement_engine.gateway.base import DisbursementGateway
from disbursement_engine.services.ledger_store import LedgerStore, UpdateOutcome
from disbursement_engine.services.state_machine import ItemStatus

logger = logging.getLogger(__name__)

DEFAULT_FAILURE_MESSAGE = "Transaction failed"


@dataclass
class ReconciliationSummary:
    """Result of a reconciliation run."""

    batch_id: int
    examined: int = 0
    updated: int = 0
    errors: int = 0
    error_details: list[dict[str, Any]] = field(default_factory=list)

    @property
    def success(self) -> bool:
        """Whether every item was checked without error."""
        return self.errors == 0

    def as_dict(self) -> dict[str, int]:
        return {"updated": self.updated, "errors": self.errors, "total": self.examined}


class Reconciler:
    """Brings item statuses in line with the gateway's view."""

    def __init__(self, store: LedgerStore, gateway: DisbursementGateway):
        self.store = store
        self.gateway = gateway

    async def reconcile(self, batch_id: int) -> ReconciliationSummary:
        """Reconcile every referenced item of a batch.

        A failure on one item is logged and counted; the sweep goes on.
        Terminal items are queried too but never change again.

        Raises:
            NotFoundError: unknown batch
        """
        await self.store.require_batch(batch_id)
        summary = ReconciliationSummary(batch_id=batch_id)

        items = await self.store.list_items(batch_id, with_reference=True)
        if not items:
            logger.info("Batch %d has no referenced items to reconcile", batch_id)
            return summary

        summary.examined = len(items)

        for item in items:
            try:
                if await self._reconcile_item(item.id, item.gateway_reference):
                    summary.updated += 1
            except Exception as e:
                summary.errors += 1
                summary.error_details.append({
                    "item_id": item.id,
                    "gateway_reference": item.gateway_reference,
                    "message": str(e),
                })
                logger.warning(
                    "Reconciliation of item %d (%s) failed: %s",
                    item.id,
                    item.gateway_reference,
                    e,
                )

        await self.store.recompute_aggregate(batch_id)

        logger.info(
            "Reconciled batch %d: %d examined, %d updated, %d errors",
            batch_id,
            summary.examined,
            summary.updated,
            summary.errors,
        )
        return summary

    async def _reconcile_item(self, item_id: int, gateway_reference: str) -> bool:
        """Apply the gateway status to one item. Returns True if it changed."""
        status = await self.gateway.get_transaction_status(gateway_reference)

        if status.is_paid:
            target = ItemStatus.COMPLETED
        elif status.is_failed:
            target = ItemStatus.FAILED
        else:
            return False

        outcome = await self.store.finalize_item(
            item_id,
            target,
            error_message=status.description or DEFAULT_FAILURE_MESSAGE,
        )
        if outcome == UpdateOutcome.APPLIED:
            logger.info("Item %d marked %s by reconciliation", item_id, target.value)
            return True
        return False
