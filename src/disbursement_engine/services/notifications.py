"""Gateway push notifications (webhooks).

Notifications may arrive late, twice, out of order or not at all. The
durable item status is the only duplicate filter: a terminal item is never
written again, so redelivery is harmless.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any

from disbursement_engine.services.ledger_store import LedgerStore, UpdateOutcome
from disbursement_engine.services.references import parse_item_reference
from disbursement_engine.services.state_machine import ItemStateMachine, ItemStatus

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "monnify-signature"
DEFAULT_FAILURE_MESSAGE = "Transaction failed"

SUCCESS_EVENTS = frozenset({"SUCCESSFUL_DISBURSEMENT"})
FAILURE_EVENTS = frozenset({"FAILED_DISBURSEMENT", "REVERSED_DISBURSEMENT"})


class NotificationOutcome(str, Enum):
    """What happened to one notification."""

    REJECTED = "rejected"  # signature missing or wrong
    MALFORMED = "malformed"
    IGNORED = "ignored"  # reference is not one of ours
    UNKNOWN_ITEM = "unknown_item"
    ALREADY_FINALIZED = "already_finalized"
    UNHANDLED = "unhandled"  # event type we do not act on
    APPLIED = "applied"
    ERROR = "error"


@dataclass(frozen=True)
class NotificationResult:
    """Result of handling one notification."""

    outcome: NotificationOutcome
    event_type: str | None = None
    reference: str | None = None
    item_id: int | None = None
    batch_id: int | None = None
    status: str | None = None

    @property
    def mutated(self) -> bool:
        return self.outcome == NotificationOutcome.APPLIED


def compute_signature(secret: str, raw_body: bytes) -> str:
    """Hex HMAC-SHA512 of the raw request body."""
    return hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha512).hexdigest()


def classify_event(event_type: str, event_data: dict[str, Any]) -> ItemStatus | None:
    """Map an event onto the terminal item status it implies, if any."""
    status = str(event_data.get("status") or "").upper()
    if event_type in SUCCESS_EVENTS or status == "SUCCESS":
        return ItemStatus.COMPLETED
    if event_type in FAILURE_EVENTS or status == "FAILED":
        return ItemStatus.FAILED
    return None


class NotificationReceiver:
    """Authenticates and applies gateway notifications."""

    def __init__(self, store: LedgerStore, webhook_secret: str | None):
        self.store = store
        self._secret = webhook_secret

    def verify_signature(self, raw_body: bytes, signature: str | None) -> bool:
        """Constant-time check of the signature header.

        Always False when no secret is configured.
        """
        if not self._secret or not signature:
            return False
        expected = compute_signature(self._secret, raw_body)
        # Headers may carry arbitrary latin-1 text; compare as bytes
        supplied = signature.strip().lower().encode("utf-8", "replace")
        return hmac.compare_digest(expected.encode("ascii"), supplied)

    async def handle(self, raw_body: bytes, signature: str | None) -> NotificationResult:
        """Handle one notification. Never raises."""
        if not self.verify_signature(raw_body, signature):
            logger.warning("Rejected gateway notification with invalid signature")
            return NotificationResult(outcome=NotificationOutcome.REJECTED)

        try:
            return await self._apply(raw_body)
        except Exception:
            logger.exception("Failed to process gateway notification")
            return NotificationResult(outcome=NotificationOutcome.ERROR)

    async def _apply(self, raw_body: bytes) -> NotificationResult:
        try:
            payload = json.loads(raw_body)
        except ValueError:
            logger.warning("Gateway notification body is not JSON")
            return NotificationResult(outcome=NotificationOutcome.MALFORMED)

        if not isinstance(payload, dict):
            return NotificationResult(outcome=NotificationOutcome.MALFORMED)

        event_type = payload.get("eventType")
        event_data = payload.get("eventData")
        if not event_type or not isinstance(event_data, dict):
            logger.warning("Gateway notification without eventType/eventData")
            return NotificationResult(outcome=NotificationOutcome.MALFORMED)

        reference = event_data.get("reference")
        parsed = parse_item_reference(reference)
        if parsed is None:
            logger.info("Ignoring %s notification for foreign reference %r", event_type, reference)
            return NotificationResult(
                outcome=NotificationOutcome.IGNORED, event_type=event_type, reference=reference
            )

        result = dict(
            event_type=event_type,
            reference=reference,
            item_id=parsed.item_id,
            batch_id=parsed.batch_id,
        )

        item = await self.store.get_item(parsed.item_id)
        if item is None or item.batch_id != parsed.batch_id:
            logger.warning("Notification %s references unknown item", reference)
            return NotificationResult(outcome=NotificationOutcome.UNKNOWN_ITEM, **result)

        if ItemStateMachine.is_terminal(item.status):
            logger.info("Item %d already %s; notification %s ignored", item.id, item.status, event_type)
            return NotificationResult(
                outcome=NotificationOutcome.ALREADY_FINALIZED, status=item.status, **result
            )

        target = classify_event(event_type, event_data)
        if target is None:
            logger.info("Unhandled gateway event %s for item %d", event_type, item.id)
            return NotificationResult(outcome=NotificationOutcome.UNHANDLED, **result)

        outcome = await self.store.finalize_item(
            item.id,
            target,
            error_message=event_data.get("transactionDescription") or DEFAULT_FAILURE_MESSAGE,
            gateway_reference=event_data.get("transactionReference"),
        )

        if outcome == UpdateOutcome.ALREADY_FINALIZED:
            return NotificationResult(outcome=NotificationOutcome.ALREADY_FINALIZED, **result)
        if outcome == UpdateOutcome.NOT_FOUND:
            return NotificationResult(outcome=NotificationOutcome.UNKNOWN_ITEM, **result)
        if outcome == UpdateOutcome.CONFLICT:
            # Item was never marked PROCESSING; the gateway cannot know it yet
            logger.warning("Item %d is %s; %s notification ignored", item.id, item.status, event_type)
            return NotificationResult(outcome=NotificationOutcome.IGNORED, **result)

        await self.store.recompute_aggregate(item.batch_id)
        logger.info("Item %d of batch %d marked %s via notification", item.id, item.batch_id, target.value)
        return NotificationResult(
            outcome=NotificationOutcome.APPLIED, status=target.value, **result
        )
