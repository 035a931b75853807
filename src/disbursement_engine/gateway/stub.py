"""In-memory gateway for sandbox runs and tests.

Accepts every valid batch, hands out gateway references and keeps the
per-transfer status until told to settle or fail a transfer.
"""

from __future__ import annotations

import datetime
import uuid
from decimal import Decimal
from typing import Any

from disbursement_engine.errors import GatewayError, ValidationError
from disbursement_engine.gateway.base import (
    AuthorizationResult,
    Balance,
    BatchDetails,
    BatchSubmissionResult,
    TransactionStatus,
    TransferAcceptance,
    TransferRequest,
)
from disbursement_engine.gateway.monnify import validate_transfers


class StubGateway:
    """Stub disbursement gateway.

    In production the Monnify client is used instead. This stub lets the
    whole engine run without network access:
    - submissions are recorded and answered with generated references
    - transfers stay PENDING until settle() or fail() is called
    - fail_next_submission() simulates a gateway outage
    - drop_reference() simulates a transfer missing from the response
    """

    gateway_name = "stub"

    def __init__(
        self,
        *,
        auto_settle: bool = False,
        available_balance: Decimal = Decimal("1000000.00"),
        account_number: str = "STUB0000001",
    ):
        """Initialize stub gateway.

        Args:
            auto_settle: If True, accepted transfers are immediately PAID.
            available_balance: Balance reported by get_balance().
            account_number: Source account reported by get_balance().
        """
        self.auto_settle = auto_settle
        self.available_balance = available_balance
        self.account_number = account_number

        self._submitted: dict[str, dict[str, Any]] = {}
        self._gateway_index: dict[str, str] = {}
        self._batches: dict[str, list[str]] = {}
        self._failures: list[GatewayError] = []
        self._dropped: set[str] = set()

        self.submissions: list[list[TransferRequest]] = []
        self.authorizations: list[tuple[str, str]] = []
        self.closed = False

    # Test controls

    def fail_next_submission(self, error: GatewayError | None = None, *, times: int = 1) -> None:
        """Make the next `times` submit_batch calls raise."""
        error = error or GatewayError("Stub gateway unavailable", status_code=503)
        self._failures.extend([error] * times)

    def drop_reference(self, reference: str) -> None:
        """Accept the transfer but leave it out of the submission response."""
        self._dropped.add(reference)

    def settle(self, reference: str) -> None:
        """Mark a transfer PAID. Accepts our reference or the gateway's."""
        record = self._lookup(reference)
        record["status"] = "PAID"
        record["description"] = None

    def fail(self, reference: str, description: str | None = None) -> None:
        """Mark a transfer FAILED."""
        record = self._lookup(reference)
        record["status"] = "FAILED"
        record["description"] = description

    def set_status(self, reference: str, status: str) -> None:
        """Force an arbitrary gateway status onto a transfer."""
        self._lookup(reference)["status"] = status.upper()

    def gateway_reference_for(self, reference: str) -> str | None:
        record = self._submitted.get(reference)
        return record["gateway_reference"] if record else None

    @property
    def submitted_references(self) -> list[str]:
        """Every caller reference ever accepted, in submission order."""
        return [t.reference for batch in self.submissions for t in batch]

    # Gateway protocol

    async def submit_batch(
        self,
        transfers: list[TransferRequest],
        *,
        batch_reference: str,
        title: str = "Bulk Payroll Transfers",
        narration: str = "Payroll batch disbursement",
    ) -> BatchSubmissionResult:
        validate_transfers(transfers)

        if self._failures:
            raise self._failures.pop(0)

        self.submissions.append(list(transfers))
        accepted: dict[str, TransferAcceptance] = {}

        for transfer in transfers:
            gateway_reference = f"MFDS{uuid.uuid4().hex[:16].upper()}"
            self._submitted[transfer.reference] = {
                "transfer": transfer,
                "batch_reference": batch_reference,
                "gateway_reference": gateway_reference,
                "submitted_at": datetime.datetime.now(datetime.timezone.utc),
                "status": "PAID" if self.auto_settle else "PENDING",
                "description": None,
            }
            self._gateway_index[gateway_reference] = transfer.reference
            self._batches.setdefault(batch_reference, []).append(transfer.reference)

            if transfer.reference not in self._dropped:
                accepted[transfer.reference] = TransferAcceptance(
                    reference=transfer.reference,
                    gateway_reference=gateway_reference,
                    status="PENDING_AUTHORIZATION",
                )

        return BatchSubmissionResult(
            batch_reference=batch_reference,
            batch_status="AWAITING_AUTHORIZATION",
            transfers=accepted,
            total_amount=sum((t.amount for t in transfers), Decimal("0")),
            total_fee=Decimal("0"),
        )

    async def authorize_batch(self, batch_reference: str, code: str) -> AuthorizationResult:
        if not batch_reference:
            raise ValidationError("Batch reference is required")
        if not code:
            raise ValidationError("Authorization code (OTP) is required")
        if batch_reference not in self._batches:
            raise GatewayError(f"Batch {batch_reference} not found", status_code=404)

        self.authorizations.append((batch_reference, code))
        return AuthorizationResult(
            batch_reference=batch_reference,
            batch_status="IN_PROGRESS",
            message="Stub authorization accepted",
        )

    async def get_transaction_status(self, reference: str) -> TransactionStatus:
        if not reference:
            raise ValidationError("Transaction reference is required")

        record = self._lookup(reference)
        return TransactionStatus(
            reference=reference,
            status=record["status"],
            gateway_reference=record["gateway_reference"],
            description=record["description"],
            amount=record["transfer"].amount,
        )

    async def get_batch_details(self, batch_reference: str) -> BatchDetails:
        if batch_reference not in self._batches:
            raise GatewayError(f"Batch {batch_reference} not found", status_code=404)

        return BatchDetails(
            batch_reference=batch_reference,
            batch_status="IN_PROGRESS",
            transactions=[
                TransferAcceptance(
                    reference=ref,
                    gateway_reference=self._submitted[ref]["gateway_reference"],
                    status=self._submitted[ref]["status"],
                )
                for ref in self._batches[batch_reference]
            ],
        )

    async def get_balance(self) -> Balance:
        return Balance(
            available_balance=self.available_balance,
            ledger_balance=self.available_balance,
            account_number=self.account_number,
        )

    async def aclose(self) -> None:
        self.closed = True

    def _lookup(self, reference: str) -> dict[str, Any]:
        key = self._gateway_index.get(reference, reference)
        if key not in self._submitted:
            raise GatewayError(f"Transaction {reference} not found", status_code=404)
        return self._submitted[key]
