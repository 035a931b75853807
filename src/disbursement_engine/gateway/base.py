"""Base protocol and types for disbursement gateways.

All gateway adapters must implement the DisbursementGateway protocol.
The orchestrator, reconciler and facade use adapters without knowing
gateway-specific wire formats.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Protocol

# Gateway payment statuses that map onto terminal item states
PAID_STATUSES = frozenset({"PAID", "SUCCESS", "SUCCESSFUL", "COMPLETED"})
FAILED_STATUSES = frozenset({"FAILED", "REVERSED", "EXPIRED", "CANCELLED"})


@dataclass(frozen=True)
class TransferRequest:
    """One transfer inside a batch submission."""

    reference: str  # caller idempotency reference, never gateway-generated
    amount: Decimal
    account_number: str
    bank_code: str
    account_name: str = ""
    narration: str = "Payroll payment"


@dataclass(frozen=True)
class TransferAcceptance:
    """Gateway's view of one transfer within a batch."""

    reference: str
    gateway_reference: str | None
    status: str = ""


@dataclass(frozen=True)
class BatchSubmissionResult:
    """Result of submitting a batch to the gateway."""

    batch_reference: str
    batch_status: str
    transfers: dict[str, TransferAcceptance] = field(default_factory=dict)
    total_amount: Decimal | None = None
    total_fee: Decimal | None = None

    def gateway_reference_for(self, reference: str) -> str | None:
        """Gateway reference for the transfer with our reference, if any."""
        acceptance = self.transfers.get(reference)
        return acceptance.gateway_reference if acceptance else None


@dataclass(frozen=True)
class AuthorizationResult:
    """Result of authorizing a batch with a one-time code."""

    batch_reference: str
    batch_status: str
    message: str = ""
    raw: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class TransactionStatus:
    """Current status of a single disbursement."""

    reference: str
    status: str  # gateway vocabulary, upper-cased: PAID / FAILED / PENDING / ...
    gateway_reference: str | None = None
    description: str | None = None
    amount: Decimal | None = None

    @property
    def is_paid(self) -> bool:
        return self.status in PAID_STATUSES

    @property
    def is_failed(self) -> bool:
        return self.status in FAILED_STATUSES


@dataclass(frozen=True)
class BatchDetails:
    """Per-transfer status for a whole gateway batch."""

    batch_reference: str
    batch_status: str
    transactions: list[TransferAcceptance] = field(default_factory=list)

    def by_reference(self) -> dict[str, TransferAcceptance]:
        return {t.reference: t for t in self.transactions}


@dataclass(frozen=True)
class Balance:
    """Wallet balance. Informational only."""

    available_balance: Decimal
    ledger_balance: Decimal
    account_number: str = ""


class DisbursementGateway(Protocol):
    """Protocol for disbursement gateway adapters."""

    gateway_name: str

    async def submit_batch(
        self,
        transfers: list[TransferRequest],
        *,
        batch_reference: str,
        title: str = "Bulk Payroll Transfers",
        narration: str = "Payroll batch disbursement",
    ) -> BatchSubmissionResult:
        """Submit transfers as one gateway batch.

        Args:
            transfers: Transfers, each tagged with our idempotency reference.
            batch_reference: Our reference for the gateway batch.

        Returns:
            BatchSubmissionResult with gateway references keyed by our reference.
        """
        ...

    async def authorize_batch(self, batch_reference: str, code: str) -> AuthorizationResult:
        """Authorize a submitted batch with an out-of-band one-time code."""
        ...

    async def get_transaction_status(self, reference: str) -> TransactionStatus:
        """Look up the status of a single disbursement."""
        ...

    async def get_batch_details(self, batch_reference: str) -> BatchDetails:
        """Fetch per-transfer status for a gateway batch."""
        ...

    async def get_balance(self) -> Balance:
        """Fetch the source wallet balance."""
        ...

    async def aclose(self) -> None:
        """Release network resources."""
        ...
