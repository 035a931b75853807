"""Monnify disbursement gateway client.

Stateless except for the bearer token. Every call goes through
ensure_authenticated(); callers never handle tokens. The client never
retries on its own apart from one re-authentication when a live token is
rejected. Retry policy belongs to the job runner.
"""

from __future__ import annotations

import logging
import time
from decimal import Decimal, InvalidOperation
from typing import Any, Callable

import httpx

from disbursement_engine.config import GatewayConfig
from disbursement_engine.errors import AuthError, GatewayError, ValidationError
from disbursement_engine.gateway.base import (
    AuthorizationResult,
    Balance,
    BatchDetails,
    BatchSubmissionResult,
    TransactionStatus,
    TransferAcceptance,
    TransferRequest,
)

logger = logging.getLogger(__name__)

# Monnify tokens typically live 24 hours when expiresIn is not reported
DEFAULT_TOKEN_LIFETIME_SECONDS = 24 * 60 * 60

LOGIN_PATH = "/api/v1/auth/login"
BATCH_PATH = "/api/v2/disbursements/batch"
AUTHORIZE_PATH = "/api/v2/disbursements/batch/validate-otp"
BALANCE_PATH = "/api/v2/disbursements/wallet-balance"


def _decimal(value: Any) -> Decimal | None:
    if value is None or value == "":
        return None
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None


def _error_message(payload: Any, status_code: int) -> str:
    """Pick the most useful message out of a gateway error payload."""
    if isinstance(payload, dict):
        for key in ("responseMessage", "message", "error"):
            value = payload.get(key)
            if value:
                return str(value)
    return f"Gateway error ({status_code})"


def validate_transfers(transfers: list[TransferRequest]) -> None:
    """Check every transfer before anything goes over the wire.

    Raises:
        ValidationError: naming the first offending transfer reference
    """
    if not transfers:
        raise ValidationError("No transfers provided")

    for transfer in transfers:
        if transfer.amount is None or transfer.amount <= 0:
            raise ValidationError(f"Invalid amount for transfer: {transfer.reference}")
        if not transfer.account_number:
            raise ValidationError(f"Missing account number for transfer: {transfer.reference}")
        if not transfer.bank_code:
            raise ValidationError(f"Missing bank code for transfer: {transfer.reference}")


class MonnifyGateway:
    """HTTP client for the Monnify disbursement API."""

    gateway_name = "monnify"

    def __init__(
        self,
        config: GatewayConfig,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize the client.

        Args:
            config: Gateway configuration (credentials, base URL, margins).
            transport: Optional httpx transport, used by tests.
            clock: Monotonic seconds source for token expiry.
        """
        self.config = config
        self._clock = clock
        self._client = httpx.AsyncClient(
            base_url=config.base_url,
            timeout=config.timeout_seconds,
            transport=transport,
            headers={"Content-Type": "application/json"},
        )
        self._access_token: str | None = None
        self._token_expires_at: float = 0.0

    @property
    def token_expires_at(self) -> float:
        """Clock value after which the token is treated as expired."""
        return self._token_expires_at

    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------

    async def authenticate(self) -> None:
        """Exchange API credentials for a short-lived bearer token.

        Raises:
            AuthError: credentials missing or rejected
            GatewayError: transport failure or unexpected response
        """
        if not self.config.api_key or not self.config.secret_key:
            raise AuthError("Gateway credentials are not configured")

        try:
            response = await self._client.post(
                LOGIN_PATH,
                auth=(self.config.api_key, self.config.secret_key),
            )
        except httpx.HTTPError as e:
            raise GatewayError(f"Gateway authentication request failed: {e}") from e

        if response.status_code in (401, 403):
            raise AuthError("Gateway rejected credentials")
        if response.is_error:
            raise GatewayError(
                _error_message(self._safe_json(response), response.status_code),
                status_code=response.status_code,
            )

        body = self._safe_json(response)
        if not isinstance(body, dict) or body.get("requestSuccessful") is False:
            raise AuthError(_error_message(body, response.status_code))

        response_body = body.get("responseBody") or {}
        token = response_body.get("accessToken")
        if not token:
            raise AuthError("Gateway returned no access token")

        lifetime = float(response_body.get("expiresIn") or DEFAULT_TOKEN_LIFETIME_SECONDS)
        margin = min(float(self.config.token_safety_margin_seconds), lifetime / 2)

        self._access_token = token
        self._token_expires_at = self._clock() + lifetime - margin
        logger.info("Authenticated with gateway; token valid for %.0fs", lifetime - margin)

    async def ensure_authenticated(self) -> None:
        """Refresh the token if missing or past its margined expiry."""
        if self._access_token is None or self._clock() >= self._token_expires_at:
            await self.authenticate()

    # ------------------------------------------------------------------
    # Disbursements
    # ------------------------------------------------------------------

    async def submit_batch(
        self,
        transfers: list[TransferRequest],
        *,
        batch_reference: str,
        title: str = "Bulk Payroll Transfers",
        narration: str = "Payroll batch disbursement",
    ) -> BatchSubmissionResult:
        """Submit transfers as one batch in continue-on-failure mode."""
        validate_transfers(transfers)
        if not self.config.contract_code:
            raise ValidationError("Gateway contract code is not configured")

        request_body = {
            "title": title,
            "batchReference": batch_reference,
            "narration": narration,
            "sourceAccountNumber": self.config.contract_code,
            "onValidationFailure": "CONTINUE",
            "notificationInterval": self.config.notification_interval,
            "transactionList": [
                {
                    "amount": float(t.amount),
                    "reference": t.reference,
                    "narration": t.narration,
                    "destinationBankCode": t.bank_code,
                    "destinationAccountNumber": t.account_number,
                    "destinationAccountName": t.account_name,
                    "currency": self.config.currency,
                }
                for t in transfers
            ],
        }

        logger.info(
            "Submitting batch %s with %d transfers", batch_reference, len(transfers)
        )
        body = await self._request("POST", BATCH_PATH, json=request_body)

        acceptances = {
            entry["reference"]: TransferAcceptance(
                reference=entry["reference"],
                gateway_reference=entry.get("transactionReference"),
                status=str(entry.get("status") or ""),
            )
            for entry in body.get("transactionList") or []
            if entry.get("reference")
        }

        result = BatchSubmissionResult(
            batch_reference=body.get("batchReference") or batch_reference,
            batch_status=str(body.get("batchStatus") or ""),
            transfers=acceptances,
            total_amount=_decimal(body.get("totalAmount")),
            total_fee=_decimal(body.get("totalFee")),
        )
        logger.info(
            "Gateway accepted batch %s (%s), %d transfer references returned",
            result.batch_reference,
            result.batch_status,
            len(acceptances),
        )
        return result

    async def authorize_batch(self, batch_reference: str, code: str) -> AuthorizationResult:
        """Authorize a submitted batch with the one-time code."""
        if not batch_reference:
            raise ValidationError("Batch reference is required")
        if not code:
            raise ValidationError("Authorization code (OTP) is required")

        logger.info("Authorizing batch %s", batch_reference)
        body = await self._request(
            "POST",
            AUTHORIZE_PATH,
            json={"reference": batch_reference, "authorizationCode": code},
        )
        return AuthorizationResult(
            batch_reference=body.get("batchReference") or batch_reference,
            batch_status=str(body.get("batchStatus") or ""),
            message=str(body.get("responseMessage") or ""),
            raw=body,
        )

    async def get_transaction_status(self, reference: str) -> TransactionStatus:
        """Look up one disbursement by reference."""
        if not reference:
            raise ValidationError("Transaction reference is required")

        body = await self._request("GET", f"/api/v2/disbursements/{reference}/status")
        status = body.get("paymentStatus") or body.get("status") or ""
        return TransactionStatus(
            reference=reference,
            status=str(status).upper(),
            gateway_reference=body.get("transactionReference"),
            description=body.get("paymentDescription") or body.get("failureReason"),
            amount=_decimal(body.get("amount")),
        )

    async def get_batch_details(self, batch_reference: str) -> BatchDetails:
        """Fetch the transfer list of a gateway batch."""
        if not batch_reference:
            raise ValidationError("Batch reference is required")

        body = await self._request("GET", f"{BATCH_PATH}/{batch_reference}")
        entries = body.get("transactionList") or body.get("transactions") or []
        return BatchDetails(
            batch_reference=body.get("batchReference") or batch_reference,
            batch_status=str(body.get("batchStatus") or ""),
            transactions=[
                TransferAcceptance(
                    reference=entry["reference"],
                    gateway_reference=entry.get("transactionReference"),
                    status=str(entry.get("status") or ""),
                )
                for entry in entries
                if entry.get("reference")
            ],
        )

    async def get_balance(self) -> Balance:
        """Fetch the source wallet balance."""
        body = await self._request(
            "GET", BALANCE_PATH, params={"accountNumber": self.config.contract_code}
        )
        return Balance(
            available_balance=_decimal(body.get("availableBalance")) or Decimal("0"),
            ledger_balance=_decimal(body.get("ledgerBalance")) or Decimal("0"),
            account_number=self.config.contract_code,
        )

    async def aclose(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    # ------------------------------------------------------------------
    # Transport helpers
    # ------------------------------------------------------------------

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Send an authenticated request and return the response body."""
        await self.ensure_authenticated()
        response = await self._send(method, path, json=json, params=params)

        if response.status_code == 401:
            logger.info("Gateway rejected bearer token; re-authenticating")
            self._access_token = None
            await self.ensure_authenticated()
            response = await self._send(method, path, json=json, params=params)
            if response.status_code == 401:
                raise AuthError("Gateway rejected a freshly issued token")

        return self._unwrap(response)

    async def _send(
        self,
        method: str,
        path: str,
        *,
        json: dict[str, Any] | None,
        params: dict[str, Any] | None,
    ) -> httpx.Response:
        try:
            return await self._client.request(
                method,
                path,
                json=json,
                params=params,
                headers={"Authorization": f"Bearer {self._access_token}"},
            )
        except httpx.HTTPError as e:
            raise GatewayError(f"Gateway request failed: {e}") from e

    def _unwrap(self, response: httpx.Response) -> dict[str, Any]:
        """Normalize success and error envelopes."""
        payload = self._safe_json(response)

        if response.is_error:
            message = _error_message(payload, response.status_code)
            logger.warning("Gateway returned %d: %s", response.status_code, message)
            raise GatewayError(message, status_code=response.status_code, payload=payload)

        if not isinstance(payload, dict):
            raise GatewayError(
                "Gateway returned a non-JSON response", status_code=response.status_code
            )

        if payload.get("requestSuccessful") is False:
            message = _error_message(payload, response.status_code)
            logger.warning("Gateway request unsuccessful: %s", message)
            raise GatewayError(message, status_code=response.status_code, payload=payload)

        body = payload.get("responseBody")
        return body if isinstance(body, dict) else payload

    @staticmethod
    def _safe_json(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError:
            return None
