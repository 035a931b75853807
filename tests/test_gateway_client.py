"""Tests for the Monnify gateway client.

Tests verify:
1. Token exchange and margined expiry
2. Re-authentication on a rejected token
3. Pre-submission validation (nothing goes over the wire)
4. Request payloads and response mapping
5. Error normalisation
"""

from __future__ import annotations

import base64
import json
from decimal import Decimal

import httpx
import pytest

from disbursement_engine.config import GatewayConfig
from disbursement_engine.errors import AuthError, GatewayError, ValidationError
from disbursement_engine.gateway.base import TransferRequest
from disbursement_engine.gateway.monnify import MonnifyGateway


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class RecordingHandler:
    """MockTransport handler with canned responses per (method, path)."""

    def __init__(self, expires_in: int | None = 3600):
        self.requests: list[httpx.Request] = []
        self.routes: dict[tuple[str, str], list[tuple[int, object]]] = {}
        self.logins = 0
        self.expires_in = expires_in

    def add(self, method: str, path: str, status_code: int = 200, body=None) -> None:
        self.routes.setdefault((method, path), []).append((status_code, body))

    def ok(self, method: str, path: str, response_body: dict) -> None:
        self.add(method, path, 200, {
            "requestSuccessful": True,
            "responseMessage": "success",
            "responseCode": "0",
            "responseBody": response_body,
        })

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.path == "/api/v1/auth/login":
            self.logins += 1
            body = {"accessToken": f"token-{self.logins}"}
            if self.expires_in is not None:
                body["expiresIn"] = self.expires_in
            return httpx.Response(200, json={"requestSuccessful": True, "responseBody": body})

        queue = self.routes.get((request.method, request.url.path))
        if not queue:
            return httpx.Response(404, json={"responseMessage": "no route"})
        status_code, body = queue.pop(0) if len(queue) > 1 else queue[0]
        if body is None:
            return httpx.Response(status_code)
        return httpx.Response(status_code, json=body)

    def api_requests(self) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path != "/api/v1/auth/login"]


def make_gateway(handler, clock: FakeClock | None = None, **overrides) -> MonnifyGateway:
    values = dict(
        mode="live",
        base_url="https://gateway.test",
        api_key="MK_TEST_KEY",
        secret_key="SECRET",
        contract_code="8123456789",
        token_safety_margin_seconds=300,
    )
    values.update(overrides)
    config = GatewayConfig(**values)
    return MonnifyGateway(config, transport=httpx.MockTransport(handler), clock=clock or FakeClock())


def transfer(reference: str = "PAYROLL_1_1", amount: str = "100.00", **overrides) -> TransferRequest:
    fields = {
        "reference": reference,
        "amount": Decimal(amount),
        "account_number": "0123456789",
        "bank_code": "058",
        "account_name": "Ada Obi",
    }
    fields.update(overrides)
    return TransferRequest(**fields)


class TestAuthentication:
    """Token exchange."""

    async def test_login_uses_basic_auth(self):
        handler = RecordingHandler()
        gateway = make_gateway(handler)

        await gateway.authenticate()

        login = handler.requests[0]
        expected = base64.b64encode(b"MK_TEST_KEY:SECRET").decode()
        assert login.method == "POST"
        assert login.headers["Authorization"] == f"Basic {expected}"

    async def test_expiry_includes_safety_margin(self):
        clock = FakeClock(now=1000.0)
        gateway = make_gateway(RecordingHandler(expires_in=3600), clock)

        await gateway.authenticate()

        assert gateway.token_expires_at == 1000.0 + 3600 - 300

    async def test_margin_never_exceeds_token_lifetime(self):
        """A margin longer than the lifetime still leaves an earlier, future expiry."""
        clock = FakeClock(now=1000.0)
        gateway = make_gateway(RecordingHandler(expires_in=200), clock)

        await gateway.authenticate()

        assert 1000.0 < gateway.token_expires_at < 1000.0 + 200

    async def test_missing_expires_in_defaults_to_a_day(self):
        clock = FakeClock(now=0.0)
        gateway = make_gateway(RecordingHandler(expires_in=None), clock)

        await gateway.authenticate()

        assert gateway.token_expires_at == 24 * 3600 - 300

    async def test_rejected_credentials_raise_auth_error(self):
        def handler(request):
            return httpx.Response(401, json={"responseMessage": "Invalid credentials"})

        gateway = make_gateway(handler)

        with pytest.raises(AuthError):
            await gateway.authenticate()

    async def test_response_without_token_raises_auth_error(self):
        def handler(request):
            return httpx.Response(200, json={"requestSuccessful": True, "responseBody": {}})

        gateway = make_gateway(handler)

        with pytest.raises(AuthError):
            await gateway.authenticate()

    async def test_missing_credentials_raise_without_network(self):
        handler = RecordingHandler()
        gateway = make_gateway(handler, api_key="")

        with pytest.raises(AuthError):
            await gateway.authenticate()

        assert handler.requests == []

    async def test_token_reused_until_margined_expiry(self):
        clock = FakeClock(now=1000.0)
        handler = RecordingHandler(expires_in=3600)
        handler.ok("GET", "/api/v2/disbursements/wallet-balance", {"availableBalance": 10})
        gateway = make_gateway(handler, clock)

        await gateway.get_balance()
        clock.now += 3000
        await gateway.get_balance()
        assert handler.logins == 1

        clock.now += 400  # past now + 3600 - 300
        await gateway.get_balance()
        assert handler.logins == 2

    async def test_rejected_token_triggers_one_reauthentication(self):
        handler = RecordingHandler()
        handler.add("GET", "/api/v2/disbursements/wallet-balance", 401, {"message": "expired"})
        handler.ok("GET", "/api/v2/disbursements/wallet-balance", {"availableBalance": "55.10"})
        gateway = make_gateway(handler)

        balance = await gateway.get_balance()

        assert balance.available_balance == Decimal("55.10")
        assert handler.logins == 2
        balance_calls = handler.api_requests()
        assert [r.headers["Authorization"] for r in balance_calls] == [
            "Bearer token-1",
            "Bearer token-2",
        ]

    async def test_token_rejected_after_reauthentication_raises_auth_error(self):
        handler = RecordingHandler()
        handler.add("GET", "/api/v2/disbursements/wallet-balance", 401, {"message": "expired"})
        gateway = make_gateway(handler)

        with pytest.raises(AuthError):
            await gateway.get_balance()

        assert handler.logins == 2
        assert len(handler.api_requests()) == 2


class TestSubmitBatch:
    """Batch submission."""

    async def test_payload_and_reference_mapping(self):
        handler = RecordingHandler()
        handler.ok("POST", "/api/v2/disbursements/batch", {
            "batchReference": "BATCH_1_1700000000000",
            "batchStatus": "AWAITING_AUTHORIZATION",
            "totalAmount": 300.0,
            "totalFee": 20.0,
            "transactionList": [
                {"reference": "PAYROLL_1_1", "transactionReference": "MFDS001"},
                {"reference": "PAYROLL_1_2", "transactionReference": "MFDS002"},
            ],
        })
        gateway = make_gateway(handler)

        result = await gateway.submit_batch(
            [transfer("PAYROLL_1_1"), transfer("PAYROLL_1_2", "200.00")],
            batch_reference="BATCH_1_1700000000000",
        )

        sent = json.loads(handler.api_requests()[0].content)
        assert sent["batchReference"] == "BATCH_1_1700000000000"
        assert sent["onValidationFailure"] == "CONTINUE"
        assert sent["sourceAccountNumber"] == "8123456789"
        assert sent["notificationInterval"] == 50
        assert [t["reference"] for t in sent["transactionList"]] == ["PAYROLL_1_1", "PAYROLL_1_2"]
        assert sent["transactionList"][1]["amount"] == 200.0
        assert sent["transactionList"][0]["currency"] == "NGN"
        assert sent["transactionList"][0]["destinationBankCode"] == "058"

        assert result.batch_status == "AWAITING_AUTHORIZATION"
        assert result.gateway_reference_for("PAYROLL_1_1") == "MFDS001"
        assert result.gateway_reference_for("PAYROLL_1_2") == "MFDS002"
        assert result.total_fee == Decimal("20.0")

    async def test_partial_response_leaves_missing_references_out(self):
        handler = RecordingHandler()
        handler.ok("POST", "/api/v2/disbursements/batch", {
            "batchReference": "B",
            "batchStatus": "AWAITING_AUTHORIZATION",
            "transactionList": [{"reference": "PAYROLL_1_1", "transactionReference": "MFDS001"}],
        })
        gateway = make_gateway(handler)

        result = await gateway.submit_batch(
            [transfer("PAYROLL_1_1"), transfer("PAYROLL_1_2")], batch_reference="B"
        )

        assert result.gateway_reference_for("PAYROLL_1_2") is None

    @pytest.mark.parametrize(
        ("transfers", "message"),
        [
            ([], "No transfers"),
            ([transfer(amount="0")], "PAYROLL_1_1"),
            ([transfer(amount="-5")], "PAYROLL_1_1"),
            ([transfer(reference="PAYROLL_1_9", account_number="")], "PAYROLL_1_9"),
            ([transfer(reference="PAYROLL_1_8", bank_code="")], "PAYROLL_1_8"),
        ],
    )
    async def test_validation_happens_before_any_request(self, transfers, message):
        handler = RecordingHandler()
        gateway = make_gateway(handler)

        with pytest.raises(ValidationError, match=message):
            await gateway.submit_batch(transfers, batch_reference="B")

        assert handler.requests == []

    async def test_missing_source_account_is_rejected(self):
        handler = RecordingHandler()
        gateway = make_gateway(handler, contract_code="")

        with pytest.raises(ValidationError):
            await gateway.submit_batch([transfer()], batch_reference="B")

        assert handler.requests == []


class TestErrorNormalisation:
    """Gateway failures become GatewayError."""

    async def test_http_error_uses_response_message(self):
        handler = RecordingHandler()
        handler.add("POST", "/api/v2/disbursements/batch", 400, {
            "requestSuccessful": False,
            "responseMessage": "Insufficient balance",
        })
        gateway = make_gateway(handler)

        with pytest.raises(GatewayError) as exc_info:
            await gateway.submit_batch([transfer()], batch_reference="B")

        assert str(exc_info.value) == "Insufficient balance"
        assert exc_info.value.status_code == 400

    async def test_message_fallback_order(self):
        handler = RecordingHandler()
        handler.add("GET", "/api/v2/disbursements/X/status", 422, {"error": "Bad reference"})
        handler.add("GET", "/api/v2/disbursements/Y/status", 500, None)
        gateway = make_gateway(handler)

        with pytest.raises(GatewayError, match="Bad reference"):
            await gateway.get_transaction_status("X")
        with pytest.raises(GatewayError, match=r"Gateway error \(500\)"):
            await gateway.get_transaction_status("Y")

    async def test_unsuccessful_envelope_with_200_raises(self):
        handler = RecordingHandler()
        handler.add("GET", "/api/v2/disbursements/wallet-balance", 200, {
            "requestSuccessful": False,
            "responseMessage": "Account not found",
        })
        gateway = make_gateway(handler)

        with pytest.raises(GatewayError, match="Account not found"):
            await gateway.get_balance()

    async def test_transport_failure_raises_gateway_error(self):
        calls = {"n": 0}

        def handler(request):
            if request.url.path == "/api/v1/auth/login":
                return httpx.Response(200, json={"responseBody": {"accessToken": "t"}})
            calls["n"] += 1
            raise httpx.ConnectError("connection refused", request=request)

        gateway = make_gateway(handler)

        with pytest.raises(GatewayError):
            await gateway.get_balance()
        assert calls["n"] == 1


class TestLookups:
    """Status, details, balance and authorization."""

    async def test_transaction_status_mapping(self):
        handler = RecordingHandler()
        handler.ok("GET", "/api/v2/disbursements/MFDS001/status", {
            "paymentStatus": "failed",
            "paymentDescription": "Beneficiary bank unavailable",
            "transactionReference": "MFDS001",
            "amount": 100,
        })
        gateway = make_gateway(handler)

        status = await gateway.get_transaction_status("MFDS001")

        assert status.status == "FAILED"
        assert status.is_failed is True
        assert status.description == "Beneficiary bank unavailable"
        assert status.amount == Decimal("100")

    async def test_transaction_status_falls_back_to_status_and_failure_reason(self):
        handler = RecordingHandler()
        handler.ok("GET", "/api/v2/disbursements/MFDS002/status", {
            "status": "PAID",
            "failureReason": None,
        })
        gateway = make_gateway(handler)

        status = await gateway.get_transaction_status("MFDS002")

        assert status.is_paid is True
        assert status.description is None

    async def test_batch_details_accepts_transactions_key(self):
        handler = RecordingHandler()
        handler.ok("GET", "/api/v2/disbursements/batch/B1", {
            "batchReference": "B1",
            "batchStatus": "COMPLETED",
            "transactions": [
                {"reference": "PAYROLL_1_1", "transactionReference": "MFDS001", "status": "SUCCESS"},
                {"transactionReference": "orphan"},
            ],
        })
        gateway = make_gateway(handler)

        details = await gateway.get_batch_details("B1")

        assert [t.reference for t in details.transactions] == ["PAYROLL_1_1"]
        assert details.by_reference()["PAYROLL_1_1"].gateway_reference == "MFDS001"

    async def test_balance_queries_source_account(self):
        handler = RecordingHandler()
        handler.ok("GET", "/api/v2/disbursements/wallet-balance", {
            "availableBalance": 1500.5,
            "ledgerBalance": 2000,
        })
        gateway = make_gateway(handler)

        balance = await gateway.get_balance()

        request = handler.api_requests()[0]
        assert request.url.params["accountNumber"] == "8123456789"
        assert balance.available_balance == Decimal("1500.5")
        assert balance.ledger_balance == Decimal("2000")

    async def test_authorize_sends_otp(self):
        handler = RecordingHandler()
        handler.ok("POST", "/api/v2/disbursements/batch/validate-otp", {
            "batchReference": "B1",
            "batchStatus": "IN_PROGRESS",
        })
        gateway = make_gateway(handler)

        result = await gateway.authorize_batch("B1", "123456")

        sent = json.loads(handler.api_requests()[0].content)
        assert sent == {"reference": "B1", "authorizationCode": "123456"}
        assert result.batch_status == "IN_PROGRESS"

    @pytest.mark.parametrize(("reference", "code"), [("", "123456"), ("B1", "")])
    async def test_authorize_requires_reference_and_code(self, reference, code):
        handler = RecordingHandler()
        gateway = make_gateway(handler)

        with pytest.raises(ValidationError):
            await gateway.authorize_batch(reference, code)

        assert handler.requests == []

    async def test_aclose_closes_client(self):
        gateway = make_gateway(RecordingHandler())

        await gateway.aclose()

        assert gateway._client.is_closed
