"""Shared test helpers: clock control and signed notification bodies."""

from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone

from disbursement_engine.services.notifications import compute_signature

WEBHOOK_SECRET = "test-webhook-secret"


class FrozenClock:
    """Controllable UTC clock for the job queue."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2026, 1, 15, 9, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class SleepRecorder:
    """Stands in for asyncio.sleep so retry backoff takes no wall time."""

    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


def sign(body: bytes, secret: str = WEBHOOK_SECRET) -> str:
    """Signature header value for a webhook body."""
    return compute_signature(secret, body)


def notification_body(
    reference: str | int | None,
    event_type: str = "SUCCESSFUL_DISBURSEMENT",
    **event_data,
) -> bytes:
    """JSON body of a gateway disbursement notification."""
    return json.dumps({
        "eventType": event_type,
        "eventData": {"reference": reference, **event_data},
    }).encode()
