"""Pytest fixtures for disbursement engine tests."""

from __future__ import annotations

from decimal import Decimal
from typing import AsyncGenerator

import pytest

from disbursement_engine.config import GatewayConfig, JobConfig, Settings
from disbursement_engine.database import Database
from disbursement_engine.gateway.stub import StubGateway
from disbursement_engine.models import Recipient
from disbursement_engine.services.disbursement import DisbursementService
from disbursement_engine.services.job_runner import JobQueue, JobRunner
from disbursement_engine.services.ledger_store import LedgerStore
from disbursement_engine.services.notifications import NotificationReceiver
from disbursement_engine.services.orchestrator import BatchOrchestrator
from disbursement_engine.services.recipients import RecipientDirectory
from disbursement_engine.services.reconciliation import Reconciler
from helpers import WEBHOOK_SECRET, FrozenClock, SleepRecorder, notification_body, sign


@pytest.fixture
def settings(tmp_path) -> Settings:
    """Settings pointing at a throwaway SQLite file and the stub gateway."""
    return Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path}/ledger.db",
        host="127.0.0.1",
        port=8000,
        debug=False,
        authorization_settle_seconds=0,
        gateway=GatewayConfig(mode="stub", webhook_secret=WEBHOOK_SECRET),
        jobs=JobConfig(max_attempts=3, backoff_base_seconds=2, backoff_factor=2),
    )


@pytest.fixture
async def database(settings) -> AsyncGenerator[Database, None]:
    """Database with all tables created."""
    db = Database(settings.database_url)
    await db.create_schema()
    yield db
    await db.dispose()


@pytest.fixture
async def recipients(database) -> dict[str, int]:
    """Seed the directory: three active recipients and one inactive."""
    rows = [
        Recipient(name="Ada Obi", salary=Decimal("100.00"), account_number="0123456789",
                  bank_code="058", bank_name="GTBank"),
        Recipient(name="Bayo Ade", salary=Decimal("200.00"), account_number="1234567890",
                  bank_code="044", bank_name="Access Bank"),
        Recipient(name="Chi Eze", salary=Decimal("300.00"), account_number="2345678901",
                  bank_code="057", bank_name="Zenith Bank"),
        Recipient(name="Dami Ola", salary=Decimal("400.00"), account_number="3456789012",
                  bank_code="033", bank_name="UBA", is_active=False),
    ]
    async with database.session_factory.begin() as session:
        session.add_all(rows)
        await session.flush()
        ids = {r.name.split()[0].lower(): r.id for r in rows}
    return ids


@pytest.fixture
def gateway() -> StubGateway:
    return StubGateway()


@pytest.fixture
def store(database) -> LedgerStore:
    return LedgerStore(database.session_factory)


@pytest.fixture
def directory(database) -> RecipientDirectory:
    return RecipientDirectory(database.session_factory)


@pytest.fixture
def orchestrator(store, directory, gateway) -> BatchOrchestrator:
    return BatchOrchestrator(store, directory, gateway)


@pytest.fixture
def reconciler(store, gateway) -> Reconciler:
    return Reconciler(store, gateway)


@pytest.fixture
def receiver(store) -> NotificationReceiver:
    return NotificationReceiver(store, WEBHOOK_SECRET)


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def queue(database, settings, clock) -> JobQueue:
    return JobQueue(database.session_factory, settings.jobs, clock=clock)


@pytest.fixture
def sleeps() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def runner(queue, orchestrator, sleeps) -> JobRunner:
    return JobRunner(queue, orchestrator, worker_id="test-worker", sleep=sleeps)


@pytest.fixture
def service(store, directory, gateway, orchestrator, reconciler, receiver, queue):
    return DisbursementService(
        store,
        directory,
        gateway,
        orchestrator,
        reconciler,
        receiver,
        queue,
        authorization_settle_seconds=0,
    )


@pytest.fixture
async def batch(service, recipients):
    """PENDING batch with one item per active recipient (100, 200, 300)."""
    return await service.create_batch("2026-01")


@pytest.fixture
def notify(receiver):
    """Deliver a correctly signed notification to the receiver."""

    async def _notify(reference: str, event_type: str = "SUCCESSFUL_DISBURSEMENT", **event_data):
        body = notification_body(reference, event_type, **event_data)
        return await receiver.handle(body, sign(body))

    return _notify
