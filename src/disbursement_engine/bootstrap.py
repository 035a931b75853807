"""Explicit wiring of the engine's components.

The process entry point (API lifespan, CLI command) builds one container
and closes it on shutdown. Nothing here is a module-level singleton.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from disbursement_engine.config import Settings
from disbursement_engine.database import Database
from disbursement_engine.gateway import DisbursementGateway, build_gateway
from disbursement_engine.services.disbursement import DisbursementService
from disbursement_engine.services.job_runner import JobQueue, JobRunner
from disbursement_engine.services.ledger_store import LedgerStore
from disbursement_engine.services.notifications import NotificationReceiver
from disbursement_engine.services.orchestrator import BatchOrchestrator
from disbursement_engine.services.recipients import RecipientDirectory
from disbursement_engine.services.reconciliation import Reconciler

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    """Every long-lived component of one process."""

    settings: Settings
    database: Database
    gateway: DisbursementGateway
    store: LedgerStore
    directory: RecipientDirectory
    orchestrator: BatchOrchestrator
    reconciler: Reconciler
    receiver: NotificationReceiver
    queue: JobQueue
    service: DisbursementService

    @classmethod
    def build(
        cls,
        settings: Settings,
        *,
        database: Database | None = None,
        gateway: DisbursementGateway | None = None,
    ) -> ServiceContainer:
        """Create all components from settings.

        Args:
            settings: Loaded settings.
            database: Existing database handle (tests); created from
                settings.database_url otherwise.
            gateway: Gateway adapter override (tests); chosen by
                settings.gateway.mode otherwise.
        """
        database = database or Database(settings.database_url, echo=settings.debug)
        gateway = gateway or build_gateway(settings.gateway)

        store = LedgerStore(database.session_factory)
        directory = RecipientDirectory(database.session_factory)
        orchestrator = BatchOrchestrator(store, directory, gateway)
        reconciler = Reconciler(store, gateway)
        receiver = NotificationReceiver(store, settings.gateway.webhook_secret)
        queue = JobQueue(database.session_factory, settings.jobs)

        service = DisbursementService(
            store,
            directory,
            gateway,
            orchestrator,
            reconciler,
            receiver,
            queue,
            authorization_settle_seconds=settings.authorization_settle_seconds,
        )

        logger.info("Engine wired with %s gateway", gateway.gateway_name)
        return cls(
            settings=settings,
            database=database,
            gateway=gateway,
            store=store,
            directory=directory,
            orchestrator=orchestrator,
            reconciler=reconciler,
            receiver=receiver,
            queue=queue,
            service=service,
        )

    def job_runner(self, worker_id: str | None = None) -> JobRunner:
        """A worker bound to this container's queue and orchestrator."""
        return JobRunner(self.queue, self.orchestrator, worker_id=worker_id)

    async def aclose(self) -> None:
        """Close the gateway client and the database pool."""
        await self.gateway.aclose()
        await self.database.dispose()
