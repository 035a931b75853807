"""Disbursement engine services."""

from disbursement_engine.services.disbursement import DisbursementService
from disbursement_engine.services.job_runner import JobQueue, JobRunner, JobStatus
from disbursement_engine.services.ledger_store import LedgerStore, UpdateOutcome
from disbursement_engine.services.notifications import (
    NotificationOutcome,
    NotificationReceiver,
)
from disbursement_engine.services.orchestrator import BatchOrchestrator
from disbursement_engine.services.recipients import RecipientDirectory
from disbursement_engine.services.reconciliation import Reconciler
from disbursement_engine.services.state_machine import BatchStatus, ItemStatus

__all__ = [
    "BatchOrchestrator",
    "BatchStatus",
    "DisbursementService",
    "ItemStatus",
    "JobQueue",
    "JobRunner",
    "JobStatus",
    "LedgerStore",
    "NotificationOutcome",
    "NotificationReceiver",
    "RecipientDirectory",
    "Reconciler",
    "UpdateOutcome",
]
