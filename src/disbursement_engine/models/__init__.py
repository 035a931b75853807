"""ORM models."""

from disbursement_engine.models.base import Base, TimestampMixin
from disbursement_engine.models.disbursement import Batch, BatchItem
from disbursement_engine.models.job import DisbursementJob
from disbursement_engine.models.recipient import Recipient

__all__ = [
    "Base",
    "TimestampMixin",
    "Batch",
    "BatchItem",
    "DisbursementJob",
    "Recipient",
]
