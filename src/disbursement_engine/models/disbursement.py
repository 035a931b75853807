"""Disbursement batch and item models.

A batch exclusively owns its items. Items hold a non-owning reference to a
directory recipient and a snapshot of the amount at creation time.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from disbursement_engine.models.base import Base, TimestampMixin


class Batch(Base, TimestampMixin):
    """One logical disbursement run."""

    __tablename__ = "disbursement_batch"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    period: Mapped[str] = mapped_column(String(100), nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    item_count: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="pending")
    completed_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    failed_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    gateway_batch_reference: Mapped[str | None] = mapped_column(String(100), nullable=True)
    processed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'processing', 'completed', 'failed', 'partially_completed')",
            name="disbursement_batch_status_check",
        ),
        CheckConstraint(
            "completed_count + failed_count <= item_count",
            name="disbursement_batch_counts_check",
        ),
    )

    items: Mapped[list[BatchItem]] = relationship(
        back_populates="batch",
        cascade="all, delete-orphan",
        order_by="BatchItem.id",
    )


class BatchItem(Base, TimestampMixin):
    """One recipient's payment within a batch."""

    __tablename__ = "disbursement_batch_item"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    batch_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("disbursement_batch.id", ondelete="CASCADE"),
        nullable=False,
    )
    recipient_id: Mapped[int] = mapped_column(Integer, nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="pending")
    gateway_reference: Mapped[str | None] = mapped_column(String(100), nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    processed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'processing', 'completed', 'failed')",
            name="disbursement_batch_item_status_check",
        ),
        CheckConstraint(
            "gateway_reference IS NULL OR status <> 'pending'",
            name="disbursement_batch_item_reference_check",
        ),
        CheckConstraint("amount > 0", name="disbursement_batch_item_amount_check"),
        Index("disbursement_batch_item_by_batch", "batch_id"),
    )

    batch: Mapped[Batch] = relationship(back_populates="items")
