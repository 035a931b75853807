"""Read-only view of the recipient directory."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from disbursement_engine.models import Recipient


@dataclass(frozen=True)
class RecipientRecord:
    """Banking details and current salary of one recipient."""

    id: int
    name: str
    account_number: str
    bank_code: str
    salary: Decimal
    is_active: bool = True
    bank_name: str | None = None
    email: str | None = None

    @classmethod
    def from_model(cls, recipient: Recipient) -> RecipientRecord:
        return cls(
            id=recipient.id,
            name=recipient.name,
            account_number=recipient.account_number,
            bank_code=recipient.bank_code,
            salary=recipient.salary,
            is_active=recipient.is_active,
            bank_name=recipient.bank_name,
            email=recipient.email,
        )


class RecipientDirectory:
    """Lookups against the recipient table. Never writes."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def get(self, recipient_id: int) -> RecipientRecord | None:
        async with self._session_factory() as session:
            recipient = await session.get(Recipient, recipient_id)
            return RecipientRecord.from_model(recipient) if recipient else None

    async def get_many(self, recipient_ids: Iterable[int]) -> dict[int, RecipientRecord]:
        """Recipients by id, active or not. Unknown ids are simply absent."""
        ids = list(set(recipient_ids))
        if not ids:
            return {}
        async with self._session_factory() as session:
            result = await session.execute(select(Recipient).where(Recipient.id.in_(ids)))
            return {r.id: RecipientRecord.from_model(r) for r in result.scalars()}

    async def list_active(self) -> list[RecipientRecord]:
        """All active recipients in id order."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(Recipient).where(Recipient.is_active.is_(True)).order_by(Recipient.id)
            )
            return [RecipientRecord.from_model(r) for r in result.scalars()]
