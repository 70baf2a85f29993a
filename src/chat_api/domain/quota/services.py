"""Service for the usage ledger."""

from __future__ import annotations

from decimal import Decimal
from typing import TYPE_CHECKING, NamedTuple

from advanced_alchemy.filters import LimitOffset, OrderBy
from advanced_alchemy.repository import SQLAlchemyAsyncRepository
from advanced_alchemy.service import SQLAlchemyAsyncRepositoryService
from sqlalchemy import func, select

from chat_api.db import models as m

if TYPE_CHECKING:
    from collections.abc import Sequence
    from uuid import UUID


class UsageTotals(NamedTuple):
    """Lifetime ledger totals for a user."""

    records: int
    quantity: int
    cost: Decimal


class UsageRecordService(SQLAlchemyAsyncRepositoryService[m.UsageRecord]):
    """Handles database operations for usage records."""

    class Repository(SQLAlchemyAsyncRepository[m.UsageRecord]):
        """UsageRecord SQLAlchemy Repository."""

        model_type = m.UsageRecord

    repository_type = Repository

    async def record_message_usage(
        self,
        *,
        user_id: UUID,
        quantity: int,
        cost: Decimal,
        model_used: str,
        message_id: UUID | None = None,
        conversation_id: UUID | None = None,
        auto_commit: bool = False,
    ) -> m.UsageRecord:
        """Append a ``MESSAGE`` record to the ledger.

        Args:
            user_id: UUID of the user billed
            quantity: Tokens consumed by the turn
            cost: Estimated upstream cost
            model_used: Model that produced the reply
            message_id: The assistant message the usage belongs to
            conversation_id: The conversation the usage belongs to
            auto_commit: Commit immediately instead of leaving it to the caller

        Returns:
            The new UsageRecord
        """
        return await self.create(
            {
                "user_id": user_id,
                "quantity": quantity,
                "cost": cost,
                "model_used": model_used,
                "message_id": message_id,
                "conversation_id": conversation_id,
                "usage_type": m.UsageType.MESSAGE,
            },
            auto_commit=auto_commit,
        )

    async def get_totals(self, user_id: UUID) -> UsageTotals:
        """Aggregate the ledger of a user.

        Returns:
            Record count, total tokens and total cost (zeros when the ledger is empty)
        """
        result = await self.repository.session.execute(
            select(
                func.count(m.UsageRecord.id),
                func.coalesce(func.sum(m.UsageRecord.quantity), 0),
                func.coalesce(func.sum(m.UsageRecord.cost), 0),
            ).where(m.UsageRecord.user_id == user_id),
        )
        records, quantity, cost = result.one()
        return UsageTotals(records=records, quantity=int(quantity), cost=Decimal(str(cost)))

    async def list_recent(self, user_id: UUID, limit: int = 10) -> Sequence[m.UsageRecord]:
        return await self.list(
            m.UsageRecord.user_id == user_id,
            OrderBy(field_name="created_at", sort_order="desc"),
            LimitOffset(limit=limit, offset=0),
        )
