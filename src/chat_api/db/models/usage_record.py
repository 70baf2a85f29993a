"""Append-only ledger of billable usage."""

from __future__ import annotations

import enum
from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID  # noqa: TC003

from advanced_alchemy.base import UUIDAuditBase
from sqlalchemy import Enum, ForeignKey, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

if TYPE_CHECKING:
    from .user import User


class UsageType(str, enum.Enum):
    """Kind of resource a usage record accounts for."""
    MESSAGE = "message"
    IMAGE = "image"


class UsageRecord(UUIDAuditBase):
    """One billable unit of work performed for a user."""

    __tablename__ = "usage_record"
    __table_args__ = {"comment": "Usage ledger for cost accounting"}

    user_id: Mapped[UUID] = mapped_column(
        ForeignKey("user_account.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    # Ledger rows outlive the messages and conversations they describe
    message_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("message.id", ondelete="SET NULL"),
        nullable=True,
    )
    conversation_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("conversation.id", ondelete="SET NULL"),
        nullable=True,
    )
    usage_type: Mapped[UsageType] = mapped_column(
        Enum(UsageType, name="usage_type_enum", native_enum=False),
        default=UsageType.MESSAGE,
        nullable=False,
    )
    quantity: Mapped[int] = mapped_column(default=0, nullable=False, comment="Tokens consumed")
    cost: Mapped[Decimal] = mapped_column(
        Numeric(12, 6),
        default=Decimal("0"),
        nullable=False,
        comment="Estimated upstream cost in USD",
    )
    model_used: Mapped[str | None] = mapped_column(String(100), nullable=True)

    # -----------
    # ORM Relationships
    # ------------

    user: Mapped[User] = relationship(
        back_populates="usage_records",
        lazy="noload",
    )
