from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING
from uuid import UUID  # noqa: TC003

from advanced_alchemy.base import UUIDAuditBase
from advanced_alchemy.types import DateTimeUTC
from sqlalchemy import ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

if TYPE_CHECKING:
    from .message import Message
    from .user import User


class Conversation(UUIDAuditBase):
    """A chat thread owned by a single user."""

    __tablename__ = "conversation"
    __table_args__ = (
        Index("idx_conversation_user_last_message", "user_id", "last_message_at"),
        {"comment": "Chat conversations"},
    )
    __pii_columns__ = {"title"}

    user_id: Mapped[UUID] = mapped_column(
        ForeignKey("user_account.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    title: Mapped[str] = mapped_column(String(100), nullable=False)
    model_used: Mapped[str | None] = mapped_column(String(100), nullable=True)

    # Denormalized counters maintained by the chat pipeline
    message_count: Mapped[int] = mapped_column(default=0, nullable=False)
    total_tokens: Mapped[int] = mapped_column(default=0, nullable=False)
    last_message_at: Mapped[datetime] = mapped_column(
        DateTimeUTC(timezone=True),
        default=lambda: datetime.now(UTC),
        nullable=False,
    )

    # -----------
    # ORM Relationships
    # ------------

    user: Mapped[User] = relationship(
        back_populates="conversations",
        lazy="noload",
    )
    messages: Mapped[list[Message]] = relationship(
        back_populates="conversation",
        lazy="noload",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="Message.created_at",
    )
