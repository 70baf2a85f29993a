from __future__ import annotations

import enum
from typing import TYPE_CHECKING
from uuid import UUID  # noqa: TC003

from advanced_alchemy.base import UUIDAuditBase
from sqlalchemy import Enum, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

if TYPE_CHECKING:
    from .conversation import Conversation


class MessageRole(str, enum.Enum):
    """Message roles in the upstream chat completion format."""
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class MessageStatus(str, enum.Enum):
    """Lifecycle of a message within a chat turn."""
    SENDING = "sending"
    SENT = "sent"
    GENERATING = "generating"
    FAILED = "failed"


class Message(UUIDAuditBase):
    """Individual messages within a conversation."""

    __tablename__ = "message"
    __table_args__ = (
        Index("idx_message_conversation_created", "conversation_id", "created_at"),
        {"comment": "Messages in chat conversations"},
    )
    __pii_columns__ = {"content"}

    role: Mapped[MessageRole] = mapped_column(
        Enum(MessageRole, name="message_role_enum", native_enum=False),
        nullable=False,
    )
    # Plain text, or a JSON object {"reasoning", "content"} for reasoning models
    content: Mapped[str] = mapped_column(Text, nullable=False, default="")
    status: Mapped[MessageStatus] = mapped_column(
        Enum(MessageStatus, name="message_status_enum", native_enum=False),
        default=MessageStatus.SENT,
        nullable=False,
    )
    total_tokens: Mapped[int] = mapped_column(default=0, nullable=False)
    model_used: Mapped[str | None] = mapped_column(String(100), nullable=True)

    conversation_id: Mapped[UUID] = mapped_column(
        ForeignKey("conversation.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    # -----------
    # ORM Relationships
    # ------------

    conversation: Mapped[Conversation] = relationship(
        back_populates="messages",
        lazy="noload",
    )
