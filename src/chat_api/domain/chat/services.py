"""Services for chat domain."""

from __future__ import annotations

import json
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

from advanced_alchemy.filters import LimitOffset, OrderBy
from advanced_alchemy.repository import SQLAlchemyAsyncRepository
from advanced_alchemy.service import SQLAlchemyAsyncRepositoryService
from sqlalchemy import select, update

from chat_api.db import models as m
from chat_api.lib.exceptions import ResourceNotFoundError

if TYPE_CHECKING:
    from collections.abc import Sequence
    from uuid import UUID

__all__ = (
    "ConversationService",
    "MessageService",
    "decode_message_content",
    "encode_message_content",
)


def encode_message_content(content: str, reasoning: str | None = None) -> str:
    """Store reasoning alongside the answer so later reads can separate the two."""
    if not reasoning:
        return content
    return json.dumps({"reasoning": reasoning, "content": content}, ensure_ascii=False)


def decode_message_content(raw: str) -> tuple[str, str | None]:
    """Split stored content into ``(content, reasoning)``.

    Plain text, and JSON that is not a reasoning envelope, is returned unchanged.
    """
    if not raw.startswith("{"):
        return raw, None
    try:
        payload = json.loads(raw)
    except ValueError:
        return raw, None
    if not isinstance(payload, dict) or not isinstance(payload.get("content"), str) or "reasoning" not in payload:
        return raw, None
    return payload["content"], payload["reasoning"]


class ConversationService(SQLAlchemyAsyncRepositoryService[m.Conversation]):
    """Handles database operations for conversations."""

    class Repository(SQLAlchemyAsyncRepository[m.Conversation]):
        """Conversation SQLAlchemy Repository."""

        model_type = m.Conversation

    repository_type = Repository

    async def get_owned(self, conversation_id: UUID, user_id: UUID) -> m.Conversation:
        """Load a conversation belonging to ``user_id``.

        Raises:
            ResourceNotFoundError: The conversation does not exist or belongs to someone else.
        """
        conversation = await self.get_one_or_none(
            m.Conversation.id == conversation_id,
            m.Conversation.user_id == user_id,
        )
        if conversation is None:
            raise ResourceNotFoundError(detail="Conversation not found")
        return conversation

    async def start(self, user_id: UUID, first_message: str, model: str, title_length: int = 50) -> m.Conversation:
        """Create a conversation titled after its first message."""
        return await self.create(
            {
                "user_id": user_id,
                "title": first_message[:title_length],
                "model_used": model,
                "last_message_at": datetime.now(UTC),
            },
        )

    async def list_for_user(
        self,
        user_id: UUID,
        page: int = 1,
        limit: int = 20,
    ) -> tuple[Sequence[m.Conversation], int]:
        """Newest activity first."""
        return await self.list_and_count(
            m.Conversation.user_id == user_id,
            OrderBy(field_name="last_message_at", sort_order="desc"),
            LimitOffset(limit=limit, offset=(page - 1) * limit),
        )

    async def record_turn(self, conversation_id: UUID, tokens: int, model: str) -> None:
        """Count a completed user/assistant exchange.

        Counters are incremented in SQL so concurrent turns do not overwrite each other.
        """
        now = datetime.now(UTC)
        await self.repository.session.execute(
            update(m.Conversation)
            .where(m.Conversation.id == conversation_id)
            .values(
                message_count=m.Conversation.message_count + 2,
                total_tokens=m.Conversation.total_tokens + tokens,
                last_message_at=now,
                model_used=model,
                updated_at=now,
            )
            .execution_options(synchronize_session=False),
        )


class MessageService(SQLAlchemyAsyncRepositoryService[m.Message]):
    """Handles database operations for messages."""

    class Repository(SQLAlchemyAsyncRepository[m.Message]):
        """Message SQLAlchemy Repository."""

        model_type = m.Message

    repository_type = Repository

    async def list_for_conversation(self, conversation_id: UUID) -> Sequence[m.Message]:
        """All messages, oldest first."""
        return await self.list(
            m.Message.conversation_id == conversation_id,
            OrderBy(field_name="created_at", sort_order="asc"),
        )

    async def list_history(self, conversation_id: UUID, limit: int = 20) -> list[m.Message]:
        """The most recent delivered messages, oldest first.

        Failed and still generating replies are left out so they are never sent upstream.
        """
        result = await self.repository.session.execute(
            select(m.Message)
            .where(m.Message.conversation_id == conversation_id, m.Message.status == m.MessageStatus.SENT)
            .order_by(m.Message.created_at.desc(), m.Message.id.desc())
            .limit(limit),
        )
        return list(reversed(result.scalars().all()))

    async def find_in_flight(self, conversation_id: UUID, max_age_seconds: int) -> m.Message | None:
        """Return an assistant reply still being generated, ignoring ones older than ``max_age_seconds``."""
        since = datetime.now(UTC) - timedelta(seconds=max_age_seconds)
        result = await self.repository.session.execute(
            select(m.Message)
            .where(
                m.Message.conversation_id == conversation_id,
                m.Message.role == m.MessageRole.ASSISTANT,
                m.Message.status == m.MessageStatus.GENERATING,
                m.Message.created_at >= since,
            )
            .limit(1),
        )
        return result.scalar_one_or_none()

    async def latest_assistant(self, conversation_id: UUID) -> m.Message | None:
        result = await self.repository.session.execute(
            select(m.Message)
            .where(m.Message.conversation_id == conversation_id, m.Message.role == m.MessageRole.ASSISTANT)
            .order_by(m.Message.created_at.desc())
            .limit(1),
        )
        return result.scalar_one_or_none()

    async def mark_failed(
        self,
        conversation_id: UUID,
        message_id: UUID | None = None,
        auto_commit: bool = True,
    ) -> m.Message | None:
        """Flag the assistant reply of a failed turn.

        Falls back to the newest assistant message of the conversation when the reply id
        is not known.
        """
        message = await self.get_one_or_none(m.Message.id == message_id) if message_id else None
        if message is None:
            message = await self.latest_assistant(conversation_id)
        if message is None:
            return None
        return await self.update({"status": m.MessageStatus.FAILED}, item_id=message.id, auto_commit=auto_commit)
