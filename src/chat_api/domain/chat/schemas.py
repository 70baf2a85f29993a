from __future__ import annotations

import enum
from datetime import datetime  # noqa: TC003
from decimal import Decimal  # noqa: TC003
from uuid import UUID  # noqa: TC003

from pydantic import Field

from chat_api.db.models import MessageRole, MessageStatus, SubscriptionTier  # noqa: TC001
from chat_api.lib.schema import PydanticBaseModel

__all__ = (
    "ChatMessage",
    "ChatModel",
    "ChatSendRequest",
    "ConversationDetail",
    "ConversationList",
    "ConversationSummary",
    "ConversationTitleUpdate",
    "Pagination",
    "UsageSummary",
)


class ChatModel(str, enum.Enum):
    """Models a chat request may ask for."""

    DEEPSEEK_R1 = "deepseek-r1-250120"
    GPT_35_TURBO = "gpt-3.5-turbo"
    GPT_4 = "gpt-4"
    GPT_4_TURBO = "gpt-4-turbo"


class ChatSendRequest(PydanticBaseModel):
    """Chat send request."""

    message: str = Field(min_length=1, max_length=4000, description="The user's message")
    conversation_id: UUID | None = Field(
        default=None,
        description="Existing conversation to continue; a new one is created when omitted",
    )
    model: ChatModel | None = Field(default=None, description="Model to answer with; the default model if omitted")


class ConversationSummary(PydanticBaseModel):
    id: UUID
    title: str
    model_used: str | None = None
    message_count: int = 0
    total_tokens: int = 0
    last_message_at: datetime
    created_at: datetime


class ChatMessage(PydanticBaseModel):
    """A stored message, with assistant reasoning split from the answer."""

    id: UUID
    role: MessageRole
    content: str
    reasoning: str | None = None
    status: MessageStatus
    total_tokens: int = 0
    model_used: str | None = None
    created_at: datetime


class ConversationDetail(ConversationSummary):
    messages: list[ChatMessage] = Field(default_factory=list)


class Pagination(PydanticBaseModel):
    page: int
    limit: int
    total: int
    total_pages: int


class ConversationList(PydanticBaseModel):
    conversations: list[ConversationSummary]
    pagination: Pagination


class ConversationTitleUpdate(PydanticBaseModel):
    title: str = Field(min_length=1, max_length=100)


class UsageSummary(PydanticBaseModel):
    """Usage statistics response model."""

    subscription_tier: SubscriptionTier
    monthly_usage: int
    monthly_limit: int | None = Field(description="Messages included per month; null when unlimited")
    remaining_messages: int = Field(description="Messages left this month; -1 when unlimited")
    total_usage: int
    reset_date: datetime
    available_models: list[str]
    total_tokens: int
    total_cost: Decimal
