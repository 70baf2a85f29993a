"""Conversation history controllers."""

from __future__ import annotations

import math
from typing import TYPE_CHECKING, Annotated
from uuid import UUID

import structlog
from litestar import Controller, Request, delete, get, put
from litestar.di import Provide
from litestar.params import Parameter
from litestar.status_codes import HTTP_200_OK

from chat_api.db import models as m
from chat_api.domain.accounts.guards import requires_active_user
from chat_api.domain.chat import urls
from chat_api.domain.chat.deps import provide_conversations_service, provide_messages_service
from chat_api.domain.chat.schemas import (
    ChatMessage,
    ConversationDetail,
    ConversationList,
    ConversationSummary,
    ConversationTitleUpdate,
    Pagination,
)
from chat_api.domain.chat.services import decode_message_content
from chat_api.lib.schema import Message, SuccessResponse, success_response

if TYPE_CHECKING:
    from chat_api.domain.chat.services import ConversationService, MessageService

logger = structlog.get_logger()

__all__ = ("ConversationController",)


def _to_chat_message(message: m.Message) -> ChatMessage:
    content, reasoning = message.content, None
    if message.role == m.MessageRole.ASSISTANT:
        content, reasoning = decode_message_content(message.content)
    return ChatMessage(
        id=message.id,
        role=message.role,
        content=content,
        reasoning=reasoning,
        status=message.status,
        total_tokens=message.total_tokens,
        model_used=message.model_used,
        created_at=message.created_at,
    )


class ConversationController(Controller):
    """Browse, rename and delete the conversations of the signed in user."""

    tags = ["Conversations"]
    guards = [requires_active_user]
    dependencies = {
        "conversations_service": Provide(provide_conversations_service),
        "messages_service": Provide(provide_messages_service),
    }

    @get(path=urls.CONVERSATIONS_LIST, operation_id="ListConversations")
    async def list_conversations(
        self,
        request: Request,
        current_user: m.User,
        conversations_service: ConversationService,
        page: Annotated[int, Parameter(ge=1, query="page")] = 1,
        limit: Annotated[int, Parameter(ge=1, le=100, query="limit")] = 20,
    ) -> SuccessResponse[ConversationList]:
        """List conversations, most recently active first."""
        conversations, total = await conversations_service.list_for_user(current_user.id, page=page, limit=limit)
        return success_response(
            ConversationList(
                conversations=[ConversationSummary.model_validate(item) for item in conversations],
                pagination=Pagination(
                    page=page,
                    limit=limit,
                    total=total,
                    total_pages=math.ceil(total / limit) if total else 0,
                ),
            ),
            request,
        )

    @get(path=urls.CONVERSATIONS_DETAIL, operation_id="GetConversation")
    async def get_conversation(
        self,
        request: Request,
        current_user: m.User,
        conversations_service: ConversationService,
        messages_service: MessageService,
        conversation_id: Annotated[UUID, Parameter(title="Conversation ID")],
    ) -> SuccessResponse[ConversationDetail]:
        """Get a conversation with its messages, oldest first."""
        conversation = await conversations_service.get_owned(conversation_id, current_user.id)
        messages = await messages_service.list_for_conversation(conversation.id)
        summary = ConversationSummary.model_validate(conversation)
        return success_response(
            ConversationDetail(**summary.model_dump(), messages=[_to_chat_message(item) for item in messages]),
            request,
        )

    @put(path=urls.CONVERSATIONS_TITLE, operation_id="UpdateConversationTitle")
    async def update_title(
        self,
        request: Request,
        current_user: m.User,
        conversations_service: ConversationService,
        data: ConversationTitleUpdate,
        conversation_id: Annotated[UUID, Parameter(title="Conversation ID")],
    ) -> SuccessResponse[ConversationSummary]:
        """Rename a conversation."""
        conversation = await conversations_service.get_owned(conversation_id, current_user.id)
        conversation = await conversations_service.update({"title": data.title}, item_id=conversation.id)
        return success_response(ConversationSummary.model_validate(conversation), request)

    @delete(path=urls.CONVERSATIONS_DELETE, operation_id="DeleteConversation", status_code=HTTP_200_OK)
    async def delete_conversation(
        self,
        request: Request,
        current_user: m.User,
        conversations_service: ConversationService,
        conversation_id: Annotated[UUID, Parameter(title="Conversation ID")],
    ) -> SuccessResponse[Message]:
        """Delete a conversation and all of its messages."""
        conversation = await conversations_service.get_owned(conversation_id, current_user.id)
        await conversations_service.delete(conversation.id)
        logger.info("Conversation deleted", user_id=current_user.id, conversation_id=conversation.id)
        return success_response(Message(message="Conversation deleted"), request)
