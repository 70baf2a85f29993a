"""Controllers for chat domain."""

from __future__ import annotations

from typing import TYPE_CHECKING, Annotated

import structlog
from litestar import Controller, Request, get, post
from litestar.di import Provide
from litestar.params import Dependency
from litestar.response import ServerSentEvent, ServerSentEventMessage
from litestar.status_codes import HTTP_200_OK

from chat_api.domain.accounts.guards import requires_active_user
from chat_api.domain.chat import urls
from chat_api.domain.chat.deps import (
    provide_chat_pipeline,
    provide_conversations_service,
    provide_messages_service,
)
from chat_api.domain.chat.events import encode_event
from chat_api.domain.chat.schemas import ChatSendRequest, UsageSummary
from chat_api.domain.quota.deps import provide_usage_policy, provide_usage_record_service
from chat_api.domain.quota.guards import requires_message_quota
from chat_api.lib.schema import SuccessResponse, success_response

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    from chat_api.db import models as m
    from chat_api.domain.chat.pipeline import ChatPipeline
    from chat_api.domain.chat.services import ConversationService, MessageService
    from chat_api.domain.quota.services import UsageRecordService
    from chat_api.lib.usage_policy import UsagePolicy

logger = structlog.get_logger()

__all__ = ("ChatController",)


class ChatController(Controller):
    """Streaming chat and usage reporting."""

    tags = ["Chat"]
    guards = [requires_active_user]
    dependencies = {
        "conversations_service": Provide(provide_conversations_service),
        "messages_service": Provide(provide_messages_service),
        "usage_records_service": Provide(provide_usage_record_service),
        "usage_policy": Provide(provide_usage_policy, sync_to_thread=False),
        "chat_pipeline": Provide(provide_chat_pipeline, sync_to_thread=False),
    }

    @post(
        path=urls.CHAT_SEND,
        operation_id="ChatSend",
        guards=[requires_message_quota],
        status_code=HTTP_200_OK,
    )
    async def send_message(
        self,
        current_user: m.User,
        data: ChatSendRequest,
        chat_pipeline: Annotated[ChatPipeline, Dependency(skip_validation=True)],
        conversations_service: ConversationService,
        messages_service: MessageService,
    ) -> ServerSentEvent:
        """Send a message and stream the assistant reply as Server-Sent Events."""
        turn = await chat_pipeline.prepare_turn(
            user=current_user,
            data=data,
            conversations_service=conversations_service,
            messages_service=messages_service,
        )

        async def event_stream() -> AsyncGenerator[ServerSentEventMessage, None]:
            async for event in chat_pipeline.stream_turn(turn):
                yield ServerSentEventMessage(data=encode_event(event), sep="\n")

        return ServerSentEvent(event_stream())

    @get(path=urls.CHAT_USAGE, operation_id="ChatUsage")
    async def get_usage(
        self,
        request: Request,
        current_user: m.User,
        usage_policy: Annotated[UsagePolicy, Dependency(skip_validation=True)],
        usage_records_service: UsageRecordService,
    ) -> SuccessResponse[UsageSummary]:
        """Get current usage statistics for the user."""
        stats = usage_policy.get_usage_stats(current_user)
        totals = await usage_records_service.get_totals(current_user.id)
        return success_response(
            UsageSummary(
                subscription_tier=stats.subscription_tier,
                monthly_usage=stats.monthly_usage,
                monthly_limit=stats.monthly_limit,
                remaining_messages=stats.remaining_messages,
                total_usage=stats.total_usage,
                reset_date=stats.reset_date,
                available_models=list(usage_policy.available_models(current_user)),
                total_tokens=totals.quantity,
                total_cost=totals.cost,
            ),
            request,
        )
