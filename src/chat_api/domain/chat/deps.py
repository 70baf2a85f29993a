"""Dependency providers for chat domain."""

from __future__ import annotations

from typing import TYPE_CHECKING

from chat_api.config import constants
from chat_api.config.app import alchemy
from chat_api.config.base import get_settings
from chat_api.domain.chat.pipeline import ChatPipeline, PipelineOptions
from chat_api.domain.chat.services import ConversationService, MessageService
from chat_api.lib.deps import create_service_provider
from chat_api.lib.usage_policy import UsagePolicy

if TYPE_CHECKING:
    from litestar.datastructures import State

__all__ = (
    "provide_chat_pipeline",
    "provide_conversations_service",
    "provide_messages_service",
)

provide_conversations_service = create_service_provider(
    ConversationService,
    error_messages={"duplicate_key": "Conversation already exists.", "integrity": "Conversation operation failed."},
)

provide_messages_service = create_service_provider(
    MessageService,
    error_messages={"duplicate_key": "Message operation failed.", "integrity": "Message operation failed."},
)


def provide_chat_pipeline(state: State) -> ChatPipeline:
    """Build the pipeline around the completion client created at startup."""
    settings = get_settings()
    return ChatPipeline(
        completion_client=state[constants.COMPLETION_CLIENT_STATE_KEY],
        session_factory=alchemy.get_session,
        usage_policy=UsagePolicy(),
        options=PipelineOptions(
            default_model=settings.ai.DEFAULT_MODEL,
            temperature=settings.ai.TEMPERATURE,
            max_tokens=settings.ai.MAX_TOKENS,
            history_limit=settings.chat.HISTORY_LIMIT,
            title_length=settings.chat.TITLE_LENGTH,
            checkpoint_every=settings.chat.CHECKPOINT_EVERY,
            generating_timeout_seconds=settings.chat.GENERATING_TIMEOUT_SECONDS,
        ),
    )
