"""The streaming chat turn.

A turn runs in two phases. ``prepare_turn`` executes inside the request: it authorizes
the model, resolves the conversation and commits the user's message with a ``generating``
reply placeholder, so request problems still surface as ordinary HTTP errors.
``stream_turn`` runs while the response streams: it owns a separate database session,
relays upstream deltas as ``ChatEvent`` values and finalizes the turn in a single transaction.
"""

from __future__ import annotations

from contextlib import aclosing
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import anyio
import structlog

from chat_api.db import models as m
from chat_api.domain.accounts.services import UserService
from chat_api.domain.chat.events import (
    ContentDelta,
    MessageEnd,
    MessageStart,
    ReasoningDelta,
    StreamDone,
    StreamError,
)
from chat_api.domain.chat.services import (
    ConversationService,
    MessageService,
    decode_message_content,
    encode_message_content,
)
from chat_api.domain.quota.services import UsageRecordService
from chat_api.lib.completion import (
    ChatTurn,
    CompletionError,
    CompletionErrorKind,
    CompletionParams,
    calculate_cost,
    estimate_token_count,
)
from chat_api.lib.exceptions import ConversationBusyError, ModelNotAllowedError
from chat_api.lib.usage_policy import UsagePolicy

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator, Callable
    from contextlib import AbstractAsyncContextManager
    from uuid import UUID

    from sqlalchemy.ext.asyncio import AsyncSession

    from chat_api.domain.chat.events import ChatEvent
    from chat_api.domain.chat.schemas import ChatSendRequest
    from chat_api.lib.completion import CompletionClient, TokenUsage

__all__ = ("ChatPipeline", "PipelineOptions", "PreparedTurn")

logger = structlog.get_logger()


@dataclass(slots=True)
class PipelineOptions:
    default_model: str = "deepseek-r1-250120"
    temperature: float = 0.7
    max_tokens: int = 2000
    history_limit: int = 20
    title_length: int = 50
    checkpoint_every: int = 25
    generating_timeout_seconds: int = 300


@dataclass(slots=True)
class PreparedTurn:
    """Everything the streaming phase needs, detached from the request session."""

    user_id: UUID
    conversation_id: UUID
    user_message_id: UUID
    assistant_message_id: UUID
    user_message: str
    model: str
    history: list[ChatTurn] = field(default_factory=list)


@dataclass(slots=True)
class _TurnState:
    assistant_id: UUID | None = None
    content: str = ""
    reasoning: str = ""
    usage: TokenUsage | None = None
    chunks: int = 0
    completed: bool = False


class ChatPipeline:
    """Runs chat turns against an upstream completion client.

    Args:
        completion_client: Upstream the replies are streamed from.
        session_factory: Opens the database session used while streaming.
        usage_policy: Tier entitlements.
        options: Model defaults and pipeline tuning.
    """

    def __init__(
        self,
        completion_client: CompletionClient,
        session_factory: Callable[[], AbstractAsyncContextManager[AsyncSession]],
        usage_policy: UsagePolicy | None = None,
        options: PipelineOptions | None = None,
    ) -> None:
        self.completion_client = completion_client
        self.session_factory = session_factory
        self.usage_policy = usage_policy or UsagePolicy()
        self.options = options or PipelineOptions()

    async def prepare_turn(
        self,
        *,
        user: m.User,
        data: ChatSendRequest,
        conversations_service: ConversationService,
        messages_service: MessageService,
    ) -> PreparedTurn:
        """Authorize the request, persist the user's message and reserve the reply.

        Raises:
            ModelNotAllowedError: The model is not included in the user's tier.
            ResourceNotFoundError: The conversation does not exist or belongs to someone else.
            ConversationBusyError: A reply is still streaming in the conversation.
        """
        model = data.model.value if data.model is not None else self.options.default_model
        if not self.usage_policy.is_model_allowed(user, model):
            raise ModelNotAllowedError(
                requested_model=model,
                available_models=list(self.usage_policy.available_models(user)),
                subscription_tier=m.SubscriptionTier(user.subscription_tier).value,
            )

        if data.conversation_id is not None:
            conversation = await conversations_service.get_owned(data.conversation_id, user.id)
            in_flight = await messages_service.find_in_flight(
                conversation.id,
                max_age_seconds=self.options.generating_timeout_seconds,
            )
            if in_flight is not None:
                raise ConversationBusyError(details={"messageId": str(in_flight.id)})
        else:
            conversation = await conversations_service.start(
                user.id,
                data.message,
                model,
                title_length=self.options.title_length,
            )

        # committed together with the reply placeholder, which marks the conversation busy
        user_message = await messages_service.create(
            {
                "conversation_id": conversation.id,
                "role": m.MessageRole.USER,
                "content": data.message,
                "status": m.MessageStatus.SENT,
                "model_used": model,
            },
        )
        history = await messages_service.list_history(conversation.id, limit=self.options.history_limit)
        assistant = await messages_service.create(
            {
                "conversation_id": conversation.id,
                "role": m.MessageRole.ASSISTANT,
                "content": "",
                "status": m.MessageStatus.GENERATING,
                "model_used": model,
            },
            auto_commit=True,
        )
        logger.info(
            "Chat turn prepared",
            user_id=user.id,
            conversation_id=conversation.id,
            message_id=user_message.id,
            reply_id=assistant.id,
            model=model,
            history=len(history),
        )
        return PreparedTurn(
            user_id=user.id,
            conversation_id=conversation.id,
            user_message_id=user_message.id,
            assistant_message_id=assistant.id,
            user_message=data.message,
            model=model,
            history=[self._to_chat_turn(message) for message in history],
        )

    async def stream_turn(self, turn: PreparedTurn) -> AsyncGenerator[ChatEvent, None]:
        """Stream the assistant reply for a prepared turn.

        Yields ``MessageStart``, deltas, ``MessageEnd`` and ``StreamDone`` on success. Any
        failure is reported as a single ``StreamError`` after the assistant message has been
        marked failed. When the consumer goes away the upstream stream is closed and the
        assistant message is marked failed without further events.
        """
        state = _TurnState(assistant_id=turn.assistant_message_id)
        async with self.session_factory() as db_session:
            messages_service = MessageService(session=db_session)
            try:
                yield MessageStart(message_id=turn.assistant_message_id, conversation_id=turn.conversation_id)

                async with aclosing(self._relay_completion(turn, state, messages_service)) as relay:
                    async for event in relay:
                        yield event

                end = await self._finalize(turn, state, db_session)
                state.completed = True
                yield end
                yield StreamDone()
            except (anyio.get_cancelled_exc_class(), GeneratorExit):
                if state.completed:
                    raise
                logger.warning(
                    "Chat stream aborted by client",
                    conversation_id=turn.conversation_id,
                    message_id=state.assistant_id,
                )
                with anyio.CancelScope(shield=True):
                    await self._mark_failed(db_session, turn, state)
                raise
            except Exception as exc:
                logger.exception(
                    "Chat stream failed",
                    user_id=turn.user_id,
                    conversation_id=turn.conversation_id,
                    message_id=state.assistant_id,
                    model=turn.model,
                    error=str(exc),
                )
                await self._mark_failed(db_session, turn, state)
                kind = exc.kind if isinstance(exc, CompletionError) else CompletionErrorKind.UNAVAILABLE
                yield StreamError(code=kind.value, message=kind.user_message)

    async def _relay_completion(
        self,
        turn: PreparedTurn,
        state: _TurnState,
        messages_service: MessageService,
    ) -> AsyncGenerator[ChatEvent, None]:
        assert state.assistant_id is not None
        params = CompletionParams(temperature=self.options.temperature, max_tokens=self.options.max_tokens)
        stream = self.completion_client.stream_completion(turn.model, turn.history, params)
        try:
            async for chunk in stream:
                if chunk.usage is not None:
                    state.usage = chunk.usage
                if chunk.reasoning:
                    state.reasoning += chunk.reasoning
                    yield ReasoningDelta(message_id=state.assistant_id, delta=chunk.reasoning, reasoning=state.reasoning)
                if chunk.content:
                    state.content += chunk.content
                    yield ContentDelta(message_id=state.assistant_id, delta=chunk.content, content=state.content)
                state.chunks += 1
                if self.options.checkpoint_every and state.chunks % self.options.checkpoint_every == 0:
                    await messages_service.update(
                        {"content": encode_message_content(state.content, state.reasoning or None)},
                        item_id=state.assistant_id,
                        auto_commit=True,
                    )
        finally:
            with anyio.CancelScope(shield=True):
                await _aclose(stream)

    async def _finalize(self, turn: PreparedTurn, state: _TurnState, db_session: AsyncSession) -> MessageEnd:
        """Persist the reply, counters and ledger entry in one transaction."""
        assert state.assistant_id is not None
        messages_service = MessageService(session=db_session)
        users_service = UserService(session=db_session)
        user_tokens = estimate_token_count(turn.user_message)
        if state.usage is not None:
            completion_tokens = state.usage.total_tokens
        else:
            completion_tokens = estimate_token_count(state.reasoning + state.content)

        await messages_service.update(
            {
                "content": encode_message_content(state.content, state.reasoning or None),
                "status": m.MessageStatus.SENT,
                "total_tokens": completion_tokens,
            },
            item_id=state.assistant_id,
        )
        await messages_service.update({"total_tokens": user_tokens}, item_id=turn.user_message_id)
        await ConversationService(session=db_session).record_turn(
            turn.conversation_id,
            tokens=completion_tokens + user_tokens,
            model=turn.model,
        )
        user = await users_service.record_message_sent(turn.user_id)
        await UsageRecordService(session=db_session).record_message_usage(
            user_id=turn.user_id,
            quantity=user_tokens + completion_tokens,
            cost=calculate_cost(turn.model, user_tokens, completion_tokens),
            model_used=turn.model,
            message_id=state.assistant_id,
            conversation_id=turn.conversation_id,
        )
        await db_session.commit()
        logger.info(
            "Chat turn completed",
            user_id=turn.user_id,
            conversation_id=turn.conversation_id,
            message_id=state.assistant_id,
            model=turn.model,
            tokens=completion_tokens + user_tokens,
        )
        return MessageEnd(
            message_id=state.assistant_id,
            conversation_id=turn.conversation_id,
            total_tokens=completion_tokens,
            remaining_messages=self.usage_policy.remaining_messages(user),
            monthly_usage=user.monthly_message_count,
        )

    async def _mark_failed(self, db_session: AsyncSession, turn: PreparedTurn, state: _TurnState) -> None:
        await db_session.rollback()
        await MessageService(session=db_session).mark_failed(
            turn.conversation_id,
            message_id=state.assistant_id,
        )

    @staticmethod
    def _to_chat_turn(message: m.Message) -> ChatTurn:
        content = message.content
        if message.role == m.MessageRole.ASSISTANT:
            content, _ = decode_message_content(content)
        return ChatTurn(role=m.MessageRole(message.role).value, content=content)


async def _aclose(stream: Any) -> None:
    aclose = getattr(stream, "aclose", None)
    if aclose is not None:
        await aclose()
