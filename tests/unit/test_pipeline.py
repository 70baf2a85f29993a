from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING

import pytest

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
from chat_api.domain.chat.pipeline import ChatPipeline, PipelineOptions, PreparedTurn
from chat_api.domain.chat.schemas import ChatModel, ChatSendRequest
from chat_api.domain.chat.services import ConversationService, MessageService, encode_message_content
from chat_api.domain.quota.services import UsageRecordService
from chat_api.lib.completion import ChatTurn, CompletionError, CompletionErrorKind
from chat_api.lib.exceptions import ConversationBusyError, ModelNotAllowedError, ResourceNotFoundError
from tests.helpers import FakeCompletionClient

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from chat_api.domain.chat.events import ChatEvent

pytestmark = pytest.mark.anyio


async def make_user(session: AsyncSession, email: str = "ada@example.com", **values: object) -> m.User:
    users = UserService(session=session)
    user = await users.register(email, "s3cret-password", "Ada")
    if values:
        user = await users.update(values, item_id=user.id)
    await session.commit()
    return user


async def prepare(
    pipeline: ChatPipeline,
    session: AsyncSession,
    user: m.User,
    message: str = "Hello",
    **kwargs: object,
) -> PreparedTurn:
    turn = await pipeline.prepare_turn(
        user=user,
        data=ChatSendRequest(message=message, **kwargs),
        conversations_service=ConversationService(session=session),
        messages_service=MessageService(session=session),
    )
    await session.commit()
    return turn


async def collect(pipeline: ChatPipeline, turn: PreparedTurn) -> list[ChatEvent]:
    return [event async for event in pipeline.stream_turn(turn)]


async def test_successful_turn(
    session: AsyncSession,
    sessionmaker: async_sessionmaker[AsyncSession],
    completion_client: FakeCompletionClient,
) -> None:
    user = await make_user(session)
    pipeline = ChatPipeline(completion_client, sessionmaker)

    turn = await prepare(pipeline, session, user)
    events = await collect(pipeline, turn)

    assert [type(event) for event in events] == [
        MessageStart,
        ReasoningDelta,
        ContentDelta,
        ContentDelta,
        MessageEnd,
        StreamDone,
    ]
    assert isinstance(events[3], ContentDelta)
    assert events[3].content == "Hello world"
    end = events[4]
    assert isinstance(end, MessageEnd)
    assert end.conversation_id == turn.conversation_id
    assert end.total_tokens == 20
    assert end.monthly_usage == 1
    assert end.remaining_messages == 9
    assert completion_client.calls[0]["model"] == "deepseek-r1-250120"
    assert completion_client.calls[0]["messages"] == [ChatTurn(role="user", content="Hello")]
    assert completion_client.streams_closed == 1

    async with sessionmaker() as check:
        conversation = await ConversationService(session=check).get(turn.conversation_id)
        messages = await MessageService(session=check).list_for_conversation(turn.conversation_id)
        stored_user = await UserService(session=check).get(user.id)
        totals = await UsageRecordService(session=check).get_totals(user.id)

    assert conversation.title == "Hello"
    assert conversation.message_count == 2
    assert conversation.total_tokens == 22
    assert [message.role for message in messages] == [m.MessageRole.USER, m.MessageRole.ASSISTANT]
    assert messages[1].status == m.MessageStatus.SENT
    assert messages[1].content == encode_message_content("Hello world", "Thinking")
    assert messages[1].total_tokens == 20
    assert messages[0].total_tokens == 2
    assert stored_user.monthly_message_count == 1
    assert stored_user.total_message_count == 1
    assert totals.records == 1
    assert totals.quantity == 22


async def test_history_is_forwarded_on_follow_up(
    session: AsyncSession,
    sessionmaker: async_sessionmaker[AsyncSession],
    completion_client: FakeCompletionClient,
) -> None:
    user = await make_user(session)
    pipeline = ChatPipeline(completion_client, sessionmaker)
    first = await prepare(pipeline, session, user)
    await collect(pipeline, first)

    second = await prepare(pipeline, session, user, "And again", conversation_id=first.conversation_id)
    await collect(pipeline, second)

    assert second.conversation_id == first.conversation_id
    assert completion_client.calls[1]["messages"] == [
        ChatTurn(role="user", content="Hello"),
        ChatTurn(role="assistant", content="Hello world"),
        ChatTurn(role="user", content="And again"),
    ]
    async with sessionmaker() as check:
        conversation = await ConversationService(session=check).get(first.conversation_id)
    assert conversation.message_count == 4


async def test_upstream_failure_marks_reply_failed(
    session: AsyncSession,
    sessionmaker: async_sessionmaker[AsyncSession],
) -> None:
    user = await make_user(session)
    client = FakeCompletionClient(error=CompletionError(CompletionErrorKind.RATE_LIMITED), fail_after=1)
    pipeline = ChatPipeline(client, sessionmaker)

    turn = await prepare(pipeline, session, user)
    events = await collect(pipeline, turn)

    assert [type(event) for event in events] == [MessageStart, ReasoningDelta, StreamError]
    error = events[-1]
    assert isinstance(error, StreamError)
    assert error.code == "AI_005"
    assert error.message == CompletionErrorKind.RATE_LIMITED.user_message
    assert client.streams_closed == 1

    async with sessionmaker() as check:
        messages = await MessageService(session=check).list_for_conversation(turn.conversation_id)
        conversation = await ConversationService(session=check).get(turn.conversation_id)
        stored_user = await UserService(session=check).get(user.id)
        totals = await UsageRecordService(session=check).get_totals(user.id)

    assert [(message.role, message.status) for message in messages] == [
        (m.MessageRole.USER, m.MessageStatus.SENT),
        (m.MessageRole.ASSISTANT, m.MessageStatus.FAILED),
    ]
    assert conversation.message_count == 0
    assert stored_user.monthly_message_count == 0
    assert totals.records == 0


async def test_unexpected_failure_is_reported_as_unavailable(
    session: AsyncSession,
    sessionmaker: async_sessionmaker[AsyncSession],
) -> None:
    user = await make_user(session)
    pipeline = ChatPipeline(FakeCompletionClient(error=RuntimeError("socket closed")), sessionmaker)

    events = await collect(pipeline, await prepare(pipeline, session, user))

    assert [type(event) for event in events] == [MessageStart, StreamError]
    assert isinstance(events[-1], StreamError)
    assert events[-1].code == "AI_001"


async def test_model_outside_tier_is_rejected(
    session: AsyncSession,
    sessionmaker: async_sessionmaker[AsyncSession],
    completion_client: FakeCompletionClient,
) -> None:
    user = await make_user(session)
    pipeline = ChatPipeline(completion_client, sessionmaker)

    with pytest.raises(ModelNotAllowedError) as exc_info:
        await prepare(pipeline, session, user, model=ChatModel.GPT_4)

    assert exc_info.value.status_code == 403
    assert exc_info.value.details == {
        "requestedModel": "gpt-4",
        "availableModels": ["deepseek-r1-250120"],
        "subscriptionTier": "FREE",
    }
    assert completion_client.calls == []


async def test_paid_tier_may_pick_model(
    session: AsyncSession,
    sessionmaker: async_sessionmaker[AsyncSession],
    completion_client: FakeCompletionClient,
) -> None:
    user = await make_user(session, subscription_tier=m.SubscriptionTier.BASE)
    pipeline = ChatPipeline(completion_client, sessionmaker)

    turn = await prepare(pipeline, session, user, model=ChatModel.GPT_4)

    assert turn.model == "gpt-4"


async def test_foreign_conversation_is_not_found(
    session: AsyncSession,
    sessionmaker: async_sessionmaker[AsyncSession],
    completion_client: FakeCompletionClient,
) -> None:
    owner = await make_user(session)
    stranger = await make_user(session, "eve@example.com")
    pipeline = ChatPipeline(completion_client, sessionmaker)
    turn = await prepare(pipeline, session, owner)

    with pytest.raises(ResourceNotFoundError):
        await prepare(pipeline, session, stranger, conversation_id=turn.conversation_id)


async def test_busy_conversation_is_rejected(
    session: AsyncSession,
    sessionmaker: async_sessionmaker[AsyncSession],
    completion_client: FakeCompletionClient,
) -> None:
    user = await make_user(session)
    pipeline = ChatPipeline(completion_client, sessionmaker)
    turn = await prepare(pipeline, session, user)

    with pytest.raises(ConversationBusyError) as exc_info:
        await prepare(pipeline, session, user, "Are you there?", conversation_id=turn.conversation_id)

    assert exc_info.value.status_code == 409
    assert exc_info.value.details == {"messageId": str(turn.assistant_message_id)}


async def test_prepare_reserves_reply_before_streaming(
    session: AsyncSession,
    sessionmaker: async_sessionmaker[AsyncSession],
    completion_client: FakeCompletionClient,
) -> None:
    user = await make_user(session)
    pipeline = ChatPipeline(completion_client, sessionmaker)

    turn = await prepare(pipeline, session, user)

    async with sessionmaker() as check:
        messages = await MessageService(session=check).list_for_conversation(turn.conversation_id)
    assert [(message.role, message.status) for message in messages] == [
        (m.MessageRole.USER, m.MessageStatus.SENT),
        (m.MessageRole.ASSISTANT, m.MessageStatus.GENERATING),
    ]
    assert messages[1].id == turn.assistant_message_id
    assert turn.history == [ChatTurn(role="user", content="Hello")]

    events = await collect(pipeline, turn)
    assert isinstance(events[0], MessageStart)
    assert events[0].message_id == turn.assistant_message_id


async def test_partial_reply_is_checkpointed(
    session: AsyncSession,
    sessionmaker: async_sessionmaker[AsyncSession],
    completion_client: FakeCompletionClient,
) -> None:
    user = await make_user(session)
    pipeline = ChatPipeline(completion_client, sessionmaker, options=PipelineOptions(checkpoint_every=1))
    turn = await prepare(pipeline, session, user)
    checkpoint: m.Message | None = None

    async for event in pipeline.stream_turn(turn):
        if isinstance(event, ContentDelta) and event.delta == " world":
            async with sessionmaker() as check:
                checkpoint = await MessageService(session=check).get(event.message_id)

    assert checkpoint is not None
    assert checkpoint.status == m.MessageStatus.GENERATING
    assert checkpoint.content == encode_message_content("Hello", "Thinking")


async def test_abandoned_stream_marks_reply_failed(
    session: AsyncSession,
    sessionmaker: async_sessionmaker[AsyncSession],
    completion_client: FakeCompletionClient,
) -> None:
    user = await make_user(session)
    pipeline = ChatPipeline(completion_client, sessionmaker)
    turn = await prepare(pipeline, session, user)

    stream = pipeline.stream_turn(turn)
    start = await stream.__anext__()
    await stream.__anext__()
    await stream.aclose()

    assert isinstance(start, MessageStart)
    assert completion_client.streams_closed == 1
    async with sessionmaker() as check:
        reply = await MessageService(session=check).get(start.message_id)
        stored_user = await UserService(session=check).get(user.id)
    assert reply.status == m.MessageStatus.FAILED
    assert stored_user.monthly_message_count == 0


async def test_last_free_message_exhausts_quota(
    session: AsyncSession,
    sessionmaker: async_sessionmaker[AsyncSession],
    completion_client: FakeCompletionClient,
) -> None:
    user = await make_user(session, monthly_message_count=9, monthly_reset_date=datetime.now(UTC))
    pipeline = ChatPipeline(completion_client, sessionmaker)

    events = await collect(pipeline, await prepare(pipeline, session, user))

    end = events[-2]
    assert isinstance(end, MessageEnd)
    assert end.monthly_usage == 10
    assert end.remaining_messages == 0
