from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

import httpx
import pytest

from chat_api.client import ChatAPIError, ChatClient, RetryPolicy, iter_sse_data

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable

pytestmark = pytest.mark.anyio


def envelope(data: Any, status_code: int = 200) -> httpx.Response:
    return httpx.Response(status_code, json={"success": True, "data": data, "meta": {"timestamp": "now"}})


def error(status_code: int, code: str, message: str = "failed", details: Any = None) -> httpx.Response:
    body: dict[str, Any] = {"success": False, "error": {"code": code, "message": message}, "meta": {}}
    if details is not None:
        body["error"]["details"] = details
    return httpx.Response(status_code, json=body)


class Recorder:
    """Replays responses in order and records the requests it was sent."""

    def __init__(self, *responses: httpx.Response | Callable[[httpx.Request], httpx.Response]) -> None:
        self.responses = list(responses)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        response = self.responses.pop(0)
        return response(request) if callable(response) else response


def make_client(recorder: Recorder, delays: list[float], **kwargs: Any) -> ChatClient:
    async def sleep(delay: float) -> None:
        delays.append(delay)

    return ChatClient(
        "http://chat.test",
        transport=httpx.MockTransport(recorder),
        sleep=sleep,
        **kwargs,
    )


def test_retry_policy_backoff() -> None:
    policy = RetryPolicy()

    assert [policy.delay(attempt) for attempt in (1, 2, 3, 4, 5)] == [1.0, 2.0, 4.0, 8.0, 10.0]


async def test_login_stores_tokens() -> None:
    recorder = Recorder(
        envelope({"user": {"email": "ada@example.com"}, "tokens": {"accessToken": "a1", "refreshToken": "r1"}}),
        envelope({"email": "ada@example.com"}),
    )
    async with make_client(recorder, []) as client:
        session = await client.login("ada@example.com", "s3cret-password")
        me = await client.me()

    assert session["user"]["email"] == "ada@example.com"
    assert me == {"email": "ada@example.com"}
    assert recorder.requests[0].url.path == "/api/v1/auth/login"
    assert json.loads(recorder.requests[0].content) == {"email": "ada@example.com", "password": "s3cret-password"}
    assert "authorization" not in recorder.requests[0].headers
    assert recorder.requests[1].headers["authorization"] == "Bearer a1"


async def test_server_errors_are_retried_with_backoff() -> None:
    delays: list[float] = []
    recorder = Recorder(error(503, "SYS_001"), error(500, "SYS_001"), envelope({"conversations": []}))
    async with make_client(recorder, delays, access_token="a1") as client:
        result = await client.list_conversations(page=2, limit=5)

    assert result == {"conversations": []}
    assert delays == [1.0, 2.0]
    assert len(recorder.requests) == 3
    assert recorder.requests[0].url.params["page"] == "2"


async def test_retries_give_up_after_max_attempts() -> None:
    delays: list[float] = []
    recorder = Recorder(error(502, "EXT_001"), error(502, "EXT_001"), error(502, "EXT_001"))
    async with make_client(recorder, delays, access_token="a1") as client:
        with pytest.raises(ChatAPIError) as exc_info:
            await client.usage()

    assert exc_info.value.code == "EXT_001"
    assert exc_info.value.status_code == 502
    assert delays == [1.0, 2.0]


async def test_network_errors_are_retried() -> None:
    def broken(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    delays: list[float] = []
    recorder = Recorder(broken, envelope({"status": "ok"}))
    async with make_client(recorder, delays, access_token="a1") as client:
        assert await client.subscription_status() == {"status": "ok"}

    assert delays == [1.0]


async def test_client_errors_are_not_retried() -> None:
    delays: list[float] = []
    details = {"currentUsage": 10, "monthlyLimit": 10}
    recorder = Recorder(error(429, "BIZ_002", "Monthly message limit of 10 reached.", details))
    async with make_client(recorder, delays, access_token="a1") as client:
        with pytest.raises(ChatAPIError) as exc_info:
            await client.usage()

    assert exc_info.value.code == "BIZ_002"
    assert exc_info.value.details == details
    assert not exc_info.value.retryable
    assert delays == []


async def test_expired_access_token_is_refreshed_once() -> None:
    recorder = Recorder(
        error(401, "AUTH_001"),
        envelope({"accessToken": "a2", "refreshToken": "r2", "tokenType": "Bearer"}),
        envelope({"email": "ada@example.com"}),
    )
    async with make_client(recorder, [], access_token="a1", refresh_token="r1") as client:
        await client.me()

        assert client.access_token == "a2"
        assert client.refresh_token == "r2"

    assert recorder.requests[1].url.path == "/api/v1/auth/refresh"
    assert json.loads(recorder.requests[1].content) == {"refreshToken": "r1"}
    assert recorder.requests[2].headers["authorization"] == "Bearer a2"


async def test_second_unauthorized_response_is_raised() -> None:
    recorder = Recorder(
        error(401, "AUTH_001"),
        envelope({"accessToken": "a2", "refreshToken": "r2"}),
        error(401, "AUTH_001"),
    )
    async with make_client(recorder, [], access_token="a1", refresh_token="r1") as client:
        with pytest.raises(ChatAPIError) as exc_info:
            await client.me()

    assert exc_info.value.status_code == 401


async def test_send_message_yields_events_until_done() -> None:
    body = (
        'data: {"type": "message_start", "messageId": "m1", "conversationId": "c1"}\r\n\r\n'
        ": keep-alive\r\n\r\n"
        'data: {"type": "content_delta", "messageId": "m1", "delta": "Hi", "content": "Hi"}\r\n\r\n'
        "data: [DONE]\r\n\r\n"
        'data: {"type": "content_delta", "messageId": "m1", "delta": "late", "content": "Hi late"}\r\n\r\n'
    )
    recorder = Recorder(httpx.Response(200, content=body.encode(), headers={"content-type": "text/event-stream"}))
    async with make_client(recorder, [], access_token="a1") as client:
        events = [event async for event in client.send_message("Hello", conversation_id="c1", model="gpt-4")]

    assert [event["type"] for event in events] == ["message_start", "content_delta"]
    assert json.loads(recorder.requests[0].content) == {"message": "Hello", "conversationId": "c1", "model": "gpt-4"}
    assert recorder.requests[0].headers["accept"] == "text/event-stream"


async def test_send_message_stops_after_error_event() -> None:
    body = 'data: {"type": "error", "error": {"code": "AI_005", "message": "Slow down"}}\n\n'
    recorder = Recorder(httpx.Response(200, content=body.encode()))
    async with make_client(recorder, [], access_token="a1") as client:
        events = [event async for event in client.send_message("Hello")]

    assert events == [{"type": "error", "error": {"code": "AI_005", "message": "Slow down"}}]


async def test_send_message_raises_rejection() -> None:
    recorder = Recorder(error(403, "BIZ_001", "Model not available", {"requestedModel": "gpt-4"}))
    async with make_client(recorder, [], access_token="a1") as client:
        with pytest.raises(ChatAPIError) as exc_info:
            async for _ in client.send_message("Hello", model="gpt-4"):
                pass

    assert exc_info.value.status_code == 403
    assert exc_info.value.details == {"requestedModel": "gpt-4"}


async def test_iter_sse_data_joins_multiline_data() -> None:
    async def lines() -> AsyncIterator[str]:
        for line in ["event: note", "data: first", "data: second", "", "data:tight", ""]:
            yield line

    assert [data async for data in iter_sse_data(lines())] == ["first\nsecond", "tight"]
