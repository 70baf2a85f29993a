"""Async client for the chat API.

Wraps the HTTP endpoints for use from scripts and other services. Streams chat replies
as decoded events, refreshes an expired access token once per request and retries
network failures and server errors with exponential backoff. Client errors (4xx) are
raised immediately.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import anyio
import httpx
import structlog

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Awaitable, Callable
    from types import TracebackType
    from uuid import UUID

__all__ = ("ChatAPIError", "ChatClient", "RetryPolicy", "iter_sse_data")

logger = structlog.get_logger()

NETWORK_ERROR = "NETWORK_ERROR"
DONE_FRAME = "[DONE]"


class ChatAPIError(Exception):
    """An error response, or a request that never got one."""

    def __init__(
        self,
        message: str,
        *,
        code: str,
        status_code: int | None = None,
        details: Any = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details

    @property
    def retryable(self) -> bool:
        """Network failures and server errors may succeed on a later attempt."""
        return self.status_code is None or self.status_code >= 500

    @classmethod
    def from_response(cls, response: httpx.Response) -> ChatAPIError:
        try:
            body = response.json()
        except ValueError:
            body = None
        error = body.get("error") if isinstance(body, dict) else None
        if isinstance(error, dict):
            return cls(
                error.get("message") or response.reason_phrase,
                code=error.get("code") or "UNKNOWN",
                status_code=response.status_code,
                details=error.get("details"),
            )
        return cls(response.reason_phrase or "Request failed", code="UNKNOWN", status_code=response.status_code)


@dataclass(slots=True)
class RetryPolicy:
    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 10.0
    backoff_factor: float = 2.0

    def delay(self, attempt: int) -> float:
        """Seconds to wait after the failed ``attempt`` (1-based)."""
        return min(self.base_delay * self.backoff_factor ** (attempt - 1), self.max_delay)


async def iter_sse_data(lines: AsyncIterator[str]) -> AsyncIterator[str]:
    """Yield the ``data`` payload of each Server-Sent Event in ``lines``.

    Multi-line data fields are joined with newlines. Comments and other fields are ignored.
    """
    buffer: list[str] = []
    async for raw_line in lines:
        line = raw_line.rstrip("\r")
        if not line:
            if buffer:
                yield "\n".join(buffer)
                buffer = []
            continue
        if line.startswith(":"):
            continue
        field, _, value = line.partition(":")
        if field == "data":
            buffer.append(value.removeprefix(" "))
    if buffer:
        yield "\n".join(buffer)


class ChatClient:
    """Client for the chat API.

    Args:
        base_url: Server root, e.g. ``http://localhost:8000``.
        access_token: Bearer token used for authenticated calls.
        refresh_token: Used to obtain a new access token after a 401.
        retry: Backoff settings for transient failures.
        timeout: Per request timeout in seconds.
        transport: Custom httpx transport.
        sleep: Awaitable used between attempts.
    """

    def __init__(
        self,
        base_url: str,
        *,
        access_token: str | None = None,
        refresh_token: str | None = None,
        retry: RetryPolicy | None = None,
        timeout: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[Any]] = anyio.sleep,
    ) -> None:
        self.access_token = access_token
        self.refresh_token = refresh_token
        self.retry = retry or RetryPolicy()
        self._sleep = sleep
        self._http = httpx.AsyncClient(base_url=f"{base_url.rstrip('/')}/api/v1", timeout=timeout, transport=transport)

    async def __aenter__(self) -> ChatClient:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    # auth

    async def register(self, email: str, password: str, full_name: str) -> dict[str, Any]:
        session = await self._request(
            "POST",
            "/auth/register",
            body={"email": email, "password": password, "fullName": full_name},
            authenticated=False,
        )
        self._store_tokens(session["tokens"])
        return session

    async def login(self, email: str, password: str) -> dict[str, Any]:
        session = await self._request(
            "POST",
            "/auth/login",
            body={"email": email, "password": password},
            authenticated=False,
        )
        self._store_tokens(session["tokens"])
        return session

    async def refresh(self) -> dict[str, Any]:
        """Exchange the refresh token for a new token pair."""
        if not self.refresh_token:
            raise ChatAPIError("No refresh token available", code="AUTH_004", status_code=401)
        tokens = await self._request(
            "POST",
            "/auth/refresh",
            body={"refreshToken": self.refresh_token},
            authenticated=False,
        )
        self._store_tokens(tokens)
        return tokens

    async def logout(self) -> None:
        try:
            await self._request("POST", "/auth/logout", authenticated=False)
        finally:
            self.access_token = None
            self.refresh_token = None

    async def me(self) -> dict[str, Any]:
        return await self._request("GET", "/auth/me")

    async def update_profile(self, full_name: str) -> dict[str, Any]:
        return await self._request("PUT", "/auth/profile", body={"fullName": full_name})

    # chat

    async def send_message(
        self,
        message: str,
        conversation_id: UUID | str | None = None,
        model: str | None = None,
    ) -> AsyncIterator[dict[str, Any]]:
        """Send a message and yield the streamed events as dictionaries.

        Only establishing the stream is retried; once events arrive a broken connection is
        raised to the caller. Iteration ends after the terminal ``[DONE]`` frame or an
        ``error`` event.
        """
        payload: dict[str, Any] = {"message": message}
        if conversation_id is not None:
            payload["conversationId"] = str(conversation_id)
        if model is not None:
            payload["model"] = model
        response = await self._send_with_retry(
            "POST",
            "/chat/send",
            body=payload,
            headers={"Accept": "text/event-stream", "Cache-Control": "no-cache"},
            stream=True,
        )
        try:
            async for data in iter_sse_data(response.aiter_lines()):
                if data == DONE_FRAME:
                    return
                event = json.loads(data)
                yield event
                if event.get("type") == "error":
                    return
        except httpx.TransportError as exc:
            raise ChatAPIError(str(exc) or "Stream interrupted", code=NETWORK_ERROR) from exc
        finally:
            await response.aclose()

    async def usage(self) -> dict[str, Any]:
        return await self._request("GET", "/chat/usage")

    async def list_conversations(self, page: int = 1, limit: int = 20) -> dict[str, Any]:
        return await self._request("GET", "/chat/conversations", params={"page": page, "limit": limit})

    async def get_conversation(self, conversation_id: UUID | str) -> dict[str, Any]:
        return await self._request("GET", f"/chat/conversations/{conversation_id}")

    async def rename_conversation(self, conversation_id: UUID | str, title: str) -> dict[str, Any]:
        return await self._request("PUT", f"/chat/conversations/{conversation_id}/title", body={"title": title})

    async def delete_conversation(self, conversation_id: UUID | str) -> None:
        await self._request("DELETE", f"/chat/conversations/{conversation_id}")

    # subscription

    async def subscription_status(self) -> dict[str, Any]:
        return await self._request("GET", "/subscription/status")

    async def create_checkout_session(self, tier: str, success_url: str, cancel_url: str) -> dict[str, Any]:
        return await self._request(
            "POST",
            "/subscription/create-checkout-session",
            body={"tier": tier, "successUrl": success_url, "cancelUrl": cancel_url},
        )

    async def create_portal_session(self, return_url: str) -> dict[str, Any]:
        return await self._request("POST", "/subscription/create-portal-session", body={"returnUrl": return_url})

    async def cancel_subscription(self, immediately: bool = False) -> dict[str, Any]:
        return await self._request("POST", "/subscription/cancel", body={"immediately": immediately})

    async def resume_subscription(self) -> dict[str, Any]:
        return await self._request("POST", "/subscription/resume")

    # transport

    def _store_tokens(self, tokens: dict[str, Any]) -> None:
        self.access_token = tokens["accessToken"]
        self.refresh_token = tokens.get("refreshToken", self.refresh_token)

    async def _request(
        self,
        method: str,
        path: str,
        *,
        body: Any = None,
        params: dict[str, Any] | None = None,
        authenticated: bool = True,
    ) -> Any:
        """Perform a JSON call and unwrap the ``data`` of the success envelope."""
        response = await self._send_with_retry(
            method,
            path,
            body=body,
            params=params,
            authenticated=authenticated,
        )
        content = response.json()
        if isinstance(content, dict) and "data" in content:
            return content["data"]
        return content

    async def _send_with_retry(
        self,
        method: str,
        path: str,
        *,
        body: Any = None,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        authenticated: bool = True,
        stream: bool = False,
    ) -> httpx.Response:
        attempt = 1
        refreshed = False
        while True:
            try:
                response = await self._send(method, path, body, params, headers, authenticated, stream)
                if response.status_code == 401 and authenticated and self.refresh_token and not refreshed:
                    await response.aclose()
                    refreshed = True
                    await self.refresh()
                    continue
                if response.is_error:
                    if stream:
                        await response.aread()
                        await response.aclose()
                    raise ChatAPIError.from_response(response)
                return response
            except ChatAPIError as exc:
                if not exc.retryable or attempt >= self.retry.max_attempts:
                    raise
                delay = self.retry.delay(attempt)
                logger.warning(
                    "Retrying request",
                    method=method,
                    path=path,
                    attempt=attempt,
                    delay=delay,
                    status_code=exc.status_code,
                    error_code=exc.code,
                )
                attempt += 1
                await self._sleep(delay)

    async def _send(
        self,
        method: str,
        path: str,
        body: Any,
        params: dict[str, Any] | None,
        headers: dict[str, str] | None,
        authenticated: bool,
        stream: bool,
    ) -> httpx.Response:
        request_headers = dict(headers or {})
        if authenticated and self.access_token:
            request_headers["Authorization"] = f"Bearer {self.access_token}"
        request = self._http.build_request(method, path, json=body, params=params, headers=request_headers)
        try:
            return await self._http.send(request, stream=stream)
        except httpx.TransportError as exc:
            raise ChatAPIError(str(exc) or "Network error", code=NETWORK_ERROR) from exc
