"""Streaming chat completion client for OpenAI compatible endpoints."""

from __future__ import annotations

import enum
import math
import re
from dataclasses import dataclass, field
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Protocol

import openai
import structlog
from openai import AsyncOpenAI

from chat_api.lib.exceptions import ExternalServiceError

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Sequence

__all__ = (
    "MODEL_PRICING",
    "ChatTurn",
    "CompletionChunk",
    "CompletionClient",
    "CompletionError",
    "CompletionErrorKind",
    "CompletionParams",
    "OpenAICompletionClient",
    "TokenUsage",
    "calculate_cost",
    "estimate_token_count",
)

logger = structlog.get_logger()

# USD per 1K tokens as (input, output)
MODEL_PRICING: dict[str, tuple[Decimal, Decimal]] = {
    "gpt-3.5-turbo": (Decimal("0.001"), Decimal("0.002")),
    "gpt-4": (Decimal("0.03"), Decimal("0.06")),
    "gpt-4-turbo": (Decimal("0.01"), Decimal("0.03")),
    "deepseek-r1-250120": (Decimal("0.001"), Decimal("0.002")),
    "deepseek-chat": (Decimal("0.001"), Decimal("0.002")),
}

_LATIN_CHARS = re.compile(r"[a-zA-Z0-9\s.,!?;:'\"()\-]")


class CompletionErrorKind(str, enum.Enum):
    """Closed set of upstream failure classes surfaced to clients."""

    UNAVAILABLE = "AI_001"
    QUOTA_EXCEEDED = "AI_002"
    MODEL_NOT_FOUND = "AI_003"
    INVALID_REQUEST = "AI_004"
    RATE_LIMITED = "AI_005"

    @property
    def user_message(self) -> str:
        return _USER_MESSAGES[self]


_USER_MESSAGES: dict[CompletionErrorKind, str] = {
    CompletionErrorKind.UNAVAILABLE: "The AI service is temporarily unavailable. Please try again later.",
    CompletionErrorKind.QUOTA_EXCEEDED: "The AI service quota has been exhausted. Please try again later.",
    CompletionErrorKind.MODEL_NOT_FOUND: "The selected model is not available.",
    CompletionErrorKind.INVALID_REQUEST: "The request could not be processed by the AI service.",
    CompletionErrorKind.RATE_LIMITED: "Too many requests to the AI service. Please wait a moment and try again.",
}


class CompletionError(ExternalServiceError):
    """Upstream completion failure, classified into a ``CompletionErrorKind``."""

    def __init__(self, kind: CompletionErrorKind, *, upstream_message: str | None = None) -> None:
        self.kind = kind
        self.upstream_message = upstream_message
        super().__init__(detail=kind.user_message, code=kind.value)

    @classmethod
    def from_openai(cls, exc: openai.OpenAIError) -> CompletionError:
        """Classify an SDK exception.

        Returns:
            The matching ``CompletionError``; anything unrecognised is ``UNAVAILABLE``.
        """
        code = getattr(exc, "code", None)
        error_type = getattr(exc, "type", None)
        if code == "insufficient_quota":
            kind = CompletionErrorKind.QUOTA_EXCEEDED
        elif code == "model_not_found" or isinstance(exc, openai.NotFoundError):
            kind = CompletionErrorKind.MODEL_NOT_FOUND
        elif code == "rate_limit_exceeded" or isinstance(exc, openai.RateLimitError):
            kind = CompletionErrorKind.RATE_LIMITED
        elif "invalid_request_error" in (code, error_type) or isinstance(exc, openai.BadRequestError):
            kind = CompletionErrorKind.INVALID_REQUEST
        else:
            kind = CompletionErrorKind.UNAVAILABLE
        return cls(kind, upstream_message=str(exc))


@dataclass(slots=True)
class ChatTurn:
    """One prior message forwarded upstream."""

    role: str
    content: str

    def to_dict(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}


@dataclass(slots=True)
class CompletionParams:
    temperature: float = 0.7
    max_tokens: int = 2000
    extra: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class TokenUsage:
    """Cumulative token counts reported by the upstream."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


@dataclass(slots=True)
class CompletionChunk:
    """Normalized streaming delta."""

    content: str | None = None
    reasoning: str | None = None
    usage: TokenUsage | None = None


class CompletionClient(Protocol):
    """Contract the chat pipeline streams completions through."""

    def stream_completion(
        self,
        model: str,
        messages: Sequence[ChatTurn],
        params: CompletionParams,
    ) -> AsyncIterator[CompletionChunk]: ...


class OpenAICompletionClient:
    """``CompletionClient`` backed by ``openai.AsyncOpenAI``.

    Works with any endpoint speaking the chat completions protocol. Reasoning models that
    expose their trace on a separate delta field (``reasoning_content`` or ``reasoning``)
    are surfaced through ``CompletionChunk.reasoning``.
    """

    def __init__(
        self,
        api_key: str,
        base_url: str | None = None,
        timeout: float = 60.0,
        client: AsyncOpenAI | None = None,
    ) -> None:
        self._client = client or AsyncOpenAI(api_key=api_key, base_url=base_url, timeout=timeout, max_retries=0)

    async def stream_completion(
        self,
        model: str,
        messages: Sequence[ChatTurn],
        params: CompletionParams,
    ) -> AsyncIterator[CompletionChunk]:
        try:
            stream = await self._client.chat.completions.create(
                model=model,
                messages=[message.to_dict() for message in messages],  # type: ignore[misc]
                temperature=params.temperature,
                max_tokens=params.max_tokens,
                stream=True,
                stream_options={"include_usage": True},
                **params.extra,
            )
        except openai.OpenAIError as exc:
            logger.warning("Completion request rejected", model=model, error=str(exc))
            raise CompletionError.from_openai(exc) from exc

        try:
            async for chunk in stream:
                usage = None
                if chunk.usage is not None:
                    usage = TokenUsage(
                        prompt_tokens=chunk.usage.prompt_tokens or 0,
                        completion_tokens=chunk.usage.completion_tokens or 0,
                        total_tokens=chunk.usage.total_tokens or 0,
                    )
                content = reasoning = None
                if chunk.choices:
                    delta = chunk.choices[0].delta
                    content = delta.content or None
                    reasoning = getattr(delta, "reasoning_content", None) or getattr(delta, "reasoning", None)
                if content is None and reasoning is None and usage is None:
                    continue
                yield CompletionChunk(content=content, reasoning=reasoning, usage=usage)
        except openai.OpenAIError as exc:
            logger.warning("Completion stream failed", model=model, error=str(exc))
            raise CompletionError.from_openai(exc) from exc
        finally:
            await stream.close()

    async def close(self) -> None:
        await self._client.close()


def estimate_token_count(text: str) -> int:
    """Approximate the token count of ``text``.

    Latin letters, digits, whitespace and common punctuation average four characters per
    token; every other character (CJK and the like) about one and a half.
    """
    latin = len(_LATIN_CHARS.findall(text))
    other = len(text) - latin
    return math.ceil(latin / 4 + other / 1.5)


def calculate_cost(model: str, input_tokens: int, output_tokens: int) -> Decimal:
    """Estimated USD cost of a completion.

    Returns:
        The cost, or zero for models missing from ``MODEL_PRICING``.
    """
    pricing = MODEL_PRICING.get(model)
    if pricing is None:
        logger.warning("No pricing configured for model", model=model)
        return Decimal("0")
    input_price, output_price = pricing
    return (Decimal(input_tokens) / 1000) * input_price + (Decimal(output_tokens) / 1000) * output_price
