"""Events relayed to the client while a chat turn streams.

Each event becomes one ``data: <json>`` frame; ``StreamDone`` becomes the ``[DONE]``
sentinel. A successful turn emits ``MessageStart``, any number of ``ReasoningDelta`` /
``ContentDelta``, ``MessageEnd`` and ``StreamDone`` in that order. A failed turn ends
with a single ``StreamError`` and no sentinel.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, ClassVar, TypeAlias

if TYPE_CHECKING:
    from uuid import UUID

__all__ = (
    "DONE_SENTINEL",
    "ChatEvent",
    "ContentDelta",
    "MessageEnd",
    "MessageStart",
    "ReasoningDelta",
    "StreamDone",
    "StreamError",
    "encode_event",
)

DONE_SENTINEL = "[DONE]"


@dataclass(slots=True, frozen=True)
class MessageStart:
    type: ClassVar[str] = "message_start"

    message_id: UUID
    conversation_id: UUID

    def to_payload(self) -> dict[str, Any]:
        return {"type": self.type, "messageId": str(self.message_id), "conversationId": str(self.conversation_id)}


@dataclass(slots=True, frozen=True)
class ContentDelta:
    """New answer text; ``content`` is everything streamed so far."""

    type: ClassVar[str] = "content_delta"

    message_id: UUID
    delta: str
    content: str

    def to_payload(self) -> dict[str, Any]:
        return {"type": self.type, "messageId": str(self.message_id), "delta": self.delta, "content": self.content}


@dataclass(slots=True, frozen=True)
class ReasoningDelta:
    """New reasoning trace text; ``reasoning`` is the trace streamed so far."""

    type: ClassVar[str] = "reasoning_delta"

    message_id: UUID
    delta: str
    reasoning: str

    def to_payload(self) -> dict[str, Any]:
        return {"type": self.type, "messageId": str(self.message_id), "delta": self.delta, "reasoning": self.reasoning}


@dataclass(slots=True, frozen=True)
class MessageEnd:
    type: ClassVar[str] = "message_end"

    message_id: UUID
    conversation_id: UUID
    total_tokens: int
    remaining_messages: int
    monthly_usage: int

    def to_payload(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "messageId": str(self.message_id),
            "conversationId": str(self.conversation_id),
            "totalTokens": self.total_tokens,
            "usage": {"remainingMessages": self.remaining_messages, "monthlyUsage": self.monthly_usage},
        }


@dataclass(slots=True, frozen=True)
class StreamError:
    type: ClassVar[str] = "error"

    code: str
    message: str

    def to_payload(self) -> dict[str, Any]:
        return {"type": self.type, "error": {"code": self.code, "message": self.message}}


@dataclass(slots=True, frozen=True)
class StreamDone:
    type: ClassVar[str] = "done"


ChatEvent: TypeAlias = MessageStart | ContentDelta | ReasoningDelta | MessageEnd | StreamError | StreamDone


def encode_event(event: ChatEvent) -> str:
    """Render an event as the ``data`` field of an SSE frame."""
    if isinstance(event, StreamDone):
        return DONE_SENTINEL
    return json.dumps(event.to_payload(), ensure_ascii=False)
