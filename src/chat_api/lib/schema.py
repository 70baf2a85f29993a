"""Shared pydantic base types and the success envelope."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, Generic, TypeVar
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from chat_api.config.constants import REQUEST_ID_HEADER

if TYPE_CHECKING:
    from litestar.connection import ASGIConnection

__all__ = (
    "Message",
    "PydanticBaseModel",
    "ResponseMeta",
    "SuccessResponse",
    "get_request_id",
    "success_response",
)

T = TypeVar("T")


class PydanticBaseModel(BaseModel):
    """Base model with camel case config."""

    model_config = ConfigDict(
        populate_by_name=True,
        alias_generator=to_camel,
        from_attributes=True,
    )

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(exclude_unset=True)


class ResponseMeta(PydanticBaseModel):
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    request_id: str | None = None


class SuccessResponse(PydanticBaseModel, Generic[T]):
    """Envelope wrapping every successful JSON response."""

    success: bool = True
    data: T
    meta: ResponseMeta = Field(default_factory=ResponseMeta)


class Message(PydanticBaseModel):
    """Message response model."""

    message: str


def get_request_id(connection: ASGIConnection[Any, Any, Any, Any]) -> str:
    """Return the caller supplied request id, or a fresh one."""
    return connection.headers.get(REQUEST_ID_HEADER) or uuid4().hex


def success_response(data: T, connection: ASGIConnection[Any, Any, Any, Any] | None = None) -> SuccessResponse[T]:
    """Wrap ``data`` in the success envelope.

    Args:
        data: Payload placed under ``data``.
        connection: Current request, used to echo the request id.

    Returns:
        The envelope.
    """
    request_id = get_request_id(connection) if connection is not None else None
    return SuccessResponse(data=data, meta=ResponseMeta(request_id=request_id))
