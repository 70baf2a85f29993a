"""Route guards enforcing monthly message quotas."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from chat_api.config.app import alchemy
from chat_api.domain.accounts.deps import provide_users_service
from chat_api.lib.usage_policy import UsagePolicy

if TYPE_CHECKING:
    from litestar.connection import ASGIConnection
    from litestar.handlers.base import BaseRouteHandler

    from chat_api.db import models as m

__all__ = ("requires_message_quota",)

usage_policy = UsagePolicy()


async def requires_message_quota(connection: ASGIConnection[Any, m.User, Any, Any], _: BaseRouteHandler) -> None:
    """Request requires remaining monthly message quota.

    Resets a counter left over from a previous month before checking it.

    Args:
        connection (ASGIConnection): HTTP Request
        _ (BaseRouteHandler): Route handler

    Raises:
        QuotaExceededException: The user has no messages left this month.
    """
    users_service = await anext(provide_users_service(alchemy.provide_session(connection.app.state, connection.scope)))
    await usage_policy.check_message_quota(connection.user, users_service)
