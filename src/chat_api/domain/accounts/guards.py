from __future__ import annotations

from datetime import timedelta
from typing import TYPE_CHECKING, Any

import jwt
from litestar.exceptions import PermissionDeniedException
from litestar.security.jwt import OAuth2PasswordBearerAuth

from chat_api.config import constants
from chat_api.config.app import alchemy
from chat_api.config.base import get_settings
from chat_api.db import models as m
from chat_api.domain.accounts import urls
from chat_api.domain.accounts.deps import provide_users_service
from chat_api.domain.accounts.schemas import AuthTokens
from chat_api.lib.exceptions import AuthenticationError

if TYPE_CHECKING:
    from litestar.connection import ASGIConnection
    from litestar.handlers.base import BaseRouteHandler
    from litestar.security.jwt import Token


__all__ = (
    "auth",
    "current_user_from_token",
    "decode_refresh_token",
    "issue_tokens",
    "requires_active_user",
)

ACCESS_TOKEN_TYPE = "access"
REFRESH_TOKEN_TYPE = "refresh"

settings = get_settings()


def requires_active_user(connection: ASGIConnection[Any, m.User, Any, Any], _: BaseRouteHandler) -> None:
    """Request requires active user.

    Verifies the request user is active.

    Args:
        connection (ASGIConnection): HTTP Request
        _ (BaseRouteHandler): Route handler

    Raises:
        PermissionDeniedException: Permission denied exception
    """
    if connection.user.is_active:
        return
    msg = "Inactive account"
    raise PermissionDeniedException(msg)


def _token_type(claims: dict[str, Any]) -> str | None:
    extras = claims.get("extras") or {}
    return extras.get("type", claims.get("type"))


async def current_user_from_token(token: Token, connection: ASGIConnection[Any, Any, Any, Any]) -> m.User | None:
    """Lookup current user from local JWT token.

    Fetches the user information from the database. Refresh tokens are not accepted
    as bearer credentials.

    Args:
        token (str): JWT Token Object
        connection (ASGIConnection[Any, Any, Any, Any]): ASGI connection.

    Returns:
        User: User record mapped to the JWT identifier
    """
    if token.extras.get("type") == REFRESH_TOKEN_TYPE:
        return None
    service = await anext(provide_users_service(alchemy.provide_session(connection.app.state, connection.scope)))
    user = await service.get_one_or_none(email=token.sub)
    return user if user and user.is_active else None


auth = OAuth2PasswordBearerAuth[m.User](
    retrieve_user_handler=current_user_from_token,
    token_secret=settings.app.SECRET_KEY,
    token_url=urls.ACCOUNT_LOGIN,
    algorithm=settings.app.JWT_ENCRYPTION_ALGORITHM,
    default_token_expiration=timedelta(minutes=settings.app.ACCESS_TOKEN_EXPIRES_MINUTES),
    exclude=[
        f"^{constants.HEALTH_ENDPOINT}$",
        "^/schema",
    ],
)


def issue_tokens(user: m.User) -> AuthTokens:
    """Create an access and refresh token pair for ``user``."""
    access_lifetime = timedelta(minutes=settings.app.ACCESS_TOKEN_EXPIRES_MINUTES)
    return AuthTokens(
        access_token=auth.create_token(
            identifier=user.email,
            token_expiration=access_lifetime,
            token_extras={"type": ACCESS_TOKEN_TYPE},
        ),
        refresh_token=auth.create_token(
            identifier=user.email,
            token_expiration=timedelta(days=settings.app.REFRESH_TOKEN_EXPIRES_DAYS),
            token_extras={"type": REFRESH_TOKEN_TYPE},
        ),
        expires_in=int(access_lifetime.total_seconds()),
    )


def decode_refresh_token(encoded_token: str) -> str:
    """Validate a refresh token.

    Returns:
        The email address the token was issued for.

    Raises:
        AuthenticationError: ``AUTH_005`` if the token has expired, ``AUTH_004`` for any other problem.
    """
    try:
        claims = jwt.decode(
            encoded_token,
            key=settings.app.SECRET_KEY,
            algorithms=[settings.app.JWT_ENCRYPTION_ALGORITHM],
            options={"require": ["exp", "sub"]},
        )
    except jwt.ExpiredSignatureError as exc:
        raise AuthenticationError(code="AUTH_005", detail="Refresh token has expired") from exc
    except jwt.InvalidTokenError as exc:
        raise AuthenticationError(code="AUTH_004", detail="Invalid refresh token") from exc
    if _token_type(claims) != REFRESH_TOKEN_TYPE:
        raise AuthenticationError(code="AUTH_004", detail="Invalid refresh token")
    return claims["sub"]
