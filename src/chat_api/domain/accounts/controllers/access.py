"""User Account Controllers."""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog
from litestar import Controller, Request, Response, get, post, put
from litestar.di import Provide
from litestar.status_codes import HTTP_200_OK, HTTP_201_CREATED

from chat_api.domain.accounts import urls
from chat_api.domain.accounts.deps import provide_users_service
from chat_api.domain.accounts.guards import auth, decode_refresh_token, issue_tokens, requires_active_user
from chat_api.domain.accounts.schemas import (
    AccountLogin,
    AccountRegister,
    AuthSession,
    AuthTokens,
    ProfileUpdate,
    RefreshTokenRequest,
    User,
)
from chat_api.lib.exceptions import AuthenticationError
from chat_api.lib.schema import Message, SuccessResponse, success_response

if TYPE_CHECKING:
    from chat_api.db import models as m
    from chat_api.domain.accounts.services import UserService

logger = structlog.get_logger()


class AccessController(Controller):
    """User login and registration."""

    tags = ["Access"]
    dependencies = {"users_service": Provide(provide_users_service)}

    @post(
        operation_id="AccountRegister",
        path=urls.ACCOUNT_REGISTER,
        exclude_from_auth=True,
        status_code=HTTP_201_CREATED,
    )
    async def signup(
        self,
        request: Request,
        users_service: UserService,
        data: AccountRegister,
    ) -> SuccessResponse[AuthSession]:
        """Create a FREE tier account and sign it in."""
        user = await users_service.register(email=data.email, password=data.password, full_name=data.full_name)
        request.app.emit(event_id="user_created", user_id=user.id, email=user.email)
        return success_response(
            AuthSession(user=users_service.to_schema(user, schema_type=User), tokens=issue_tokens(user)),
            request,
        )

    @post(operation_id="AccountLogin", path=urls.ACCOUNT_LOGIN, exclude_from_auth=True, status_code=HTTP_200_OK)
    async def login(
        self,
        request: Request,
        users_service: UserService,
        data: AccountLogin,
    ) -> SuccessResponse[AuthSession]:
        """Authenticate a user."""
        user = await users_service.authenticate(data.email, data.password)
        await logger.ainfo("User logged in", user_id=user.id)
        return success_response(
            AuthSession(user=users_service.to_schema(user, schema_type=User), tokens=issue_tokens(user)),
            request,
        )

    @post(operation_id="AccountRefresh", path=urls.ACCOUNT_REFRESH, exclude_from_auth=True, status_code=HTTP_200_OK)
    async def refresh(
        self,
        request: Request,
        users_service: UserService,
        data: RefreshTokenRequest,
    ) -> SuccessResponse[AuthTokens]:
        """Exchange a refresh token for a new token pair."""
        email = decode_refresh_token(data.refresh_token)
        user = await users_service.get_one_or_none(email=email)
        if user is None or not user.is_active:
            raise AuthenticationError(code="AUTH_004", detail="Invalid refresh token")
        return success_response(issue_tokens(user), request)

    @post(operation_id="AccountLogout", path=urls.ACCOUNT_LOGOUT, exclude_from_auth=True)
    async def logout(self, request: Request) -> Response[SuccessResponse[Message]]:
        """Account Logout"""
        request.cookies.pop(auth.key, None)
        response = Response(success_response(Message(message="OK"), request), status_code=200)
        response.delete_cookie(auth.key)
        return response

    @get(operation_id="AccountProfile", path=urls.ACCOUNT_PROFILE, guards=[requires_active_user])
    async def profile(
        self,
        request: Request,
        current_user: m.User,
        users_service: UserService,
    ) -> SuccessResponse[User]:
        """User Profile."""
        return success_response(users_service.to_schema(current_user, schema_type=User), request)

    @put(operation_id="AccountProfileUpdate", path=urls.ACCOUNT_PROFILE_UPDATE, guards=[requires_active_user])
    async def update_profile(
        self,
        request: Request,
        current_user: m.User,
        users_service: UserService,
        data: ProfileUpdate,
    ) -> SuccessResponse[User]:
        """Update the display name of the signed in user."""
        user = await users_service.update(data.to_dict(), item_id=current_user.id)
        return success_response(users_service.to_schema(user, schema_type=User), request)
