from __future__ import annotations

import re
from datetime import datetime  # noqa: TC003
from uuid import UUID  # noqa: TC003

from pydantic import EmailStr, Field, field_validator

from chat_api.db.models import SubscriptionStatus, SubscriptionTier  # noqa: TC001
from chat_api.lib.schema import PydanticBaseModel

__all__ = (
    "AccountLogin",
    "AccountRegister",
    "AuthSession",
    "AuthTokens",
    "ProfileUpdate",
    "RefreshTokenRequest",
    "User",
)

_PASSWORD_RULES = (
    (re.compile(r"[a-z]"), "Password must contain a lowercase letter"),
    (re.compile(r"[A-Z]"), "Password must contain an uppercase letter"),
    (re.compile(r"\d"), "Password must contain a digit"),
)


class User(PydanticBaseModel):
    """User properties to use for a response."""

    id: UUID
    email: str
    full_name: str
    is_active: bool = True
    subscription_tier: SubscriptionTier
    subscription_status: SubscriptionStatus
    monthly_message_count: int = 0
    total_message_count: int = 0
    last_login_at: datetime | None = None
    created_at: datetime


class AccountRegister(PydanticBaseModel):
    email: EmailStr
    password: str = Field(min_length=8, max_length=128)
    full_name: str = Field(min_length=2, max_length=50)

    @field_validator("password")
    @classmethod
    def password_strength(cls, value: str) -> str:
        for pattern, message in _PASSWORD_RULES:
            if not pattern.search(value):
                raise ValueError(message)
        return value


class AccountLogin(PydanticBaseModel):
    email: EmailStr
    password: str = Field(min_length=1)


class RefreshTokenRequest(PydanticBaseModel):
    refresh_token: str = Field(min_length=1)


class ProfileUpdate(PydanticBaseModel):
    full_name: str = Field(min_length=2, max_length=50)


class AuthTokens(PydanticBaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "Bearer"
    expires_in: int = Field(description="Access token lifetime in seconds")


class AuthSession(PydanticBaseModel):
    """Issued on register and login."""

    user: User
    tokens: AuthTokens
