from __future__ import annotations

from datetime import datetime  # noqa: TC003

from pydantic import Field, field_validator

from chat_api.db.models import SubscriptionStatus, SubscriptionTier
from chat_api.lib.schema import PydanticBaseModel

__all__ = (
    "CheckoutSessionCreate",
    "CheckoutSessionCreated",
    "PortalSessionCreate",
    "PortalSessionCreated",
    "ProviderSubscription",
    "SubscriptionCancel",
    "SubscriptionChange",
    "SubscriptionFeatures",
    "SubscriptionInfo",
    "SubscriptionOverview",
    "SubscriptionUsage",
    "WebhookReceipt",
)

REDIRECT_URL_PATTERN = r"^(https?://|myapp://)"
"""Checkout and portal redirects go to the web app or back into the mobile app."""

PAID_TIERS = (SubscriptionTier.BASE, SubscriptionTier.PRO)


class CheckoutSessionCreate(PydanticBaseModel):
    tier: SubscriptionTier
    success_url: str = Field(pattern=REDIRECT_URL_PATTERN)
    cancel_url: str = Field(pattern=REDIRECT_URL_PATTERN)

    @field_validator("tier")
    @classmethod
    def paid_tier(cls, value: SubscriptionTier) -> SubscriptionTier:
        if value not in PAID_TIERS:
            msg = "Only the BASE and PRO tiers can be purchased"
            raise ValueError(msg)
        return value


class CheckoutSessionCreated(PydanticBaseModel):
    session_id: str
    url: str | None = None


class PortalSessionCreate(PydanticBaseModel):
    return_url: str = Field(pattern=REDIRECT_URL_PATTERN)


class PortalSessionCreated(PydanticBaseModel):
    url: str


class SubscriptionCancel(PydanticBaseModel):
    immediately: bool = Field(default=False, description="End the subscription now instead of at period end")


class SubscriptionInfo(PydanticBaseModel):
    tier: SubscriptionTier
    status: SubscriptionStatus
    current_period_end: datetime | None = None
    cancel_at_period_end: bool = False


class SubscriptionUsage(PydanticBaseModel):
    monthly_message_count: int
    total_message_count: int
    remaining_messages: int = Field(description="-1 when unlimited")
    monthly_reset_date: datetime


class SubscriptionFeatures(PydanticBaseModel):
    available_models: list[str]
    max_messages_per_month: int = Field(description="-1 when unlimited")


class SubscriptionOverview(PydanticBaseModel):
    """Subscription status response model."""

    subscription: SubscriptionInfo
    usage: SubscriptionUsage
    features: SubscriptionFeatures


class ProviderSubscription(PydanticBaseModel):
    """Subscription state as reported back by the payment provider."""

    status: SubscriptionStatus
    cancel_at_period_end: bool
    current_period_end: datetime | None = None


class SubscriptionChange(PydanticBaseModel):
    message: str
    subscription: ProviderSubscription


class WebhookReceipt(PydanticBaseModel):
    received: bool = True
