"""Payment provider integration.

Thin wrapper over the Stripe SDK that speaks the application's vocabulary:
``SubscriptionTier`` instead of price ids and ``SubscriptionStatus`` instead of provider
status strings.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

import stripe
import structlog
from litestar.status_codes import HTTP_400_BAD_REQUEST

from chat_api.db.models import SubscriptionStatus, SubscriptionTier
from chat_api.lib.exceptions import ExternalServiceError

if TYPE_CHECKING:
    from collections.abc import Mapping

__all__ = (
    "BillingClient",
    "BillingError",
    "CheckoutSession",
    "SubscriptionSnapshot",
    "WebhookEvent",
    "WebhookVerificationError",
    "map_subscription_status",
)

logger = structlog.get_logger()

PROVIDER_STATUS_MAP: dict[str, SubscriptionStatus] = {
    "active": SubscriptionStatus.ACTIVE,
    "canceled": SubscriptionStatus.CANCELED,
    "past_due": SubscriptionStatus.PAST_DUE,
    "trialing": SubscriptionStatus.TRIALING,
}


class BillingError(ExternalServiceError):
    """The payment provider rejected or failed a request."""

    detail = "Payment provider request failed"


class WebhookVerificationError(BillingError):
    """The webhook payload could not be authenticated or parsed."""

    status_code = HTTP_400_BAD_REQUEST
    detail = "Webhook signature verification failed"


@dataclass(slots=True)
class CheckoutSession:
    id: str
    url: str | None


@dataclass(slots=True)
class SubscriptionSnapshot:
    """Provider subscription state translated into application terms."""

    id: str
    status: SubscriptionStatus
    tier: SubscriptionTier
    cancel_at_period_end: bool = False
    current_period_end: datetime | None = None
    customer_id: str | None = None
    user_id: str | None = None


@dataclass(slots=True)
class WebhookEvent:
    """A verified webhook delivery."""

    id: str
    type: str
    data: dict[str, Any] = field(default_factory=dict)


def map_subscription_status(provider_status: str | None) -> SubscriptionStatus:
    """Translate a provider status; anything unknown is ``INACTIVE``."""
    return PROVIDER_STATUS_MAP.get(provider_status or "", SubscriptionStatus.INACTIVE)


def _as_dict(obj: Any) -> dict[str, Any]:
    if isinstance(obj, dict):
        return obj
    return obj.to_dict()


def _first_item(data: Mapping[str, Any]) -> Mapping[str, Any]:
    items = data.get("items") or {}
    entries = items.get("data") or []
    return entries[0] if entries else {}


def _timestamp(value: int | None) -> datetime | None:
    return datetime.fromtimestamp(value, UTC) if value else None


class BillingClient:
    """Stripe backed billing operations.

    Args:
        secret_key: Stripe secret API key, sent with every call.
        webhook_secret: Signing secret of the webhook endpoint.
        price_ids: Recurring price configured for each paid tier.
    """

    def __init__(
        self,
        secret_key: str,
        webhook_secret: str,
        price_ids: Mapping[SubscriptionTier, str | None],
        webhook_tolerance: int = 300,
    ) -> None:
        self.secret_key = secret_key
        self.webhook_secret = webhook_secret
        self.price_ids = dict(price_ids)
        self.webhook_tolerance = webhook_tolerance

    def price_id_for_tier(self, tier: SubscriptionTier) -> str | None:
        return self.price_ids.get(tier) or None

    def tier_for_price_id(self, price_id: str | None) -> SubscriptionTier:
        """Reverse price lookup, falling back to ``FREE`` for unknown prices."""
        for tier, configured in self.price_ids.items():
            if configured and configured == price_id:
                return tier
        return SubscriptionTier.FREE

    def snapshot(self, subscription: Any) -> SubscriptionSnapshot:
        """Build a ``SubscriptionSnapshot`` from a provider subscription object or payload."""
        data = _as_dict(subscription)
        item = _first_item(data)
        price = item.get("price") or {}
        metadata = data.get("metadata") or {}
        customer = data.get("customer")
        return SubscriptionSnapshot(
            id=data["id"],
            status=map_subscription_status(data.get("status")),
            tier=self.tier_for_price_id(price.get("id")),
            cancel_at_period_end=bool(data.get("cancel_at_period_end")),
            # newer API versions report the period on the subscription item
            current_period_end=_timestamp(data.get("current_period_end") or item.get("current_period_end")),
            customer_id=customer if isinstance(customer, str) or customer is None else customer.get("id"),
            user_id=metadata.get("userId"),
        )

    async def get_or_create_customer(self, email: str, user_id: str, name: str | None = None) -> str:
        """Return the id of the customer registered under ``email``, creating it if needed."""
        try:
            existing = await stripe.Customer.list_async(email=email, limit=1, api_key=self.secret_key)
            if existing.data:
                return existing.data[0].id
            customer = await stripe.Customer.create_async(
                email=email,
                name=name,
                metadata={"userId": user_id},
                api_key=self.secret_key,
            )
        except stripe.StripeError as exc:
            logger.error("Customer lookup failed", user_id=user_id, error=str(exc))
            raise BillingError(detail="Failed to create billing customer") from exc
        logger.info("Billing customer created", user_id=user_id, customer_id=customer.id)
        return customer.id

    async def create_checkout_session(
        self,
        *,
        customer_id: str,
        tier: SubscriptionTier,
        success_url: str,
        cancel_url: str,
        user_id: str,
    ) -> CheckoutSession:
        price_id = self.price_id_for_tier(tier)
        if price_id is None:
            raise BillingError(detail=f"No price configured for the {tier.value} tier")
        try:
            session = await stripe.checkout.Session.create_async(
                customer=customer_id,
                mode="subscription",
                line_items=[{"price": price_id, "quantity": 1}],
                success_url=success_url,
                cancel_url=cancel_url,
                metadata={"userId": user_id, "tier": tier.value},
                subscription_data={"metadata": {"userId": user_id, "tier": tier.value}},
                api_key=self.secret_key,
            )
        except stripe.StripeError as exc:
            logger.error("Checkout session creation failed", user_id=user_id, tier=tier.value, error=str(exc))
            raise BillingError(detail="Failed to create checkout session") from exc
        logger.info("Checkout session created", user_id=user_id, tier=tier.value, session_id=session.id)
        return CheckoutSession(id=session.id, url=session.url)

    async def create_portal_session(self, customer_id: str, return_url: str) -> str:
        """Returns the URL of a customer portal session."""
        try:
            session = await stripe.billing_portal.Session.create_async(
                customer=customer_id,
                return_url=return_url,
                api_key=self.secret_key,
            )
        except stripe.StripeError as exc:
            logger.error("Portal session creation failed", customer_id=customer_id, error=str(exc))
            raise BillingError(detail="Failed to create billing portal session") from exc
        return session.url

    async def retrieve_subscription(self, subscription_id: str) -> SubscriptionSnapshot:
        try:
            subscription = await stripe.Subscription.retrieve_async(subscription_id, api_key=self.secret_key)
        except stripe.StripeError as exc:
            raise BillingError(detail="Failed to retrieve subscription") from exc
        return self.snapshot(subscription)

    async def cancel_subscription(self, subscription_id: str, *, immediately: bool = False) -> SubscriptionSnapshot:
        """Cancel now, or flag the subscription to lapse at the end of the paid period."""
        try:
            if immediately:
                subscription = await stripe.Subscription.cancel_async(subscription_id, api_key=self.secret_key)
            else:
                subscription = await stripe.Subscription.modify_async(
                    subscription_id,
                    cancel_at_period_end=True,
                    api_key=self.secret_key,
                )
        except stripe.StripeError as exc:
            logger.error("Subscription cancel failed", subscription_id=subscription_id, error=str(exc))
            raise BillingError(detail="Failed to cancel subscription") from exc
        logger.info("Subscription canceled", subscription_id=subscription_id, immediately=immediately)
        return self.snapshot(subscription)

    async def resume_subscription(self, subscription_id: str) -> SubscriptionSnapshot:
        try:
            subscription = await stripe.Subscription.modify_async(
                subscription_id,
                cancel_at_period_end=False,
                api_key=self.secret_key,
            )
        except stripe.StripeError as exc:
            logger.error("Subscription resume failed", subscription_id=subscription_id, error=str(exc))
            raise BillingError(detail="Failed to resume subscription") from exc
        logger.info("Subscription resumed", subscription_id=subscription_id)
        return self.snapshot(subscription)

    def construct_event(self, payload: bytes, signature: str) -> WebhookEvent:
        """Verify the signature of a webhook delivery and decode it.

        Raises:
            WebhookVerificationError: The signature does not match or the body is not valid JSON.
        """
        body = payload.decode("utf-8")
        try:
            stripe.WebhookSignature.verify_header(body, signature, self.webhook_secret, self.webhook_tolerance)
            event = json.loads(body)
        except (stripe.SignatureVerificationError, ValueError) as exc:
            logger.warning("Webhook verification failed", error=str(exc))
            raise WebhookVerificationError from exc
        return WebhookEvent(id=event.get("id", ""), type=event.get("type", ""), data=event.get("data") or {})
