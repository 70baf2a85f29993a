"""Subscription state kept on the user account."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any
from uuid import UUID

import structlog
from advanced_alchemy.repository import SQLAlchemyAsyncRepository
from advanced_alchemy.service import SQLAlchemyAsyncRepositoryService

from chat_api.db import models as m
from chat_api.domain.accounts.services import UserService

if TYPE_CHECKING:
    from chat_api.lib.billing import BillingClient, SubscriptionSnapshot, WebhookEvent

__all__ = ("SubscriptionService",)

logger = structlog.get_logger()

SUBSCRIPTION_CHANGED_EVENTS = frozenset({"customer.subscription.created", "customer.subscription.updated"})
SUBSCRIPTION_DELETED_EVENT = "customer.subscription.deleted"
PAYMENT_SUCCEEDED_EVENT = "invoice.payment_succeeded"
PAYMENT_FAILED_EVENT = "invoice.payment_failed"


def _invoice_subscription_id(invoice: dict[str, Any]) -> str | None:
    subscription = invoice.get("subscription")
    if subscription is None:
        # newer API versions nest the reference under the invoice parent
        details = (invoice.get("parent") or {}).get("subscription_details") or {}
        subscription = details.get("subscription")
    if isinstance(subscription, dict):
        return subscription.get("id")
    return subscription


def _parse_user_id(value: str | None) -> UUID | None:
    if not value:
        return None
    try:
        return UUID(value)
    except ValueError:
        logger.warning("Ignoring malformed user id in subscription metadata", user_id=value)
        return None


class SubscriptionService(SQLAlchemyAsyncRepositoryService[m.User]):
    """Applies payment provider state to user accounts."""

    class Repository(SQLAlchemyAsyncRepository[m.User]):
        """User SQLAlchemy Repository."""

        model_type = m.User

    repository_type = Repository

    async def ensure_customer(self, user: m.User, billing: BillingClient) -> str:
        """Return the provider customer of ``user``, registering one on first use."""
        if user.stripe_customer_id:
            return user.stripe_customer_id
        customer_id = await billing.get_or_create_customer(user.email, str(user.id), name=user.full_name)
        await self.update({"stripe_customer_id": customer_id}, item_id=user.id)
        return customer_id

    async def find_subscriber(self, snapshot: SubscriptionSnapshot) -> m.User | None:
        """Resolve the account a subscription belongs to.

        The ``userId`` written into the subscription metadata at checkout wins; the
        provider customer id is used for subscriptions created outside checkout.
        """
        user_id = _parse_user_id(snapshot.user_id)
        if user_id is not None:
            user = await self.get_one_or_none(m.User.id == user_id)
            if user is not None:
                return user
        if snapshot.customer_id:
            return await self.get_one_or_none(m.User.stripe_customer_id == snapshot.customer_id)
        return None

    async def apply_snapshot(self, user: m.User, snapshot: SubscriptionSnapshot) -> m.User:
        """Copy the provider view of a subscription onto the account."""
        values: dict[str, Any] = {
            "subscription_id": snapshot.id,
            "subscription_status": snapshot.status,
            "subscription_tier": snapshot.tier,
            "subscription_current_period_end": snapshot.current_period_end,
            "subscription_cancel_at_period_end": snapshot.cancel_at_period_end,
        }
        if snapshot.customer_id:
            values["stripe_customer_id"] = snapshot.customer_id
        return await UserService(session=self.repository.session).update_subscription(user.id, **values)

    async def apply_cancellation(self, user: m.User, snapshot: SubscriptionSnapshot, immediately: bool) -> m.User:
        """Record a cancellation requested by the user."""
        values: dict[str, Any] = {
            "subscription_cancel_at_period_end": snapshot.cancel_at_period_end,
            "subscription_current_period_end": snapshot.current_period_end,
        }
        if immediately:
            values.update(
                subscription_status=m.SubscriptionStatus.CANCELED,
                subscription_tier=m.SubscriptionTier.FREE,
                subscription_cancel_at_period_end=False,
            )
        else:
            values["subscription_cancel_at_period_end"] = True
        return await UserService(session=self.repository.session).update_subscription(user.id, **values)

    async def apply_resume(self, user: m.User, snapshot: SubscriptionSnapshot) -> m.User:
        return await UserService(session=self.repository.session).update_subscription(
            user.id,
            subscription_cancel_at_period_end=False,
            subscription_status=snapshot.status,
            subscription_current_period_end=snapshot.current_period_end,
        )

    async def apply_webhook_event(self, event: WebhookEvent, billing: BillingClient) -> m.User | None:
        """Update the affected account for a verified webhook event.

        Args:
            event: The verified delivery.
            billing: Used to read the subscription an invoice belongs to.

        Returns:
            The updated user, or ``None`` when the event is ignored or matches no account.
        """
        payload = event.data.get("object") or {}
        await logger.ainfo("Received billing webhook", event_id=event.id, event_type=event.type)

        if event.type in SUBSCRIPTION_CHANGED_EVENTS:
            snapshot = billing.snapshot(payload)
            user = await self.find_subscriber(snapshot)
            if user is None:
                return self._unmatched(event, snapshot)
            return await self.apply_snapshot(user, snapshot)

        if event.type == SUBSCRIPTION_DELETED_EVENT:
            snapshot = billing.snapshot(payload)
            user = await self.find_subscriber(snapshot)
            if user is None:
                return self._unmatched(event, snapshot)
            return await UserService(session=self.repository.session).update_subscription(
                user.id,
                subscription_status=m.SubscriptionStatus.CANCELED,
                subscription_tier=m.SubscriptionTier.FREE,
                subscription_current_period_end=None,
                subscription_cancel_at_period_end=False,
            )

        if event.type in {PAYMENT_SUCCEEDED_EVENT, PAYMENT_FAILED_EVENT}:
            subscription_id = _invoice_subscription_id(payload)
            if subscription_id is None:
                logger.info("Ignoring invoice without subscription", event_id=event.id, invoice_id=payload.get("id"))
                return None
            snapshot = await billing.retrieve_subscription(subscription_id)
            user = await self.find_subscriber(snapshot)
            if user is None:
                return self._unmatched(event, snapshot)
            users_service = UserService(session=self.repository.session)
            if event.type == PAYMENT_FAILED_EVENT:
                logger.warning(
                    "Payment failed for subscription",
                    user_id=user.id,
                    subscription_id=snapshot.id,
                    invoice_id=payload.get("id"),
                )
                return await users_service.update_subscription(
                    user.id,
                    subscription_status=m.SubscriptionStatus.PAST_DUE,
                )
            # a paid invoice opens a new billing period
            await users_service.reset_monthly_usage_if_stale(user)
            return await users_service.update_subscription(
                user.id,
                subscription_status=m.SubscriptionStatus.ACTIVE,
                subscription_current_period_end=snapshot.current_period_end,
            )

        logger.info("Unhandled webhook event type", event_id=event.id, event_type=event.type)
        return None

    @staticmethod
    def _unmatched(event: WebhookEvent, snapshot: SubscriptionSnapshot) -> None:
        logger.warning(
            "No account matches subscription",
            event_id=event.id,
            event_type=event.type,
            subscription_id=snapshot.id,
            customer_id=snapshot.customer_id,
        )
