"""Subscription Controllers."""

from __future__ import annotations

from typing import TYPE_CHECKING, Annotated

import structlog
from litestar import Controller, Request, get, post
from litestar.di import Provide
from litestar.params import Dependency, Parameter
from litestar.status_codes import HTTP_200_OK

from chat_api.db import models as m
from chat_api.domain.accounts.guards import requires_active_user
from chat_api.domain.quota.deps import provide_usage_policy
from chat_api.domain.subscription import urls
from chat_api.domain.subscription.deps import provide_billing_client, provide_subscription_service
from chat_api.domain.subscription.schemas import (
    CheckoutSessionCreate,
    CheckoutSessionCreated,
    PortalSessionCreate,
    PortalSessionCreated,
    ProviderSubscription,
    SubscriptionCancel,
    SubscriptionChange,
    SubscriptionFeatures,
    SubscriptionInfo,
    SubscriptionOverview,
    SubscriptionUsage,
    WebhookReceipt,
)
from chat_api.lib.exceptions import BusinessRuleError, InvalidRequestError
from chat_api.lib.schema import SuccessResponse, success_response
from chat_api.lib.usage_policy import UNLIMITED

if TYPE_CHECKING:
    from chat_api.domain.subscription.services import SubscriptionService
    from chat_api.lib.billing import BillingClient, SubscriptionSnapshot
    from chat_api.lib.usage_policy import UsagePolicy

logger = structlog.get_logger()

__all__ = ("SubscriptionController",)

TIER_RANK = {m.SubscriptionTier.FREE: 0, m.SubscriptionTier.BASE: 1, m.SubscriptionTier.PRO: 2}


def _provider_view(snapshot: SubscriptionSnapshot) -> ProviderSubscription:
    return ProviderSubscription(
        status=snapshot.status,
        cancel_at_period_end=snapshot.cancel_at_period_end,
        current_period_end=snapshot.current_period_end,
    )


class SubscriptionController(Controller):
    """Checkout, self service and provider webhooks."""

    tags = ["Subscription"]
    dependencies = {
        "subscription_service": Provide(provide_subscription_service),
        "billing_client": Provide(provide_billing_client, sync_to_thread=False),
        "usage_policy": Provide(provide_usage_policy, sync_to_thread=False),
    }

    @post(path=urls.SUBSCRIPTION_CHECKOUT, operation_id="CreateCheckoutSession", guards=[requires_active_user])
    async def create_checkout_session(
        self,
        request: Request,
        current_user: m.User,
        data: CheckoutSessionCreate,
        subscription_service: SubscriptionService,
        billing_client: Annotated[BillingClient, Dependency(skip_validation=True)],
    ) -> SuccessResponse[CheckoutSessionCreated]:
        """Start a hosted checkout for a paid tier."""
        current_tier = m.SubscriptionTier(current_user.subscription_tier)
        if TIER_RANK[current_tier] >= TIER_RANK[data.tier]:
            raise BusinessRuleError(detail="You already have this subscription or a higher one")
        customer_id = await subscription_service.ensure_customer(current_user, billing_client)
        session = await billing_client.create_checkout_session(
            customer_id=customer_id,
            tier=data.tier,
            success_url=data.success_url,
            cancel_url=data.cancel_url,
            user_id=str(current_user.id),
        )
        return success_response(CheckoutSessionCreated(session_id=session.id, url=session.url), request)

    @post(path=urls.SUBSCRIPTION_PORTAL, operation_id="CreatePortalSession", guards=[requires_active_user])
    async def create_portal_session(
        self,
        request: Request,
        current_user: m.User,
        data: PortalSessionCreate,
        billing_client: Annotated[BillingClient, Dependency(skip_validation=True)],
    ) -> SuccessResponse[PortalSessionCreated]:
        """Open the provider's customer portal."""
        if not current_user.stripe_customer_id:
            raise BusinessRuleError(detail="No billing account exists for this user")
        url = await billing_client.create_portal_session(current_user.stripe_customer_id, data.return_url)
        logger.info("Portal session created", user_id=current_user.id)
        return success_response(PortalSessionCreated(url=url), request)

    @get(path=urls.SUBSCRIPTION_STATUS, operation_id="SubscriptionStatus", guards=[requires_active_user])
    async def get_status(
        self,
        request: Request,
        current_user: m.User,
        usage_policy: Annotated[UsagePolicy, Dependency(skip_validation=True)],
    ) -> SuccessResponse[SubscriptionOverview]:
        """Current subscription, usage and entitlements."""
        stats = usage_policy.get_usage_stats(current_user)
        return success_response(
            SubscriptionOverview(
                subscription=SubscriptionInfo(
                    tier=current_user.subscription_tier,
                    status=current_user.subscription_status,
                    current_period_end=current_user.subscription_current_period_end,
                    cancel_at_period_end=current_user.subscription_cancel_at_period_end,
                ),
                usage=SubscriptionUsage(
                    monthly_message_count=stats.monthly_usage,
                    total_message_count=stats.total_usage,
                    remaining_messages=stats.remaining_messages,
                    monthly_reset_date=current_user.monthly_reset_date,
                ),
                features=SubscriptionFeatures(
                    available_models=list(usage_policy.available_models(current_user)),
                    max_messages_per_month=UNLIMITED if stats.monthly_limit is None else stats.monthly_limit,
                ),
            ),
            request,
        )

    @post(
        path=urls.SUBSCRIPTION_CANCEL,
        operation_id="CancelSubscription",
        guards=[requires_active_user],
        status_code=HTTP_200_OK,
    )
    async def cancel_subscription(
        self,
        request: Request,
        current_user: m.User,
        subscription_service: SubscriptionService,
        billing_client: Annotated[BillingClient, Dependency(skip_validation=True)],
        data: SubscriptionCancel | None = None,
    ) -> SuccessResponse[SubscriptionChange]:
        """Cancel now, or at the end of the paid period."""
        immediately = data.immediately if data is not None else False
        if not current_user.subscription_id or current_user.subscription_status == m.SubscriptionStatus.CANCELED:
            raise BusinessRuleError(detail="There is no active subscription to cancel")
        snapshot = await billing_client.cancel_subscription(current_user.subscription_id, immediately=immediately)
        await subscription_service.apply_cancellation(current_user, snapshot, immediately=immediately)
        message = (
            "Subscription canceled"
            if immediately
            else "Subscription will be canceled at the end of the current billing period"
        )
        return success_response(SubscriptionChange(message=message, subscription=_provider_view(snapshot)), request)

    @post(
        path=urls.SUBSCRIPTION_RESUME,
        operation_id="ResumeSubscription",
        guards=[requires_active_user],
        status_code=HTTP_200_OK,
    )
    async def resume_subscription(
        self,
        request: Request,
        current_user: m.User,
        subscription_service: SubscriptionService,
        billing_client: Annotated[BillingClient, Dependency(skip_validation=True)],
    ) -> SuccessResponse[SubscriptionChange]:
        """Undo a pending cancellation."""
        if not current_user.subscription_id or not current_user.subscription_cancel_at_period_end:
            raise BusinessRuleError(detail="There is no subscription to resume")
        snapshot = await billing_client.resume_subscription(current_user.subscription_id)
        await subscription_service.apply_resume(current_user, snapshot)
        return success_response(
            SubscriptionChange(message="Subscription resumed", subscription=_provider_view(snapshot)),
            request,
        )

    @post(
        path=urls.SUBSCRIPTION_WEBHOOK,
        operation_id="SubscriptionWebhook",
        exclude_from_auth=True,
        status_code=HTTP_200_OK,
        include_in_schema=False,
    )
    async def handle_webhook(
        self,
        request: Request,
        subscription_service: SubscriptionService,
        billing_client: Annotated[BillingClient, Dependency(skip_validation=True)],
        stripe_signature: Annotated[str | None, Parameter(header="stripe-signature", required=False)] = None,
    ) -> WebhookReceipt:
        """Receive signed subscription and invoice events from the payment provider."""
        if not stripe_signature:
            raise InvalidRequestError(detail="Missing payment provider signature")
        event = billing_client.construct_event(await request.body(), stripe_signature)
        await subscription_service.apply_webhook_event(event, billing_client)
        return WebhookReceipt()
