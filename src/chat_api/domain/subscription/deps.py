"""Dependency providers for subscription domain."""

from __future__ import annotations

from typing import TYPE_CHECKING

from chat_api.config import constants
from chat_api.domain.subscription.services import SubscriptionService
from chat_api.lib.deps import create_service_provider

if TYPE_CHECKING:
    from litestar.datastructures import State

    from chat_api.lib.billing import BillingClient

__all__ = ("provide_billing_client", "provide_subscription_service")

provide_subscription_service = create_service_provider(
    SubscriptionService,
    error_messages={"integrity": "Subscription update failed."},
)


def provide_billing_client(state: State) -> BillingClient:
    """Billing client created at startup."""
    return state[constants.BILLING_CLIENT_STATE_KEY]
