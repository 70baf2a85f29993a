from __future__ import annotations

from datetime import UTC, datetime

import pytest

from chat_api.db.models import SubscriptionStatus, SubscriptionTier
from chat_api.lib.billing import BillingClient, WebhookVerificationError, map_subscription_status
from tests.helpers import PRICE_IDS, WEBHOOK_SECRET, signed_webhook, subscription_payload


@pytest.fixture
def billing() -> BillingClient:
    return BillingClient(secret_key="sk_test_123", webhook_secret=WEBHOOK_SECRET, price_ids=PRICE_IDS)


@pytest.mark.parametrize(
    ("provider_status", "status"),
    [
        ("active", SubscriptionStatus.ACTIVE),
        ("canceled", SubscriptionStatus.CANCELED),
        ("past_due", SubscriptionStatus.PAST_DUE),
        ("trialing", SubscriptionStatus.TRIALING),
        ("incomplete", SubscriptionStatus.INACTIVE),
        ("unpaid", SubscriptionStatus.INACTIVE),
        (None, SubscriptionStatus.INACTIVE),
    ],
)
def test_status_mapping(provider_status: str | None, status: SubscriptionStatus) -> None:
    assert map_subscription_status(provider_status) is status


def test_price_mapping(billing: BillingClient) -> None:
    assert billing.price_id_for_tier(SubscriptionTier.BASE) == "price_base"
    assert billing.price_id_for_tier(SubscriptionTier.PRO) == "price_pro"
    assert billing.price_id_for_tier(SubscriptionTier.FREE) is None
    assert billing.tier_for_price_id("price_pro") is SubscriptionTier.PRO
    assert billing.tier_for_price_id("price_unknown") is SubscriptionTier.FREE
    assert billing.tier_for_price_id(None) is SubscriptionTier.FREE


def test_snapshot_reads_item_period(billing: BillingClient) -> None:
    payload = subscription_payload(user_id="0b6b7f4e-4b57-4c8a-9a0e-8c1f3c1f2a11", price_id="price_pro", status="trialing")

    snapshot = billing.snapshot(payload)

    assert snapshot.id == "sub_1"
    assert snapshot.status is SubscriptionStatus.TRIALING
    assert snapshot.tier is SubscriptionTier.PRO
    assert snapshot.current_period_end == datetime.fromtimestamp(1_900_000_000, UTC)
    assert snapshot.customer_id == "cus_1"
    assert snapshot.user_id == "0b6b7f4e-4b57-4c8a-9a0e-8c1f3c1f2a11"
    assert snapshot.cancel_at_period_end is False


def test_snapshot_prefers_subscription_period(billing: BillingClient) -> None:
    payload = subscription_payload()
    payload["current_period_end"] = 1_800_000_000
    payload["customer"] = {"id": "cus_expanded"}

    snapshot = billing.snapshot(payload)

    assert snapshot.current_period_end == datetime.fromtimestamp(1_800_000_000, UTC)
    assert snapshot.customer_id == "cus_expanded"


def test_construct_event_verifies_signature(billing: BillingClient) -> None:
    body, signature = signed_webhook("customer.subscription.updated", subscription_payload())

    event = billing.construct_event(body, signature)

    assert event.type == "customer.subscription.updated"
    assert event.data["object"]["id"] == "sub_1"


def test_construct_event_rejects_bad_signature(billing: BillingClient) -> None:
    body, signature = signed_webhook("customer.subscription.updated", subscription_payload(), secret="whsec_other")

    with pytest.raises(WebhookVerificationError) as exc_info:
        billing.construct_event(body, signature)

    assert exc_info.value.status_code == 400


def test_construct_event_rejects_tampered_body(billing: BillingClient) -> None:
    body, signature = signed_webhook("customer.subscription.updated", subscription_payload())

    with pytest.raises(WebhookVerificationError):
        billing.construct_event(body.replace(b"sub_1", b"sub_2"), signature)
