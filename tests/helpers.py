"""Test doubles for the upstream completion and billing providers."""

from __future__ import annotations

import hashlib
import hmac
import json
import os
import time
from typing import TYPE_CHECKING, Any

from chat_api.db import models as m
from chat_api.lib.billing import BillingClient, CheckoutSession, SubscriptionSnapshot
from chat_api.lib.completion import CompletionChunk, TokenUsage

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Sequence

    from chat_api.lib.completion import ChatTurn, CompletionParams

WEBHOOK_SECRET = os.environ.get("STRIPE_WEBHOOK_SECRET", "whsec_test_secret")
PRICE_IDS = {m.SubscriptionTier.BASE: "price_base", m.SubscriptionTier.PRO: "price_pro"}


class FakeCompletionClient:
    """Replays scripted chunks, optionally failing after ``fail_after`` of them."""

    def __init__(
        self,
        chunks: Sequence[CompletionChunk] | None = None,
        error: Exception | None = None,
        fail_after: int = 0,
    ) -> None:
        self.chunks = list(chunks) if chunks is not None else default_chunks()
        self.error = error
        self.fail_after = fail_after
        self.calls: list[dict[str, Any]] = []
        self.streams_closed = 0
        self.closed = False

    async def stream_completion(
        self,
        model: str,
        messages: Sequence[ChatTurn],
        params: CompletionParams,
    ) -> AsyncIterator[CompletionChunk]:
        self.calls.append({"model": model, "messages": list(messages), "params": params})
        try:
            for index, chunk in enumerate(self.chunks):
                if self.error is not None and index == self.fail_after:
                    raise self.error
                yield chunk
            if self.error is not None and self.fail_after >= len(self.chunks):
                raise self.error
        finally:
            self.streams_closed += 1

    async def close(self) -> None:
        self.closed = True


def default_chunks() -> list[CompletionChunk]:
    return [
        CompletionChunk(reasoning="Thinking"),
        CompletionChunk(content="Hello"),
        CompletionChunk(content=" world"),
        CompletionChunk(usage=TokenUsage(prompt_tokens=12, completion_tokens=8, total_tokens=20)),
    ]


class FakeBillingClient(BillingClient):
    """Billing client keeping provider state in memory."""

    def __init__(self) -> None:
        super().__init__(secret_key="sk_test_123", webhook_secret=WEBHOOK_SECRET, price_ids=PRICE_IDS)
        self.customers: dict[str, str] = {}
        self.subscriptions: dict[str, dict[str, Any]] = {}
        self.checkouts: list[dict[str, Any]] = []

    async def get_or_create_customer(self, email: str, user_id: str, name: str | None = None) -> str:
        return self.customers.setdefault(email, f"cus_{len(self.customers) + 1}")

    async def create_checkout_session(
        self,
        *,
        customer_id: str,
        tier: m.SubscriptionTier,
        success_url: str,
        cancel_url: str,
        user_id: str,
    ) -> CheckoutSession:
        self.checkouts.append({"customer_id": customer_id, "tier": tier, "user_id": user_id})
        return CheckoutSession(id=f"cs_{len(self.checkouts)}", url=f"https://checkout.test/{len(self.checkouts)}")

    async def create_portal_session(self, customer_id: str, return_url: str) -> str:
        return f"https://portal.test/{customer_id}"

    async def retrieve_subscription(self, subscription_id: str) -> SubscriptionSnapshot:
        return self.snapshot(self.subscriptions[subscription_id])

    async def cancel_subscription(self, subscription_id: str, *, immediately: bool = False) -> SubscriptionSnapshot:
        payload = self.subscriptions[subscription_id]
        if immediately:
            payload["status"] = "canceled"
        else:
            payload["cancel_at_period_end"] = True
        return self.snapshot(payload)

    async def resume_subscription(self, subscription_id: str) -> SubscriptionSnapshot:
        payload = self.subscriptions[subscription_id]
        payload["cancel_at_period_end"] = False
        return self.snapshot(payload)


def subscription_payload(
    subscription_id: str = "sub_1",
    *,
    user_id: str | None = None,
    customer_id: str = "cus_1",
    status: str = "active",
    price_id: str = "price_base",
    period_end: int = 1_900_000_000,
    cancel_at_period_end: bool = False,
) -> dict[str, Any]:
    return {
        "id": subscription_id,
        "object": "subscription",
        "customer": customer_id,
        "status": status,
        "cancel_at_period_end": cancel_at_period_end,
        "metadata": {"userId": user_id} if user_id else {},
        "items": {"data": [{"price": {"id": price_id}, "current_period_end": period_end}]},
    }


def signed_webhook(event_type: str, obj: dict[str, Any], secret: str = WEBHOOK_SECRET) -> tuple[bytes, str]:
    """Build a webhook body and a matching ``Stripe-Signature`` header."""
    body = json.dumps({"id": f"evt_{event_type}", "type": event_type, "data": {"object": obj}}).encode()
    timestamp = int(time.time())
    signature = hmac.new(secret.encode(), f"{timestamp}.{body.decode()}".encode(), hashlib.sha256).hexdigest()
    return body, f"t={timestamp},v1={signature}"

