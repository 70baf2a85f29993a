"""Per-tier message quotas and model entitlements."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, NamedTuple

import structlog

from chat_api.db.models import SubscriptionTier
from chat_api.lib.exceptions import QuotaExceededException

if TYPE_CHECKING:
    from chat_api.db import models as m
    from chat_api.domain.accounts.services import UserService

__all__ = (
    "TIER_MODELS",
    "TIER_MONTHLY_LIMITS",
    "UNLIMITED",
    "UsagePolicy",
    "UsageStats",
    "month_start",
    "next_reset_date",
)

logger = structlog.get_logger()

UNLIMITED = -1
"""Sentinel returned for remaining messages on tiers without a cap."""

TIER_MONTHLY_LIMITS: dict[SubscriptionTier, int | None] = {
    SubscriptionTier.FREE: 10,
    SubscriptionTier.BASE: 100,
    SubscriptionTier.PRO: None,
}

TIER_MODELS: dict[SubscriptionTier, tuple[str, ...]] = {
    SubscriptionTier.FREE: ("deepseek-r1-250120",),
    SubscriptionTier.BASE: ("deepseek-r1-250120", "gpt-4"),
    SubscriptionTier.PRO: ("deepseek-r1-250120", "gpt-4", "gpt-4-turbo"),
}


def month_start(now: datetime | None = None) -> datetime:
    """Return the first instant of the current calendar month in UTC."""
    now = now or datetime.now(UTC)
    return now.astimezone(UTC).replace(day=1, hour=0, minute=0, second=0, microsecond=0)


def next_reset_date(now: datetime | None = None) -> datetime:
    """Get the reset date for the current month (first day of next month).

    Returns:
        Datetime object representing when the quota resets
    """
    start = month_start(now)
    if start.month == 12:
        return start.replace(year=start.year + 1, month=1)
    return start.replace(month=start.month + 1)


class UsageStats(NamedTuple):
    """Usage statistics for a user."""

    subscription_tier: SubscriptionTier
    monthly_usage: int
    monthly_limit: int | None
    remaining_messages: int
    total_usage: int
    reset_date: datetime


class UsagePolicy:
    """Decides whether a user may send another message and with which models."""

    def __init__(
        self,
        monthly_limits: dict[SubscriptionTier, int | None] | None = None,
        tier_models: dict[SubscriptionTier, tuple[str, ...]] | None = None,
    ) -> None:
        self.monthly_limits = monthly_limits or TIER_MONTHLY_LIMITS
        self.tier_models = tier_models or TIER_MODELS

    def monthly_limit(self, tier: SubscriptionTier) -> int | None:
        return self.monthly_limits[SubscriptionTier(tier)]

    def monthly_usage(self, user: m.User | Any, now: datetime | None = None) -> int:
        """Messages counted against the current month.

        A counter whose reset date precedes the start of this month belongs to a previous
        period and counts as zero until it is reset in storage.
        """
        reset_date = user.monthly_reset_date
        if reset_date is None or reset_date < month_start(now):
            return 0
        return user.monthly_message_count

    def can_send_message(self, user: m.User | Any, now: datetime | None = None) -> bool:
        limit = self.monthly_limit(user.subscription_tier)
        if limit is None:
            return True
        return self.monthly_usage(user, now) < limit

    def remaining_messages(self, user: m.User | Any, now: datetime | None = None) -> int:
        """Messages left this month, ``UNLIMITED`` for uncapped tiers."""
        limit = self.monthly_limit(user.subscription_tier)
        if limit is None:
            return UNLIMITED
        return max(0, limit - self.monthly_usage(user, now))

    def available_models(self, user: m.User | Any) -> tuple[str, ...]:
        return self.tier_models[SubscriptionTier(user.subscription_tier)]

    def is_model_allowed(self, user: m.User | Any, model: str) -> bool:
        return model in self.available_models(user)

    def get_usage_stats(self, user: m.User | Any, now: datetime | None = None) -> UsageStats:
        """Get current usage statistics for a user.

        Args:
            user: The account to report on.
            now: Reference time, defaults to the current UTC time.

        Returns:
            UsageStats object with current usage information
        """
        tier = SubscriptionTier(user.subscription_tier)
        return UsageStats(
            subscription_tier=tier,
            monthly_usage=self.monthly_usage(user, now),
            monthly_limit=self.monthly_limit(tier),
            remaining_messages=self.remaining_messages(user, now),
            total_usage=user.total_message_count,
            reset_date=next_reset_date(now),
        )

    async def check_message_quota(self, user: m.User, users_service: UserService) -> None:
        """Reset a stale monthly counter, then verify the user may send a message.

        Args:
            user: The authenticated user.
            users_service: Service bound to the request session.

        Raises:
            QuotaExceededException: If the user has exhausted the tier's monthly allowance.
        """
        await users_service.reset_monthly_usage_if_stale(user)
        if self.can_send_message(user):
            return
        limit = self.monthly_limit(user.subscription_tier) or 0
        logger.warning(
            "Monthly message quota exceeded",
            user_id=user.id,
            subscription_tier=user.subscription_tier,
            current_usage=user.monthly_message_count,
            monthly_limit=limit,
        )
        raise QuotaExceededException(
            current_usage=user.monthly_message_count,
            monthly_limit=limit,
            subscription_tier=SubscriptionTier(user.subscription_tier).value,
            reset_date=next_reset_date(),
        )
