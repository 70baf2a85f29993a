from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING

import pytest

from chat_api.db import models as m
from chat_api.domain.accounts.services import UserService
from chat_api.lib.exceptions import AuthenticationError, ResourceConflictError

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

pytestmark = pytest.mark.anyio

NOW = datetime(2025, 3, 15, 12, 0, tzinfo=UTC)
LAST_MONTH = datetime(2025, 2, 10, tzinfo=UTC)


async def test_register_creates_free_account(session: AsyncSession) -> None:
    service = UserService(session=session)

    user = await service.register("Ada@Example.com", "s3cret-password", "Ada Lovelace")

    assert user.email == "ada@example.com"
    assert user.hashed_password != "s3cret-password"
    assert user.subscription_tier == m.SubscriptionTier.FREE
    assert user.subscription_status == m.SubscriptionStatus.ACTIVE
    assert user.monthly_message_count == 0
    assert user.total_message_count == 0


async def test_register_rejects_duplicate_email(session: AsyncSession) -> None:
    service = UserService(session=session)
    await service.register("ada@example.com", "s3cret-password", "Ada")

    with pytest.raises(ResourceConflictError) as exc_info:
        await service.register("ADA@example.com", "another-password", "Ada Again")

    assert exc_info.value.code == "AUTH_002"
    assert exc_info.value.status_code == 409


async def test_authenticate(session: AsyncSession) -> None:
    service = UserService(session=session)
    await service.register("ada@example.com", "s3cret-password", "Ada")

    user = await service.authenticate("ADA@example.com", "s3cret-password")

    assert user.last_login_at is not None
    with pytest.raises(AuthenticationError):
        await service.authenticate("ada@example.com", "wrong-password")
    with pytest.raises(AuthenticationError):
        await service.authenticate("nobody@example.com", "s3cret-password")


async def test_authenticate_inactive_user(session: AsyncSession) -> None:
    service = UserService(session=session)
    user = await service.register("ada@example.com", "s3cret-password", "Ada")
    await service.update({"is_active": False}, item_id=user.id)

    with pytest.raises(AuthenticationError, match="inactive"):
        await service.authenticate("ada@example.com", "s3cret-password")


async def test_reset_monthly_usage_if_stale(session: AsyncSession) -> None:
    service = UserService(session=session)
    user = await service.register("ada@example.com", "s3cret-password", "Ada")
    user = await service.update({"monthly_message_count": 7, "monthly_reset_date": LAST_MONTH}, item_id=user.id)

    assert await service.reset_monthly_usage_if_stale(user, NOW) is True
    assert user.monthly_message_count == 0
    assert await service.reset_monthly_usage_if_stale(user, NOW) is False


async def test_record_message_sent_increments_counters(session: AsyncSession) -> None:
    service = UserService(session=session)
    user = await service.register("ada@example.com", "s3cret-password", "Ada")
    await service.update({"monthly_message_count": 3, "total_message_count": 30, "monthly_reset_date": NOW}, item_id=user.id)

    updated = await service.record_message_sent(user.id, NOW)

    assert updated.monthly_message_count == 4
    assert updated.total_message_count == 31


async def test_record_message_sent_restarts_stale_month(session: AsyncSession) -> None:
    service = UserService(session=session)
    user = await service.register("ada@example.com", "s3cret-password", "Ada")
    await service.update(
        {"monthly_message_count": 10, "total_message_count": 10, "monthly_reset_date": LAST_MONTH},
        item_id=user.id,
    )

    updated = await service.record_message_sent(user.id, NOW)

    assert updated.monthly_message_count == 1
    assert updated.total_message_count == 11
    assert updated.monthly_reset_date == NOW


async def test_update_subscription(session: AsyncSession) -> None:
    service = UserService(session=session)
    user = await service.register("ada@example.com", "s3cret-password", "Ada")

    updated = await service.update_subscription(
        user.id,
        subscription_tier=m.SubscriptionTier.PRO,
        subscription_status=m.SubscriptionStatus.TRIALING,
        subscription_id="sub_1",
    )

    assert updated.subscription_tier == m.SubscriptionTier.PRO
    assert updated.subscription_status == m.SubscriptionStatus.TRIALING
    assert updated.subscription_id == "sub_1"
