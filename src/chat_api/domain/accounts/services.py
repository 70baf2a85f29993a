from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

import structlog
from advanced_alchemy.repository import SQLAlchemyAsyncRepository
from advanced_alchemy.service import SQLAlchemyAsyncRepositoryService
from advanced_alchemy.types import DateTimeUTC
from sqlalchemy import case, literal, select, update

from chat_api.db import models as m
from chat_api.lib import crypt
from chat_api.lib.exceptions import AuthenticationError, ResourceConflictError
from chat_api.lib.usage_policy import month_start

if TYPE_CHECKING:
    from uuid import UUID

logger = structlog.get_logger()


class UserService(SQLAlchemyAsyncRepositoryService[m.User]):
    """Handles database operations for users."""

    class Repository(SQLAlchemyAsyncRepository[m.User]):
        """User SQLAlchemy Repository."""

        model_type = m.User

    repository_type = Repository
    match_fields = ["email"]

    async def register(self, email: str, password: str, full_name: str) -> m.User:
        """Create a FREE tier account.

        Raises:
            ResourceConflictError: The email address is already registered.
        """
        email = email.lower()
        if await self.exists(email=email):
            raise ResourceConflictError(code="AUTH_002", detail="An account with this email already exists")
        return await self.create(
            {
                "email": email,
                "full_name": full_name,
                "hashed_password": await crypt.get_password_hash(password),
                "subscription_tier": m.SubscriptionTier.FREE,
                "subscription_status": m.SubscriptionStatus.ACTIVE,
                "monthly_reset_date": datetime.now(UTC),
            },
        )

    async def authenticate(self, username: str, password: str | bytes) -> m.User:
        """Authenticate a user.

        Args:
            username (str): The account email address.
            password (str | bytes): The plain text password.

        Raises:
            AuthenticationError: Raised when the user doesn't exist, isn't active or the password is wrong.

        Returns:
            m.User: The user object
        """
        db_obj = await self.get_one_or_none(email=username.lower())
        if db_obj is None or not await crypt.verify_password(password, db_obj.hashed_password):
            raise AuthenticationError(detail="Invalid email or password")
        if not db_obj.is_active:
            raise AuthenticationError(detail="User account is inactive")
        return await self.update({"last_login_at": datetime.now(UTC)}, item_id=db_obj.id)

    async def reset_monthly_usage_if_stale(self, user: m.User, now: datetime | None = None) -> bool:
        """Zero the monthly counter if it belongs to a previous month.

        Runs as a single conditional ``UPDATE`` so concurrent requests reset at most once.

        Returns:
            True if the counter was reset.
        """
        now = now or datetime.now(UTC)
        result = await self.repository.session.execute(
            update(m.User)
            .where(m.User.id == user.id, m.User.monthly_reset_date < month_start(now))
            .values(monthly_message_count=0, monthly_reset_date=now)
            .execution_options(synchronize_session=False),
        )
        if not result.rowcount:
            return False
        await self.repository.session.refresh(user)
        logger.info("Monthly message counter reset", user_id=user.id)
        return True

    async def record_message_sent(self, user_id: UUID, now: datetime | None = None) -> m.User:
        """Count one sent message against the monthly and lifetime counters.

        A stale monthly counter is reset and incremented in the same statement.

        Returns:
            The user with refreshed counters.
        """
        now = now or datetime.now(UTC)
        stale = m.User.monthly_reset_date < month_start(now)
        await self.repository.session.execute(
            update(m.User)
            .where(m.User.id == user_id)
            .values(
                monthly_message_count=case((stale, 1), else_=m.User.monthly_message_count + 1),
                monthly_reset_date=case(
                    (stale, literal(now, DateTimeUTC(timezone=True))),
                    else_=m.User.monthly_reset_date,
                ),
                total_message_count=m.User.total_message_count + 1,
            )
            .execution_options(synchronize_session=False),
        )
        result = await self.repository.session.execute(
            select(m.User).where(m.User.id == user_id).execution_options(populate_existing=True),
        )
        return result.scalar_one()

    async def update_subscription(self, user_id: UUID, **values: Any) -> m.User:
        """Persist subscription fields reported by the payment provider."""
        user = await self.update(values, item_id=user_id)
        logger.info(
            "Subscription updated",
            user_id=user_id,
            tier=user.subscription_tier,
            status=user.subscription_status,
        )
        return user
