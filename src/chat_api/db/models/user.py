from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING

from advanced_alchemy.base import UUIDAuditBase
from advanced_alchemy.types import DateTimeUTC
from sqlalchemy import Boolean, Enum, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .subscription import SubscriptionStatus, SubscriptionTier

if TYPE_CHECKING:
    from .conversation import Conversation
    from .usage_record import UsageRecord


class User(UUIDAuditBase):
    """Account holder with subscription state and message counters."""

    __tablename__ = "user_account"
    __table_args__ = {"comment": "User accounts for application access"}
    __pii_columns__ = {"full_name", "email"}

    email: Mapped[str] = mapped_column(String(255), unique=True, index=True, nullable=False)
    full_name: Mapped[str] = mapped_column(String(100), nullable=False)
    hashed_password: Mapped[str] = mapped_column(String(255), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    last_login_at: Mapped[datetime | None] = mapped_column(DateTimeUTC(timezone=True), nullable=True)

    # Subscription state mirrored from the payment provider
    subscription_tier: Mapped[SubscriptionTier] = mapped_column(
        Enum(SubscriptionTier, name="subscription_tier_enum", native_enum=False),
        default=SubscriptionTier.FREE,
        nullable=False,
    )
    subscription_status: Mapped[SubscriptionStatus] = mapped_column(
        Enum(SubscriptionStatus, name="subscription_status_enum", native_enum=False),
        default=SubscriptionStatus.ACTIVE,
        nullable=False,
    )
    subscription_id: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    stripe_customer_id: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    subscription_current_period_end: Mapped[datetime | None] = mapped_column(
        DateTimeUTC(timezone=True),
        nullable=True,
    )
    subscription_cancel_at_period_end: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # Usage counters
    monthly_message_count: Mapped[int] = mapped_column(
        default=0,
        nullable=False,
        comment="Messages sent since monthly_reset_date",
    )
    monthly_reset_date: Mapped[datetime] = mapped_column(
        DateTimeUTC(timezone=True),
        default=lambda: datetime.now(UTC),
        nullable=False,
    )
    total_message_count: Mapped[int] = mapped_column(default=0, nullable=False)

    # -----------
    # ORM Relationships
    # ------------

    conversations: Mapped[list[Conversation]] = relationship(
        back_populates="user",
        lazy="noload",
        cascade="all, delete-orphan",
    )
    usage_records: Mapped[list[UsageRecord]] = relationship(
        back_populates="user",
        lazy="noload",
        cascade="all, delete-orphan",
    )
