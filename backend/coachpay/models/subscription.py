"""Subscription model: local entitlement mirror of a Stripe subscription."""

import enum
import uuid
from datetime import datetime

from sqlalchemy import Boolean, CheckConstraint, Enum, ForeignKey, Integer, String, false
from sqlalchemy.orm import Mapped, mapped_column, relationship

from coachpay.database import Base, TimestampMixin, UUIDPrimaryKeyMixin


class SubscriptionStatus(str, enum.Enum):
    """Lifecycle states of a user-package enrollment."""

    PENDING = "PENDING"
    ACTIVE = "ACTIVE"
    CANCELLED_ACTIVE = "CANCELLED_ACTIVE"
    CANCELLED = "CANCELLED"
    EXPIRED = "EXPIRED"


class Subscription(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """One row per user-package enrollment. Never hard-deleted."""

    __tablename__ = "subscriptions"
    __table_args__ = (
        CheckConstraint("end_date > start_date", name="ck_subscription_period"),
        CheckConstraint("failed_payment_retries >= 0", name="ck_subscription_retries"),
        CheckConstraint("freeze_days_used >= 0", name="ck_subscription_freeze_days"),
        CheckConstraint(
            "(is_in_grace_period AND grace_period_end IS NOT NULL)"
            " OR (NOT is_in_grace_period AND grace_period_end IS NULL)",
            name="ck_subscription_grace_period",
        ),
    )

    # Identity
    user_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    package_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("package_templates.id", ondelete="RESTRICT"),
        nullable=False,
    )
    trainer_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )

    # Stripe linkage
    stripe_subscription_id: Mapped[str | None] = mapped_column(String(255), unique=True, nullable=True)
    stripe_lookup_key: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)

    # Lifecycle
    status: Mapped[SubscriptionStatus] = mapped_column(
        Enum(SubscriptionStatus, native_enum=False, length=32),
        nullable=False,
        default=SubscriptionStatus.ACTIVE,
    )
    start_date: Mapped[datetime] = mapped_column(nullable=False)
    end_date: Mapped[datetime] = mapped_column(nullable=False)

    # Trial
    is_trial_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=false())
    trial_start: Mapped[datetime | None] = mapped_column(nullable=True)
    trial_end: Mapped[datetime | None] = mapped_column(nullable=True)

    # Dunning
    is_in_grace_period: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=false())
    grace_period_end: Mapped[datetime | None] = mapped_column(nullable=True)
    failed_payment_retries: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    last_payment_attempt: Mapped[datetime | None] = mapped_column(nullable=True)

    # Freeze ledger (calendar-year quota, lazily reset)
    freeze_days_used: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    freeze_usage_year: Mapped[int | None] = mapped_column(Integer, nullable=True)

    # Relationships
    user: Mapped["User"] = relationship(foreign_keys=[user_id], lazy="selectin")  # type: ignore[name-defined]  # noqa: F821
    package: Mapped["PackageTemplate"] = relationship(lazy="selectin")  # type: ignore[name-defined]  # noqa: F821

    def __repr__(self) -> str:
        return (
            f"<Subscription(id={self.id}, user_id={self.user_id}, status={self.status.value}, "
            f"stripe_subscription_id={self.stripe_subscription_id})>"
        )
