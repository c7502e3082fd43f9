"""Subscription service: lookups and writes shared by webhooks and the freeze service."""

import logging
import math
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from coachpay.billing.events import InvoiceSnapshot, SubscriptionSnapshot
from coachpay.billing.lookup_keys import FREEZE_ELIGIBLE_LOOKUP_KEY
from coachpay.billing.state_machine import is_terminal, transition
from coachpay.models.billing_record import BillingRecord
from coachpay.models.package import PackageTemplate
from coachpay.models.subscription import Subscription, SubscriptionStatus
from coachpay.models.user import User

logger = logging.getLogger(__name__)

# Used when Stripe omits the billing period (should not happen for live subscriptions)
_FALLBACK_PERIOD = timedelta(days=30)


async def get_user_by_stripe_customer(
    db: AsyncSession, stripe_customer_id: str
) -> User | None:
    """Look up a user by Stripe customer ID (used by webhooks)."""
    result = await db.execute(
        select(User).where(User.stripe_customer_id == stripe_customer_id)
    )
    return result.scalar_one_or_none()


async def get_user(db: AsyncSession, user_id: uuid.UUID) -> User | None:
    result = await db.execute(select(User).where(User.id == user_id))
    return result.scalar_one_or_none()


async def get_package_by_lookup_key(
    db: AsyncSession, lookup_key: str
) -> PackageTemplate | None:
    result = await db.execute(
        select(PackageTemplate).where(PackageTemplate.stripe_lookup_key == lookup_key)
    )
    return result.scalar_one_or_none()


async def get_subscription_by_stripe_subscription(
    db: AsyncSession, stripe_subscription_id: str, *, for_update: bool = False
) -> Subscription | None:
    """Look up a subscription by Stripe subscription ID (used by webhooks).

    With ``for_update`` the row stays locked until the transaction ends, so
    concurrent deliveries for the same Stripe subscription apply one at a time.
    """
    stmt = select(Subscription).where(
        Subscription.stripe_subscription_id == stripe_subscription_id
    )
    if for_update:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def get_active_yearly_subscription(
    db: AsyncSession, user_id: uuid.UUID, *, for_update: bool = False
) -> Subscription | None:
    """The user's active Premium Yearly subscription linked to Stripe, if any."""
    stmt = (
        select(Subscription)
        .where(
            Subscription.user_id == user_id,
            Subscription.status.in_(
                [SubscriptionStatus.ACTIVE, SubscriptionStatus.CANCELLED_ACTIVE]
            ),
            Subscription.stripe_lookup_key == FREEZE_ELIGIBLE_LOOKUP_KEY,
            Subscription.stripe_subscription_id.is_not(None),
        )
        .order_by(Subscription.start_date.desc())
        .limit(1)
    )
    if for_update:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def get_current_subscription(
    db: AsyncSession, user_id: uuid.UUID
) -> Subscription | None:
    """The user's most recent non-terminal subscription, else the most recent one."""
    result = await db.execute(
        select(Subscription)
        .where(Subscription.user_id == user_id)
        .order_by(Subscription.start_date.desc())
    )
    subscriptions = list(result.scalars().all())
    for subscription in subscriptions:
        if subscription.status not in (SubscriptionStatus.CANCELLED, SubscriptionStatus.EXPIRED):
            return subscription
    return subscriptions[0] if subscriptions else None


async def create_subscription_from_stripe(
    db: AsyncSession,
    *,
    user: User,
    package: PackageTemplate,
    snapshot: SubscriptionSnapshot,
    lookup_key: str,
    trainer_id: uuid.UUID | None,
    now: datetime,
) -> Subscription:
    """Create the local entitlement for a new Stripe subscription.

    Returns the existing row unchanged if this Stripe subscription is already
    mirrored (redelivered ``customer.subscription.created``).
    """
    existing = await get_subscription_by_stripe_subscription(db, snapshot.id)
    if existing is not None:
        logger.info(
            "Subscription %s already mirrored as %s, skipping create",
            snapshot.id,
            existing.id,
        )
        return existing

    start_date = snapshot.period_start or snapshot.created or now
    end_date = snapshot.period_end
    if end_date is None or end_date <= start_date:
        end_date = start_date + _FALLBACK_PERIOD

    subscription = Subscription(
        user_id=user.id,
        package_id=package.id,
        trainer_id=trainer_id,
        status=SubscriptionStatus.ACTIVE,
        start_date=start_date,
        end_date=end_date,
        stripe_subscription_id=snapshot.id,
        stripe_lookup_key=lookup_key,
        is_trial_active=snapshot.trial_end is not None,
        trial_start=snapshot.trial_start,
        trial_end=snapshot.trial_end,
        is_in_grace_period=False,
        grace_period_end=None,
        failed_payment_retries=0,
        freeze_days_used=0,
    )
    db.add(subscription)
    await db.flush()

    logger.info(
        "Created subscription %s for user %s: package=%s, stripe=%s, trial=%s",
        subscription.id,
        user.id,
        package.name,
        snapshot.id,
        subscription.is_trial_active,
    )
    return subscription


async def cancel_superseded_subscription(
    db: AsyncSession, user_id: uuid.UUID, previous_subscription_id: str
) -> None:
    """Mark the subscription replaced by a reactivation as CANCELLED."""
    try:
        previous_id = uuid.UUID(previous_subscription_id)
    except ValueError:
        logger.warning("Ignoring malformed previousSubscriptionId %r", previous_subscription_id)
        return

    result = await db.execute(
        select(Subscription)
        .where(Subscription.id == previous_id, Subscription.user_id == user_id)
        .with_for_update()
    )
    previous = result.scalar_one_or_none()
    if previous is None:
        logger.warning("Previous subscription %s not found for user %s", previous_id, user_id)
        return

    if is_terminal(previous.status):
        return

    if transition(previous, SubscriptionStatus.CANCELLED):
        await db.flush()
        logger.info("Subscription %s superseded by reactivation", previous_id)


async def record_billing_outcome(
    db: AsyncSession,
    subscription: Subscription,
    invoice: InvoiceSnapshot,
    status: str,
    *,
    amount: int,
    failure_reason: str | None = None,
) -> BillingRecord | None:
    """Insert a billing record for ``invoice`` unless one already exists.

    Callers hold the subscription row lock, so the existence check cannot race.
    """
    result = await db.execute(
        select(BillingRecord).where(
            BillingRecord.stripe_invoice_id == invoice.id,
            BillingRecord.status == status,
        )
    )
    if result.scalar_one_or_none() is not None:
        return None

    kind = "Payment" if status == "SUCCEEDED" else "Failed payment"
    record = BillingRecord(
        subscription_id=subscription.id,
        amount=amount,
        currency=invoice.currency,
        status=status,
        stripe_invoice_id=invoice.id,
        period_start=invoice.period_start,
        period_end=invoice.period_end,
        description=f"{kind} for {invoice.description or 'subscription'}",
        failure_reason=failure_reason,
    )
    db.add(record)
    await db.flush()
    return record


# ---------------------------------------------------------------------------
# Access status (what the client sees)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AccessStatus:
    status: str  # NO_SUBSCRIPTION, TRIAL, GRACE_PERIOD, CANCELLED_ACTIVE, ACTIVE, EXPIRED
    has_access: bool
    days_remaining: int
    expires_at: datetime | None


def _days_until(moment: datetime, now: datetime) -> int:
    return max(0, math.ceil((moment - now).total_seconds() / 86400))


def build_access_status(subscription: Subscription | None, now: datetime) -> AccessStatus:
    """Derive the customer-facing access state from the local mirror."""
    if subscription is None:
        return AccessStatus("NO_SUBSCRIPTION", False, 0, None)

    if subscription.is_trial_active and subscription.trial_end and subscription.trial_end > now:
        return AccessStatus("TRIAL", True, _days_until(subscription.trial_end, now), subscription.trial_end)

    if (
        subscription.is_in_grace_period
        and subscription.grace_period_end
        and subscription.grace_period_end > now
        and subscription.status not in (SubscriptionStatus.CANCELLED, SubscriptionStatus.EXPIRED)
    ):
        return AccessStatus(
            "GRACE_PERIOD",
            True,
            _days_until(subscription.grace_period_end, now),
            subscription.grace_period_end,
        )

    if subscription.end_date > now:
        if subscription.status == SubscriptionStatus.CANCELLED_ACTIVE:
            return AccessStatus("CANCELLED_ACTIVE", True, _days_until(subscription.end_date, now), subscription.end_date)
        if subscription.status == SubscriptionStatus.ACTIVE:
            return AccessStatus("ACTIVE", True, _days_until(subscription.end_date, now), subscription.end_date)

    return AccessStatus("EXPIRED", False, 0, None)
