"""Subscription freeze (pause/resume) for Premium Yearly subscribers.

Stripe's ``pause_collection`` is the source of truth for whether a
subscription is paused right now and when it resumes. Locally we only keep the
calendar-year quota ledger (``freeze_days_used`` for ``freeze_usage_year``),
which Stripe has no concept of.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta

import stripe
from sqlalchemy.ext.asyncio import AsyncSession

from coachpay.billing.clock import Clock, from_timestamp, system_clock
from coachpay.billing.stripe_client import (
    get_subscription,
    pause_subscription_collection,
    resume_subscription_collection,
)
from coachpay.config import settings
from coachpay.models.subscription import Subscription
from coachpay.services.subscription_service import get_active_yearly_subscription

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FreezeEligibility:
    can_freeze: bool
    reason: str | None
    days_remaining: int
    min_days: int
    max_days: int
    available_from: datetime | None = None
    is_paused: bool = False
    pause_ends_at: datetime | None = None


@dataclass(frozen=True)
class FreezeResult:
    success: bool
    message: str
    pause_ends_at: datetime | None = None


@dataclass(frozen=True)
class PauseStatus:
    is_paused: bool
    pause_ends_at: datetime | None


class PauseStatusUnavailable(Exception):
    """Stripe could not tell us whether the subscription is paused."""


NO_YEARLY_SUBSCRIPTION = "Freeze is only available for Premium Yearly subscribers"
NO_ACTIVE_YEARLY = "No active Premium Yearly subscription found"
PAUSE_STATUS_UNAVAILABLE = "Could not verify pause status. Please try again."


async def get_pause_status(stripe_subscription_id: str) -> PauseStatus:
    """Live pause state of a Stripe subscription.

    Raises:
        PauseStatusUnavailable: If Stripe could not be reached.
    """
    try:
        stripe_sub = await get_subscription(stripe_subscription_id)
    except stripe.StripeError as e:
        logger.error("Error fetching Stripe subscription %s: %s", stripe_subscription_id, e)
        raise PauseStatusUnavailable(stripe_subscription_id) from e

    pause = getattr(stripe_sub, "pause_collection", None)
    if not pause:
        return PauseStatus(is_paused=False, pause_ends_at=None)
    return PauseStatus(
        is_paused=True,
        pause_ends_at=from_timestamp(getattr(pause, "resumes_at", None)),
    )


async def _reset_quota_if_new_year(db: AsyncSession, subscription: Subscription, year: int) -> None:
    """Lazy yearly reset: a ledger from a previous year counts as unused."""
    if subscription.freeze_usage_year != year:
        subscription.freeze_days_used = 0
        subscription.freeze_usage_year = year
        await db.flush()
        logger.info("Reset freeze quota of subscription %s for %d", subscription.id, year)


async def _evaluate(db: AsyncSession, subscription: Subscription, now: datetime) -> FreezeEligibility:
    await _reset_quota_if_new_year(db, subscription, now.year)

    days_remaining = settings.max_days_per_year - subscription.freeze_days_used
    min_days = settings.min_days_per_pause
    max_days = min(settings.max_days_per_pause, days_remaining)

    try:
        pause = await get_pause_status(subscription.stripe_subscription_id)
    except PauseStatusUnavailable:
        return FreezeEligibility(
            can_freeze=False,
            reason=PAUSE_STATUS_UNAVAILABLE,
            days_remaining=days_remaining,
            min_days=min_days,
            max_days=0,
        )

    if pause.is_paused:
        return FreezeEligibility(
            can_freeze=False,
            reason="Your subscription is already paused",
            days_remaining=days_remaining,
            min_days=min_days,
            max_days=max_days,
            is_paused=True,
            pause_ends_at=pause.pause_ends_at,
        )

    eligible_from = None
    if subscription.trial_end is not None:
        eligible_from = subscription.trial_end + timedelta(days=settings.first_month_days)

    if subscription.is_trial_active:
        return FreezeEligibility(
            can_freeze=False,
            reason="Freeze is not available during your trial period",
            days_remaining=days_remaining,
            min_days=min_days,
            max_days=max_days,
            available_from=eligible_from,
        )

    if eligible_from is not None and now < eligible_from:
        return FreezeEligibility(
            can_freeze=False,
            reason="Freeze is available after your first paid month",
            days_remaining=days_remaining,
            min_days=min_days,
            max_days=max_days,
            available_from=eligible_from,
        )

    if days_remaining <= 0:
        return FreezeEligibility(
            can_freeze=False,
            reason=f"You've used all {settings.max_days_per_year} pause days this year",
            days_remaining=0,
            min_days=min_days,
            max_days=0,
        )

    if days_remaining < min_days:
        return FreezeEligibility(
            can_freeze=False,
            reason=(
                f"You only have {days_remaining} days remaining, "
                f"minimum pause is {min_days} days"
            ),
            days_remaining=days_remaining,
            min_days=min_days,
            max_days=0,
        )

    return FreezeEligibility(
        can_freeze=True,
        reason=None,
        days_remaining=days_remaining,
        min_days=min_days,
        max_days=max_days,
    )


async def get_freeze_eligibility(
    db: AsyncSession, user_id: uuid.UUID, *, clock: Clock = system_clock
) -> FreezeEligibility:
    """Whether ``user_id`` may pause their subscription now, and for how long."""
    subscription = await get_active_yearly_subscription(db, user_id, for_update=True)
    if subscription is None:
        return FreezeEligibility(
            can_freeze=False,
            reason=NO_YEARLY_SUBSCRIPTION,
            days_remaining=0,
            min_days=settings.min_days_per_pause,
            max_days=0,
        )
    return await _evaluate(db, subscription, clock.now())


async def pause_subscription(
    db: AsyncSession, user_id: uuid.UUID, days: int, *, clock: Clock = system_clock
) -> FreezeResult:
    """Pause billing for ``days`` days and debit the yearly quota.

    Eligibility is re-checked under the row lock. The pause is applied in
    Stripe first; the ledger is only debited once Stripe accepted it.
    """
    subscription = await get_active_yearly_subscription(db, user_id, for_update=True)
    if subscription is None:
        return FreezeResult(success=False, message=NO_YEARLY_SUBSCRIPTION)

    now = clock.now()
    eligibility = await _evaluate(db, subscription, now)
    if not eligibility.can_freeze:
        return FreezeResult(
            success=False,
            message=eligibility.reason or "Unable to pause subscription",
        )

    if days < settings.min_days_per_pause:
        return FreezeResult(
            success=False,
            message=f"Minimum pause duration is {settings.min_days_per_pause} days",
        )

    if days > eligibility.max_days:
        return FreezeResult(
            success=False,
            message=(
                f"Maximum pause duration is {eligibility.max_days} days "
                f"({eligibility.days_remaining} days remaining this year)"
            ),
        )

    resumes_at = now + timedelta(days=days)
    try:
        await pause_subscription_collection(subscription.stripe_subscription_id, resumes_at)
    except stripe.StripeError as e:
        logger.error("Error pausing subscription %s: %s", subscription.stripe_subscription_id, e)
        return FreezeResult(success=False, message="Failed to pause subscription. Please try again.")

    subscription.freeze_days_used += days
    subscription.freeze_usage_year = now.year
    await db.flush()

    logger.info(
        "Subscription %s paused for %d days until %s (%d/%d days used this year)",
        subscription.stripe_subscription_id,
        days,
        resumes_at.isoformat(),
        subscription.freeze_days_used,
        settings.max_days_per_year,
    )
    return FreezeResult(
        success=True,
        message=f"Subscription paused for {days} days",
        pause_ends_at=resumes_at,
    )


async def resume_subscription(db: AsyncSession, user_id: uuid.UUID) -> FreezeResult:
    """End an active pause early. Unused pause days are not returned to the quota."""
    subscription = await get_active_yearly_subscription(db, user_id, for_update=True)
    if subscription is None:
        return FreezeResult(success=False, message=NO_ACTIVE_YEARLY)

    try:
        pause = await get_pause_status(subscription.stripe_subscription_id)
    except PauseStatusUnavailable:
        return FreezeResult(success=False, message=PAUSE_STATUS_UNAVAILABLE)

    if not pause.is_paused:
        return FreezeResult(success=False, message="Subscription is not currently paused")

    try:
        await resume_subscription_collection(subscription.stripe_subscription_id)
    except stripe.StripeError as e:
        logger.error("Error resuming subscription %s: %s", subscription.stripe_subscription_id, e)
        return FreezeResult(success=False, message="Failed to resume subscription. Please try again.")

    logger.info("Subscription %s resumed early", subscription.stripe_subscription_id)
    return FreezeResult(success=True, message="Subscription resumed successfully")
