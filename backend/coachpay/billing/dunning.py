"""Dunning: what happens locally when Stripe fails to collect an invoice.

Stripe owns the retry schedule. Locally we count failed attempts, open a grace
period on the first failure so the user keeps access, and queue an email for
the first failure and another once retries are exhausted. Emails go out only
after the webhook transaction commits.
"""

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy.ext.asyncio import AsyncSession

from coachpay.billing.clock import Clock, system_clock
from coachpay.billing.events import InvoiceSnapshot
from coachpay.billing.state_machine import is_terminal, transition
from coachpay.config import settings
from coachpay.models.subscription import SubscriptionStatus
from coachpay.notifications.email import (
    EmailNotifier,
    GracePeriodEndingEmail,
    PaymentFailedEmail,
)
from coachpay.services.subscription_service import (
    get_subscription_by_stripe_subscription,
    record_billing_outcome,
)

logger = logging.getLogger(__name__)

_DAY_SECONDS = 86400


@dataclass(frozen=True)
class DunningNotice:
    """An email to send once the dunning state that triggered it is committed."""

    to: str
    email: PaymentFailedEmail | GracePeriodEndingEmail


def days_remaining_in_grace(grace_period_end: datetime | None, now: datetime) -> int:
    """Whole days (rounded up) until the grace period ends, never negative."""
    if grace_period_end is None:
        return 0
    return max(0, math.ceil((grace_period_end - now).total_seconds() / _DAY_SECONDS))


async def handle_payment_failed(
    db: AsyncSession,
    invoice: InvoiceSnapshot,
    *,
    clock: Clock = system_clock,
) -> list[DunningNotice]:
    """Handle ``invoice.payment_failed``.

    Increments the retry counter under a row lock. The first failure moves the
    subscription to PENDING and opens the grace period; reaching
    ``MAX_PAYMENT_RETRIES`` asks for the grace-period-ending notice.

    Returns the notices to send. Nothing is emailed here: the caller sends
    them with ``send_dunning_notices`` after the transaction commits.
    """
    if not invoice.subscription_id:
        logger.info("Invoice %s has no subscription, skipping dunning", invoice.id)
        return []

    subscription = await get_subscription_by_stripe_subscription(
        db, invoice.subscription_id, for_update=True
    )
    if subscription is None:
        logger.warning(
            "No local subscription for Stripe subscription %s (invoice %s)",
            invoice.subscription_id,
            invoice.id,
        )
        return []

    if is_terminal(subscription.status):
        logger.info(
            "Ignoring payment failure for %s subscription %s",
            subscription.status.value,
            subscription.id,
        )
        return []

    now = clock.now()
    first_failure = not subscription.is_in_grace_period

    subscription.failed_payment_retries += 1
    subscription.last_payment_attempt = now

    if first_failure:
        transition(subscription, SubscriptionStatus.PENDING)
        subscription.is_in_grace_period = True
        subscription.grace_period_end = now + timedelta(milliseconds=settings.grace_period_ms)

    await record_billing_outcome(
        db,
        subscription,
        invoice,
        "FAILED",
        amount=invoice.amount_due,
        failure_reason=f"Payment attempt {subscription.failed_payment_retries} failed",
    )
    await db.flush()

    logger.warning(
        "Payment failed for subscription %s: attempt %d/%d, grace period ends %s",
        subscription.id,
        subscription.failed_payment_retries,
        settings.max_payment_retries,
        subscription.grace_period_end,
    )

    user = subscription.user
    notices = []
    if first_failure:
        notices.append(
            DunningNotice(
                to=user.email,
                email=PaymentFailedEmail(
                    user_name=user.display_name,
                    grace_period_days=settings.grace_period_days,
                    package_name=subscription.package.name,
                    update_payment_url=settings.update_payment_url,
                ),
            )
        )
    if subscription.failed_payment_retries >= settings.max_payment_retries:
        notices.append(
            DunningNotice(
                to=user.email,
                email=GracePeriodEndingEmail(
                    user_name=user.display_name,
                    package_name=subscription.package.name,
                    days_remaining=days_remaining_in_grace(subscription.grace_period_end, now),
                    update_payment_url=settings.update_payment_url,
                ),
            )
        )
    return notices


async def send_dunning_notices(notifier: EmailNotifier, notices: list[DunningNotice]) -> None:
    """Best-effort delivery: a failed email is logged and the rest still go out."""
    for notice in notices:
        try:
            match notice.email:
                case PaymentFailedEmail():
                    await notifier.payment_failed(notice.to, notice.email)
                case GracePeriodEndingEmail():
                    await notifier.grace_period_ending(notice.to, notice.email)
        except Exception:
            logger.exception("Failed to send %s email to %s", type(notice.email).__name__, notice.to)
