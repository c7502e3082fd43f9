"""Stripe webhook event handlers: keep local subscriptions in sync with Stripe.

Every handler is idempotent and returns quietly when the event does not link
to anything we know about (unknown customer, price or subscription). Status
changes go through the state machine.
"""

import logging
import uuid
from typing import assert_never

import stripe
from sqlalchemy.ext.asyncio import AsyncSession

from coachpay.billing.clock import Clock, system_clock
from coachpay.billing.dunning import DunningNotice, handle_payment_failed
from coachpay.billing.events import (
    BillingEvent,
    CheckoutCompleted,
    CheckoutSessionSnapshot,
    InvoiceSnapshot,
    PaymentFailed,
    PaymentSucceeded,
    SubscriptionCreated,
    SubscriptionDeleted,
    SubscriptionSnapshot,
    SubscriptionUpdated,
    TrialWillEnd,
)
from coachpay.billing.exceptions import InvalidTransitionError
from coachpay.billing.lookup_keys import resolve_lookup_key
from coachpay.billing.revenue import calculate_revenue_sharing, get_payout_destination
from coachpay.billing.state_machine import transition
from coachpay.billing.stripe_client import get_payment_intent
from coachpay.models.subscription import SubscriptionStatus
from coachpay.services.subscription_service import (
    cancel_superseded_subscription,
    create_subscription_from_stripe,
    get_package_by_lookup_key,
    get_subscription_by_stripe_subscription,
    get_user_by_stripe_customer,
    record_billing_outcome,
)

logger = logging.getLogger(__name__)


def _parse_uuid(value: str | None) -> uuid.UUID | None:
    if not value:
        return None
    try:
        return uuid.UUID(value)
    except ValueError:
        logger.warning("Ignoring malformed id %r in Stripe metadata", value)
        return None


def map_stripe_status(stripe_status: str | None, cancel_at_period_end: bool) -> SubscriptionStatus | None:
    """Local status for a Stripe subscription status (None = leave unchanged)."""
    if stripe_status in ("active", "trialing"):
        return SubscriptionStatus.CANCELLED_ACTIVE if cancel_at_period_end else SubscriptionStatus.ACTIVE
    if stripe_status in ("past_due", "unpaid"):
        return SubscriptionStatus.PENDING
    if stripe_status == "canceled":
        return SubscriptionStatus.CANCELLED
    return None


async def handle_checkout_completed(db: AsyncSession, session: CheckoutSessionSnapshot) -> None:
    """Handle checkout.session.completed.

    Subscription checkouts are mirrored by ``customer.subscription.created``.
    For one-time trainer purchases the revenue split is computed and logged.
    """
    if not session.customer_id:
        logger.warning("No customer on checkout session %s", session.id)
        return

    user = await get_user_by_stripe_customer(db, session.customer_id)
    if user is None:
        logger.warning("No user for Stripe customer %s (checkout %s)", session.customer_id, session.id)
        return

    if session.mode != "payment" or not session.payment_intent_id:
        logger.info("Checkout %s (%s) completed for user %s", session.id, session.mode, user.id)
        return

    payment_intent = await get_payment_intent(session.payment_intent_id)
    amount = getattr(payment_intent, "amount_received", None) or getattr(payment_intent, "amount", None) or 0
    currency = getattr(payment_intent, "currency", None) or "usd"
    logger.info(
        "One-time payment %s: %d %s from user %s",
        session.payment_intent_id,
        amount,
        currency.upper(),
        user.id,
    )

    trainer_id = _parse_uuid(session.metadata.get("trainerId"))
    if trainer_id is None:
        return

    payout = await get_payout_destination(db, trainer_id)
    revenue = await calculate_revenue_sharing(
        [{"price_data": {"unit_amount": amount, "currency": currency}, "quantity": 1}]
    )
    logger.info(
        "Revenue split for %s: total=%d, platform fee=%d, trainer payout=%d -> %s",
        session.payment_intent_id,
        revenue.total_amount,
        revenue.application_fee_amount,
        revenue.trainer_payout_amount,
        payout.display_name,
    )


async def handle_subscription_created(
    db: AsyncSession, snapshot: SubscriptionSnapshot, *, clock: Clock = system_clock
) -> None:
    """Handle customer.subscription.created: create the local entitlement."""
    lookup_key = await resolve_lookup_key(snapshot.price)
    if not lookup_key:
        logger.warning("Could not resolve a lookup key for subscription %s", snapshot.id)
        return

    package = await get_package_by_lookup_key(db, lookup_key)
    if package is None:
        logger.warning("No package for lookup key %s (subscription %s)", lookup_key, snapshot.id)
        return

    if not snapshot.customer_id:
        logger.warning("No customer on subscription %s", snapshot.id)
        return

    user = await get_user_by_stripe_customer(db, snapshot.customer_id)
    if user is None:
        logger.warning("No user for Stripe customer %s (subscription %s)", snapshot.customer_id, snapshot.id)
        return

    trainer_id = package.trainer_id or _parse_uuid(snapshot.metadata.get("trainerId"))
    subscription = await create_subscription_from_stripe(
        db,
        user=user,
        package=package,
        snapshot=snapshot,
        lookup_key=lookup_key,
        trainer_id=trainer_id,
        now=clock.now(),
    )

    previous_id = snapshot.metadata.get("previousSubscriptionId")
    if (
        snapshot.metadata.get("isReactivation") == "true"
        and previous_id
        and previous_id != str(subscription.id)
    ):
        await cancel_superseded_subscription(db, user.id, previous_id)


async def handle_payment_succeeded(
    db: AsyncSession, invoice: InvoiceSnapshot, *, clock: Clock = system_clock
) -> None:
    """Handle invoice.payment_succeeded: back to ACTIVE, dunning state cleared."""
    if not invoice.subscription_id:
        logger.info("Invoice %s has no subscription (one-time), skipping", invoice.id)
        return

    subscription = await get_subscription_by_stripe_subscription(
        db, invoice.subscription_id, for_update=True
    )
    if subscription is None:
        logger.warning(
            "No local subscription for Stripe subscription %s (invoice %s)",
            invoice.subscription_id,
            invoice.id,
        )
        return

    transition(subscription, SubscriptionStatus.ACTIVE)
    subscription.is_in_grace_period = False
    subscription.grace_period_end = None
    subscription.failed_payment_retries = 0
    subscription.last_payment_attempt = clock.now()
    if invoice.period_end and invoice.period_end > subscription.end_date:
        subscription.end_date = invoice.period_end

    await record_billing_outcome(db, subscription, invoice, "SUCCEEDED", amount=invoice.amount_paid)
    await db.flush()
    logger.info(
        "Payment succeeded: subscription %s active until %s",
        subscription.id,
        subscription.end_date.isoformat(),
    )


async def handle_subscription_updated(
    db: AsyncSession, snapshot: SubscriptionSnapshot, *, clock: Clock = system_clock
) -> None:
    """Handle customer.subscription.updated: sync status and period end."""
    subscription = await get_subscription_by_stripe_subscription(db, snapshot.id, for_update=True)
    if subscription is None:
        logger.warning("No local subscription for Stripe subscription %s (update)", snapshot.id)
        return

    target = map_stripe_status(snapshot.status, snapshot.cancel_at_period_end)
    if target is None:
        logger.info("Stripe status %s of %s needs no local change", snapshot.status, snapshot.id)
    else:
        transition(subscription, target)

    if snapshot.period_end and snapshot.period_end > subscription.start_date:
        subscription.end_date = snapshot.period_end

    if subscription.is_trial_active and snapshot.status != "trialing":
        trial_end = snapshot.trial_end or subscription.trial_end
        if trial_end is None or trial_end <= clock.now():
            subscription.is_trial_active = False

    await db.flush()
    logger.info(
        "Subscription updated: %s -> status=%s, cancel_at_period_end=%s",
        snapshot.id,
        subscription.status.value,
        snapshot.cancel_at_period_end,
    )


async def handle_subscription_deleted(db: AsyncSession, snapshot: SubscriptionSnapshot) -> None:
    """Handle customer.subscription.deleted: CANCELLED, end date kept."""
    subscription = await get_subscription_by_stripe_subscription(db, snapshot.id, for_update=True)
    if subscription is None:
        logger.warning("No local subscription for Stripe subscription %s (delete event)", snapshot.id)
        return

    if transition(subscription, SubscriptionStatus.CANCELLED):
        await db.flush()
    logger.info("Subscription deleted: %s cancelled", snapshot.id)


async def handle_trial_will_end(db: AsyncSession, snapshot: SubscriptionSnapshot) -> None:
    """Handle customer.subscription.trial_will_end: refresh the trial end date."""
    subscription = await get_subscription_by_stripe_subscription(db, snapshot.id, for_update=True)
    if subscription is None:
        logger.warning("No local subscription for Stripe subscription %s (trial ending)", snapshot.id)
        return

    if snapshot.trial_end is not None:
        subscription.trial_end = snapshot.trial_end
        await db.flush()
    logger.info("Trial of subscription %s ends %s", subscription.id, subscription.trial_end)


async def dispatch_event(
    db: AsyncSession,
    event: BillingEvent,
    *,
    clock: Clock = system_clock,
) -> list[DunningNotice]:
    """Route a typed billing event to exactly one handler.

    Stripe API failures and disallowed status changes are logged and the event
    is treated as handled; anything else propagates so the caller rolls back.
    Returns the dunning notices to send after the caller commits.
    """
    try:
        match event:
            case CheckoutCompleted(session=session):
                await handle_checkout_completed(db, session)
            case SubscriptionCreated(subscription=snapshot):
                await handle_subscription_created(db, snapshot, clock=clock)
            case SubscriptionUpdated(subscription=snapshot):
                await handle_subscription_updated(db, snapshot, clock=clock)
            case SubscriptionDeleted(subscription=snapshot):
                await handle_subscription_deleted(db, snapshot)
            case TrialWillEnd(subscription=snapshot):
                await handle_trial_will_end(db, snapshot)
            case PaymentSucceeded(invoice=invoice):
                await handle_payment_succeeded(db, invoice, clock=clock)
            case PaymentFailed(invoice=invoice):
                return await handle_payment_failed(db, invoice, clock=clock)
            case _:
                assert_never(event)
    except stripe.StripeError:
        logger.exception("Stripe API error while handling event %s", event.event_id)
    except InvalidTransitionError as e:
        logger.error("Event %s ignored: %s", event.event_id, e)
    return []
