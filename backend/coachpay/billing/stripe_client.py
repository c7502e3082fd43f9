"""Async Stripe API wrapper for CoachPay.

Every call goes through a ``StripeClient`` with an explicit HTTP timeout and
no automatic network retries: callers decide how to fail.
"""

import logging
from datetime import datetime

import stripe
from stripe import StripeClient

from coachpay.billing.clock import to_timestamp
from coachpay.config import settings

logger = logging.getLogger(__name__)


def get_stripe_client() -> StripeClient:
    """Create a StripeClient instance with async HTTP support."""
    return StripeClient(
        settings.stripe_secret_key,
        http_client=stripe.HTTPXClient(timeout=settings.stripe_timeout_seconds),
        max_network_retries=0,
    )


async def get_subscription(subscription_id: str) -> stripe.Subscription:
    """Retrieve a Stripe subscription by ID."""
    client = get_stripe_client()
    return await client.v1.subscriptions.retrieve_async(subscription_id)


async def get_price(price_id: str) -> stripe.Price:
    """Retrieve a Stripe price by ID."""
    client = get_stripe_client()
    return await client.v1.prices.retrieve_async(price_id)


async def get_payment_intent(payment_intent_id: str) -> stripe.PaymentIntent:
    """Retrieve a Stripe payment intent by ID."""
    client = get_stripe_client()
    return await client.v1.payment_intents.retrieve_async(payment_intent_id)


async def pause_subscription_collection(
    subscription_id: str, resumes_at: datetime
) -> stripe.Subscription:
    """Pause collection (behavior ``void``) until ``resumes_at`` (naive UTC)."""
    client = get_stripe_client()
    logger.info(
        "Pausing Stripe subscription %s until %s",
        subscription_id,
        resumes_at.isoformat(),
    )
    return await client.v1.subscriptions.update_async(
        subscription_id,
        params={
            "pause_collection": {
                "behavior": "void",
                "resumes_at": to_timestamp(resumes_at),
            }
        },
    )


async def resume_subscription_collection(subscription_id: str) -> stripe.Subscription:
    """Clear ``pause_collection`` so billing resumes immediately."""
    client = get_stripe_client()
    logger.info("Resuming Stripe subscription %s", subscription_id)
    # An empty string unsets a field in the Stripe API
    return await client.v1.subscriptions.update_async(
        subscription_id,
        params={"pause_collection": ""},
    )


def construct_webhook_event(payload: bytes, sig_header: str) -> stripe.Event:
    """Verify and construct a Stripe webhook event (synchronous)."""
    client = get_stripe_client()
    return client.construct_event(payload, sig_header, settings.stripe_webhook_secret)
