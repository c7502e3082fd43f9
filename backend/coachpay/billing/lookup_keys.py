"""Stripe lookup keys: stable price identifiers mapped to package templates."""

import logging

from coachpay.billing.stripe_client import get_price

logger = logging.getLogger(__name__)

PREMIUM_MONTHLY = "premium_monthly"
PREMIUM_YEARLY = "premium_yearly"
PREMIUM_COACHING = "premium_coaching"

# Only yearly subscribers get an annual freeze allowance
FREEZE_ELIGIBLE_LOOKUP_KEY = PREMIUM_YEARLY


async def resolve_lookup_key(price) -> str | None:
    """Return the lookup key of a Stripe price.

    Uses the key embedded in the price object when present, otherwise
    retrieves the price from Stripe. ``price`` may be a price object or a
    bare price id.
    """
    if price is None:
        return None

    if isinstance(price, str):
        price_id = price
    else:
        embedded = getattr(price, "lookup_key", None)
        if embedded:
            return embedded
        price_id = getattr(price, "id", None)

    if not price_id:
        return None

    fetched = await get_price(price_id)
    lookup_key = getattr(fetched, "lookup_key", None)
    if not lookup_key:
        logger.warning("Stripe price %s has no lookup key", price_id)
    return lookup_key
