"""Typed billing events parsed from verified Stripe webhook events.

Handlers never touch raw Stripe payloads: ``parse_event`` turns a
``stripe.Event`` into one member of the ``BillingEvent`` union, which the
router matches on exhaustively.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

import stripe

from coachpay.billing.clock import from_timestamp

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Snapshots of the Stripe objects we read
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SubscriptionSnapshot:
    id: str
    customer_id: str | None
    status: str | None
    price: Any  # first item's price object (may lack lookup_key)
    created: datetime | None
    period_start: datetime | None
    period_end: datetime | None
    trial_start: datetime | None
    trial_end: datetime | None
    cancel_at_period_end: bool = False
    metadata: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class InvoiceSnapshot:
    id: str
    subscription_id: str | None
    amount_paid: int
    amount_due: int
    currency: str
    attempt_count: int
    period_start: datetime | None
    period_end: datetime | None
    description: str | None


@dataclass(frozen=True)
class CheckoutSessionSnapshot:
    id: str
    customer_id: str | None
    mode: str | None
    payment_intent_id: str | None
    invoice_id: str | None
    metadata: dict[str, str] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Event union
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CheckoutCompleted:
    event_id: str
    session: CheckoutSessionSnapshot


@dataclass(frozen=True)
class SubscriptionCreated:
    event_id: str
    subscription: SubscriptionSnapshot


@dataclass(frozen=True)
class SubscriptionUpdated:
    event_id: str
    subscription: SubscriptionSnapshot


@dataclass(frozen=True)
class SubscriptionDeleted:
    event_id: str
    subscription: SubscriptionSnapshot


@dataclass(frozen=True)
class TrialWillEnd:
    event_id: str
    subscription: SubscriptionSnapshot


@dataclass(frozen=True)
class PaymentSucceeded:
    event_id: str
    invoice: InvoiceSnapshot


@dataclass(frozen=True)
class PaymentFailed:
    event_id: str
    invoice: InvoiceSnapshot


BillingEvent = (
    CheckoutCompleted
    | SubscriptionCreated
    | SubscriptionUpdated
    | SubscriptionDeleted
    | TrialWillEnd
    | PaymentSucceeded
    | PaymentFailed
)


# ---------------------------------------------------------------------------
# Extraction helpers
# ---------------------------------------------------------------------------


def _id_of(ref: Any) -> str | None:
    """Stripe references arrive either as an id string or an expanded object."""
    if ref is None:
        return None
    if isinstance(ref, str):
        return ref or None
    return getattr(ref, "id", None)


def _metadata(obj: Any) -> dict[str, str]:
    raw = getattr(obj, "metadata", None) or {}
    return {str(k): str(v) for k, v in dict(raw).items()}


def _get_items(stripe_sub: Any) -> list[Any]:
    """Subscription items, using bracket notation to avoid collision with
    Python dict .items() on Stripe objects.
    """
    try:
        sub_items = stripe_sub["items"]
    except (KeyError, AttributeError, TypeError):
        return []
    if sub_items and getattr(sub_items, "data", None):
        return list(sub_items.data)
    return []


def _get_period(stripe_sub: Any, items: list[Any]) -> tuple[datetime | None, datetime | None]:
    """Current billing period.

    Since Stripe API 2025-03-31 the period lives on subscription items; with
    several items the period is the latest start and the earliest end.
    """
    starts = [s for s in (getattr(i, "current_period_start", None) for i in items) if isinstance(s, int)]
    ends = [e for e in (getattr(i, "current_period_end", None) for i in items) if isinstance(e, int)]
    start = max(starts) if starts else getattr(stripe_sub, "current_period_start", None)
    end = min(ends) if ends else getattr(stripe_sub, "current_period_end", None)
    return from_timestamp(start), from_timestamp(end)


def _invoice_subscription_id(invoice: Any) -> str | None:
    """Subscription reference on an invoice.

    Older API versions expose ``invoice.subscription``; newer ones nest it
    under ``invoice.parent.subscription_details.subscription``.
    """
    sub_id = _id_of(getattr(invoice, "subscription", None))
    if sub_id:
        return sub_id
    parent = getattr(invoice, "parent", None)
    details = getattr(parent, "subscription_details", None) if parent else None
    return _id_of(getattr(details, "subscription", None)) if details else None


def subscription_snapshot(stripe_sub: Any) -> SubscriptionSnapshot:
    items = _get_items(stripe_sub)
    period_start, period_end = _get_period(stripe_sub, items)
    trial_end = from_timestamp(getattr(stripe_sub, "trial_end", None))
    return SubscriptionSnapshot(
        id=stripe_sub.id,
        customer_id=_id_of(getattr(stripe_sub, "customer", None)),
        status=getattr(stripe_sub, "status", None),
        price=getattr(items[0], "price", None) if items else None,
        created=from_timestamp(getattr(stripe_sub, "created", None)),
        period_start=period_start,
        period_end=period_end,
        trial_start=from_timestamp(getattr(stripe_sub, "trial_start", None)) if trial_end else None,
        trial_end=trial_end,
        cancel_at_period_end=bool(getattr(stripe_sub, "cancel_at_period_end", False)),
        metadata=_metadata(stripe_sub),
    )


def invoice_snapshot(invoice: Any) -> InvoiceSnapshot:
    return InvoiceSnapshot(
        id=invoice.id,
        subscription_id=_invoice_subscription_id(invoice),
        amount_paid=getattr(invoice, "amount_paid", None) or 0,
        amount_due=getattr(invoice, "amount_due", None) or 0,
        currency=(getattr(invoice, "currency", None) or "usd").upper(),
        attempt_count=getattr(invoice, "attempt_count", None) or 0,
        period_start=from_timestamp(getattr(invoice, "period_start", None)),
        period_end=from_timestamp(getattr(invoice, "period_end", None)),
        description=getattr(invoice, "description", None),
    )


def checkout_session_snapshot(session: Any) -> CheckoutSessionSnapshot:
    return CheckoutSessionSnapshot(
        id=session.id,
        customer_id=_id_of(getattr(session, "customer", None)),
        mode=getattr(session, "mode", None),
        payment_intent_id=_id_of(getattr(session, "payment_intent", None)),
        invoice_id=_id_of(getattr(session, "invoice", None)),
        metadata=_metadata(session),
    )


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------

_PARSERS: dict[str, Callable[[str, Any], BillingEvent]] = {
    "checkout.session.completed": lambda eid, obj: CheckoutCompleted(eid, checkout_session_snapshot(obj)),
    "customer.subscription.created": lambda eid, obj: SubscriptionCreated(eid, subscription_snapshot(obj)),
    "customer.subscription.updated": lambda eid, obj: SubscriptionUpdated(eid, subscription_snapshot(obj)),
    "customer.subscription.deleted": lambda eid, obj: SubscriptionDeleted(eid, subscription_snapshot(obj)),
    "customer.subscription.trial_will_end": lambda eid, obj: TrialWillEnd(eid, subscription_snapshot(obj)),
    "invoice.payment_succeeded": lambda eid, obj: PaymentSucceeded(eid, invoice_snapshot(obj)),
    "invoice.paid": lambda eid, obj: PaymentSucceeded(eid, invoice_snapshot(obj)),
    "invoice.payment_failed": lambda eid, obj: PaymentFailed(eid, invoice_snapshot(obj)),
}

HANDLED_EVENT_TYPES: frozenset[str] = frozenset(_PARSERS)


def parse_event(event: stripe.Event) -> BillingEvent | None:
    """Convert a verified Stripe event into a typed billing event.

    Returns None for event types the billing engine does not consume.
    """
    parser = _PARSERS.get(event.type)
    if parser is None:
        return None
    return parser(event.id, event.data.object)
