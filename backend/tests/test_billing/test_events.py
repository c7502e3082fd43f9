"""Tests for parsing Stripe events into typed billing events."""

from datetime import datetime
from types import SimpleNamespace

import pytest

from coachpay.billing.events import (
    HANDLED_EVENT_TYPES,
    CheckoutCompleted,
    PaymentFailed,
    PaymentSucceeded,
    SubscriptionCreated,
    SubscriptionDeleted,
    SubscriptionUpdated,
    TrialWillEnd,
    parse_event,
)


class _StripeObj(SimpleNamespace):
    """SimpleNamespace with bracket notation support (like Stripe API objects)."""

    def __getitem__(self, key: str):
        return getattr(self, key)


def _make_event(event_type: str, data_object: _StripeObj, event_id: str = "evt_test_1") -> _StripeObj:
    return _StripeObj(type=event_type, id=event_id, data=_StripeObj(object=data_object))


def _stripe_sub(**overrides) -> _StripeObj:
    fields = {
        "id": "sub_123",
        "customer": "cus_123",
        "status": "active",
        "created": 1700000000,
        "cancel_at_period_end": False,
        "trial_start": None,
        "trial_end": None,
        "metadata": {},
        "items": _StripeObj(
            data=[
                _StripeObj(
                    price=_StripeObj(id="price_yearly", lookup_key="premium_yearly"),
                    current_period_start=1700000000,
                    current_period_end=1731536000,
                )
            ]
        ),
    }
    fields.update(overrides)
    return _StripeObj(**fields)


def _invoice(**overrides) -> _StripeObj:
    fields = {
        "id": "in_123",
        "subscription": "sub_123",
        "amount_paid": 9900,
        "amount_due": 9900,
        "currency": "usd",
        "attempt_count": 1,
        "period_start": 1700000000,
        "period_end": 1702592000,
        "description": None,
    }
    fields.update(overrides)
    return _StripeObj(**fields)


class TestParseEvent:
    def test_unknown_type_returns_none(self):
        assert parse_event(_make_event("customer.created", _StripeObj(id="cus_1"))) is None

    @pytest.mark.parametrize(
        "event_type,expected",
        [
            ("customer.subscription.created", SubscriptionCreated),
            ("customer.subscription.updated", SubscriptionUpdated),
            ("customer.subscription.deleted", SubscriptionDeleted),
            ("customer.subscription.trial_will_end", TrialWillEnd),
        ],
    )
    def test_subscription_events(self, event_type, expected):
        event = parse_event(_make_event(event_type, _stripe_sub()))
        assert isinstance(event, expected)
        assert event.event_id == "evt_test_1"
        assert event.subscription.id == "sub_123"

    @pytest.mark.parametrize("event_type", ["invoice.payment_succeeded", "invoice.paid"])
    def test_payment_succeeded_aliases(self, event_type):
        event = parse_event(_make_event(event_type, _invoice()))
        assert isinstance(event, PaymentSucceeded)

    def test_payment_failed(self):
        event = parse_event(_make_event("invoice.payment_failed", _invoice()))
        assert isinstance(event, PaymentFailed)
        assert event.invoice.currency == "USD"

    def test_checkout_completed(self):
        session = _StripeObj(
            id="cs_1",
            customer="cus_123",
            mode="payment",
            payment_intent="pi_1",
            invoice=None,
            metadata={"trainerId": "t-1"},
        )
        event = parse_event(_make_event("checkout.session.completed", session))
        assert isinstance(event, CheckoutCompleted)
        assert event.session.payment_intent_id == "pi_1"
        assert event.session.invoice_id is None
        assert event.session.metadata == {"trainerId": "t-1"}

    def test_handled_types(self):
        assert "invoice.paid" in HANDLED_EVENT_TYPES
        assert "charge.refunded" not in HANDLED_EVENT_TYPES


class TestSubscriptionSnapshot:
    def test_period_from_items(self):
        event = parse_event(_make_event("customer.subscription.created", _stripe_sub()))
        snapshot = event.subscription
        assert snapshot.period_start == datetime(2023, 11, 14, 22, 13, 20)
        assert snapshot.period_end == datetime(2024, 11, 13, 22, 13, 20)
        assert snapshot.price.lookup_key == "premium_yearly"

    def test_multi_item_period_uses_latest_start_and_earliest_end(self):
        items = _StripeObj(
            data=[
                _StripeObj(price=_StripeObj(id="p1"), current_period_start=100, current_period_end=5000),
                _StripeObj(price=_StripeObj(id="p2"), current_period_start=200, current_period_end=4000),
            ]
        )
        snapshot = parse_event(_make_event("customer.subscription.updated", _stripe_sub(items=items))).subscription
        assert snapshot.period_start == datetime(1970, 1, 1, 0, 3, 20)
        assert snapshot.period_end == datetime(1970, 1, 1, 1, 6, 40)
        assert snapshot.price.id == "p1"

    def test_missing_items(self):
        stripe_sub = _stripe_sub()
        del stripe_sub.items
        snapshot = parse_event(_make_event("customer.subscription.created", stripe_sub)).subscription
        assert snapshot.price is None
        assert snapshot.period_start is None

    def test_trial_fields(self):
        stripe_sub = _stripe_sub(status="trialing", trial_start=1700000000, trial_end=1700604800)
        snapshot = parse_event(_make_event("customer.subscription.created", stripe_sub)).subscription
        assert snapshot.trial_start == datetime(2023, 11, 14, 22, 13, 20)
        assert snapshot.trial_end == datetime(2023, 11, 21, 22, 13, 20)

    def test_expanded_customer(self):
        stripe_sub = _stripe_sub(customer=_StripeObj(id="cus_expanded"))
        snapshot = parse_event(_make_event("customer.subscription.created", stripe_sub)).subscription
        assert snapshot.customer_id == "cus_expanded"


class TestInvoiceSnapshot:
    def test_subscription_from_parent_details(self):
        """Newer API versions nest the subscription under invoice.parent."""
        invoice = _invoice(
            subscription=None,
            parent=_StripeObj(subscription_details=_StripeObj(subscription="sub_nested")),
        )
        event = parse_event(_make_event("invoice.payment_failed", invoice))
        assert event.invoice.subscription_id == "sub_nested"

    def test_no_subscription(self):
        event = parse_event(_make_event("invoice.payment_failed", _invoice(subscription=None)))
        assert event.invoice.subscription_id is None
