"""Tests for subscription status transitions."""

from types import SimpleNamespace

import pytest

from coachpay.billing.exceptions import BillingError, InvalidTransitionError
from coachpay.billing.state_machine import can_transition, is_terminal, transition
from coachpay.models.subscription import SubscriptionStatus as S


def _sub(status: S) -> SimpleNamespace:
    return SimpleNamespace(id="sub-local-1", status=status)


class TestCanTransition:
    @pytest.mark.parametrize(
        "current,target",
        [
            (S.PENDING, S.ACTIVE),
            (S.ACTIVE, S.PENDING),
            (S.ACTIVE, S.CANCELLED_ACTIVE),
            (S.CANCELLED_ACTIVE, S.ACTIVE),
            (S.CANCELLED_ACTIVE, S.EXPIRED),
            (S.PENDING, S.CANCELLED),
            (S.ACTIVE, S.CANCELLED),
            (S.CANCELLED_ACTIVE, S.CANCELLED),
        ],
    )
    def test_allowed(self, current, target):
        assert can_transition(current, target)

    @pytest.mark.parametrize(
        "current,target",
        [
            (S.EXPIRED, S.ACTIVE),
            (S.CANCELLED, S.ACTIVE),
            (S.CANCELLED, S.PENDING),
            (S.EXPIRED, S.CANCELLED),
            (S.PENDING, S.EXPIRED),
            (S.PENDING, S.CANCELLED_ACTIVE),
        ],
    )
    def test_forbidden(self, current, target):
        assert not can_transition(current, target)

    @pytest.mark.parametrize("status", list(S))
    def test_same_state_always_allowed(self, status):
        assert can_transition(status, status)


class TestTransition:
    def test_changes_status(self):
        sub = _sub(S.ACTIVE)
        assert transition(sub, S.PENDING) is True
        assert sub.status == S.PENDING

    def test_same_state_is_noop(self):
        sub = _sub(S.ACTIVE)
        assert transition(sub, S.ACTIVE) is False
        assert sub.status == S.ACTIVE

    def test_illegal_transition_raises_and_leaves_status(self):
        sub = _sub(S.EXPIRED)
        with pytest.raises(InvalidTransitionError) as exc_info:
            transition(sub, S.ACTIVE)
        assert isinstance(exc_info.value, BillingError)
        assert exc_info.value.current == "EXPIRED"
        assert exc_info.value.target == "ACTIVE"
        assert sub.status == S.EXPIRED


def test_terminal_statuses():
    assert is_terminal(S.EXPIRED)
    assert is_terminal(S.CANCELLED)
    assert not is_terminal(S.CANCELLED_ACTIVE)
