"""Subscription status transitions.

    PENDING  <-> ACTIVE                 (payment failure / success)
    ACTIVE   <-> CANCELLED_ACTIVE       (cancel at period end / un-cancel)
    CANCELLED_ACTIVE -> EXPIRED         (period elapsed)
    PENDING | ACTIVE | CANCELLED_ACTIVE -> CANCELLED   (deleted at Stripe)

EXPIRED and CANCELLED are terminal. A transition to the current status is a no-op.
"""

import logging

from coachpay.billing.exceptions import InvalidTransitionError
from coachpay.models.subscription import Subscription, SubscriptionStatus

logger = logging.getLogger(__name__)

TERMINAL_STATUSES: frozenset[SubscriptionStatus] = frozenset(
    {SubscriptionStatus.EXPIRED, SubscriptionStatus.CANCELLED}
)

ALLOWED_TRANSITIONS: dict[SubscriptionStatus, frozenset[SubscriptionStatus]] = {
    SubscriptionStatus.PENDING: frozenset(
        {SubscriptionStatus.ACTIVE, SubscriptionStatus.CANCELLED}
    ),
    SubscriptionStatus.ACTIVE: frozenset(
        {
            SubscriptionStatus.PENDING,
            SubscriptionStatus.CANCELLED_ACTIVE,
            SubscriptionStatus.CANCELLED,
        }
    ),
    SubscriptionStatus.CANCELLED_ACTIVE: frozenset(
        {
            SubscriptionStatus.ACTIVE,
            SubscriptionStatus.PENDING,
            SubscriptionStatus.EXPIRED,
            SubscriptionStatus.CANCELLED,
        }
    ),
    SubscriptionStatus.EXPIRED: frozenset(),
    SubscriptionStatus.CANCELLED: frozenset(),
}


def is_terminal(status: SubscriptionStatus) -> bool:
    return status in TERMINAL_STATUSES


def can_transition(current: SubscriptionStatus, target: SubscriptionStatus) -> bool:
    """Return True if ``current -> target`` is allowed (same-state always is)."""
    return current == target or target in ALLOWED_TRANSITIONS[current]


def transition(subscription: Subscription, target: SubscriptionStatus) -> bool:
    """Move ``subscription`` to ``target``.

    Returns True if the status changed, False for a same-state no-op.

    Raises:
        InvalidTransitionError: If the transition is not allowed.
    """
    current = subscription.status
    if current == target:
        return False
    if not can_transition(current, target):
        raise InvalidTransitionError(current.value, target.value)

    subscription.status = target
    logger.info(
        "Subscription %s: %s -> %s",
        subscription.id,
        current.value,
        target.value,
    )
    return True
