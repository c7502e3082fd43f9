"""Shared API dependencies, re-exported for the routers::

    from coachpay.api.deps import get_db, get_current_active_user
"""

from coachpay.auth.dependencies import get_current_active_user, get_current_user
from coachpay.billing.clock import get_clock
from coachpay.database import get_db
from coachpay.notifications.email import get_email_notifier

__all__ = [
    "get_db",
    "get_clock",
    "get_email_notifier",
    "get_current_user",
    "get_current_active_user",
]
