"""SQLAlchemy models for CoachPay.

All models are imported here so that ``Base.metadata`` knows every table.
If you add a new model, import it in this file.
"""

from coachpay.models.billing_record import BillingRecord
from coachpay.models.package import PackageTemplate
from coachpay.models.stripe_event import ProcessedStripeEvent
from coachpay.models.subscription import Subscription, SubscriptionStatus
from coachpay.models.team import Team, TeamMembership
from coachpay.models.user import User

__all__ = [
    "BillingRecord",
    "PackageTemplate",
    "ProcessedStripeEvent",
    "Subscription",
    "SubscriptionStatus",
    "Team",
    "TeamMembership",
    "User",
]
