"""Billing exceptions."""


class BillingError(Exception):
    """Base class for billing-domain errors."""


class InvalidTransitionError(BillingError):
    """Raised when a subscription status change is not allowed."""

    def __init__(self, current: str, target: str) -> None:
        self.current = current
        self.target = target
        super().__init__(f"Cannot transition subscription from {current} to {target}")
