"""Pydantic v2 request/response schemas for billing endpoints."""

from datetime import datetime

from pydantic import BaseModel, Field

# --- Request schemas ---


class FreezeRequest(BaseModel):
    """Request to pause a Premium Yearly subscription."""

    days: int = Field(gt=0)


# --- Response schemas ---


class SubscriptionStatusResponse(BaseModel):
    """Customer-facing access state of the authenticated user."""

    status: str  # NO_SUBSCRIPTION, TRIAL, GRACE_PERIOD, ACTIVE, CANCELLED_ACTIVE, EXPIRED
    has_access: bool
    days_remaining: int
    expires_at: datetime | None
    package_name: str | None = None
    stripe_subscription_id: str | None = None
    failed_payment_retries: int = 0


class FreezeEligibilityResponse(BaseModel):
    """Whether the user may pause now, and within which bounds."""

    can_freeze: bool
    reason: str | None
    days_remaining: int
    min_days: int
    max_days: int
    available_from: datetime | None
    is_paused: bool
    pause_ends_at: datetime | None


class FreezeResultResponse(BaseModel):
    """Outcome of a pause or resume request."""

    success: bool
    message: str
    pause_ends_at: datetime | None


class WebhookResponse(BaseModel):
    status: str  # processed, ignored, duplicate
