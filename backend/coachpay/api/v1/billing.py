"""Billing API endpoints: subscription access state and subscription freeze."""

import logging
from dataclasses import asdict

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from coachpay.api.deps import get_clock, get_current_active_user, get_db
from coachpay.billing.clock import Clock
from coachpay.billing.freeze import (
    get_freeze_eligibility,
    pause_subscription,
    resume_subscription,
)
from coachpay.models.user import User
from coachpay.schemas.billing import (
    FreezeEligibilityResponse,
    FreezeRequest,
    FreezeResultResponse,
    SubscriptionStatusResponse,
)
from coachpay.services.subscription_service import (
    build_access_status,
    get_current_subscription,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/billing", tags=["billing"])


@router.get("/subscription", response_model=SubscriptionStatusResponse)
async def get_subscription_status(
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
    current_user: User = Depends(get_current_active_user),
) -> SubscriptionStatusResponse:
    """Get the current user's access state derived from their latest subscription."""
    subscription = await get_current_subscription(db, current_user.id)
    access = build_access_status(subscription, clock.now())

    return SubscriptionStatusResponse(
        **asdict(access),
        package_name=subscription.package.name if subscription else None,
        stripe_subscription_id=subscription.stripe_subscription_id if subscription else None,
        failed_payment_retries=subscription.failed_payment_retries if subscription else 0,
    )


@router.get("/freeze", response_model=FreezeEligibilityResponse)
async def get_freeze(
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
    current_user: User = Depends(get_current_active_user),
) -> FreezeEligibilityResponse:
    """Check whether the current user can pause their subscription."""
    eligibility = await get_freeze_eligibility(db, current_user.id, clock=clock)
    return FreezeEligibilityResponse(**asdict(eligibility))


@router.post("/freeze", response_model=FreezeResultResponse)
async def create_freeze(
    body: FreezeRequest,
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
    current_user: User = Depends(get_current_active_user),
) -> FreezeResultResponse:
    """Pause the current user's Premium Yearly subscription for ``days`` days."""
    result = await pause_subscription(db, current_user.id, body.days, clock=clock)
    if not result.success:
        logger.info("Freeze refused for user %s: %s", current_user.id, result.message)
    return FreezeResultResponse(**asdict(result))


@router.post("/freeze/resume", response_model=FreezeResultResponse)
async def resume_freeze(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
) -> FreezeResultResponse:
    """Resume a paused subscription early (unused days are not refunded)."""
    result = await resume_subscription(db, current_user.id)
    return FreezeResultResponse(**asdict(result))
