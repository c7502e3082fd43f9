"""Marketplace revenue sharing: platform fee split and trainer payout routing."""

import logging
import uuid
from dataclasses import dataclass
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from coachpay.billing.stripe_client import get_price
from coachpay.config import settings
from coachpay.models.team import Team, TeamMembership
from coachpay.models.user import User

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PayoutDestination:
    connected_account_id: str | None
    destination: str  # "team", "individual" or "none"
    display_name: str


@dataclass(frozen=True)
class RevenueCalculation:
    total_amount: int
    application_fee_amount: int
    trainer_payout_amount: int


NO_PAYOUT = PayoutDestination(connected_account_id=None, destination="none", display_name="none")


async def get_payout_destination(db: AsyncSession, trainer_id: uuid.UUID) -> PayoutDestination:
    """Where a trainer's share is paid out.

    The trainer's first team account wins, then the trainer's own connected
    account; otherwise there is nowhere to route the payout.
    """
    result = await db.execute(select(User).where(User.id == trainer_id))
    trainer = result.scalar_one_or_none()
    if trainer is None:
        logger.warning("Trainer %s not found, no payout destination", trainer_id)
        return NO_PAYOUT

    result = await db.execute(
        select(Team)
        .join(TeamMembership, TeamMembership.team_id == Team.id)
        .where(TeamMembership.user_id == trainer_id)
        .order_by(TeamMembership.created_at)
        .limit(1)
    )
    team = result.scalar_one_or_none()
    if team is not None and team.stripe_connected_account_id:
        return PayoutDestination(
            connected_account_id=team.stripe_connected_account_id,
            destination="team",
            display_name=f"team:{team.name}",
        )

    if trainer.stripe_connected_account_id:
        return PayoutDestination(
            connected_account_id=trainer.stripe_connected_account_id,
            destination="individual",
            display_name="individual",
        )

    return NO_PAYOUT


def _platform_fee(total: int) -> int:
    # Round half up on integer minor units
    return (total * settings.platform_fee_percent + 50) // 100


async def _unit_amount(item: dict[str, Any]) -> int:
    price_data = item.get("price_data")
    if price_data and price_data.get("unit_amount") is not None:
        return int(price_data["unit_amount"])

    price_id = item.get("price")
    if not price_id:
        return 0
    price = await get_price(price_id)
    unit_amount = getattr(price, "unit_amount", None)
    if unit_amount is None:
        logger.warning("Stripe price %s has no unit amount, counting it as 0", price_id)
        return 0
    return int(unit_amount)


async def calculate_revenue_sharing(line_items: list[dict[str, Any]]) -> RevenueCalculation:
    """Total a checkout's line items and split it between platform and trainer.

    Each item carries either ``price_data.unit_amount`` or a ``price`` id
    resolved through Stripe, times ``quantity`` (default 1). The payout is the
    remainder after the fee, so both parts always add up to the total.
    """
    total = 0
    for item in line_items:
        quantity = item.get("quantity")
        if quantity is None:
            quantity = 1
        total += await _unit_amount(item) * quantity

    fee = _platform_fee(total)
    return RevenueCalculation(
        total_amount=total,
        application_fee_amount=fee,
        trainer_payout_amount=total - fee,
    )


def create_payment_intent_data(
    payout: PayoutDestination,
    revenue: RevenueCalculation,
    trainer_id: uuid.UUID | str,
) -> dict[str, Any] | None:
    """Stripe ``payment_intent_data`` routing the trainer's share.

    None when there is no connected account or no fee to collect; the platform
    then keeps the whole charge.
    """
    if not payout.connected_account_id or revenue.application_fee_amount <= 0:
        return None

    return {
        "application_fee_amount": revenue.application_fee_amount,
        "on_behalf_of": payout.connected_account_id,
        "transfer_data": {"destination": payout.connected_account_id},
        "metadata": {
            "trainerId": str(trainer_id),
            "platformFeeAmount": str(revenue.application_fee_amount),
            "trainerPayoutAmount": str(revenue.trainer_payout_amount),
            "revenueSharing": "true",
            "payoutDestination": payout.display_name,
        },
    }
