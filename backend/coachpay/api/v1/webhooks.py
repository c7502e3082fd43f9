"""Stripe webhook endpoint: verify, deduplicate and dispatch Stripe events."""

import logging

import stripe
from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from coachpay.api.deps import get_clock, get_email_notifier
from coachpay.billing.clock import Clock
from coachpay.billing.dunning import send_dunning_notices
from coachpay.billing.events import parse_event
from coachpay.billing.stripe_client import construct_webhook_event
from coachpay.billing.webhooks import dispatch_event
from coachpay.database import async_session_factory
from coachpay.models.stripe_event import ProcessedStripeEvent
from coachpay.notifications.email import EmailNotifier
from coachpay.schemas.billing import WebhookResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/webhooks", tags=["webhooks"])


async def _claim_event(db: AsyncSession, event: stripe.Event) -> bool:
    """Record the event id. False if this delivery was already processed."""
    result = await db.execute(
        select(ProcessedStripeEvent.id).where(ProcessedStripeEvent.stripe_event_id == event.id)
    )
    if result.scalar_one_or_none() is not None:
        return False

    db.add(ProcessedStripeEvent(stripe_event_id=event.id, event_type=event.type))
    try:
        await db.flush()
    except IntegrityError:
        # A concurrent delivery of the same event committed first
        await db.rollback()
        return False
    return True


@router.post("/stripe", response_model=WebhookResponse)
async def stripe_webhook(
    request: Request,
    clock: Clock = Depends(get_clock),
    notifier: EmailNotifier = Depends(get_email_notifier),
) -> WebhookResponse:
    """Receive and process Stripe webhook events."""
    # Raw bytes are required for signature verification
    payload = await request.body()
    sig_header = request.headers.get("stripe-signature", "")

    try:
        event = construct_webhook_event(payload, sig_header)
    except stripe.SignatureVerificationError as e:
        logger.warning("Webhook signature verification failed")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid signature",
        ) from e
    except ValueError as e:
        logger.warning("Invalid webhook payload")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid payload",
        ) from e

    billing_event = parse_event(event)
    if billing_event is None:
        logger.debug("Unhandled webhook event type: %s", event.type)
        return WebhookResponse(status="ignored")

    logger.info("Processing webhook event: %s (id=%s)", event.type, event.id)

    # Own DB session: webhooks have no auth context
    async with async_session_factory() as db:
        try:
            if not await _claim_event(db, event):
                logger.info("Duplicate webhook event %s, skipping", event.id)
                return WebhookResponse(status="duplicate")
            notices = await dispatch_event(db, billing_event, clock=clock)
            await db.commit()
        except Exception as e:
            await db.rollback()
            logger.exception("Error processing webhook event %s", event.id)
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail="Webhook processing failed",
            ) from e

    # Only emailed once the state they describe is committed and the row lock released
    await send_dunning_notices(notifier, notices)
    return WebhookResponse(status="processed")
