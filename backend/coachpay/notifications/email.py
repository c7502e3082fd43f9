"""Transactional billing emails.

Emails are posted as JSON to an HTTP email API (``EMAIL_API_URL``). When no
API is configured the message is only logged, which is the local development
mode. Delivery is best-effort: callers catch ``EmailDeliveryError`` and carry
on.
"""

import logging
from dataclasses import asdict, dataclass

import httpx

from coachpay.config import settings

logger = logging.getLogger(__name__)


class EmailDeliveryError(Exception):
    """Raised when an email could not be delivered after all attempts."""


@dataclass(frozen=True)
class PaymentFailedEmail:
    user_name: str
    grace_period_days: int
    package_name: str
    update_payment_url: str


@dataclass(frozen=True)
class GracePeriodEndingEmail:
    user_name: str
    package_name: str
    days_remaining: int
    update_payment_url: str


TEMPLATES = {
    "payment_failed": {
        "subject": "Action needed: payment failed for {package_name}",
        "body": (
            "Hi {user_name},\n\n"
            "We couldn't process the payment for your {package_name} subscription.\n\n"
            "Your access continues for {grace_period_days} days while we retry. "
            "Please update your payment method to avoid interruption:\n"
            "{update_payment_url}\n\n"
            "CoachPay Billing"
        ),
    },
    "grace_period_ending": {
        "subject": "Your {package_name} access ends in {days_remaining} day(s)",
        "body": (
            "Hi {user_name},\n\n"
            "We still haven't been able to charge your payment method for {package_name}.\n\n"
            "Your grace period ends in {days_remaining} day(s). Update your payment "
            "method now to keep your access:\n"
            "{update_payment_url}\n\n"
            "CoachPay Billing"
        ),
    },
}


class EmailNotifier:
    """Sends billing emails through the configured HTTP email API."""

    def __init__(
        self,
        api_url: str | None = None,
        api_key: str | None = None,
        sender: str | None = None,
        timeout: float | None = None,
        max_attempts: int | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_url = settings.email_api_url if api_url is None else api_url
        self.api_key = settings.email_api_key if api_key is None else api_key
        self.sender = sender or settings.email_from
        self.timeout = timeout or settings.email_timeout_seconds
        self.max_attempts = max(1, max_attempts or settings.email_max_attempts)
        self.transport = transport

    async def payment_failed(self, to: str, data: PaymentFailedEmail) -> None:
        await self._send_template(to, "payment_failed", asdict(data))

    async def grace_period_ending(self, to: str, data: GracePeriodEndingEmail) -> None:
        await self._send_template(to, "grace_period_ending", asdict(data))

    async def _send_template(self, to: str, template: str, variables: dict) -> None:
        subject = TEMPLATES[template]["subject"].format(**variables)
        body = TEMPLATES[template]["body"].format(**variables)

        if not self.api_url:
            logger.info("Email API not configured, would send %r to %s", subject, to)
            return

        payload = {"from": self.sender, "to": [to], "subject": subject, "text": body}
        headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}

        last_error: Exception | None = None
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            for attempt in range(1, self.max_attempts + 1):
                try:
                    response = await client.post(self.api_url, json=payload, headers=headers)
                    response.raise_for_status()
                except httpx.HTTPError as e:
                    last_error = e
                    logger.warning(
                        "Email %s to %s failed (attempt %d/%d): %s",
                        template,
                        to,
                        attempt,
                        self.max_attempts,
                        e,
                    )
                    continue
                logger.info("Sent %s email to %s", template, to)
                return

        raise EmailDeliveryError(f"Could not deliver {template} email to {to}") from last_error


def get_email_notifier() -> EmailNotifier:
    """FastAPI dependency returning the default notifier."""
    return EmailNotifier()
