"""Tests for the billing email notifier (HTTP email API mocked with httpx.MockTransport)."""

import json

import httpx
import pytest

from coachpay.notifications.email import (
    EmailDeliveryError,
    EmailNotifier,
    GracePeriodEndingEmail,
    PaymentFailedEmail,
)

API_URL = "https://mail.test/v1/send"

PAYMENT_FAILED = PaymentFailedEmail(
    user_name="Dana",
    grace_period_days=3,
    package_name="Premium Yearly",
    update_payment_url="http://localhost:3000/fitspace/settings",
)


def _notifier(handler, **kwargs) -> EmailNotifier:
    return EmailNotifier(
        api_url=API_URL,
        api_key="key_123",
        sender="CoachPay <billing@test>",
        max_attempts=kwargs.pop("max_attempts", 2),
        transport=httpx.MockTransport(handler),
        **kwargs,
    )


class TestEmailNotifier:
    @pytest.mark.asyncio
    async def test_payment_failed_renders_template(self):
        requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(202, json={"id": "msg_1"})

        await _notifier(handler).payment_failed("dana@test.com", PAYMENT_FAILED)

        assert len(requests) == 1
        request = requests[0]
        assert str(request.url) == API_URL
        assert request.headers["Authorization"] == "Bearer key_123"
        body = json.loads(request.content)
        assert body["to"] == ["dana@test.com"]
        assert body["from"] == "CoachPay <billing@test>"
        assert body["subject"] == "Action needed: payment failed for Premium Yearly"
        assert "Hi Dana," in body["text"]
        assert "3 days" in body["text"]
        assert "http://localhost:3000/fitspace/settings" in body["text"]

    @pytest.mark.asyncio
    async def test_grace_period_ending_subject(self):
        subjects: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            subjects.append(json.loads(request.content)["subject"])
            return httpx.Response(200)

        await _notifier(handler).grace_period_ending(
            "robin@test.com",
            GracePeriodEndingEmail(
                user_name="Robin",
                package_name="Premium Yearly",
                days_remaining=1,
                update_payment_url="http://localhost:3000/fitspace/settings",
            ),
        )

        assert subjects == ["Your Premium Yearly access ends in 1 day(s)"]

    @pytest.mark.asyncio
    async def test_retries_then_succeeds(self):
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            return httpx.Response(503) if calls == 1 else httpx.Response(200)

        await _notifier(handler).payment_failed("dana@test.com", PAYMENT_FAILED)

        assert calls == 2

    @pytest.mark.asyncio
    async def test_raises_after_last_attempt(self):
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(EmailDeliveryError):
            await _notifier(handler, max_attempts=3).payment_failed("dana@test.com", PAYMENT_FAILED)

        assert calls == 3

    @pytest.mark.asyncio
    async def test_log_only_without_api_url(self, caplog):
        def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError("no HTTP call expected")

        notifier = EmailNotifier(api_url="", transport=httpx.MockTransport(handler))
        with caplog.at_level("INFO", logger="coachpay.notifications.email"):
            await notifier.payment_failed("dana@test.com", PAYMENT_FAILED)

        assert "would send" in caplog.text
