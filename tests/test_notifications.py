"""
Tests for the notification dispatcher and email templates.
"""

import asyncio
from datetime import UTC, datetime
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock, patch
from uuid import uuid4

import pytest

from studyabroad.config import Settings
from studyabroad.exceptions import EmailDeliveryError
from studyabroad.models.api import ServiceType
from studyabroad.models.domain import PaymentConfirmation, PurchaseRef
from studyabroad.services.email import OutgoingEmail
from studyabroad.services.notifications import (
    NotificationDispatcher,
    admin_otp_email,
    payment_confirmation_email,
    payment_operator_email,
    verification_email,
)


def confirmation(**overrides) -> PaymentConfirmation:
    fields = {
        "transaction_id": uuid4(),
        "purchase": PurchaseRef(ServiceType.VISA_APPLICATION, uuid4()),
        "customer_name": "Asha Rao",
        "customer_email": "asha@example.com",
        "amount": Decimal("95000.00"),
        "currency": "INR",
        "payment_intent_id": "pi_test_123",
        "paid_at": datetime(2026, 10, 19, 9, 30, tzinfo=UTC),
    }
    fields.update(overrides)
    return PaymentConfirmation(**fields)


@pytest.fixture
def sender() -> MagicMock:
    sender = MagicMock()
    sender.send = AsyncMock()
    return sender


@pytest.fixture
def dispatcher(sender: MagicMock, settings: Settings) -> NotificationDispatcher:
    return NotificationDispatcher(sender, settings)


# ============================================================================
# Templates
# ============================================================================


class TestTemplates:
    def test_payment_confirmation(self):
        conf = confirmation()
        email = payment_confirmation_email(conf)

        assert email.to == "asha@example.com"
        assert "Visa Application Assistance" in email.subject
        assert "95000.00 INR" in email.text
        assert str(conf.transaction_id) in email.text

    def test_operator_notice(self):
        conf = confirmation(payment_intent_id=None)
        email = payment_operator_email("operator@example.com", conf)

        assert email.to == "operator@example.com"
        assert "Asha Rao <asha@example.com>" in email.text
        assert f"visa_application/{conf.purchase.purchase_id}" in email.text
        assert "Payment intent: -" in email.text

    def test_verification_html_escapes_username(self):
        email = verification_email("a@example.com", "<b>asha</b>", "http://x/verify?token=t", 24)

        assert "&lt;b&gt;asha&lt;/b&gt;" in email.html
        assert "24 hours" in email.text

    def test_admin_otp(self):
        email = admin_otp_email("admin@example.com", "042917", 10)

        assert "042917" in email.text
        assert "10 minutes" in email.text


# ============================================================================
# Dispatcher
# ============================================================================


class TestDispatcher:
    @pytest.mark.asyncio
    async def test_dispatch_sends_in_background(self, dispatcher: NotificationDispatcher, sender: MagicMock):
        email = OutgoingEmail(to="a@example.com", subject="s", text="t")

        task = dispatcher.dispatch(email, "test")
        assert dispatcher.pending == 1
        await task

        sender.send.assert_awaited_once_with(email)
        assert dispatcher.pending == 0

    @pytest.mark.asyncio
    async def test_delivery_failure_is_logged_not_raised(
        self, dispatcher: NotificationDispatcher, sender: MagicMock
    ):
        sender.send = AsyncMock(side_effect=EmailDeliveryError("a@example.com", "refused"))

        with patch("studyabroad.services.notifications.metrics") as metrics:
            await dispatcher.dispatch(OutgoingEmail(to="a@example.com", subject="s", text="t"), "test")

        metrics.record_email.assert_called_once_with("test", False)

    @pytest.mark.asyncio
    async def test_unexpected_error_is_contained(self, dispatcher: NotificationDispatcher, sender: MagicMock):
        sender.send = AsyncMock(side_effect=RuntimeError("boom"))

        await dispatcher.dispatch(OutgoingEmail(to="a@example.com", subject="s", text="t"), "test")

    @pytest.mark.asyncio
    async def test_drain_waits_for_in_flight(self, dispatcher: NotificationDispatcher, sender: MagicMock):
        delivered = []

        async def slow_send(email):
            await asyncio.sleep(0.01)
            delivered.append(email.to)

        sender.send = AsyncMock(side_effect=slow_send)
        for i in range(3):
            dispatcher.dispatch(OutgoingEmail(to=f"{i}@example.com", subject="s", text="t"), "test")

        await dispatcher.drain(timeout=1.0)

        assert sorted(delivered) == ["0@example.com", "1@example.com", "2@example.com"]

    @pytest.mark.asyncio
    async def test_drain_with_nothing_pending(self, dispatcher: NotificationDispatcher):
        await dispatcher.drain()

    @pytest.mark.asyncio
    async def test_payment_completed_notifies_purchaser_and_operator(
        self, dispatcher: NotificationDispatcher, sender: MagicMock
    ):
        dispatcher.payment_completed(confirmation())
        await dispatcher.drain()

        recipients = sorted(call.args[0].to for call in sender.send.await_args_list)
        assert recipients == ["asha@example.com", "operator@example.com"]

    @pytest.mark.asyncio
    async def test_payment_completed_without_operator_address(self, sender: MagicMock, settings: Settings):
        quiet = NotificationDispatcher(sender, settings.model_copy(update={"admin_notification_email": ""}))

        quiet.payment_completed(confirmation())
        await quiet.drain()

        assert [call.args[0].to for call in sender.send.await_args_list] == ["asha@example.com"]

    @pytest.mark.asyncio
    async def test_verification_link(
        self, dispatcher: NotificationDispatcher, sender: MagicMock, settings: Settings
    ):
        dispatcher.verification("asha@example.com", "asha", "tok123")
        await dispatcher.drain()

        email = sender.send.await_args.args[0]
        assert f"{settings.frontend_url}/verify-email?token=tok123" in email.text

    @pytest.mark.asyncio
    async def test_password_reset_link(
        self, dispatcher: NotificationDispatcher, sender: MagicMock, settings: Settings
    ):
        dispatcher.password_reset("asha@example.com", "asha", "tok456")
        await dispatcher.drain()

        email = sender.send.await_args.args[0]
        assert f"{settings.frontend_url}/reset-password?token=tok456" in email.text
