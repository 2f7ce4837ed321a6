"""
Notification Dispatcher - fire-and-forget email side effects.

Emails are spawned as asyncio tasks after the owning database transaction
has committed. The request path never awaits them; failures are logged and
counted, never raised.
"""

import asyncio
from html import escape

from structlog import get_logger

from studyabroad.config import Settings
from studyabroad.exceptions import EmailDeliveryError
from studyabroad.models.domain import PaymentConfirmation
from studyabroad.observability.metrics import metrics
from studyabroad.services.email import EmailSender, OutgoingEmail

logger = get_logger(__name__)


# ============================================================================
# Templates
# ============================================================================


def verification_email(to: str, username: str, link: str, hours: int) -> OutgoingEmail:
    text = (
        f"Hi {username},\n\n"
        f"Please verify your email address by opening the link below:\n{link}\n\n"
        f"The link expires in {hours} hours."
    )
    html = (
        f"<p>Hi {escape(username)},</p>"
        f'<p>Please verify your email address: <a href="{escape(link)}">Verify email</a></p>'
        f"<p>The link expires in {hours} hours.</p>"
    )
    return OutgoingEmail(to=to, subject="Verify your email address", text=text, html=html)


def password_reset_email(to: str, username: str, link: str, minutes: int) -> OutgoingEmail:
    text = (
        f"Hi {username},\n\n"
        f"A password reset was requested for your account. Reset it here:\n{link}\n\n"
        f"The link expires in {minutes} minutes. Resetting your password signs you out "
        "of every device. If you did not request this, ignore this email."
    )
    return OutgoingEmail(to=to, subject="Reset your password", text=text)


def admin_otp_email(to: str, code: str, minutes: int) -> OutgoingEmail:
    text = (
        f"Your admin login code is {code}\n\n"
        f"It expires in {minutes} minutes. If you did not request it, ignore this email."
    )
    html = (
        f"<p>Your admin login code is</p><h2>{code}</h2>"
        f"<p>It expires in {minutes} minutes.</p>"
    )
    return OutgoingEmail(to=to, subject="Your admin login code", text=text, html=html)


def payment_confirmation_email(confirmation: PaymentConfirmation) -> OutgoingEmail:
    text = (
        f"Hi {confirmation.customer_name},\n\n"
        f"We received your payment of {confirmation.amount} {confirmation.currency} "
        f"for {confirmation.service_name}.\n"
        f"Transaction reference: {confirmation.transaction_id}\n\n"
        "Our team will be in touch with the next steps."
    )
    return OutgoingEmail(
        to=confirmation.customer_email,
        subject=f"Payment received - {confirmation.service_name}",
        text=text,
    )


def payment_operator_email(to: str, confirmation: PaymentConfirmation) -> OutgoingEmail:
    text = (
        f"New payment for {confirmation.service_name}\n\n"
        f"Customer: {confirmation.customer_name} <{confirmation.customer_email}>\n"
        f"Amount: {confirmation.amount} {confirmation.currency}\n"
        f"Purchase: {confirmation.purchase.service_type.value}/{confirmation.purchase.purchase_id}\n"
        f"Transaction: {confirmation.transaction_id}\n"
        f"Payment intent: {confirmation.payment_intent_id or '-'}\n"
        f"Paid at: {confirmation.paid_at.isoformat()}"
    )
    return OutgoingEmail(
        to=to,
        subject=f"New payment: {confirmation.service_name} ({confirmation.amount} {confirmation.currency})",
        text=text,
    )


# ============================================================================
# Dispatcher
# ============================================================================


class NotificationDispatcher:
    """Spawns email sends as background tasks and keeps them referenced until done."""

    def __init__(self, sender: EmailSender, settings: Settings) -> None:
        self.sender = sender
        self.settings = settings
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def dispatch(self, email: OutgoingEmail, kind: str) -> asyncio.Task[None]:
        """Schedule `email` for delivery; returns immediately."""
        task = asyncio.create_task(self._deliver(email, kind), name=f"email:{kind}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _deliver(self, email: OutgoingEmail, kind: str) -> None:
        try:
            await self.sender.send(email)
        except EmailDeliveryError as exc:
            metrics.record_email(kind, False)
            logger.error("notification_failed", kind=kind, recipient=email.to, error=str(exc))
            return
        except Exception as exc:
            # Task boundary: nothing awaits this coroutine
            metrics.record_email(kind, False)
            logger.error(
                "notification_crashed",
                kind=kind,
                recipient=email.to,
                error=str(exc),
                exc_info=True,
            )
            return
        metrics.record_email(kind, True)

    async def drain(self, timeout: float = 10.0) -> None:
        """Wait for in-flight emails (used at shutdown)."""
        if not self._tasks:
            return
        _, pending = await asyncio.wait(set(self._tasks), timeout=timeout)
        if pending:
            logger.warning("notifications_abandoned_at_shutdown", count=len(pending))

    # ------------------------------------------------------------------
    # Typed entry points
    # ------------------------------------------------------------------

    def payment_completed(self, confirmation: PaymentConfirmation) -> None:
        """Confirmation to the purchaser and a notice to the operator."""
        self.dispatch(payment_confirmation_email(confirmation), "payment_confirmation")
        if self.settings.admin_notification_email:
            self.dispatch(
                payment_operator_email(self.settings.admin_notification_email, confirmation),
                "payment_operator_notice",
            )

    def verification(self, to: str, username: str, token: str) -> None:
        link = f"{self.settings.frontend_url}/verify-email?token={token}"
        self.dispatch(
            verification_email(to, username, link, self.settings.verification_token_hours),
            "verification",
        )

    def password_reset(self, to: str, username: str, token: str) -> None:
        link = f"{self.settings.frontend_url}/reset-password?token={token}"
        self.dispatch(
            password_reset_email(to, username, link, self.settings.password_reset_token_minutes),
            "password_reset",
        )
