"""
Payment Provider Protocol - Provider-agnostic interface.

Amounts cross this boundary in major units (Decimal); adapters convert to
the gateway's minor units.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Protocol

from studyabroad.models.domain import from_minor_units

CHECKOUT_COMPLETED = "checkout.session.completed"
CHECKOUT_EXPIRED = "checkout.session.expired"
CHECKOUT_ASYNC_SUCCEEDED = "checkout.session.async_payment_succeeded"
CHECKOUT_ASYNC_FAILED = "checkout.session.async_payment_failed"


@dataclass(frozen=True)
class CheckoutRequest:
    """
    Request to open a hosted checkout page for one purchase.

    `user_id`, `service_type` and `service_id` travel as gateway metadata so
    a session can be traced back to its purchase without local records.
    """

    amount: Decimal
    currency: str
    product_name: str
    description: str | None
    customer_email: str
    user_id: str
    service_type: str
    service_id: str
    success_url: str
    cancel_url: str


@dataclass(frozen=True)
class CheckoutSession:
    """Provider-agnostic view of a checkout session."""

    session_id: str
    url: str | None
    status: str | None  # open | complete | expired
    payment_status: str | None  # paid | unpaid | no_payment_required
    amount_total_minor: int | None
    currency: str | None
    customer_email: str | None
    payment_intent_id: str | None
    payment_method: str | None
    metadata_user_id: str | None
    metadata_service_type: str | None
    metadata_service_id: str | None
    created_at: datetime | None = None

    @property
    def amount_total(self) -> Decimal | None:
        if self.amount_total_minor is None or self.currency is None:
            return None
        return from_minor_units(self.amount_total_minor, self.currency)

    @property
    def is_paid(self) -> bool:
        return self.payment_status in ("paid", "no_payment_required")


@dataclass(frozen=True)
class CheckoutSessionEvent:
    """
    Verified webhook event.

    `session` is set for checkout.session.* events and None for every other
    event type.
    """

    event_id: str
    event_type: str
    session: CheckoutSession | None


class PaymentProvider(Protocol):
    """
    Payment provider protocol.

    Any hosted-checkout gateway must implement this interface.
    """

    name: str

    async def create_checkout_session(self, request: CheckoutRequest) -> CheckoutSession:
        """
        Create a hosted checkout session.

        Raises:
            PaymentProviderError: gateway unreachable, timed out or rejected the call
        """
        ...

    async def retrieve_checkout_session(self, session_id: str) -> CheckoutSession:
        """
        Fetch the current state of a checkout session.

        Raises:
            PaymentProviderError: gateway unreachable, timed out or rejected the call
        """
        ...

    async def list_checkout_sessions(
        self, created_after: datetime, limit: int
    ) -> list[CheckoutSession]:
        """List checkout sessions created after `created_after`, newest first."""
        ...

    async def verify_webhook(self, payload: bytes, signature: str) -> CheckoutSessionEvent:
        """
        Verify and parse a webhook delivery.

        Args:
            payload: Raw request body, byte-exact
            signature: Signature header value

        Raises:
            WebhookVerificationError: If signature verification fails
        """
        ...
