"""
Stripe Payment Provider Implementation.

The Stripe SDK is synchronous; every network call runs in a worker thread
under a timeout so a slow gateway never blocks the event loop and always
surfaces as a retryable PaymentProviderError.
"""

import asyncio
import functools
import itertools
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any, TypeVar

import stripe
from structlog import get_logger

from studyabroad.exceptions import PaymentProviderError, WebhookVerificationError
from studyabroad.models.domain import to_minor_units
from studyabroad.services.payment_provider import (
    CheckoutRequest,
    CheckoutSession,
    CheckoutSessionEvent,
)

logger = get_logger(__name__)

T = TypeVar("T")


def _plain(value: Any) -> Any:
    """Convert Stripe SDK objects (dict subclasses in older releases, plain objects in newer) to dicts."""
    if hasattr(value, "to_dict") and not isinstance(value, dict):
        value = value.to_dict()
    if isinstance(value, dict):
        return {key: _plain(item) for key, item in value.items()}
    if isinstance(value, list):
        return [_plain(item) for item in value]
    return value


def _payment_intent_id(value: Any) -> str | None:
    """payment_intent is an id string, or an object when expanded."""
    if value is None or isinstance(value, str):
        return value
    return value.get("id")


def _to_checkout_session(obj: Any) -> CheckoutSession:
    data = _plain(obj)
    metadata = data.get("metadata") or {}
    method_types = data.get("payment_method_types") or []
    created = data.get("created")
    currency = data.get("currency")
    return CheckoutSession(
        session_id=data["id"],
        url=data.get("url"),
        status=data.get("status"),
        payment_status=data.get("payment_status"),
        amount_total_minor=data.get("amount_total"),
        currency=currency.upper() if currency else None,
        customer_email=data.get("customer_email")
        or (data.get("customer_details") or {}).get("email"),
        payment_intent_id=_payment_intent_id(data.get("payment_intent")),
        payment_method=method_types[0] if method_types else None,
        metadata_user_id=metadata.get("userId"),
        metadata_service_type=metadata.get("serviceType"),
        metadata_service_id=metadata.get("serviceId"),
        created_at=datetime.fromtimestamp(created, UTC) if created else None,
    )


class StripeProvider:
    """
    Stripe payment provider implementation.

    Implements the PaymentProvider protocol with Stripe Checkout.
    """

    name = "stripe"

    def __init__(self, api_key: str, webhook_secret: str, timeout_seconds: float = 10.0) -> None:
        """
        Initialize Stripe provider.

        Args:
            api_key: Stripe secret API key
            webhook_secret: Stripe webhook signing secret
            timeout_seconds: Upper bound for any single gateway call
        """
        self.api_key = api_key
        self.webhook_secret = webhook_secret
        self.timeout_seconds = timeout_seconds
        stripe.api_key = api_key

    async def _call(self, operation: str, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(functools.partial(func, *args, **kwargs)),
                timeout=self.timeout_seconds,
            )
        except TimeoutError as exc:
            logger.error("stripe_call_timed_out", operation=operation, timeout=self.timeout_seconds)
            raise PaymentProviderError(f"{operation} timed out") from exc
        except stripe.StripeError as exc:
            logger.error(
                "stripe_call_failed",
                operation=operation,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            raise PaymentProviderError(
                f"{operation} failed: {exc}",
                retryable=not isinstance(exc, stripe.InvalidRequestError),
            ) from exc

    async def create_checkout_session(self, request: CheckoutRequest) -> CheckoutSession:
        """
        Create a Stripe Checkout Session for a single line item.

        Raises:
            PaymentProviderError: If Stripe API call fails or times out
        """
        amount_minor = to_minor_units(request.amount, request.currency)
        logger.info(
            "creating_stripe_checkout_session",
            amount=str(request.amount),
            amount_minor=amount_minor,
            currency=request.currency,
            service_type=request.service_type,
            service_id=request.service_id,
        )

        session = await self._call(
            "checkout_session_create",
            stripe.checkout.Session.create,
            payment_method_types=["card"],
            line_items=[
                {
                    "price_data": {
                        "currency": request.currency.lower(),
                        "product_data": {
                            "name": request.product_name,
                            **({"description": request.description} if request.description else {}),
                        },
                        "unit_amount": amount_minor,
                    },
                    "quantity": 1,
                }
            ],
            mode="payment",
            success_url=f"{request.success_url}?session_id={{CHECKOUT_SESSION_ID}}",
            cancel_url=f"{request.cancel_url}?session_id={{CHECKOUT_SESSION_ID}}",
            customer_email=request.customer_email,
            client_reference_id=request.user_id,
            metadata={
                "userId": request.user_id,
                "serviceType": request.service_type,
                "serviceId": request.service_id,
            },
        )

        logger.info("stripe_checkout_session_created", checkout_session_id=session.id)
        return _to_checkout_session(session)

    async def retrieve_checkout_session(self, session_id: str) -> CheckoutSession:
        session = await self._call(
            "checkout_session_retrieve", stripe.checkout.Session.retrieve, session_id
        )
        return _to_checkout_session(session)

    async def list_checkout_sessions(
        self, created_after: datetime, limit: int = 500
    ) -> list[CheckoutSession]:
        """List sessions created after `created_after`, following pagination up to `limit`."""

        def _list() -> list[Any]:
            page = stripe.checkout.Session.list(
                created={"gte": int(created_after.timestamp())}, limit=100
            )
            return list(itertools.islice(page.auto_paging_iter(), limit))

        sessions = await self._call("checkout_session_list", _list)
        return [_to_checkout_session(s) for s in sessions]

    async def verify_webhook(self, payload: bytes, signature: str) -> CheckoutSessionEvent:
        """
        Verify and parse a Stripe webhook event.

        Args:
            payload: Raw webhook payload, exactly as received
            signature: Stripe-Signature header value

        Raises:
            WebhookVerificationError: If signature verification or parsing fails
        """
        if not signature:
            raise WebhookVerificationError("Missing Stripe-Signature header")

        try:
            event = stripe.Webhook.construct_event(  # type: ignore[no-untyped-call]
                payload, signature, self.webhook_secret
            )
        except stripe.SignatureVerificationError as exc:
            logger.error("stripe_webhook_verification_failed", error=str(exc))
            raise WebhookVerificationError("Invalid Stripe webhook signature") from exc
        except ValueError as exc:
            logger.error("stripe_webhook_parsing_failed", error=str(exc))
            raise WebhookVerificationError(f"Malformed Stripe webhook payload: {exc}") from exc

        logger.info("stripe_webhook_verified", event_id=event.id, event_type=event.type)

        session = None
        if event.type.startswith("checkout.session."):
            session = _to_checkout_session(event.data.object)
        return CheckoutSessionEvent(event_id=event.id, event_type=event.type, session=session)
