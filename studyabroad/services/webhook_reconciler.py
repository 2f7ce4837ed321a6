"""
Webhook Reconciler - the payment state machine.

Per Transaction: pending -> completed | failed | cancelled.

A completion may still override failed or cancelled (money was captured),
but nothing ever overrides completed. Every transition is a conditional
UPDATE; an affected-row count of 0 means another delivery of the same event
got there first and this one is a no-op. The paired purchase row is updated
in the same database transaction, and emails are dispatched only after the
commit.
"""

from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from studyabroad.db.models import Transaction
from studyabroad.db.repositories import purchases, transactions
from studyabroad.exceptions import (
    DataIntegrityError,
    UnknownCheckoutSessionError,
    WebhookVerificationError,
)
from studyabroad.models.api import PaymentStatus, ServiceType
from studyabroad.models.domain import PaymentConfirmation, PurchaseRef
from studyabroad.observability.metrics import metrics
from studyabroad.observability.tracing import trace_operation
from studyabroad.services.notifications import NotificationDispatcher
from studyabroad.services.payment_provider import (
    CHECKOUT_ASYNC_FAILED,
    CHECKOUT_ASYNC_SUCCEEDED,
    CHECKOUT_COMPLETED,
    CHECKOUT_EXPIRED,
    CheckoutSession,
    CheckoutSessionEvent,
    PaymentProvider,
)

logger = get_logger(__name__)


class ReconcileOutcome(str, Enum):
    COMPLETED = "completed"
    COMPLETED_WITHOUT_FULFILMENT = "completed_without_fulfilment"
    DUPLICATE = "duplicate"
    AWAITING_PAYMENT = "awaiting_payment"
    CANCELLED = "cancelled"
    FAILED = "failed"
    ALREADY_SETTLED = "already_settled"
    IGNORED = "ignored"


@dataclass(frozen=True)
class ReconcileResult:
    event_id: str
    event_type: str
    outcome: ReconcileOutcome
    transaction_id: UUID | None = None


class WebhookReconciler:
    """Verifies gateway events and applies them to transactions and purchases."""

    def __init__(
        self,
        session: AsyncSession,
        provider: PaymentProvider,
        notifier: NotificationDispatcher,
    ) -> None:
        self.session = session
        self.provider = provider
        self.notifier = notifier

    async def handle_event(self, payload: bytes, signature: str) -> ReconcileResult:
        """
        Verify a raw webhook delivery and apply it.

        Raises:
            WebhookVerificationError: bad signature; nothing was changed
            UnknownCheckoutSessionError: payment for a session never recorded here
            DataIntegrityError: transaction references a missing purchase
        """
        event = await self.provider.verify_webhook(payload, signature)
        return await self.process_event(event)

    async def process_event(self, event: CheckoutSessionEvent) -> ReconcileResult:
        """Apply an already verified event."""
        with trace_operation(
            "webhook_reconcile", event_id=event.event_id, event_type=event.event_type
        ) as span:
            try:
                if event.event_type in (CHECKOUT_COMPLETED, CHECKOUT_ASYNC_SUCCEEDED):
                    result = await self._settle_paid(event)
                elif event.event_type == CHECKOUT_EXPIRED:
                    result = await self._settle_unsuccessful(
                        event, PaymentStatus.CANCELLED, "Checkout session expired"
                    )
                elif event.event_type == CHECKOUT_ASYNC_FAILED:
                    result = await self._settle_unsuccessful(
                        event, PaymentStatus.FAILED, "Asynchronous payment failed"
                    )
                else:
                    logger.info(
                        "stripe_webhook_ignored",
                        event_id=event.event_id,
                        event_type=event.event_type,
                    )
                    result = ReconcileResult(event.event_id, event.event_type, ReconcileOutcome.IGNORED)
            except Exception as exc:
                metrics.record_webhook_event(event.event_type, "error")
                metrics.record_error(type(exc).__name__, "webhook_reconcile")
                raise

            span.set_attribute("outcome", result.outcome.value)

        metrics.record_webhook_event(event.event_type, result.outcome.value)
        return result

    def _require_session(self, event: CheckoutSessionEvent) -> CheckoutSession:
        if event.session is None:
            raise WebhookVerificationError(f"{event.event_type} carries no checkout session")
        return event.session

    async def _settle_paid(self, event: CheckoutSessionEvent) -> ReconcileResult:
        checkout = self._require_session(event)

        transaction = await transactions.find_by_session_id(self.session, checkout.session_id)
        if transaction is None:
            logger.error(
                "webhook_unknown_checkout_session",
                event_id=event.event_id,
                checkout_session_id=checkout.session_id,
                payment_intent_id=checkout.payment_intent_id,
                amount_total_minor=checkout.amount_total_minor,
                currency=checkout.currency,
                metadata_user_id=checkout.metadata_user_id,
                metadata_service_type=checkout.metadata_service_type,
                metadata_service_id=checkout.metadata_service_id,
            )
            raise UnknownCheckoutSessionError(checkout.session_id)

        tx_id = transaction.id
        if transaction.payment_status == PaymentStatus.COMPLETED.value:
            logger.info(
                "webhook_duplicate_ignored",
                event_id=event.event_id,
                transaction_id=str(tx_id),
            )
            return ReconcileResult(event.event_id, event.event_type, ReconcileOutcome.DUPLICATE, tx_id)

        if event.event_type == CHECKOUT_COMPLETED and not checkout.is_paid:
            # Delayed payment methods complete the session before funds arrive
            logger.info(
                "checkout_completed_awaiting_payment",
                event_id=event.event_id,
                transaction_id=str(tx_id),
                payment_status=checkout.payment_status,
            )
            return ReconcileResult(
                event.event_id, event.event_type, ReconcileOutcome.AWAITING_PAYMENT, tx_id
            )

        if transaction.payment_status != PaymentStatus.PENDING.value:
            logger.warning(
                "webhook_completion_overrides_terminal_status",
                event_id=event.event_id,
                transaction_id=str(tx_id),
                previous_status=transaction.payment_status,
            )

        self._check_amount(event.event_id, transaction, checkout)

        ref = PurchaseRef(
            service_type=ServiceType(transaction.service_type), purchase_id=transaction.service_id
        )
        purchase = await purchases.find_by_ref(self.session, ref)
        if purchase is None:
            logger.error(
                "webhook_transaction_without_purchase",
                event_id=event.event_id,
                transaction_id=str(tx_id),
                service_type=ref.service_type.value,
                purchase_id=str(ref.purchase_id),
            )
            raise DataIntegrityError(
                f"transaction {tx_id} references missing {ref.service_type.value} purchase {ref.purchase_id}"
            )

        amount = transaction.amount
        currency = transaction.currency
        customer_name = purchase.name
        customer_email = purchase.email
        paid_at = datetime.now(UTC)
        amount_paid = checkout.amount_total if checkout.amount_total is not None else amount

        updated = await transactions.mark_completed(
            self.session, tx_id, checkout.payment_intent_id, checkout.payment_method, paid_at
        )
        if updated == 0:
            await self.session.rollback()
            logger.info(
                "webhook_concurrent_duplicate",
                event_id=event.event_id,
                transaction_id=str(tx_id),
            )
            return ReconcileResult(event.event_id, event.event_type, ReconcileOutcome.DUPLICATE, tx_id)

        purchase_updated = await purchases.mark_paid(
            self.session, ref, checkout.payment_intent_id, checkout.payment_method, amount_paid
        )
        await self.session.commit()

        if purchase_updated == 0:
            logger.error(
                "purchase_already_paid_by_other_transaction",
                event_id=event.event_id,
                transaction_id=str(tx_id),
                service_type=ref.service_type.value,
                purchase_id=str(ref.purchase_id),
                payment_intent_id=checkout.payment_intent_id,
                action_required="refund",
            )
            return ReconcileResult(
                event.event_id,
                event.event_type,
                ReconcileOutcome.COMPLETED_WITHOUT_FULFILMENT,
                tx_id,
            )

        logger.info(
            "payment_reconciled",
            event_id=event.event_id,
            transaction_id=str(tx_id),
            service_type=ref.service_type.value,
            purchase_id=str(ref.purchase_id),
            amount=str(amount),
            currency=currency,
            new_status=ref.post_payment_status.value,
        )

        self.notifier.payment_completed(
            PaymentConfirmation(
                transaction_id=tx_id,
                purchase=ref,
                customer_name=customer_name,
                customer_email=customer_email,
                amount=amount,
                currency=currency,
                payment_intent_id=checkout.payment_intent_id,
                paid_at=paid_at,
            )
        )
        return ReconcileResult(event.event_id, event.event_type, ReconcileOutcome.COMPLETED, tx_id)

    def _check_amount(self, event_id: str, transaction: Transaction, checkout: CheckoutSession) -> None:
        """Log (never correct) a mismatch between what was charged and what was recorded."""
        amount_total = checkout.amount_total
        currency_matches = (
            checkout.currency is None or checkout.currency.upper() == transaction.currency.upper()
        )
        amount_matches = amount_total is None or amount_total == transaction.amount
        if currency_matches and amount_matches:
            return

        metrics.record_error("amount_mismatch", "webhook_reconcile")
        logger.warning(
            "webhook_amount_mismatch",
            event_id=event_id,
            transaction_id=str(transaction.id),
            recorded_amount=str(transaction.amount),
            recorded_currency=transaction.currency,
            gateway_amount=str(amount_total) if amount_total is not None else None,
            gateway_currency=checkout.currency,
        )

    async def _settle_unsuccessful(
        self, event: CheckoutSessionEvent, status: PaymentStatus, reason: str
    ) -> ReconcileResult:
        checkout = self._require_session(event)

        transaction = await transactions.find_by_session_id(self.session, checkout.session_id)
        if transaction is None:
            logger.warning(
                "webhook_unknown_checkout_session_unpaid",
                event_id=event.event_id,
                event_type=event.event_type,
                checkout_session_id=checkout.session_id,
            )
            return ReconcileResult(event.event_id, event.event_type, ReconcileOutcome.IGNORED)

        tx_id = transaction.id
        if transaction.payment_status != PaymentStatus.PENDING.value:
            logger.info(
                "webhook_transaction_already_settled",
                event_id=event.event_id,
                transaction_id=str(tx_id),
                current_status=transaction.payment_status,
            )
            return ReconcileResult(
                event.event_id, event.event_type, ReconcileOutcome.ALREADY_SETTLED, tx_id
            )

        updated = await transactions.mark_unsuccessful(
            self.session, tx_id, status, reason, datetime.now(UTC)
        )
        await self.session.commit()
        if updated == 0:
            return ReconcileResult(
                event.event_id, event.event_type, ReconcileOutcome.ALREADY_SETTLED, tx_id
            )

        logger.info(
            "payment_marked_unsuccessful",
            event_id=event.event_id,
            transaction_id=str(tx_id),
            status=status.value,
            reason=reason,
        )
        outcome = (
            ReconcileOutcome.CANCELLED if status is PaymentStatus.CANCELLED else ReconcileOutcome.FAILED
        )
        return ReconcileResult(event.event_id, event.event_type, outcome, tx_id)
