"""
Checkout Initiator.

Creates the gateway checkout session first, then the local pending
Transaction that pairs the session id with the purchase. If the local
write fails after the gateway call succeeded, the gateway session is left
orphaned; it expires on the gateway side, and the orphan sweep
(services/orphan_sweep.py) can find and repair it.
"""

from uuid import UUID, uuid4

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from studyabroad.config import Settings
from studyabroad.db.models import Transaction
from studyabroad.db.repositories import purchases, transactions
from studyabroad.exceptions import (
    DatabaseError,
    ForbiddenError,
    PaymentProviderError,
    PurchaseAlreadyPaidError,
    ResourceNotFoundError,
    ValidationError,
)
from studyabroad.models.api import PaymentStatus, ServiceType, is_minor_unit_exact
from studyabroad.models.domain import SERVICE_DISPLAY_NAMES, CheckoutResult, PurchaseRef
from studyabroad.observability.metrics import metrics, track_duration
from studyabroad.observability.tracing import trace_operation
from studyabroad.services.payment_provider import CheckoutRequest, CheckoutSession, PaymentProvider

logger = get_logger(__name__)


class CheckoutService:
    """Checkout creation and transaction lookups for the paying user."""

    def __init__(self, session: AsyncSession, provider: PaymentProvider, settings: Settings) -> None:
        self.session = session
        self.provider = provider
        self.settings = settings

    async def create_checkout(
        self, user_id: UUID, service_type: ServiceType, purchase_id: UUID
    ) -> CheckoutResult:
        """
        Open a checkout session for a purchase owned by `user_id`.

        Raises:
            ResourceNotFoundError: purchase does not exist
            ForbiddenError: purchase belongs to another user
            PurchaseAlreadyPaidError: purchase or a transaction for it is already completed
            ValidationError: amount has digits below the currency minor unit
            PaymentProviderError: gateway failure (retryable by the client)
        """
        ref = PurchaseRef(service_type=service_type, purchase_id=purchase_id)
        purchase = await purchases.find_by_ref(self.session, ref)
        if purchase is None:
            raise ResourceNotFoundError("Purchase", purchase_id)
        if purchase.user_id != user_id:
            logger.warning(
                "checkout_forbidden",
                user_id=str(user_id),
                purchase_id=str(purchase_id),
                service_type=service_type.value,
            )
            raise ForbiddenError("You do not have access to this purchase")
        if purchase.payment_status == PaymentStatus.COMPLETED.value:
            raise PurchaseAlreadyPaidError(purchase_id)
        if await transactions.find_completed_for_purchase(self.session, ref) is not None:
            raise PurchaseAlreadyPaidError(purchase_id)

        product_name = SERVICE_DISPLAY_NAMES[service_type]
        description = f"{product_name} for {purchase.name}"
        amount = purchase.final_amount
        currency = purchase.currency.upper()
        if not is_minor_unit_exact(amount, currency):
            # Stored amount must equal the charged amount
            logger.warning(
                "checkout_amount_not_chargeable",
                purchase_id=str(purchase_id),
                amount=str(amount),
                currency=currency,
            )
            raise ValidationError(f"Amount {amount} cannot be charged exactly in {currency}")

        with trace_operation(
            "checkout_create",
            service_type=service_type.value,
            purchase_id=str(purchase_id),
            currency=currency,
        ) as span, track_duration() as timer:
            try:
                checkout = await self.provider.create_checkout_session(
                    CheckoutRequest(
                        amount=amount,
                        currency=currency,
                        product_name=product_name,
                        description=description,
                        customer_email=purchase.email,
                        user_id=str(user_id),
                        service_type=service_type.value,
                        service_id=str(purchase_id),
                        success_url=self.settings.stripe_success_url,
                        cancel_url=self.settings.stripe_cancel_url,
                    )
                )
            except PaymentProviderError:
                metrics.record_checkout(service_type.value, "gateway_error", timer.elapsed())
                raise

            span.set_attribute("checkout_session_id", checkout.session_id)
            transaction = Transaction(
                id=uuid4(),
                user_id=user_id,
                service_type=service_type.value,
                service_id=purchase_id,
                amount=amount,
                currency=currency,
                description=description,
                payment_gateway=self.provider.name,
                stripe_session_id=checkout.session_id,
                payment_status=PaymentStatus.PENDING.value,
            )
            try:
                await transactions.create(self.session, transaction)
                await self.session.commit()
            except (DatabaseError, SQLAlchemyError) as exc:
                await self.session.rollback()
                metrics.record_checkout(service_type.value, "orphaned", timer.elapsed())
                logger.error(
                    "checkout_transaction_persist_failed",
                    checkout_session_id=checkout.session_id,
                    service_type=service_type.value,
                    purchase_id=str(purchase_id),
                    error=str(exc),
                )
                if isinstance(exc, DatabaseError):
                    raise
                raise DatabaseError("transaction_create", str(exc)) from exc

        metrics.record_checkout(service_type.value, "created", timer.duration)
        logger.info(
            "checkout_session_created",
            transaction_id=str(transaction.id),
            checkout_session_id=checkout.session_id,
            service_type=service_type.value,
            purchase_id=str(purchase_id),
            amount=str(amount),
            currency=currency,
        )
        return CheckoutResult(
            checkout_session_id=checkout.session_id,
            checkout_url=checkout.url or "",
            transaction_id=transaction.id,
        )

    async def session_status(self, checkout_session_id: str) -> tuple[CheckoutSession, Transaction | None]:
        """Gateway view of a session plus the local transaction, if any."""
        checkout = await self.provider.retrieve_checkout_session(checkout_session_id)
        transaction = await transactions.find_by_session_id(self.session, checkout_session_id)
        return checkout, transaction

    async def list_transactions(self, user_id: UUID, limit: int, offset: int) -> list[Transaction]:
        return await transactions.list_for_user(self.session, user_id, limit=limit, offset=offset)

    async def get_transaction(self, user_id: UUID, transaction_id: UUID) -> Transaction:
        transaction = await transactions.find_by_id(self.session, transaction_id)
        if transaction is None or transaction.user_id != user_id:
            raise ResourceNotFoundError("Transaction", transaction_id)
        return transaction
