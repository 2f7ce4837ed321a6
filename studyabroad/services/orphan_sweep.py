"""
Orphaned checkout session sweep.

A checkout session is orphaned when the gateway created it but the local
pending Transaction was never written (database failure right after the
gateway call). Its webhook then fails with UnknownCheckoutSessionError on
every retry. The sweep lists recent gateway sessions, reports the ones with
no local Transaction and, in repair mode, recreates the Transaction from the
session metadata and settles it through the regular reconciler.
"""

from dataclasses import dataclass, field
from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from studyabroad.db.models import Transaction
from studyabroad.db.repositories import purchases, transactions
from studyabroad.exceptions import PlatformError
from studyabroad.models.api import PaymentStatus, ServiceType
from studyabroad.models.domain import SERVICE_DISPLAY_NAMES, PurchaseRef
from studyabroad.services.payment_provider import (
    CHECKOUT_COMPLETED,
    CHECKOUT_EXPIRED,
    CheckoutSession,
    CheckoutSessionEvent,
    PaymentProvider,
)
from studyabroad.services.webhook_reconciler import WebhookReconciler

logger = get_logger(__name__)


@dataclass
class SweepReport:
    scanned: int = 0
    orphaned: list[str] = field(default_factory=list)
    repaired: list[str] = field(default_factory=list)
    settled: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)


class OrphanSweeper:
    def __init__(
        self,
        session: AsyncSession,
        provider: PaymentProvider,
        reconciler: WebhookReconciler,
    ) -> None:
        self.session = session
        self.provider = provider
        self.reconciler = reconciler

    async def sweep(self, since: datetime, repair: bool = False, limit: int = 500) -> SweepReport:
        """
        Find gateway sessions created after `since` with no local Transaction.

        Args:
            since: Only sessions created at or after this time are listed
            repair: Recreate missing Transactions and settle paid or expired ones
            limit: Maximum number of gateway sessions to scan
        """
        sessions = await self.provider.list_checkout_sessions(since, limit)
        report = SweepReport(scanned=len(sessions))
        if not sessions:
            return report

        known = await transactions.find_known_session_ids(
            self.session, [s.session_id for s in sessions]
        )
        for checkout in sessions:
            if checkout.session_id in known:
                continue

            report.orphaned.append(checkout.session_id)
            logger.warning(
                "orphaned_checkout_session",
                checkout_session_id=checkout.session_id,
                status=checkout.status,
                payment_status=checkout.payment_status,
                amount_total_minor=checkout.amount_total_minor,
                currency=checkout.currency,
                metadata_user_id=checkout.metadata_user_id,
                metadata_service_type=checkout.metadata_service_type,
                metadata_service_id=checkout.metadata_service_id,
            )
            if repair:
                await self._repair(checkout, report)

        logger.info(
            "orphan_sweep_finished",
            scanned=report.scanned,
            orphaned=len(report.orphaned),
            repaired=len(report.repaired),
            settled=len(report.settled),
            skipped=len(report.skipped),
            failed=len(report.failed),
        )
        return report

    async def _repair(self, checkout: CheckoutSession, report: SweepReport) -> None:
        transaction = await self._rebuild_transaction(checkout)
        if transaction is None:
            report.skipped.append(checkout.session_id)
            return

        try:
            await transactions.create(self.session, transaction)
            await self.session.commit()
        except IntegrityError:
            # A checkout or another sweep wrote the transaction meanwhile
            await self.session.rollback()
            report.skipped.append(checkout.session_id)
            logger.info(
                "orphaned_transaction_already_exists",
                checkout_session_id=checkout.session_id,
            )
            return
        report.repaired.append(checkout.session_id)
        logger.info(
            "orphaned_transaction_recreated",
            checkout_session_id=checkout.session_id,
            transaction_id=str(transaction.id),
        )

        event_type = None
        if checkout.status == "complete" and checkout.is_paid:
            event_type = CHECKOUT_COMPLETED
        elif checkout.status == "expired":
            event_type = CHECKOUT_EXPIRED
        if event_type is None:
            return

        try:
            await self.reconciler.process_event(
                CheckoutSessionEvent(
                    event_id=f"sweep:{checkout.session_id}",
                    event_type=event_type,
                    session=checkout,
                )
            )
        except PlatformError as exc:
            await self.session.rollback()
            report.failed.append(checkout.session_id)
            logger.error(
                "orphan_settlement_failed",
                checkout_session_id=checkout.session_id,
                error=exc.message,
            )
            return
        report.settled.append(checkout.session_id)

    async def _rebuild_transaction(self, checkout: CheckoutSession) -> Transaction | None:
        """Transaction from session metadata, or None when the metadata can't be trusted."""
        try:
            user_id = UUID(checkout.metadata_user_id or "")
            service_type = ServiceType(checkout.metadata_service_type)
            purchase_id = UUID(checkout.metadata_service_id or "")
        except ValueError:
            logger.warning(
                "orphan_metadata_unusable", checkout_session_id=checkout.session_id
            )
            return None

        purchase = await purchases.find_by_ref(self.session, PurchaseRef(service_type, purchase_id))
        if purchase is None or purchase.user_id != user_id:
            logger.warning(
                "orphan_purchase_not_found",
                checkout_session_id=checkout.session_id,
                service_type=service_type.value,
                purchase_id=str(purchase_id),
            )
            return None

        amount = checkout.amount_total if checkout.amount_total is not None else purchase.final_amount
        product_name = SERVICE_DISPLAY_NAMES[service_type]
        return Transaction(
            id=uuid4(),
            user_id=user_id,
            service_type=service_type.value,
            service_id=purchase_id,
            amount=amount,
            currency=(checkout.currency or purchase.currency).upper(),
            description=f"{product_name} for {purchase.name}",
            payment_gateway=self.provider.name,
            stripe_session_id=checkout.session_id,
            payment_status=PaymentStatus.PENDING.value,
        )
