"""Purchase repository - one set of functions for the three purchase tables."""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from studyabroad.db.models import PURCHASE_MODELS, AnyPurchase
from studyabroad.db.repositories.base import data_access
from studyabroad.models.api import PaymentStatus, ServiceType
from studyabroad.models.domain import PurchaseRef


@data_access("purchase_create")
async def create(session: AsyncSession, purchase: AnyPurchase) -> AnyPurchase:
    session.add(purchase)
    await session.flush()
    return purchase


@data_access("purchase_find_by_id")
async def find_by_ref(session: AsyncSession, ref: PurchaseRef) -> AnyPurchase | None:
    model = PURCHASE_MODELS[ref.service_type]
    return await session.get(model, ref.purchase_id)


@data_access("purchase_list_for_user")
async def list_for_user(
    session: AsyncSession, service_type: ServiceType, user_id: UUID, limit: int = 50
) -> list[AnyPurchase]:
    model = PURCHASE_MODELS[service_type]
    result = await session.execute(
        select(model)
        .where(model.user_id == user_id)
        .order_by(model.created_at.desc())
        .limit(limit)
    )
    return list(result.scalars().all())


@data_access("purchase_mark_paid")
async def mark_paid(
    session: AsyncSession,
    ref: PurchaseRef,
    payment_id: str | None,
    payment_method: str | None,
    amount_paid: Decimal,
) -> int:
    """
    Record payment on a purchase and advance it to its post-payment status.

    Conditional on the purchase not already being paid; returns the
    affected row count.
    """
    model = PURCHASE_MODELS[ref.service_type]
    result = await session.execute(
        update(model)
        .where(
            model.id == ref.purchase_id,
            model.payment_status != PaymentStatus.COMPLETED.value,
        )
        .values(
            payment_status=PaymentStatus.COMPLETED.value,
            payment_id=payment_id,
            payment_method=payment_method,
            amount_paid=amount_paid,
            status=ref.post_payment_status.value,
        )
    )
    return result.rowcount or 0
