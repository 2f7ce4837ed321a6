"""Transaction repository."""

from datetime import datetime
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from studyabroad.db.models import Transaction
from studyabroad.db.repositories.base import data_access
from studyabroad.models.api import PaymentStatus
from studyabroad.models.domain import PurchaseRef


@data_access("transaction_create")
async def create(session: AsyncSession, transaction: Transaction) -> Transaction:
    session.add(transaction)
    await session.flush()
    return transaction


@data_access("transaction_find_by_id")
async def find_by_id(session: AsyncSession, transaction_id: UUID) -> Transaction | None:
    return await session.get(Transaction, transaction_id)


@data_access("transaction_find_by_session_id")
async def find_by_session_id(session: AsyncSession, checkout_session_id: str) -> Transaction | None:
    result = await session.execute(
        select(Transaction).where(Transaction.stripe_session_id == checkout_session_id)
    )
    return result.scalar_one_or_none()


@data_access("transaction_find_completed_for_purchase")
async def find_completed_for_purchase(
    session: AsyncSession, purchase: PurchaseRef
) -> Transaction | None:
    result = await session.execute(
        select(Transaction)
        .where(
            Transaction.service_type == purchase.service_type.value,
            Transaction.service_id == purchase.purchase_id,
            Transaction.payment_status == PaymentStatus.COMPLETED.value,
        )
        .limit(1)
    )
    return result.scalar_one_or_none()


@data_access("transaction_list_for_user")
async def list_for_user(
    session: AsyncSession, user_id: UUID, limit: int = 50, offset: int = 0
) -> list[Transaction]:
    result = await session.execute(
        select(Transaction)
        .where(Transaction.user_id == user_id)
        .order_by(Transaction.created_at.desc())
        .limit(limit)
        .offset(offset)
    )
    return list(result.scalars().all())


@data_access("transaction_list_by_status")
async def list_by_status(
    session: AsyncSession, status: PaymentStatus | None, limit: int = 100, offset: int = 0
) -> list[Transaction]:
    query = select(Transaction).order_by(Transaction.created_at.desc()).limit(limit).offset(offset)
    if status is not None:
        query = query.where(Transaction.payment_status == status.value)
    result = await session.execute(query)
    return list(result.scalars().all())


@data_access("transaction_find_known_session_ids")
async def find_known_session_ids(session: AsyncSession, checkout_session_ids: list[str]) -> set[str]:
    if not checkout_session_ids:
        return set()
    result = await session.execute(
        select(Transaction.stripe_session_id).where(
            Transaction.stripe_session_id.in_(checkout_session_ids)
        )
    )
    return set(result.scalars().all())


@data_access("transaction_mark_completed")
async def mark_completed(
    session: AsyncSession,
    transaction_id: UUID,
    payment_intent_id: str | None,
    payment_method: str | None,
    paid_at: datetime,
) -> int:
    """
    Settle a transaction as completed unless it already is.

    Returns the affected row count; 0 means a concurrent delivery already
    completed it.
    """
    result = await session.execute(
        update(Transaction)
        .where(
            Transaction.id == transaction_id,
            Transaction.payment_status != PaymentStatus.COMPLETED.value,
        )
        .values(
            payment_status=PaymentStatus.COMPLETED.value,
            stripe_payment_intent_id=payment_intent_id,
            payment_method=payment_method,
            paid_at=paid_at,
            error_message=None,
        )
    )
    return result.rowcount or 0


@data_access("transaction_mark_unsuccessful")
async def mark_unsuccessful(
    session: AsyncSession,
    transaction_id: UUID,
    status: PaymentStatus,
    error_message: str,
    now: datetime,
) -> int:
    """Move a still-pending transaction to failed or cancelled."""
    values: dict[str, object] = {"payment_status": status.value, "error_message": error_message}
    if status is PaymentStatus.CANCELLED:
        values["cancelled_at"] = now
    result = await session.execute(
        update(Transaction)
        .where(
            Transaction.id == transaction_id,
            Transaction.payment_status == PaymentStatus.PENDING.value,
        )
        .values(**values)
    )
    return result.rowcount or 0
