"""
Admin API routes for payment reconciliation.

Protected by the admin OTP bearer token.
"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from studyabroad.api.dependencies import get_current_admin
from studyabroad.db.repositories import transactions
from studyabroad.db.session import get_read_db
from studyabroad.models.api import ApiResponse, PaymentStatus, TransactionResponse
from studyabroad.models.domain import AdminIdentity

logger = get_logger(__name__)
router = APIRouter(prefix="/api/admin/payments", tags=["admin"])


@router.get("/transactions", response_model=ApiResponse[list[TransactionResponse]])
async def list_transactions(
    payment_status: PaymentStatus | None = Query(None, alias="status"),
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    admin: AdminIdentity = Depends(get_current_admin),
    db: AsyncSession = Depends(get_read_db),
) -> ApiResponse[list[TransactionResponse]]:
    """All transactions, newest first, optionally filtered by payment status."""
    records = await transactions.list_by_status(db, payment_status, limit=limit, offset=offset)
    logger.info(
        "admin_transactions_listed",
        admin_email=admin.email,
        status=payment_status.value if payment_status else None,
        count=len(records),
    )
    return ApiResponse(data=[TransactionResponse.model_validate(t) for t in records])
