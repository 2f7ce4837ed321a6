"""
Purchase records - what a student intends to buy, created before checkout.
"""

from uuid import UUID, uuid4

from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from studyabroad.db.models import PURCHASE_MODELS, AnyPurchase
from studyabroad.db.repositories import purchases
from studyabroad.exceptions import ResourceNotFoundError
from studyabroad.models.api import (
    CaseStatus,
    CounsellingPurchaseRequest,
    PaymentStatus,
    PurchaseBase,
    PurchaseStatus,
    ResearchPaperPurchaseRequest,
    ServiceType,
    VisaApplicationPurchaseRequest,
)
from studyabroad.models.domain import PurchaseRef

logger = get_logger(__name__)

REQUEST_MODELS: dict[ServiceType, type[PurchaseBase]] = {
    ServiceType.RESEARCH_PAPER: ResearchPaperPurchaseRequest,
    ServiceType.VISA_APPLICATION: VisaApplicationPurchaseRequest,
    ServiceType.COUNSELLING: CounsellingPurchaseRequest,
}


class PurchaseService:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def create(
        self, user_id: UUID, service_type: ServiceType, request: PurchaseBase
    ) -> AnyPurchase:
        """Create a pending purchase from a validated request body."""
        model = PURCHASE_MODELS[service_type]
        purchase = model(
            id=uuid4(),
            user_id=user_id,
            payment_status=PaymentStatus.PENDING.value,
            status=PurchaseStatus.INITIATED.value,
            case_status=CaseStatus.OPEN.value,
            **request.model_dump(),
        )
        await purchases.create(self.session, purchase)
        await self.session.commit()

        logger.info(
            "purchase_created",
            purchase_id=str(purchase.id),
            user_id=str(user_id),
            service_type=service_type.value,
            final_amount=str(purchase.final_amount),
            currency=purchase.currency,
        )
        return purchase

    async def list_for_user(
        self, user_id: UUID, service_type: ServiceType, limit: int = 50
    ) -> list[AnyPurchase]:
        return await purchases.list_for_user(self.session, service_type, user_id, limit=limit)

    async def get_for_user(
        self, user_id: UUID, service_type: ServiceType, purchase_id: UUID
    ) -> AnyPurchase:
        """Raises ResourceNotFoundError when missing or owned by another user."""
        purchase = await purchases.find_by_ref(self.session, PurchaseRef(service_type, purchase_id))
        if purchase is None or purchase.user_id != user_id:
            raise ResourceNotFoundError("Purchase", purchase_id)
        return purchase
