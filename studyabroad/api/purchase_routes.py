"""
Student purchase routes - create and view service purchases before checkout.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, Query, status

from studyabroad.api.dependencies import (
    get_current_session,
    get_purchase_service,
    service_type_path,
)
from studyabroad.models.api import (
    ApiResponse,
    CounsellingPurchaseRequest,
    PurchaseBase,
    PurchaseResponse,
    ResearchPaperPurchaseRequest,
    ServiceType,
    VisaApplicationPurchaseRequest,
)
from studyabroad.models.domain import AuthenticatedSession
from studyabroad.services.purchases import PurchaseService

router = APIRouter(prefix="/api/student/purchases", tags=["purchases"])


async def _create(
    service: PurchaseService,
    current: AuthenticatedSession,
    service_type: ServiceType,
    body: PurchaseBase,
) -> ApiResponse[PurchaseResponse]:
    purchase = await service.create(current.user_id, service_type, body)
    return ApiResponse(
        message="Purchase created", data=PurchaseResponse.model_validate(purchase)
    )


@router.post(
    "/research-paper",
    response_model=ApiResponse[PurchaseResponse],
    status_code=status.HTTP_201_CREATED,
)
async def create_research_paper_purchase(
    body: ResearchPaperPurchaseRequest,
    current: AuthenticatedSession = Depends(get_current_session),
    service: PurchaseService = Depends(get_purchase_service),
) -> ApiResponse[PurchaseResponse]:
    return await _create(service, current, ServiceType.RESEARCH_PAPER, body)


@router.post(
    "/visa-application",
    response_model=ApiResponse[PurchaseResponse],
    status_code=status.HTTP_201_CREATED,
)
async def create_visa_application_purchase(
    body: VisaApplicationPurchaseRequest,
    current: AuthenticatedSession = Depends(get_current_session),
    service: PurchaseService = Depends(get_purchase_service),
) -> ApiResponse[PurchaseResponse]:
    return await _create(service, current, ServiceType.VISA_APPLICATION, body)


@router.post(
    "/counselling",
    response_model=ApiResponse[PurchaseResponse],
    status_code=status.HTTP_201_CREATED,
)
async def create_counselling_purchase(
    body: CounsellingPurchaseRequest,
    current: AuthenticatedSession = Depends(get_current_session),
    service: PurchaseService = Depends(get_purchase_service),
) -> ApiResponse[PurchaseResponse]:
    return await _create(service, current, ServiceType.COUNSELLING, body)


@router.get("/{service_type}", response_model=ApiResponse[list[PurchaseResponse]])
async def list_purchases(
    service_type: ServiceType = Depends(service_type_path),
    limit: int = Query(50, ge=1, le=200),
    current: AuthenticatedSession = Depends(get_current_session),
    service: PurchaseService = Depends(get_purchase_service),
) -> ApiResponse[list[PurchaseResponse]]:
    records = await service.list_for_user(current.user_id, service_type, limit=limit)
    return ApiResponse(data=[PurchaseResponse.model_validate(p) for p in records])


@router.get("/{service_type}/{purchase_id}", response_model=ApiResponse[PurchaseResponse])
async def get_purchase(
    purchase_id: UUID,
    service_type: ServiceType = Depends(service_type_path),
    current: AuthenticatedSession = Depends(get_current_session),
    service: PurchaseService = Depends(get_purchase_service),
) -> ApiResponse[PurchaseResponse]:
    purchase = await service.get_for_user(current.user_id, service_type, purchase_id)
    return ApiResponse(data=PurchaseResponse.model_validate(purchase))
