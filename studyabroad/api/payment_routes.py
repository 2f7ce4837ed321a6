"""
Stripe payment routes - checkout creation, post-redirect status, webhook.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request, status
from fastapi.responses import JSONResponse
from structlog import get_logger

from studyabroad.api.dependencies import (
    get_checkout_service,
    get_current_session,
    get_webhook_reconciler,
    service_type_path,
)
from studyabroad.exceptions import PlatformError
from studyabroad.models.api import (
    ApiResponse,
    CheckoutSessionRequest,
    CheckoutSessionResponse,
    ServiceType,
    SessionStatusResponse,
    TransactionResponse,
    WebhookAck,
)
from studyabroad.models.domain import AuthenticatedSession
from studyabroad.services.checkout import CheckoutService
from studyabroad.services.webhook_reconciler import WebhookReconciler

logger = get_logger(__name__)
router = APIRouter(prefix="/api/payment/stripe", tags=["payments"])


@router.post(
    "/create-checkout-session/{service_type}",
    response_model=ApiResponse[CheckoutSessionResponse],
)
async def create_checkout_session(
    body: CheckoutSessionRequest,
    service_type: ServiceType = Depends(service_type_path),
    current: AuthenticatedSession = Depends(get_current_session),
    checkout: CheckoutService = Depends(get_checkout_service),
) -> ApiResponse[CheckoutSessionResponse]:
    """
    Open a Stripe Checkout page for one of the caller's purchases.

    The amount charged is the purchase's stored final amount; nothing in the
    request body can change it.
    """
    result = await checkout.create_checkout(current.user_id, service_type, body.purchase_id)
    return ApiResponse(
        message="Checkout session created",
        data=CheckoutSessionResponse(
            session_id=result.checkout_session_id,
            session_url=result.checkout_url,
            transaction_id=result.transaction_id,
        ),
    )


@router.get("/session-status", response_model=ApiResponse[SessionStatusResponse])
async def session_status(
    session_id: str = Query(..., min_length=1),
    checkout: CheckoutService = Depends(get_checkout_service),
) -> ApiResponse[SessionStatusResponse]:
    """Snapshot for the page the customer lands on after the Stripe redirect."""
    session, transaction = await checkout.session_status(session_id)
    return ApiResponse(
        data=SessionStatusResponse(
            payment_status=session.payment_status or "unknown",
            transaction_status=transaction.payment_status if transaction else None,
            amount=session.amount_total,
            currency=session.currency,
            customer_email=session.customer_email,
            transaction=TransactionResponse.model_validate(transaction) if transaction else None,
        )
    )


@router.post("/webhook", response_model=WebhookAck)
async def stripe_webhook(
    request: Request,
    reconciler: WebhookReconciler = Depends(get_webhook_reconciler),
) -> WebhookAck | JSONResponse:
    """
    Receive Stripe events.

    The raw body is verified byte-for-byte. Any failure is answered with 400
    so Stripe retries the delivery; duplicates are acknowledged.
    """
    payload = await request.body()
    signature = request.headers.get("stripe-signature", "")

    try:
        result = await reconciler.handle_event(payload, signature)
    except PlatformError as exc:
        logger.error(
            "stripe_webhook_rejected",
            error=exc.message,
            error_code=exc.code,
        )
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"success": False, "message": exc.message, "code": exc.code},
        )
    except Exception as exc:
        logger.error("stripe_webhook_processing_failed", error=str(exc), exc_info=True)
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={
                "success": False,
                "message": "Webhook processing failed",
                "code": "WEBHOOK_PROCESSING_FAILED",
            },
        )

    logger.info(
        "stripe_webhook_processed",
        event_id=result.event_id,
        event_type=result.event_type,
        outcome=result.outcome.value,
    )
    return WebhookAck()


@router.get("/transactions", response_model=ApiResponse[list[TransactionResponse]])
async def list_transactions(
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    current: AuthenticatedSession = Depends(get_current_session),
    checkout: CheckoutService = Depends(get_checkout_service),
) -> ApiResponse[list[TransactionResponse]]:
    records = await checkout.list_transactions(current.user_id, limit=limit, offset=offset)
    return ApiResponse(data=[TransactionResponse.model_validate(t) for t in records])


@router.get("/transactions/{transaction_id}", response_model=ApiResponse[TransactionResponse])
async def get_transaction(
    transaction_id: UUID,
    current: AuthenticatedSession = Depends(get_current_session),
    checkout: CheckoutService = Depends(get_checkout_service),
) -> ApiResponse[TransactionResponse]:
    transaction = await checkout.get_transaction(current.user_id, transaction_id)
    return ApiResponse(data=TransactionResponse.model_validate(transaction))
