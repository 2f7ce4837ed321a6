"""
FastAPI Dependencies - service wiring and authentication.

Stateless collaborators (token service, payment provider, email sender,
notification dispatcher, in-memory rate limiter) are process-wide
singletons. Request-scoped services are built on the request's database
session.
"""

from uuid import UUID

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from studyabroad.config import get_settings
from studyabroad.db.session import get_write_db
from studyabroad.exceptions import AdminAccessDeniedError, InvalidTokenError, ValidationError
from studyabroad.models.api import ServiceType
from studyabroad.models.domain import AdminIdentity, AuthenticatedSession
from studyabroad.services.accounts import AccountService
from studyabroad.services.admin_otp import AdminOtpService
from studyabroad.services.checkout import CheckoutService
from studyabroad.services.device import device_from_request
from studyabroad.services.email import EmailSender, SMTPEmailSender
from studyabroad.services.notifications import NotificationDispatcher
from studyabroad.services.payment_provider import PaymentProvider
from studyabroad.services.purchases import PurchaseService
from studyabroad.services.rate_limiter import DatabaseRateLimiter, InMemoryRateLimiter, RateLimiter
from studyabroad.services.session_manager import SessionManager
from studyabroad.services.stripe_provider import StripeProvider
from studyabroad.services.tokens import TokenService
from studyabroad.services.webhook_reconciler import WebhookReconciler

logger = get_logger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)

# ============================================================================
# Singletons
# ============================================================================

_token_service: TokenService | None = None
_payment_provider: PaymentProvider | None = None
_email_sender: EmailSender | None = None
_notification_dispatcher: NotificationDispatcher | None = None
_otp_rate_limiter: InMemoryRateLimiter | None = None


def get_token_service() -> TokenService:
    global _token_service

    if _token_service is None:
        _token_service = TokenService(get_settings())
    return _token_service


def get_payment_provider() -> PaymentProvider:
    """Stripe provider singleton."""
    global _payment_provider

    if _payment_provider is None:
        settings = get_settings()
        _payment_provider = StripeProvider(
            api_key=settings.stripe_api_key,
            webhook_secret=settings.stripe_webhook_secret,
            timeout_seconds=settings.stripe_timeout_seconds,
        )
    return _payment_provider


def get_email_sender() -> EmailSender:
    global _email_sender

    if _email_sender is None:
        _email_sender = SMTPEmailSender(get_settings())
    return _email_sender


def get_notification_dispatcher() -> NotificationDispatcher:
    global _notification_dispatcher

    if _notification_dispatcher is None:
        _notification_dispatcher = NotificationDispatcher(get_email_sender(), get_settings())
    return _notification_dispatcher


def _memory_rate_limiter() -> InMemoryRateLimiter:
    global _otp_rate_limiter

    if _otp_rate_limiter is None:
        settings = get_settings()
        _otp_rate_limiter = InMemoryRateLimiter(
            max_requests=settings.otp_rate_limit_max_requests,
            window_seconds=settings.otp_rate_limit_window_minutes * 60,
        )
    return _otp_rate_limiter


# ============================================================================
# Request-scoped services
# ============================================================================


def get_otp_rate_limiter(db: AsyncSession = Depends(get_write_db)) -> RateLimiter:
    """Rate limiter backend selected by RATE_LIMITER_BACKEND."""
    settings = get_settings()
    if settings.rate_limiter_backend == "database":
        return DatabaseRateLimiter(
            db,
            max_requests=settings.otp_rate_limit_max_requests,
            window_seconds=settings.otp_rate_limit_window_minutes * 60,
        )
    return _memory_rate_limiter()


def get_session_manager(
    db: AsyncSession = Depends(get_write_db),
    tokens: TokenService = Depends(get_token_service),
) -> SessionManager:
    return SessionManager(db, tokens, get_settings())


def get_account_service(
    db: AsyncSession = Depends(get_write_db),
    notifier: NotificationDispatcher = Depends(get_notification_dispatcher),
    sessions: SessionManager = Depends(get_session_manager),
) -> AccountService:
    return AccountService(db, get_settings(), notifier, sessions)


def get_admin_otp_service(
    db: AsyncSession = Depends(get_write_db),
    tokens: TokenService = Depends(get_token_service),
    sender: EmailSender = Depends(get_email_sender),
    rate_limiter: RateLimiter = Depends(get_otp_rate_limiter),
) -> AdminOtpService:
    return AdminOtpService(db, get_settings(), tokens, sender, rate_limiter)


def get_purchase_service(db: AsyncSession = Depends(get_write_db)) -> PurchaseService:
    return PurchaseService(db)


def get_checkout_service(
    db: AsyncSession = Depends(get_write_db),
    provider: PaymentProvider = Depends(get_payment_provider),
) -> CheckoutService:
    return CheckoutService(db, provider, get_settings())


def get_webhook_reconciler(
    db: AsyncSession = Depends(get_write_db),
    provider: PaymentProvider = Depends(get_payment_provider),
    notifier: NotificationDispatcher = Depends(get_notification_dispatcher),
) -> WebhookReconciler:
    return WebhookReconciler(db, provider, notifier)


# ============================================================================
# Authentication
# ============================================================================


def _bearer_token(credentials: HTTPAuthorizationCredentials | None) -> str:
    if credentials is None or not credentials.credentials:
        raise InvalidTokenError("Authorization header required")
    return credentials.credentials


async def get_current_session(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    sessions: SessionManager = Depends(get_session_manager),
) -> AuthenticatedSession:
    """
    Authenticated user for protected routes.

    The token must verify, map to an active device session, and come from the
    device that session was opened on. A request from another device closes
    the session.

    Raises:
        InvalidTokenError, SessionNotFoundError, SessionTerminatedError,
        DeviceMismatchError
    """
    token = _bearer_token(credentials)
    return await sessions.validate_request(token, device_from_request(request))


def get_logout_user_id(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    tokens: TokenService = Depends(get_token_service),
) -> UUID | None:
    """User id for logout; None when the token is missing or forged. Never raises."""
    if credentials is None:
        return None
    return tokens.peek_user_id(credentials.credentials)


def get_current_admin(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    tokens: TokenService = Depends(get_token_service),
) -> AdminIdentity:
    """
    Admin identity from an admin bearer token.

    The email must still be on the allow-list, so removing an address revokes
    its outstanding tokens.
    """
    admin = tokens.verify_admin_token(_bearer_token(credentials))
    if admin.email not in get_settings().admin_email_list:
        logger.warning("admin_token_for_removed_email", email=admin.email)
        raise AdminAccessDeniedError(admin.email)
    return admin


# ============================================================================
# Path parameters
# ============================================================================


def service_type_path(service_type: str) -> ServiceType:
    """`{service_type}` path segment as a ServiceType (`research-paper` or `research_paper`)."""
    try:
        return ServiceType.from_slug(service_type)
    except ValueError as exc:
        raise ValidationError(f"Unknown service type: {service_type}") from exc
