"""
User authentication routes - signup, login, single-device sessions.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request, status
from structlog import get_logger

from studyabroad.api.dependencies import (
    get_account_service,
    get_current_session,
    get_logout_user_id,
    get_session_manager,
)
from studyabroad.models.api import (
    AccessTokenResponse,
    ApiResponse,
    DeviceSessionResponse,
    EmailRequest,
    LoginRequest,
    LoginResponse,
    RefreshTokenRequest,
    ResetPasswordRequest,
    SignupRequest,
    UserResponse,
)
from studyabroad.models.domain import AuthenticatedSession
from studyabroad.services.accounts import AccountService
from studyabroad.services.device import device_from_request
from studyabroad.services.session_manager import SessionManager

logger = get_logger(__name__)
router = APIRouter(prefix="/api/auth", tags=["auth"])


@router.post(
    "/signup",
    response_model=ApiResponse[UserResponse],
    status_code=status.HTTP_201_CREATED,
)
async def signup(
    body: SignupRequest,
    accounts: AccountService = Depends(get_account_service),
) -> ApiResponse[UserResponse]:
    """Create an account; a verification link is emailed."""
    user = await accounts.signup(body.username, body.email, body.password, body.role)
    return ApiResponse(
        message="Account created. Please check your email to verify your address.",
        data=UserResponse.model_validate(user),
    )


@router.get("/verify-email", response_model=ApiResponse[UserResponse])
async def verify_email(
    token: str = Query(..., min_length=1),
    accounts: AccountService = Depends(get_account_service),
) -> ApiResponse[UserResponse]:
    user = await accounts.verify_email(token)
    return ApiResponse(message="Email verified", data=UserResponse.model_validate(user))


@router.post("/resend-verification", response_model=ApiResponse[None])
async def resend_verification(
    body: EmailRequest,
    accounts: AccountService = Depends(get_account_service),
) -> ApiResponse[None]:
    await accounts.resend_verification(body.email)
    return ApiResponse(
        message="If the account exists and is unverified, a new link has been sent."
    )


@router.post("/login", response_model=ApiResponse[LoginResponse])
async def login(
    body: LoginRequest,
    request: Request,
    sessions: SessionManager = Depends(get_session_manager),
) -> ApiResponse[LoginResponse]:
    """
    Log in from the calling device.

    Rejected with 409 ACTIVE_SESSION_EXISTS while another device session is
    active; the response data describes that device.
    """
    result = await sessions.login(body.email, body.password, device_from_request(request))
    return ApiResponse(
        message="Login successful",
        data=LoginResponse(
            access_token=result.tokens.access_token,
            refresh_token=result.tokens.refresh_token,
            user=UserResponse.model_validate(result.user),
            session=DeviceSessionResponse.model_validate(result.device_session),
        ),
    )


@router.post("/refresh-token", response_model=ApiResponse[AccessTokenResponse])
async def refresh_token(
    body: RefreshTokenRequest,
    request: Request,
    sessions: SessionManager = Depends(get_session_manager),
) -> ApiResponse[AccessTokenResponse]:
    access_token = await sessions.refresh(body.refresh_token, device_from_request(request))
    return ApiResponse(
        message="Token refreshed", data=AccessTokenResponse(access_token=access_token)
    )


@router.post("/logout", response_model=ApiResponse[None])
async def logout(
    user_id: UUID | None = Depends(get_logout_user_id),
    sessions: SessionManager = Depends(get_session_manager),
) -> ApiResponse[None]:
    """Close every active session of the caller. Always succeeds."""
    if user_id is not None:
        await sessions.logout(user_id)
    else:
        logger.info("logout_without_valid_token")
    return ApiResponse(message="Logged out successfully")


@router.get("/sessions", response_model=ApiResponse[list[DeviceSessionResponse]])
async def list_sessions(
    current: AuthenticatedSession = Depends(get_current_session),
    sessions: SessionManager = Depends(get_session_manager),
) -> ApiResponse[list[DeviceSessionResponse]]:
    records = await sessions.list_sessions(current.user_id)
    return ApiResponse(data=[DeviceSessionResponse.model_validate(r) for r in records])


@router.post("/forgot-password", response_model=ApiResponse[None])
async def forgot_password(
    body: EmailRequest,
    accounts: AccountService = Depends(get_account_service),
) -> ApiResponse[None]:
    await accounts.request_password_reset(body.email)
    return ApiResponse(message="If an account exists for this email, a reset link has been sent.")


@router.post("/reset-password", response_model=ApiResponse[None])
async def reset_password(
    body: ResetPasswordRequest,
    accounts: AccountService = Depends(get_account_service),
) -> ApiResponse[None]:
    await accounts.reset_password(body.token, body.new_password)
    return ApiResponse(message="Password reset. Please log in again on your device.")
