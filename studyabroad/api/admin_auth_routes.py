"""
Admin authentication routes - email OTP login.
"""

from fastapi import APIRouter, Depends, Request

from studyabroad.api.dependencies import get_admin_otp_service, get_current_admin
from studyabroad.config import get_settings
from studyabroad.models.api import (
    AdminLoginResponse,
    AdminOtpRequest,
    AdminOtpSentResponse,
    AdminOtpVerifyRequest,
    AdminUser,
    ApiResponse,
)
from studyabroad.models.domain import AdminIdentity
from studyabroad.services.admin_otp import AdminOtpService
from studyabroad.services.device import client_ip

router = APIRouter(prefix="/api/admin-auth", tags=["admin-auth"])


@router.post("/request-otp", response_model=ApiResponse[AdminOtpSentResponse])
async def request_otp(
    body: AdminOtpRequest,
    request: Request,
    service: AdminOtpService = Depends(get_admin_otp_service),
) -> ApiResponse[AdminOtpSentResponse]:
    email = await service.request_otp(
        body.email,
        ip_address=client_ip(request),
        user_agent=request.headers.get("user-agent"),
    )
    return ApiResponse(
        message="OTP sent to your email",
        data=AdminOtpSentResponse(
            email=email, expires_in_minutes=get_settings().otp_expiry_minutes
        ),
    )


@router.post("/verify-otp", response_model=ApiResponse[AdminLoginResponse])
async def verify_otp(
    body: AdminOtpVerifyRequest,
    service: AdminOtpService = Depends(get_admin_otp_service),
) -> ApiResponse[AdminLoginResponse]:
    token = await service.verify_otp(body.email, body.otp)
    return ApiResponse(
        message="Login successful",
        data=AdminLoginResponse(access_token=token, user=AdminUser(email=body.email)),
    )


@router.post("/logout", response_model=ApiResponse[None])
async def logout(admin: AdminIdentity = Depends(get_current_admin)) -> ApiResponse[None]:
    """Admin tokens are stateless; the client discards its token."""
    return ApiResponse(message="Logged out successfully")


@router.get("/verify-token", response_model=ApiResponse[AdminUser])
async def verify_token(admin: AdminIdentity = Depends(get_current_admin)) -> ApiResponse[AdminUser]:
    return ApiResponse(data=AdminUser(email=admin.email, role=admin.role))
