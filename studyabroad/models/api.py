"""
API Models - Pydantic models for request/response validation.

Request bodies and response payloads use camelCase on the wire; Python code
uses snake_case attribute names.
"""

import re
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Generic, TypeVar
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
USERNAME_PATTERN = re.compile(r"^[A-Za-z0-9_.-]{3,50}$")
OTP_PATTERN = re.compile(r"^\d{6}$")


class ServiceType(str, Enum):
    """Purchasable service. Selects the purchase table a transaction pays for."""

    RESEARCH_PAPER = "research_paper"
    VISA_APPLICATION = "visa_application"
    COUNSELLING = "counselling"

    @classmethod
    def from_slug(cls, value: str) -> "ServiceType":
        """Accepts URL slugs (`research-paper`) as well as enum values (`research_paper`)."""
        return cls(value.strip().lower().replace("-", "_"))


class PaymentStatus(str, Enum):
    """Payment status shared by transactions and purchases."""

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self is not PaymentStatus.PENDING


class PurchaseStatus(str, Enum):
    """Purchase workflow status."""

    INITIATED = "initiated"
    IN_PROGRESS = "in_progress"
    SCHEDULED = "scheduled"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class CaseStatus(str, Enum):
    OPEN = "open"
    CLOSED = "closed"


class UserRole(str, Enum):
    STUDENT = "student"
    COUNSELLOR = "counsellor"


class DeviceType(str, Enum):
    DESKTOP = "desktop"
    MOBILE = "mobile"
    TABLET = "tablet"
    UNKNOWN = "unknown"


# ISO 4217 currencies whose minor unit is not 1/100
ZERO_DECIMAL_CURRENCIES = frozenset(
    {
        "BIF", "CLP", "DJF", "GNF", "JPY", "KMF", "KRW", "MGA",
        "PYG", "RWF", "UGX", "VND", "VUV", "XAF", "XOF", "XPF",
    }
)
THREE_DECIMAL_CURRENCIES = frozenset({"BHD", "JOD", "KWD", "OMR", "TND"})


def currency_exponent(currency: str) -> int:
    code = currency.upper()
    if code in ZERO_DECIMAL_CURRENCIES:
        return 0
    if code in THREE_DECIMAL_CURRENCIES:
        return 3
    return 2


def is_minor_unit_exact(amount: Decimal, currency: str) -> bool:
    """True when `amount` has no digits below the currency's minor unit (12000.50 JPY is not)."""
    return amount == amount.quantize(Decimal(1).scaleb(-currency_exponent(currency)))


def normalize_email(value: str) -> str:
    """Trim and lower-case an email address, rejecting malformed ones."""
    value = value.strip().lower()
    if not EMAIL_PATTERN.match(value):
        raise ValueError("Invalid email address")
    return value


def validate_password_strength(value: str) -> str:
    if len(value) < 8 or len(value) > 128:
        raise ValueError("Password must be between 8 and 128 characters")
    if not re.search(r"[A-Za-z]", value) or not re.search(r"\d", value):
        raise ValueError("Password must contain at least one letter and one digit")
    return value


class APIModel(BaseModel):
    """Base model: camelCase aliases, populated from ORM attributes."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


DataT = TypeVar("DataT")


class ApiResponse(APIModel, Generic[DataT]):
    """Standard success envelope."""

    success: bool = True
    message: str = ""
    data: DataT | None = None


class ErrorResponse(APIModel):
    success: bool = False
    message: str
    code: str
    data: dict | None = None


# ============================================================================
# Auth Models
# ============================================================================


class SignupRequest(APIModel):
    """POST /api/auth/signup request body."""

    username: str = Field(..., min_length=3, max_length=50)
    email: str = Field(..., max_length=255)
    password: str
    role: UserRole = UserRole.STUDENT

    @field_validator("username")
    @classmethod
    def validate_username(cls, v: str) -> str:
        if not USERNAME_PATTERN.match(v):
            raise ValueError("Username may only contain letters, digits, '_', '.' and '-'")
        return v

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        return normalize_email(v)

    @field_validator("password")
    @classmethod
    def validate_password(cls, v: str) -> str:
        return validate_password_strength(v)


class LoginRequest(APIModel):
    """POST /api/auth/login request body."""

    email: str = Field(..., max_length=255)
    password: str = Field(..., min_length=1, max_length=128)

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        return normalize_email(v)


class RefreshTokenRequest(APIModel):
    refresh_token: str = Field(..., min_length=1)


class EmailRequest(APIModel):
    """Body carrying a single email address (resend verification, forgot password)."""

    email: str = Field(..., max_length=255)

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        return normalize_email(v)


class ResetPasswordRequest(APIModel):
    token: str = Field(..., min_length=1)
    new_password: str

    @field_validator("new_password")
    @classmethod
    def validate_password(cls, v: str) -> str:
        return validate_password_strength(v)


class UserResponse(APIModel):
    id: UUID
    username: str
    email: str
    role: str
    email_verified: bool
    last_login_at: datetime | None = None


class DeviceSessionResponse(APIModel):
    id: UUID
    device_name: str | None
    device_type: str | None
    ip_address: str | None
    is_active: bool
    login_at: datetime
    last_activity_at: datetime
    logout_at: datetime | None = None


class LoginResponse(APIModel):
    access_token: str
    refresh_token: str
    user: UserResponse
    session: DeviceSessionResponse


class AccessTokenResponse(APIModel):
    access_token: str


# ============================================================================
# Admin Auth Models
# ============================================================================


class AdminOtpRequest(APIModel):
    email: str = Field(..., max_length=255)

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        return normalize_email(v)


class AdminOtpVerifyRequest(APIModel):
    """POST /api/admin-auth/verify-otp request body."""

    email: str = Field(..., max_length=255)
    otp: str

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        return normalize_email(v)

    @field_validator("otp")
    @classmethod
    def validate_otp(cls, v: str) -> str:
        v = v.strip()
        if not OTP_PATTERN.match(v):
            raise ValueError("OTP must be a 6-digit number")
        return v


class AdminOtpSentResponse(APIModel):
    email: str
    expires_in_minutes: int


class AdminUser(APIModel):
    email: str
    role: str = "admin"


class AdminLoginResponse(APIModel):
    access_token: str
    user: AdminUser


# ============================================================================
# Purchase Models
# ============================================================================


class PurchaseBase(APIModel):
    """Fields shared by every service purchase request."""

    name: str = Field(..., min_length=1, max_length=255)
    email: str = Field(..., max_length=255)
    phone: str | None = Field(None, max_length=30)
    currency: str = Field("INR", min_length=3, max_length=3)
    actual_amount: Decimal = Field(..., ge=0, max_digits=12, decimal_places=2)
    discount_amount: Decimal = Field(Decimal("0"), ge=0, max_digits=12, decimal_places=2)
    final_amount: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)
    notes: str | None = Field(None, max_length=2000)

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        return normalize_email(v)

    @field_validator("currency")
    @classmethod
    def validate_currency(cls, v: str) -> str:
        if not v.isalpha():
            raise ValueError("Currency must be an ISO 4217 code")
        return v.upper()

    @model_validator(mode="after")
    def validate_amounts(self) -> "PurchaseBase":
        expected = self.actual_amount - self.discount_amount
        if abs(expected - self.final_amount) > Decimal("0.01"):
            raise ValueError("finalAmount must equal actualAmount minus discountAmount")
        for field, amount in (
            ("actualAmount", self.actual_amount),
            ("discountAmount", self.discount_amount),
            ("finalAmount", self.final_amount),
        ):
            if not is_minor_unit_exact(amount, self.currency):
                raise ValueError(
                    f"{field} has more decimal places than {self.currency} allows "
                    f"({currency_exponent(self.currency)})"
                )
        return self


class ResearchPaperPurchaseRequest(PurchaseBase):
    co_authors: int = Field(0, ge=0, le=20)
    research_group: str | None = Field(None, max_length=255)
    duration_weeks: int | None = Field(None, ge=1, le=104)


class VisaApplicationPurchaseRequest(PurchaseBase):
    country: str = Field(..., min_length=2, max_length=100)
    dependents: int = Field(0, ge=0, le=20)
    mocks: int = Field(0, ge=0, le=50)
    duration_months: int | None = Field(None, ge=1, le=60)


class CounsellingPurchaseRequest(PurchaseBase):
    service_name: str = Field(..., min_length=1, max_length=255)
    counsellor_name: str | None = Field(None, max_length=255)
    duration_minutes: int = Field(60, ge=15, le=480)
    preferred_date: datetime | None = None


class PurchaseResponse(APIModel):
    """Purchase record of any service type; service-specific fields are optional."""

    id: UUID
    service_type: ServiceType
    name: str
    email: str
    phone: str | None = None
    currency: str
    actual_amount: Decimal
    discount_amount: Decimal
    final_amount: Decimal
    amount_paid: Decimal | None = None
    payment_status: PaymentStatus
    payment_id: str | None = None
    payment_method: str | None = None
    status: PurchaseStatus
    case_status: CaseStatus
    notes: str | None = None
    created_at: datetime

    co_authors: int | None = None
    research_group: str | None = None
    duration_weeks: int | None = None
    country: str | None = None
    dependents: int | None = None
    mocks: int | None = None
    duration_months: int | None = None
    service_name: str | None = None
    counsellor_name: str | None = None
    duration_minutes: int | None = None
    preferred_date: datetime | None = None


# ============================================================================
# Payment Models
# ============================================================================


class CheckoutSessionRequest(APIModel):
    """POST /api/payment/stripe/create-checkout-session/{serviceType} body."""

    purchase_id: UUID


class CheckoutSessionResponse(APIModel):
    session_id: str
    session_url: str
    transaction_id: UUID


class TransactionResponse(APIModel):
    id: UUID
    service_type: ServiceType
    service_id: UUID
    amount: Decimal
    currency: str
    description: str | None = None
    payment_gateway: str
    stripe_session_id: str
    stripe_payment_intent_id: str | None = None
    payment_status: PaymentStatus
    payment_method: str | None = None
    paid_at: datetime | None = None
    cancelled_at: datetime | None = None
    created_at: datetime


class SessionStatusResponse(APIModel):
    """Snapshot shown on the post-redirect page."""

    payment_status: str
    transaction_status: PaymentStatus | None = None
    amount: Decimal | None = None
    currency: str | None = None
    customer_email: str | None = None
    transaction: TransactionResponse | None = None


class WebhookAck(BaseModel):
    received: bool = True


class HealthResponse(BaseModel):
    status: str
    database: str
    version: str
    timestamp: datetime
