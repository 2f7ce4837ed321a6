"""
Domain Models - Internal business logic models using dataclasses.

All values passed between services are immutable dataclasses.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from uuid import UUID

from studyabroad.models.api import (
    DeviceType,
    PurchaseStatus,
    ServiceType,
    currency_exponent,
)

# Workflow status a purchase moves to once paid
POST_PAYMENT_STATUS: dict[ServiceType, PurchaseStatus] = {
    ServiceType.RESEARCH_PAPER: PurchaseStatus.IN_PROGRESS,
    ServiceType.VISA_APPLICATION: PurchaseStatus.IN_PROGRESS,
    ServiceType.COUNSELLING: PurchaseStatus.SCHEDULED,
}

SERVICE_DISPLAY_NAMES: dict[ServiceType, str] = {
    ServiceType.RESEARCH_PAPER: "Research Paper Assistance",
    ServiceType.VISA_APPLICATION: "Visa Application Assistance",
    ServiceType.COUNSELLING: "Counselling Session",
}


def to_minor_units(amount: Decimal, currency: str) -> int:
    """Convert a major-unit amount to the integer the gateway expects (95000 INR -> 9500000)."""
    factor = Decimal(10) ** currency_exponent(currency)
    return int((amount * factor).quantize(Decimal(1), rounding=ROUND_HALF_UP))


def from_minor_units(amount_minor: int, currency: str) -> Decimal:
    factor = Decimal(10) ** currency_exponent(currency)
    return Decimal(amount_minor) / factor


@dataclass(frozen=True)
class DeviceInfo:
    """Device a request came from. `device_id` is the fingerprint compared on every request."""

    device_id: str
    device_name: str
    device_type: DeviceType
    ip_address: str
    user_agent: str


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str


@dataclass(frozen=True)
class AccessClaims:
    """Verified claims of a user access token."""

    user_id: UUID
    email: str
    role: str
    token_id: str
    expires_at: datetime


@dataclass(frozen=True)
class AuthenticatedSession:
    """Caller identity resolved from a valid bearer token and its live device session."""

    user_id: UUID
    email: str
    role: str
    session_id: UUID


@dataclass(frozen=True)
class AdminIdentity:
    email: str
    role: str = "admin"


@dataclass(frozen=True)
class PurchaseRef:
    """
    Tagged reference to exactly one purchase row.

    `service_type` selects the table; `purchase_id` is the row id in that table.
    """

    service_type: ServiceType
    purchase_id: UUID

    @property
    def post_payment_status(self) -> PurchaseStatus:
        return POST_PAYMENT_STATUS[self.service_type]


@dataclass(frozen=True)
class CheckoutResult:
    checkout_session_id: str
    checkout_url: str
    transaction_id: UUID


@dataclass(frozen=True)
class PaymentConfirmation:
    """Everything the confirmation and operator emails need, captured at commit time."""

    transaction_id: UUID
    purchase: PurchaseRef
    customer_name: str
    customer_email: str
    amount: Decimal
    currency: str
    payment_intent_id: str | None
    paid_at: datetime

    @property
    def service_name(self) -> str:
        return SERVICE_DISPLAY_NAMES[self.purchase.service_type]


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    remaining: int
    retry_after_seconds: int = 0
