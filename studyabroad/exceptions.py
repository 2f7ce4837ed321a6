"""
Exception Classes - Strongly typed exception hierarchy.

Every error carries the HTTP status, machine-readable code and message used by
the API error handler. Services raise these; routes let them propagate.
"""

from datetime import datetime
from typing import Any
from uuid import UUID


class PlatformError(Exception):
    """Base exception for all platform errors."""

    status_code: int = 500
    code: str = "INTERNAL_ERROR"

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)

    @property
    def data(self) -> dict[str, Any] | None:
        """Optional structured payload returned to the client."""
        return None


# ============================================================================
# Validation (400)
# ============================================================================


class ValidationError(PlatformError):
    """Raised when request input is invalid."""

    status_code = 400
    code = "VALIDATION_ERROR"


# ============================================================================
# Authentication / Authorization (401 / 403)
# ============================================================================


class InvalidCredentialsError(PlatformError):
    """Raised when email/password do not match an account."""

    status_code = 401
    code = "INVALID_CREDENTIALS"

    def __init__(self) -> None:
        super().__init__("Invalid email or password")


class InvalidTokenError(PlatformError):
    """Raised when a bearer, refresh or one-time token is missing, expired or forged."""

    status_code = 401
    code = "INVALID_TOKEN"

    def __init__(self, reason: str = "Invalid or expired token") -> None:
        self.reason = reason
        super().__init__(reason)


class SessionNotFoundError(PlatformError):
    """Raised when no device session matches the presented access token."""

    status_code = 401
    code = "SESSION_NOT_FOUND"

    def __init__(self) -> None:
        super().__init__("Session not found. Please login again.")


class SessionTerminatedError(PlatformError):
    """Raised when the device session was closed (logout, password reset, security)."""

    status_code = 401
    code = "SESSION_TERMINATED"

    def __init__(self, session_id: UUID) -> None:
        self.session_id = session_id
        super().__init__("Session has been terminated. Please login again.")


class AccountInactiveError(PlatformError):
    """Raised when the account is deactivated."""

    status_code = 403
    code = "ACCOUNT_INACTIVE"

    def __init__(self, user_id: UUID) -> None:
        self.user_id = user_id
        super().__init__("Account is deactivated. Please contact support.")


class EmailNotVerifiedError(PlatformError):
    """Raised when login is attempted before the email address is verified."""

    status_code = 403
    code = "EMAIL_NOT_VERIFIED"

    def __init__(self, email: str) -> None:
        self.email = email
        super().__init__("Please verify your email address before logging in")


class DeviceMismatchError(PlatformError):
    """Raised when a token is presented from a device other than the one it was issued to."""

    status_code = 403
    code = "DEVICE_MISMATCH"

    def __init__(self, session_id: UUID) -> None:
        self.session_id = session_id
        super().__init__("Session terminated: request came from a different device")


class AdminAccessDeniedError(PlatformError):
    """Raised when an email is not on the admin allow-list."""

    status_code = 403
    code = "ADMIN_ACCESS_DENIED"

    def __init__(self, email: str) -> None:
        self.email = email
        super().__init__("Access denied. This email is not authorized for admin access.")


class ForbiddenError(PlatformError):
    """Raised when the caller does not own the requested resource."""

    status_code = 403
    code = "FORBIDDEN"


# ============================================================================
# Not found / Conflict (404 / 409)
# ============================================================================


class ResourceNotFoundError(PlatformError):
    """Raised when a requested record does not exist."""

    status_code = 404
    code = "NOT_FOUND"

    def __init__(self, resource: str, resource_id: UUID | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        super().__init__(f"{resource} not found")


class ActiveSessionExistsError(PlatformError):
    """Raised when a user with an active device session logs in again."""

    status_code = 409
    code = "ACTIVE_SESSION_EXISTS"

    def __init__(
        self, device_name: str | None, ip_address: str | None, login_at: datetime
    ) -> None:
        self.device_name = device_name
        self.ip_address = ip_address
        self.login_at = login_at
        super().__init__(
            "You are already logged in on another device. Please logout from that device first."
        )

    @property
    def data(self) -> dict[str, Any]:
        return {
            "deviceName": self.device_name,
            "ipAddress": self.ip_address,
            "loginAt": self.login_at.isoformat(),
        }


class UserAlreadyExistsError(PlatformError):
    """Raised on signup with a taken email or username."""

    status_code = 409
    code = "USER_EXISTS"

    def __init__(self, field: str) -> None:
        self.field = field
        super().__init__(f"A user with this {field} already exists")


class PurchaseAlreadyPaidError(PlatformError):
    """Raised when checkout is requested for a purchase that is already paid."""

    status_code = 409
    code = "ALREADY_PAID"

    def __init__(self, purchase_id: UUID) -> None:
        self.purchase_id = purchase_id
        super().__init__("This purchase has already been paid")


class RateLimitExceededError(PlatformError):
    """Raised when a caller exceeds a rate limit."""

    status_code = 429
    code = "RATE_LIMITED"

    def __init__(self, retry_after_seconds: int) -> None:
        self.retry_after_seconds = retry_after_seconds
        minutes = max(1, -(-retry_after_seconds // 60))
        super().__init__(f"Too many requests. Please try again in {minutes} minute(s).")

    @property
    def data(self) -> dict[str, Any]:
        return {"retryAfterSeconds": self.retry_after_seconds}


# ============================================================================
# Payments / Integrity
# ============================================================================


class WebhookVerificationError(PlatformError):
    """Raised when webhook signature verification fails."""

    status_code = 400
    code = "WEBHOOK_SIGNATURE_INVALID"

    def __init__(self, message: str) -> None:
        super().__init__(f"Webhook verification error: {message}")


class UnknownCheckoutSessionError(PlatformError):
    """Raised when a payment event references a checkout session this system never recorded."""

    status_code = 400
    code = "UNKNOWN_CHECKOUT_SESSION"

    def __init__(self, checkout_session_id: str) -> None:
        self.checkout_session_id = checkout_session_id
        super().__init__(f"No transaction recorded for checkout session {checkout_session_id}")


class DataIntegrityError(PlatformError):
    """Raised when stored records contradict each other."""

    status_code = 500
    code = "DATA_INTEGRITY_ERROR"

    def __init__(self, message: str) -> None:
        super().__init__(f"Data integrity error: {message}")


class PaymentProviderError(PlatformError):
    """Raised when the payment gateway is unreachable, times out or rejects a call."""

    status_code = 502
    code = "PAYMENT_PROVIDER_ERROR"

    def __init__(self, message: str, retryable: bool = True) -> None:
        self.retryable = retryable
        super().__init__(f"Payment provider error: {message}")


class EmailDeliveryError(PlatformError):
    """Raised when an email could not be handed to the mail server."""

    status_code = 502
    code = "EMAIL_DELIVERY_FAILED"

    def __init__(self, recipient: str, message: str) -> None:
        self.recipient = recipient
        super().__init__(f"Failed to send email: {message}")


class DatabaseError(PlatformError):
    """Raised when database operation fails unexpectedly."""

    status_code = 500
    code = "DATABASE_ERROR"

    def __init__(self, operation: str, message: str) -> None:
        self.operation = operation
        super().__init__(f"Database error during {operation}: {message}")
