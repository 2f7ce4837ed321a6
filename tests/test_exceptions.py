"""
Tests for the platform exception hierarchy.
"""

from datetime import UTC, datetime
from uuid import uuid4

import pytest

from studyabroad.exceptions import (
    AccountInactiveError,
    ActiveSessionExistsError,
    AdminAccessDeniedError,
    DatabaseError,
    DataIntegrityError,
    DeviceMismatchError,
    EmailDeliveryError,
    EmailNotVerifiedError,
    ForbiddenError,
    InvalidCredentialsError,
    InvalidTokenError,
    PaymentProviderError,
    PlatformError,
    PurchaseAlreadyPaidError,
    RateLimitExceededError,
    ResourceNotFoundError,
    SessionNotFoundError,
    SessionTerminatedError,
    UnknownCheckoutSessionError,
    UserAlreadyExistsError,
    ValidationError,
    WebhookVerificationError,
)

# ============================================================================
# Status code and error code mapping
# ============================================================================


@pytest.mark.parametrize(
    ("error", "status_code", "code"),
    [
        (ValidationError("bad"), 400, "VALIDATION_ERROR"),
        (InvalidCredentialsError(), 401, "INVALID_CREDENTIALS"),
        (InvalidTokenError(), 401, "INVALID_TOKEN"),
        (SessionNotFoundError(), 401, "SESSION_NOT_FOUND"),
        (SessionTerminatedError(uuid4()), 401, "SESSION_TERMINATED"),
        (AccountInactiveError(uuid4()), 403, "ACCOUNT_INACTIVE"),
        (EmailNotVerifiedError("a@example.com"), 403, "EMAIL_NOT_VERIFIED"),
        (DeviceMismatchError(uuid4()), 403, "DEVICE_MISMATCH"),
        (AdminAccessDeniedError("a@example.com"), 403, "ADMIN_ACCESS_DENIED"),
        (ForbiddenError("no"), 403, "FORBIDDEN"),
        (ResourceNotFoundError("Purchase"), 404, "NOT_FOUND"),
        (UserAlreadyExistsError("email"), 409, "USER_EXISTS"),
        (PurchaseAlreadyPaidError(uuid4()), 409, "ALREADY_PAID"),
        (RateLimitExceededError(30), 429, "RATE_LIMITED"),
        (WebhookVerificationError("bad sig"), 400, "WEBHOOK_SIGNATURE_INVALID"),
        (UnknownCheckoutSessionError("cs_1"), 400, "UNKNOWN_CHECKOUT_SESSION"),
        (DataIntegrityError("broken"), 500, "DATA_INTEGRITY_ERROR"),
        (PaymentProviderError("down"), 502, "PAYMENT_PROVIDER_ERROR"),
        (EmailDeliveryError("a@example.com", "refused"), 502, "EMAIL_DELIVERY_FAILED"),
        (DatabaseError("op", "boom"), 500, "DATABASE_ERROR"),
    ],
)
def test_error_status_and_code(error: PlatformError, status_code: int, code: str):
    assert isinstance(error, PlatformError)
    assert error.status_code == status_code
    assert error.code == code
    assert str(error) == error.message


# ============================================================================
# Messages and payloads
# ============================================================================


class TestActiveSessionExistsError:
    def test_data_describes_existing_device(self):
        login_at = datetime(2026, 10, 1, 9, 30, tzinfo=UTC)
        error = ActiveSessionExistsError("Chrome on Windows", "203.0.113.10", login_at)

        assert error.data == {
            "deviceName": "Chrome on Windows",
            "ipAddress": "203.0.113.10",
            "loginAt": "2026-10-01T09:30:00+00:00",
        }
        assert "already logged in" in error.message

    def test_data_allows_missing_device_details(self):
        error = ActiveSessionExistsError(None, None, datetime.now(UTC))

        assert error.data["deviceName"] is None
        assert error.data["ipAddress"] is None


class TestRateLimitExceededError:
    def test_message_rounds_up_to_minutes(self):
        assert "2 minute(s)" in RateLimitExceededError(61).message

    def test_message_never_says_zero_minutes(self):
        assert "1 minute(s)" in RateLimitExceededError(1).message

    def test_data_carries_retry_after(self):
        assert RateLimitExceededError(900).data == {"retryAfterSeconds": 900}


def test_plain_errors_have_no_data():
    assert ValidationError("bad").data is None
    assert InvalidCredentialsError().data is None


def test_invalid_token_keeps_reason():
    error = InvalidTokenError("Token has expired")
    assert error.reason == "Token has expired"
    assert error.message == "Token has expired"


def test_payment_provider_error_retryable_flag():
    assert PaymentProviderError("timeout").retryable is True
    assert PaymentProviderError("bad request", retryable=False).retryable is False
    assert PaymentProviderError("timeout").message == "Payment provider error: timeout"


def test_database_error_names_operation():
    error = DatabaseError("transaction_create", "connection reset")
    assert error.operation == "transaction_create"
    assert "transaction_create" in error.message
