"""
Admin authentication by emailed one-time code.

Admins are identified by an allow-list of email addresses in settings; there
is no admin table. A successful verification returns a long-lived stateless
admin JWT.
"""

import hmac
import secrets
from datetime import UTC, datetime, timedelta

from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from studyabroad.config import Settings
from studyabroad.db.models import AdminOtp
from studyabroad.db.repositories import admin_otps
from studyabroad.exceptions import (
    AdminAccessDeniedError,
    EmailDeliveryError,
    InvalidTokenError,
    RateLimitExceededError,
    ValidationError,
)
from studyabroad.models.api import OTP_PATTERN, normalize_email
from studyabroad.observability.metrics import metrics
from studyabroad.services.email import EmailSender
from studyabroad.services.notifications import admin_otp_email
from studyabroad.services.rate_limiter import RateLimiter
from studyabroad.services.tokens import TokenService, hash_token

logger = get_logger(__name__)


def generate_otp() -> str:
    """Six decimal digits from the system CSPRNG."""
    return f"{secrets.randbelow(1_000_000):06d}"


class AdminOtpService:
    """Request and verify admin login codes."""

    def __init__(
        self,
        session: AsyncSession,
        settings: Settings,
        tokens: TokenService,
        sender: EmailSender,
        rate_limiter: RateLimiter,
    ) -> None:
        self.session = session
        self.settings = settings
        self.tokens = tokens
        self.sender = sender
        self.rate_limiter = rate_limiter

    def _require_admin(self, email: str) -> str:
        try:
            email = normalize_email(email)
        except ValueError as exc:
            raise ValidationError("Invalid email address") from exc
        if email not in self.settings.admin_email_list:
            logger.warning("admin_access_denied", email=email)
            raise AdminAccessDeniedError(email)
        return email

    async def request_otp(
        self, email: str, ip_address: str | None = None, user_agent: str | None = None
    ) -> str:
        """
        Issue a code to an allow-listed admin and email it.

        The send is awaited: the admin cannot log in without the email.

        Returns:
            The normalised email the code was sent to

        Raises:
            AdminAccessDeniedError: email not on the allow-list
            RateLimitExceededError: too many codes requested in the window
            EmailDeliveryError: the code could not be delivered
        """
        try:
            email = self._require_admin(email)
        except AdminAccessDeniedError:
            metrics.record_otp("request", "denied")
            raise

        decision = await self.rate_limiter.acquire(email)
        if not decision.allowed:
            metrics.record_otp("request", "rate_limited")
            logger.warning(
                "admin_otp_rate_limited",
                email=email,
                retry_after_seconds=decision.retry_after_seconds,
            )
            raise RateLimitExceededError(decision.retry_after_seconds)

        await admin_otps.invalidate_unused(self.session, email)
        otp = generate_otp()
        await admin_otps.create(
            self.session,
            AdminOtp(
                email=email,
                code_hash=hash_token(otp),
                expires_at=datetime.now(UTC) + timedelta(minutes=self.settings.otp_expiry_minutes),
                attempts=0,
                is_used=False,
                ip_address=ip_address,
                user_agent=user_agent,
            ),
        )
        await self.session.commit()

        try:
            await self.sender.send(admin_otp_email(email, otp, self.settings.otp_expiry_minutes))
        except EmailDeliveryError:
            metrics.record_email("admin_otp", False)
            metrics.record_otp("request", "email_failed")
            raise
        metrics.record_email("admin_otp", True)
        metrics.record_otp("request", "sent")

        logger.info("admin_otp_sent", email=email, ip_address=ip_address)
        return email

    async def verify_otp(self, email: str, otp: str) -> str:
        """
        Check a submitted code and return an admin token.

        Raises:
            AdminAccessDeniedError: email not on the allow-list
            ValidationError: code is not six digits
            InvalidTokenError: no live code, code expired, or code wrong
        """
        email = self._require_admin(email)
        otp = otp.strip()
        if not OTP_PATTERN.match(otp):
            raise ValidationError("OTP must be a 6-digit number")

        record = await admin_otps.find_latest_unused(self.session, email)
        if record is None:
            metrics.record_otp("verify", "missing")
            raise InvalidTokenError("No active OTP found. Please request a new one.")

        otp_id = record.id
        if record.expires_at < datetime.now(UTC):
            await admin_otps.mark_used(self.session, otp_id)
            await self.session.commit()
            metrics.record_otp("verify", "expired")
            raise InvalidTokenError("OTP has expired. Please request a new one.")

        if not hmac.compare_digest(record.code_hash, hash_token(otp)):
            attempts = record.attempts + 1
            await admin_otps.record_failed_attempt(
                self.session, otp_id, self.settings.otp_max_attempts
            )
            await self.session.commit()
            metrics.record_otp("verify", "wrong_code")
            remaining = self.settings.otp_max_attempts - attempts
            logger.warning("admin_otp_wrong_code", email=email, attempts=attempts)
            if remaining <= 0:
                raise InvalidTokenError("Too many failed attempts. Please request a new OTP.")
            raise InvalidTokenError(f"Invalid OTP. {remaining} attempt(s) remaining.")

        await admin_otps.mark_used(self.session, otp_id)
        await self.session.commit()
        metrics.record_otp("verify", "success")

        logger.info("admin_login_success", email=email)
        return self.tokens.issue_admin_token(email)


async def cleanup_old_otps(session: AsyncSession, retention_days: int) -> int:
    """Delete OTP rows older than the retention window (maintenance)."""
    cutoff = datetime.now(UTC) - timedelta(days=retention_days)
    deleted = await admin_otps.delete_before(session, cutoff)
    await session.commit()
    logger.info("admin_otps_cleaned_up", deleted=deleted, retention_days=retention_days)
    return deleted
