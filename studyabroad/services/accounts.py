"""
Account lifecycle - signup, email verification and password reset.
"""

from datetime import UTC, datetime, timedelta
from uuid import uuid4

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from studyabroad.config import Settings
from studyabroad.db.models import User
from studyabroad.db.repositories import users
from studyabroad.exceptions import InvalidTokenError, UserAlreadyExistsError
from studyabroad.models.api import UserRole
from studyabroad.services.notifications import NotificationDispatcher
from studyabroad.services.passwords import hash_password
from studyabroad.services.session_manager import SessionManager
from studyabroad.services.tokens import generate_one_time_token, hash_token

logger = get_logger(__name__)


class AccountService:
    """Account operations that sit outside login/logout."""

    def __init__(
        self,
        session: AsyncSession,
        settings: Settings,
        notifier: NotificationDispatcher,
        sessions: SessionManager,
    ) -> None:
        self.session = session
        self.settings = settings
        self.notifier = notifier
        self.sessions = sessions

    async def signup(self, username: str, email: str, password: str, role: UserRole) -> User:
        """
        Create an unverified account and email a verification link.

        Raises:
            UserAlreadyExistsError: email or username already taken
        """
        if await users.find_by_email(self.session, email) is not None:
            raise UserAlreadyExistsError("email")
        if await users.find_by_username(self.session, username) is not None:
            raise UserAlreadyExistsError("username")

        token = generate_one_time_token()
        user = User(
            id=uuid4(),
            username=username,
            email=email.lower(),
            password_hash=hash_password(password),
            role=role.value,
            is_active=True,
            email_verified=False,
            verification_token_hash=hash_token(token),
            verification_expires_at=datetime.now(UTC)
            + timedelta(hours=self.settings.verification_token_hours),
        )

        try:
            await users.create(self.session, user)
            await self.session.commit()
        except IntegrityError as exc:
            # Concurrent signup took the email or username between check and insert
            await self.session.rollback()
            field = "username" if "username" in str(exc.orig) else "email"
            raise UserAlreadyExistsError(field) from exc

        logger.info("user_signed_up", user_id=str(user.id), role=user.role)
        self.notifier.verification(user.email, user.username, token)
        return user

    async def verify_email(self, token: str) -> User:
        user = await users.find_by_verification_token(self.session, hash_token(token))
        now = datetime.now(UTC)
        if user is None or user.verification_expires_at is None or user.verification_expires_at < now:
            raise InvalidTokenError("Invalid or expired verification link")

        user.email_verified = True
        user.email_verified_at = now
        user.verification_token_hash = None
        user.verification_expires_at = None
        await self.session.commit()

        logger.info("email_verified", user_id=str(user.id))
        return user

    async def resend_verification(self, email: str) -> None:
        """
        Issue a fresh verification link.

        Silent for unknown or already verified addresses so the endpoint
        does not reveal which emails are registered.
        """
        user = await users.find_by_email(self.session, email)
        if user is None or user.email_verified:
            logger.info("verification_resend_skipped", reason="unknown_or_verified")
            return

        token = generate_one_time_token()
        user.verification_token_hash = hash_token(token)
        user.verification_expires_at = datetime.now(UTC) + timedelta(
            hours=self.settings.verification_token_hours
        )
        await self.session.commit()

        logger.info("verification_resent", user_id=str(user.id))
        self.notifier.verification(user.email, user.username, token)

    async def request_password_reset(self, email: str) -> None:
        """Email a reset link when the account exists; silent otherwise."""
        user = await users.find_by_email(self.session, email)
        if user is None or not user.is_active:
            logger.info("password_reset_skipped", reason="unknown_or_inactive")
            return

        token = generate_one_time_token()
        user.password_reset_token_hash = hash_token(token)
        user.password_reset_expires_at = datetime.now(UTC) + timedelta(
            minutes=self.settings.password_reset_token_minutes
        )
        await self.session.commit()

        logger.info("password_reset_requested", user_id=str(user.id))
        self.notifier.password_reset(user.email, user.username, token)

    async def reset_password(self, token: str, new_password: str) -> int:
        """
        Set a new password and close every device session of the user.

        Returns the number of sessions closed.
        """
        user = await users.find_by_password_reset_token(self.session, hash_token(token))
        now = datetime.now(UTC)
        if (
            user is None
            or user.password_reset_expires_at is None
            or user.password_reset_expires_at < now
        ):
            raise InvalidTokenError("Invalid or expired password reset link")

        user_id = user.id
        user.password_hash = hash_password(new_password)
        user.password_reset_token_hash = None
        user.password_reset_expires_at = None
        closed = await self.sessions.terminate_all(user_id, "password_reset")
        await self.session.commit()

        logger.info("password_reset_completed", user_id=str(user_id), sessions_closed=closed)
        return closed
