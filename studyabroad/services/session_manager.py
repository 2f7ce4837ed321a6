"""
Session Manager - single active device session per user.

Login creates a device session only when the user has none active. The
partial unique index on device_sessions(user_id) WHERE is_active is the
authority: two simultaneous logins both pass the pre-check, one insert
wins, the other gets IntegrityError and is reported as a conflict.
"""

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from uuid import UUID, uuid4

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from studyabroad.config import Settings
from studyabroad.db.models import DeviceSession, User
from studyabroad.db.repositories import device_sessions, users
from studyabroad.exceptions import (
    AccountInactiveError,
    ActiveSessionExistsError,
    DatabaseError,
    DeviceMismatchError,
    EmailNotVerifiedError,
    InvalidCredentialsError,
    InvalidTokenError,
    SessionNotFoundError,
    SessionTerminatedError,
)
from studyabroad.models.domain import AuthenticatedSession, DeviceInfo, TokenPair
from studyabroad.observability.metrics import metrics
from studyabroad.services.passwords import hash_password, needs_rehash, verify_password
from studyabroad.services.tokens import TokenService, hash_token

logger = get_logger(__name__)


@dataclass(frozen=True)
class LoginResult:
    user: User
    device_session: DeviceSession
    tokens: TokenPair


class SessionManager:
    """Login, per-request validation, refresh and logout for user device sessions."""

    def __init__(self, session: AsyncSession, tokens: TokenService, settings: Settings) -> None:
        self.session = session
        self.tokens = tokens
        self.settings = settings

    async def login(self, email: str, password: str, device: DeviceInfo) -> LoginResult:
        """
        Authenticate and open a device session.

        Raises:
            InvalidCredentialsError: unknown email or wrong password
            AccountInactiveError: account deactivated
            EmailNotVerifiedError: verification required and not done
            ActiveSessionExistsError: another device session is active
        """
        user = await users.find_by_email(self.session, email)
        if not verify_password(user.password_hash if user else None, password) or user is None:
            metrics.record_login("invalid_credentials")
            logger.info("login_rejected", reason="invalid_credentials")
            raise InvalidCredentialsError()

        if not user.is_active:
            metrics.record_login("inactive")
            logger.info("login_rejected", reason="inactive", user_id=str(user.id))
            raise AccountInactiveError(user.id)

        if self.settings.require_email_verification and not user.email_verified:
            metrics.record_login("unverified")
            logger.info("login_rejected", reason="email_not_verified", user_id=str(user.id))
            raise EmailNotVerifiedError(user.email)

        user_id = user.id
        existing = await device_sessions.find_active_by_user(self.session, user_id)
        if existing is not None:
            raise self._conflict(user_id, existing)

        now = datetime.now(UTC)
        token_pair = self.tokens.issue_user_tokens(user.id, user.email, user.role)
        device_session = DeviceSession(
            id=uuid4(),
            user_id=user.id,
            device_id=device.device_id,
            device_name=device.device_name,
            device_type=device.device_type.value,
            ip_address=device.ip_address,
            user_agent=device.user_agent,
            access_token_hash=hash_token(token_pair.access_token),
            refresh_token_hash=hash_token(token_pair.refresh_token),
            is_active=True,
            login_at=now,
            last_activity_at=now,
        )

        try:
            await device_sessions.create(self.session, device_session)
        except IntegrityError:
            # Lost the race to a concurrent login for the same user
            await self.session.rollback()
            winner = await device_sessions.find_active_by_user(self.session, user_id)
            if winner is not None:
                raise self._conflict(user_id, winner)
            raise DatabaseError("device_session_create", "unexpected constraint violation")

        await users.record_login(
            self.session, user.id, hash_token(token_pair.refresh_token), now
        )
        if needs_rehash(user.password_hash):
            user.password_hash = hash_password(password)
        await self.session.commit()

        metrics.record_login("success")
        logger.info(
            "login_succeeded",
            user_id=str(user.id),
            session_id=str(device_session.id),
            device_name=device.device_name,
            ip_address=device.ip_address,
        )
        return LoginResult(user=user, device_session=device_session, tokens=token_pair)

    def _conflict(self, user_id: UUID, existing: DeviceSession) -> ActiveSessionExistsError:
        metrics.record_login("active_session_exists")
        logger.info(
            "login_rejected",
            reason="active_session_exists",
            user_id=str(user_id),
            existing_session_id=str(existing.id),
        )
        return ActiveSessionExistsError(
            device_name=existing.device_name,
            ip_address=existing.ip_address,
            login_at=existing.login_at,
        )

    async def validate_request(self, access_token: str, device: DeviceInfo) -> AuthenticatedSession:
        """
        Resolve a bearer token to its live device session.

        A fingerprint mismatch closes the session before raising.
        """
        claims = self.tokens.verify_access_token(access_token)

        device_session = await device_sessions.find_by_access_token(
            self.session, hash_token(access_token)
        )
        if device_session is None or device_session.user_id != claims.user_id:
            raise SessionNotFoundError()

        if not device_session.is_active:
            raise SessionTerminatedError(device_session.id)

        if device_session.device_id != device.device_id:
            await device_sessions.invalidate_session(
                self.session, device_session.id, datetime.now(UTC)
            )
            await self.session.commit()
            metrics.record_session_terminated("device_mismatch")
            logger.warning(
                "session_terminated_device_mismatch",
                user_id=str(claims.user_id),
                session_id=str(device_session.id),
                expected_ip=device_session.ip_address,
                request_ip=device.ip_address,
                request_device=device.device_name,
            )
            raise DeviceMismatchError(device_session.id)

        try:
            await device_sessions.touch_activity(self.session, device_session.id, datetime.now(UTC))
            await self.session.commit()
        except (DatabaseError, SQLAlchemyError) as exc:
            logger.warning(
                "session_activity_update_failed",
                session_id=str(device_session.id),
                error=str(exc),
            )
            await self.session.rollback()

        return AuthenticatedSession(
            user_id=claims.user_id,
            email=claims.email,
            role=claims.role,
            session_id=device_session.id,
        )

    async def refresh(self, refresh_token: str, device: DeviceInfo) -> str:
        """Issue a new access token for the session holding `refresh_token`."""
        user_id = self.tokens.verify_refresh_token(refresh_token)
        refresh_hash = hash_token(refresh_token)

        user = await users.find_by_id(self.session, user_id)
        if user is None or not user.is_active or user.refresh_token_hash != refresh_hash:
            logger.info("refresh_rejected", user_id=str(user_id), reason="refresh_token_mismatch")
            raise InvalidTokenError("Invalid refresh token")

        device_session = await device_sessions.find_active_by_refresh_token(
            self.session, user_id, refresh_hash
        )
        if device_session is None:
            raise SessionNotFoundError()

        now = datetime.now(UTC)
        if device_session.device_id != device.device_id:
            await device_sessions.invalidate_session(self.session, device_session.id, now)
            await users.clear_refresh_token(self.session, user_id)
            await self.session.commit()
            metrics.record_session_terminated("device_mismatch")
            logger.warning(
                "session_terminated_device_mismatch",
                user_id=str(user_id),
                session_id=str(device_session.id),
                request_ip=device.ip_address,
            )
            raise DeviceMismatchError(device_session.id)

        access_token = self.tokens.issue_access_token(user.id, user.email, user.role)
        updated = await device_sessions.rotate_access_token(
            self.session, device_session.id, hash_token(access_token), now
        )
        if updated == 0:
            await self.session.rollback()
            raise SessionTerminatedError(device_session.id)
        await self.session.commit()

        logger.info("access_token_refreshed", user_id=str(user_id), session_id=str(device_session.id))
        return access_token

    async def terminate_all(self, user_id: UUID, reason: str) -> int:
        """
        Close every active session and forget the refresh token.

        Does not commit; the caller owns the transaction.
        """
        closed = await device_sessions.invalidate_user_sessions(
            self.session, user_id, datetime.now(UTC)
        )
        await users.clear_refresh_token(self.session, user_id)
        metrics.record_session_terminated(reason, closed)
        logger.info("sessions_terminated", user_id=str(user_id), reason=reason, count=closed)
        return closed

    async def logout(self, user_id: UUID) -> int:
        """
        Close all sessions of the user. Never raises.

        Returns the number of sessions closed (0 when invalidation failed).
        """
        try:
            closed = await self.terminate_all(user_id, "logout")
            await self.session.commit()
            return closed
        except (DatabaseError, SQLAlchemyError) as exc:
            logger.error("logout_invalidation_failed", user_id=str(user_id), error=str(exc))
            try:
                await self.session.rollback()
            except SQLAlchemyError as rollback_exc:
                logger.error("logout_rollback_failed", error=str(rollback_exc))
            return 0

    async def list_sessions(self, user_id: UUID) -> list[DeviceSession]:
        return await device_sessions.list_by_user(self.session, user_id)

    async def cleanup_inactive_sessions(self, retention_days: int) -> int:
        """Delete closed sessions whose logout is older than the retention window."""
        cutoff = datetime.now(UTC) - timedelta(days=retention_days)
        deleted = await device_sessions.delete_inactive_before(self.session, cutoff)
        await self.session.commit()
        logger.info("inactive_sessions_deleted", count=deleted, cutoff=cutoff.isoformat())
        return deleted
