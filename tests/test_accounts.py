"""
Tests for AccountService - signup, email verification, password reset.
"""

from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from sqlalchemy.exc import IntegrityError

from studyabroad.config import Settings
from studyabroad.db.models import User
from studyabroad.exceptions import InvalidTokenError, UserAlreadyExistsError
from studyabroad.models.api import UserRole
from studyabroad.services.accounts import AccountService
from studyabroad.services.passwords import verify_password
from studyabroad.services.tokens import hash_token
from tests.conftest import create_user

USER_REPO = "studyabroad.db.repositories.users"


@pytest.fixture
def notifier() -> MagicMock:
    return MagicMock()


@pytest.fixture
def sessions() -> MagicMock:
    manager = MagicMock()
    manager.terminate_all = AsyncMock(return_value=1)
    return manager


@pytest.fixture
def accounts(db_session: AsyncMock, settings: Settings, notifier: MagicMock, sessions: MagicMock) -> AccountService:
    return AccountService(db_session, settings, notifier, sessions)


# ============================================================================
# Signup
# ============================================================================


class TestSignup:
    @pytest.mark.asyncio
    async def test_creates_unverified_user_and_emails_link(
        self, accounts: AccountService, db_session: AsyncMock, notifier: MagicMock
    ):
        with (
            patch(f"{USER_REPO}.find_by_email", AsyncMock(return_value=None)),
            patch(f"{USER_REPO}.find_by_username", AsyncMock(return_value=None)),
            patch(f"{USER_REPO}.create", AsyncMock(side_effect=lambda s, u: u)),
        ):
            user = await accounts.signup("asha", "Asha@Example.com", "Passw0rd!", UserRole.STUDENT)

        assert user.id is not None
        assert user.email == "asha@example.com"
        assert user.email_verified is False
        assert user.password_hash != "Passw0rd!"
        assert verify_password(user.password_hash, "Passw0rd!")
        db_session.commit.assert_awaited_once()

        to, username, token = notifier.verification.call_args.args
        assert (to, username) == ("asha@example.com", "asha")
        assert user.verification_token_hash == hash_token(token)
        assert user.verification_expires_at > datetime.now(UTC) + timedelta(hours=23)

    @pytest.mark.asyncio
    async def test_duplicate_email(self, accounts: AccountService, notifier: MagicMock):
        with patch(f"{USER_REPO}.find_by_email", AsyncMock(return_value=create_user())):
            with pytest.raises(UserAlreadyExistsError) as exc_info:
                await accounts.signup("asha", "student@example.com", "Passw0rd!", UserRole.STUDENT)

        assert exc_info.value.field == "email"
        notifier.verification.assert_not_called()

    @pytest.mark.asyncio
    async def test_duplicate_username(self, accounts: AccountService):
        with (
            patch(f"{USER_REPO}.find_by_email", AsyncMock(return_value=None)),
            patch(f"{USER_REPO}.find_by_username", AsyncMock(return_value=create_user())),
        ):
            with pytest.raises(UserAlreadyExistsError) as exc_info:
                await accounts.signup("student1", "new@example.com", "Passw0rd!", UserRole.STUDENT)

        assert exc_info.value.field == "username"

    @pytest.mark.asyncio
    async def test_concurrent_signup_race(
        self, accounts: AccountService, db_session: AsyncMock, notifier: MagicMock
    ):
        error = IntegrityError("INSERT", {}, Exception('violates unique constraint "uq_users_username"'))
        with (
            patch(f"{USER_REPO}.find_by_email", AsyncMock(return_value=None)),
            patch(f"{USER_REPO}.find_by_username", AsyncMock(return_value=None)),
            patch(f"{USER_REPO}.create", AsyncMock(side_effect=error)),
        ):
            with pytest.raises(UserAlreadyExistsError) as exc_info:
                await accounts.signup("asha", "asha@example.com", "Passw0rd!", UserRole.STUDENT)

        assert exc_info.value.field == "username"
        db_session.rollback.assert_awaited_once()
        notifier.verification.assert_not_called()


# ============================================================================
# Email verification
# ============================================================================


class TestVerifyEmail:
    @pytest.mark.asyncio
    async def test_marks_verified_and_clears_token(self, accounts: AccountService, db_session: AsyncMock):
        user = create_user(email_verified=False)
        user.verification_token_hash = hash_token("tok")
        user.verification_expires_at = datetime.now(UTC) + timedelta(hours=1)

        with patch(f"{USER_REPO}.find_by_verification_token", AsyncMock(return_value=user)) as find:
            result = await accounts.verify_email("tok")

        assert find.await_args.args[1] == hash_token("tok")
        assert result.email_verified is True
        assert result.email_verified_at is not None
        assert result.verification_token_hash is None
        db_session.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_expired_link(self, accounts: AccountService):
        user = create_user(email_verified=False)
        user.verification_expires_at = datetime.now(UTC) - timedelta(minutes=1)

        with patch(f"{USER_REPO}.find_by_verification_token", AsyncMock(return_value=user)):
            with pytest.raises(InvalidTokenError):
                await accounts.verify_email("tok")

    @pytest.mark.asyncio
    async def test_unknown_link(self, accounts: AccountService):
        with patch(f"{USER_REPO}.find_by_verification_token", AsyncMock(return_value=None)):
            with pytest.raises(InvalidTokenError):
                await accounts.verify_email("tok")


class TestResendVerification:
    @pytest.mark.asyncio
    async def test_unknown_email_is_silent(self, accounts: AccountService, notifier: MagicMock):
        with patch(f"{USER_REPO}.find_by_email", AsyncMock(return_value=None)):
            await accounts.resend_verification("ghost@example.com")
        notifier.verification.assert_not_called()

    @pytest.mark.asyncio
    async def test_verified_user_is_silent(self, accounts: AccountService, notifier: MagicMock):
        with patch(f"{USER_REPO}.find_by_email", AsyncMock(return_value=create_user())):
            await accounts.resend_verification("student@example.com")
        notifier.verification.assert_not_called()

    @pytest.mark.asyncio
    async def test_rotates_token(self, accounts: AccountService, notifier: MagicMock):
        user = create_user(email_verified=False)
        user.verification_token_hash = hash_token("old")

        with patch(f"{USER_REPO}.find_by_email", AsyncMock(return_value=user)):
            await accounts.resend_verification(user.email)

        token = notifier.verification.call_args.args[2]
        assert user.verification_token_hash == hash_token(token)
        assert user.verification_token_hash != hash_token("old")


# ============================================================================
# Password reset
# ============================================================================


class TestPasswordReset:
    @pytest.mark.asyncio
    async def test_request_emails_link(self, accounts: AccountService, notifier: MagicMock):
        user = create_user()
        with patch(f"{USER_REPO}.find_by_email", AsyncMock(return_value=user)):
            await accounts.request_password_reset(user.email)

        token = notifier.password_reset.call_args.args[2]
        assert user.password_reset_token_hash == hash_token(token)

    @pytest.mark.asyncio
    async def test_request_for_inactive_user_is_silent(self, accounts: AccountService, notifier: MagicMock):
        with patch(f"{USER_REPO}.find_by_email", AsyncMock(return_value=create_user(is_active=False))):
            await accounts.request_password_reset("student@example.com")
        notifier.password_reset.assert_not_called()

    @pytest.mark.asyncio
    async def test_reset_sets_password_and_closes_sessions(
        self, accounts: AccountService, db_session: AsyncMock, sessions: MagicMock
    ):
        user: User = create_user()
        user.password_reset_token_hash = hash_token("reset")
        user.password_reset_expires_at = datetime.now(UTC) + timedelta(minutes=30)

        with patch(f"{USER_REPO}.find_by_password_reset_token", AsyncMock(return_value=user)):
            closed = await accounts.reset_password("reset", "N3w-password")

        assert closed == 1
        assert verify_password(user.password_hash, "N3w-password")
        assert user.password_reset_token_hash is None
        sessions.terminate_all.assert_awaited_once_with(user.id, "password_reset")
        db_session.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_expired_reset_link(self, accounts: AccountService, sessions: MagicMock):
        user = create_user()
        user.password_reset_expires_at = datetime.now(UTC) - timedelta(seconds=1)

        with patch(f"{USER_REPO}.find_by_password_reset_token", AsyncMock(return_value=user)):
            with pytest.raises(InvalidTokenError):
                await accounts.reset_password("reset", "N3w-password")

        sessions.terminate_all.assert_not_awaited()
