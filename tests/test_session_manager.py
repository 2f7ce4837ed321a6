"""
Tests for SessionManager - login, per-request validation, refresh, logout.

The single-active-session rule is exercised both through the pre-check and
through the unique-index race (IntegrityError on insert).
"""

from datetime import UTC, datetime
from unittest.mock import AsyncMock, patch
from uuid import uuid4

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from studyabroad.config import Settings
from studyabroad.db.models import DeviceSession, User
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
from studyabroad.services.session_manager import SessionManager
from studyabroad.services.tokens import TokenService, hash_token
from tests.conftest import (
    OTHER_USER_AGENT,
    TEST_PASSWORD,
    create_device_info,
    create_device_session,
    create_user,
)

DEVICE_REPO = "studyabroad.db.repositories.device_sessions"
USER_REPO = "studyabroad.db.repositories.users"


@pytest.fixture
def manager(db_session: AsyncMock, token_service: TokenService, settings: Settings) -> SessionManager:
    return SessionManager(db_session, token_service, settings)


def integrity_error() -> IntegrityError:
    return IntegrityError(
        "INSERT INTO device_sessions ...",
        {},
        Exception('duplicate key value violates unique constraint "uq_device_sessions_one_active_per_user"'),
    )


# ============================================================================
# Login
# ============================================================================


class TestLogin:
    @pytest.mark.asyncio
    async def test_first_login_opens_session(self, manager: SessionManager, db_session: AsyncMock, student: User):
        device = create_device_info()

        with (
            patch(f"{USER_REPO}.find_by_email", AsyncMock(return_value=student)),
            patch(f"{USER_REPO}.record_login", AsyncMock()) as record_login,
            patch(f"{DEVICE_REPO}.find_active_by_user", AsyncMock(return_value=None)),
            patch(f"{DEVICE_REPO}.create", AsyncMock(side_effect=lambda s, ds: ds)) as create,
        ):
            result = await manager.login(student.email, TEST_PASSWORD, device)

        stored: DeviceSession = create.await_args.args[1]
        assert stored.user_id == student.id
        assert stored.device_id == device.device_id
        assert stored.is_active is True
        assert stored.access_token_hash == hash_token(result.tokens.access_token)
        assert stored.refresh_token_hash == hash_token(result.tokens.refresh_token)
        assert result.device_session is stored
        assert result.device_session.id is not None
        assert record_login.await_args.args[2] == hash_token(result.tokens.refresh_token)
        db_session.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_unknown_email(self, manager: SessionManager):
        with patch(f"{USER_REPO}.find_by_email", AsyncMock(return_value=None)):
            with pytest.raises(InvalidCredentialsError):
                await manager.login("nobody@example.com", TEST_PASSWORD, create_device_info())

    @pytest.mark.asyncio
    async def test_wrong_password(self, manager: SessionManager, student: User):
        with patch(f"{USER_REPO}.find_by_email", AsyncMock(return_value=student)):
            with pytest.raises(InvalidCredentialsError):
                await manager.login(student.email, "Wrong-pass1", create_device_info())

    @pytest.mark.asyncio
    async def test_inactive_account(self, manager: SessionManager):
        user = create_user(is_active=False)
        with patch(f"{USER_REPO}.find_by_email", AsyncMock(return_value=user)):
            with pytest.raises(AccountInactiveError):
                await manager.login(user.email, TEST_PASSWORD, create_device_info())

    @pytest.mark.asyncio
    async def test_unverified_email(self, manager: SessionManager):
        user = create_user(email_verified=False)
        with patch(f"{USER_REPO}.find_by_email", AsyncMock(return_value=user)):
            with pytest.raises(EmailNotVerifiedError):
                await manager.login(user.email, TEST_PASSWORD, create_device_info())

    @pytest.mark.asyncio
    async def test_second_device_rejected_while_first_active(
        self, manager: SessionManager, db_session: AsyncMock, student: User
    ):
        """Logged in on a laptop; the phone login is refused and describes the laptop."""
        laptop = create_device_info(ip_address="203.0.113.10")
        phone = create_device_info(user_agent=OTHER_USER_AGENT, ip_address="198.51.100.20")
        existing = create_device_session(student.id, laptop)

        with (
            patch(f"{USER_REPO}.find_by_email", AsyncMock(return_value=student)),
            patch(f"{DEVICE_REPO}.find_active_by_user", AsyncMock(return_value=existing)),
            patch(f"{DEVICE_REPO}.create", AsyncMock()) as create,
        ):
            with pytest.raises(ActiveSessionExistsError) as exc_info:
                await manager.login(student.email, TEST_PASSWORD, phone)

        assert exc_info.value.status_code == 409
        assert exc_info.value.data["deviceName"] == "Chrome on Windows"
        assert exc_info.value.data["ipAddress"] == "203.0.113.10"
        assert exc_info.value.data["loginAt"] == existing.login_at.isoformat()
        create.assert_not_awaited()
        db_session.commit.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_same_device_rejected_while_active(self, manager: SessionManager, student: User):
        device = create_device_info()
        existing = create_device_session(student.id, device)

        with (
            patch(f"{USER_REPO}.find_by_email", AsyncMock(return_value=student)),
            patch(f"{DEVICE_REPO}.find_active_by_user", AsyncMock(return_value=existing)),
        ):
            with pytest.raises(ActiveSessionExistsError):
                await manager.login(student.email, TEST_PASSWORD, device)

    @pytest.mark.asyncio
    async def test_concurrent_login_loses_race(
        self, manager: SessionManager, db_session: AsyncMock, student: User
    ):
        """Both logins pass the pre-check; the unique index rejects the second insert."""
        winner = create_device_session(student.id, create_device_info(ip_address="203.0.113.99"))

        with (
            patch(f"{USER_REPO}.find_by_email", AsyncMock(return_value=student)),
            patch(f"{USER_REPO}.record_login", AsyncMock()) as record_login,
            patch(
                f"{DEVICE_REPO}.find_active_by_user",
                AsyncMock(side_effect=[None, winner]),
            ),
            patch(f"{DEVICE_REPO}.create", AsyncMock(side_effect=integrity_error())),
        ):
            with pytest.raises(ActiveSessionExistsError) as exc_info:
                await manager.login(student.email, TEST_PASSWORD, create_device_info())

        assert exc_info.value.ip_address == "203.0.113.99"
        db_session.rollback.assert_awaited_once()
        db_session.commit.assert_not_awaited()
        record_login.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_constraint_violation_without_winner(
        self, manager: SessionManager, db_session: AsyncMock, student: User
    ):
        with (
            patch(f"{USER_REPO}.find_by_email", AsyncMock(return_value=student)),
            patch(f"{DEVICE_REPO}.find_active_by_user", AsyncMock(return_value=None)),
            patch(f"{DEVICE_REPO}.create", AsyncMock(side_effect=integrity_error())),
        ):
            with pytest.raises(DatabaseError):
                await manager.login(student.email, TEST_PASSWORD, create_device_info())


# ============================================================================
# Per-request validation
# ============================================================================


class TestValidateRequest:
    @pytest.mark.asyncio
    async def test_valid_token_same_device(
        self, manager: SessionManager, db_session: AsyncMock, token_service: TokenService, student: User
    ):
        device = create_device_info()
        token = token_service.issue_access_token(student.id, student.email, student.role)
        record = create_device_session(student.id, device, access_token_hash=hash_token(token))

        with (
            patch(f"{DEVICE_REPO}.find_by_access_token", AsyncMock(return_value=record)) as find,
            patch(f"{DEVICE_REPO}.touch_activity", AsyncMock()) as touch,
        ):
            session = await manager.validate_request(token, device)

        assert session.user_id == student.id
        assert session.session_id == record.id
        assert find.await_args.args[1] == hash_token(token)
        touch.assert_awaited_once()
        db_session.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_other_device_terminates_session(
        self, manager: SessionManager, db_session: AsyncMock, token_service: TokenService, student: User
    ):
        laptop = create_device_info()
        stranger = create_device_info(ip_address="192.0.2.44")
        token = token_service.issue_access_token(student.id, student.email, student.role)
        record = create_device_session(student.id, laptop, access_token_hash=hash_token(token))

        with (
            patch(f"{DEVICE_REPO}.find_by_access_token", AsyncMock(return_value=record)),
            patch(f"{DEVICE_REPO}.invalidate_session", AsyncMock(return_value=1)) as invalidate,
            patch(f"{DEVICE_REPO}.touch_activity", AsyncMock()) as touch,
        ):
            with pytest.raises(DeviceMismatchError) as exc_info:
                await manager.validate_request(token, stranger)

        assert exc_info.value.status_code == 403
        assert invalidate.await_args.args[1] == record.id
        db_session.commit.assert_awaited_once()
        touch.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_closed_session(self, manager: SessionManager, token_service: TokenService, student: User):
        token = token_service.issue_access_token(student.id, student.email, student.role)
        record = create_device_session(student.id, is_active=False)

        with patch(f"{DEVICE_REPO}.find_by_access_token", AsyncMock(return_value=record)):
            with pytest.raises(SessionTerminatedError):
                await manager.validate_request(token, create_device_info())

    @pytest.mark.asyncio
    async def test_unknown_token(self, manager: SessionManager, token_service: TokenService, student: User):
        token = token_service.issue_access_token(student.id, student.email, student.role)

        with patch(f"{DEVICE_REPO}.find_by_access_token", AsyncMock(return_value=None)):
            with pytest.raises(SessionNotFoundError):
                await manager.validate_request(token, create_device_info())

    @pytest.mark.asyncio
    async def test_session_of_other_user(
        self, manager: SessionManager, token_service: TokenService, student: User
    ):
        token = token_service.issue_access_token(student.id, student.email, student.role)
        record = create_device_session(uuid4())

        with patch(f"{DEVICE_REPO}.find_by_access_token", AsyncMock(return_value=record)):
            with pytest.raises(SessionNotFoundError):
                await manager.validate_request(token, create_device_info())

    @pytest.mark.asyncio
    async def test_invalid_jwt_never_hits_database(self, manager: SessionManager):
        with patch(f"{DEVICE_REPO}.find_by_access_token", AsyncMock()) as find:
            with pytest.raises(InvalidTokenError):
                await manager.validate_request("garbage", create_device_info())
        find.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_activity_update_failure_is_tolerated(
        self, manager: SessionManager, db_session: AsyncMock, token_service: TokenService, student: User
    ):
        device = create_device_info()
        token = token_service.issue_access_token(student.id, student.email, student.role)
        record = create_device_session(student.id, device)

        with (
            patch(f"{DEVICE_REPO}.find_by_access_token", AsyncMock(return_value=record)),
            patch(
                f"{DEVICE_REPO}.touch_activity",
                AsyncMock(side_effect=DatabaseError("device_session_touch", "timeout")),
            ),
        ):
            session = await manager.validate_request(token, device)

        assert session.session_id == record.id
        db_session.rollback.assert_awaited_once()


# ============================================================================
# Refresh
# ============================================================================


class TestRefresh:
    @pytest.mark.asyncio
    async def test_issues_new_access_token(
        self, manager: SessionManager, db_session: AsyncMock, token_service: TokenService, student: User
    ):
        device = create_device_info()
        refresh_token = token_service.issue_refresh_token(student.id)
        student.refresh_token_hash = hash_token(refresh_token)
        record = create_device_session(student.id, device)

        with (
            patch(f"{USER_REPO}.find_by_id", AsyncMock(return_value=student)),
            patch(f"{DEVICE_REPO}.find_active_by_refresh_token", AsyncMock(return_value=record)),
            patch(f"{DEVICE_REPO}.rotate_access_token", AsyncMock(return_value=1)) as rotate,
        ):
            access_token = await manager.refresh(refresh_token, device)

        assert token_service.verify_access_token(access_token).user_id == student.id
        assert rotate.await_args.args[2] == hash_token(access_token)
        db_session.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_superseded_refresh_token(
        self, manager: SessionManager, token_service: TokenService, student: User
    ):
        refresh_token = token_service.issue_refresh_token(student.id)
        student.refresh_token_hash = hash_token("a-newer-token")

        with patch(f"{USER_REPO}.find_by_id", AsyncMock(return_value=student)):
            with pytest.raises(InvalidTokenError):
                await manager.refresh(refresh_token, create_device_info())

    @pytest.mark.asyncio
    async def test_refresh_from_other_device_closes_session(
        self, manager: SessionManager, db_session: AsyncMock, token_service: TokenService, student: User
    ):
        refresh_token = token_service.issue_refresh_token(student.id)
        student.refresh_token_hash = hash_token(refresh_token)
        record = create_device_session(student.id, create_device_info())

        with (
            patch(f"{USER_REPO}.find_by_id", AsyncMock(return_value=student)),
            patch(f"{USER_REPO}.clear_refresh_token", AsyncMock()) as clear,
            patch(f"{DEVICE_REPO}.find_active_by_refresh_token", AsyncMock(return_value=record)),
            patch(f"{DEVICE_REPO}.invalidate_session", AsyncMock(return_value=1)) as invalidate,
        ):
            with pytest.raises(DeviceMismatchError):
                await manager.refresh(refresh_token, create_device_info(ip_address="192.0.2.1"))

        invalidate.assert_awaited_once()
        clear.assert_awaited_once()
        db_session.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_session_closed_during_refresh(
        self, manager: SessionManager, db_session: AsyncMock, token_service: TokenService, student: User
    ):
        device = create_device_info()
        refresh_token = token_service.issue_refresh_token(student.id)
        student.refresh_token_hash = hash_token(refresh_token)
        record = create_device_session(student.id, device)

        with (
            patch(f"{USER_REPO}.find_by_id", AsyncMock(return_value=student)),
            patch(f"{DEVICE_REPO}.find_active_by_refresh_token", AsyncMock(return_value=record)),
            patch(f"{DEVICE_REPO}.rotate_access_token", AsyncMock(return_value=0)),
        ):
            with pytest.raises(SessionTerminatedError):
                await manager.refresh(refresh_token, device)

        db_session.rollback.assert_awaited_once()
        db_session.commit.assert_not_awaited()


# ============================================================================
# Logout and maintenance
# ============================================================================


class TestLogout:
    @pytest.mark.asyncio
    async def test_closes_all_sessions(self, manager: SessionManager, db_session: AsyncMock):
        user_id = uuid4()

        with (
            patch(f"{DEVICE_REPO}.invalidate_user_sessions", AsyncMock(return_value=2)) as invalidate,
            patch(f"{USER_REPO}.clear_refresh_token", AsyncMock()) as clear,
        ):
            closed = await manager.logout(user_id)

        assert closed == 2
        assert invalidate.await_args.args[1] == user_id
        clear.assert_awaited_once()
        db_session.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_never_raises_on_database_failure(self, manager: SessionManager, db_session: AsyncMock):
        with patch(
            f"{DEVICE_REPO}.invalidate_user_sessions",
            AsyncMock(side_effect=DatabaseError("device_session_invalidate_user", "down")),
        ):
            closed = await manager.logout(uuid4())

        assert closed == 0
        db_session.rollback.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_rollback_failure_is_swallowed(self, manager: SessionManager, db_session: AsyncMock):
        db_session.rollback = AsyncMock(side_effect=OperationalError("ROLLBACK", {}, Exception("gone")))

        with patch(
            f"{DEVICE_REPO}.invalidate_user_sessions",
            AsyncMock(side_effect=DatabaseError("device_session_invalidate_user", "down")),
        ):
            assert await manager.logout(uuid4()) == 0


@pytest.mark.asyncio
async def test_terminate_all_does_not_commit(manager: SessionManager, db_session: AsyncMock):
    with (
        patch(f"{DEVICE_REPO}.invalidate_user_sessions", AsyncMock(return_value=1)),
        patch(f"{USER_REPO}.clear_refresh_token", AsyncMock()),
    ):
        assert await manager.terminate_all(uuid4(), "password_reset") == 1
    db_session.commit.assert_not_awaited()


@pytest.mark.asyncio
async def test_cleanup_inactive_sessions(manager: SessionManager, db_session: AsyncMock):
    with patch(f"{DEVICE_REPO}.delete_inactive_before", AsyncMock(return_value=7)) as delete:
        deleted = await manager.cleanup_inactive_sessions(30)

    assert deleted == 7
    cutoff: datetime = delete.await_args.args[1]
    assert (datetime.now(UTC) - cutoff).days in (29, 30)
    db_session.commit.assert_awaited_once()
