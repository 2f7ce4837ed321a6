"""Device session repository."""

from datetime import datetime
from uuid import UUID

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from studyabroad.db.models import DeviceSession
from studyabroad.db.repositories.base import data_access


@data_access("device_session_find_active_by_user")
async def find_active_by_user(session: AsyncSession, user_id: UUID) -> DeviceSession | None:
    result = await session.execute(
        select(DeviceSession).where(
            DeviceSession.user_id == user_id,
            DeviceSession.is_active.is_(True),
        )
    )
    return result.scalar_one_or_none()


@data_access("device_session_find_by_access_token")
async def find_by_access_token(session: AsyncSession, token_hash: str) -> DeviceSession | None:
    """Find the session a token was issued to, active or not."""
    result = await session.execute(
        select(DeviceSession)
        .where(DeviceSession.access_token_hash == token_hash)
        .order_by(DeviceSession.login_at.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


@data_access("device_session_find_active_by_refresh_token")
async def find_active_by_refresh_token(
    session: AsyncSession, user_id: UUID, token_hash: str
) -> DeviceSession | None:
    result = await session.execute(
        select(DeviceSession).where(
            DeviceSession.user_id == user_id,
            DeviceSession.refresh_token_hash == token_hash,
            DeviceSession.is_active.is_(True),
        )
    )
    return result.scalar_one_or_none()


@data_access("device_session_create")
async def create(session: AsyncSession, device_session: DeviceSession) -> DeviceSession:
    """
    Insert an active session.

    Raises IntegrityError when the user already has an active session
    (partial unique index on user_id WHERE is_active).
    """
    session.add(device_session)
    await session.flush()
    return device_session


@data_access("device_session_invalidate_user")
async def invalidate_user_sessions(session: AsyncSession, user_id: UUID, now: datetime) -> int:
    """Close every active session of a user. Returns the number closed."""
    result = await session.execute(
        update(DeviceSession)
        .where(DeviceSession.user_id == user_id, DeviceSession.is_active.is_(True))
        .values(is_active=False, logout_at=now)
    )
    return result.rowcount or 0


@data_access("device_session_invalidate")
async def invalidate_session(session: AsyncSession, session_id: UUID, now: datetime) -> int:
    result = await session.execute(
        update(DeviceSession)
        .where(DeviceSession.id == session_id, DeviceSession.is_active.is_(True))
        .values(is_active=False, logout_at=now)
    )
    return result.rowcount or 0


@data_access("device_session_touch")
async def touch_activity(session: AsyncSession, session_id: UUID, now: datetime) -> None:
    await session.execute(
        update(DeviceSession)
        .where(DeviceSession.id == session_id, DeviceSession.is_active.is_(True))
        .values(last_activity_at=now)
    )


@data_access("device_session_rotate_access_token")
async def rotate_access_token(
    session: AsyncSession, session_id: UUID, access_token_hash: str, now: datetime
) -> int:
    result = await session.execute(
        update(DeviceSession)
        .where(DeviceSession.id == session_id, DeviceSession.is_active.is_(True))
        .values(access_token_hash=access_token_hash, last_activity_at=now)
    )
    return result.rowcount or 0


@data_access("device_session_list_by_user")
async def list_by_user(session: AsyncSession, user_id: UUID, limit: int = 50) -> list[DeviceSession]:
    result = await session.execute(
        select(DeviceSession)
        .where(DeviceSession.user_id == user_id)
        .order_by(DeviceSession.login_at.desc())
        .limit(limit)
    )
    return list(result.scalars().all())


@data_access("device_session_delete_inactive")
async def delete_inactive_before(session: AsyncSession, cutoff: datetime) -> int:
    """Delete closed sessions whose logout happened before `cutoff`."""
    result = await session.execute(
        delete(DeviceSession).where(
            DeviceSession.is_active.is_(False),
            DeviceSession.logout_at < cutoff,
        )
    )
    return result.rowcount or 0
