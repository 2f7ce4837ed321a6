"""Admin OTP repository."""

from datetime import datetime
from uuid import UUID

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from studyabroad.db.models import AdminOtp
from studyabroad.db.repositories.base import data_access


@data_access("admin_otp_create")
async def create(session: AsyncSession, otp: AdminOtp) -> AdminOtp:
    session.add(otp)
    await session.flush()
    return otp


@data_access("admin_otp_invalidate_unused")
async def invalidate_unused(session: AsyncSession, email: str) -> int:
    result = await session.execute(
        update(AdminOtp)
        .where(AdminOtp.email == email, AdminOtp.is_used.is_(False))
        .values(is_used=True)
    )
    return result.rowcount or 0


@data_access("admin_otp_find_latest_unused")
async def find_latest_unused(session: AsyncSession, email: str) -> AdminOtp | None:
    result = await session.execute(
        select(AdminOtp)
        .where(AdminOtp.email == email, AdminOtp.is_used.is_(False))
        .order_by(AdminOtp.created_at.desc())
        .limit(1)
        .with_for_update()
    )
    return result.scalar_one_or_none()


@data_access("admin_otp_record_failed_attempt")
async def record_failed_attempt(session: AsyncSession, otp_id: UUID, max_attempts: int) -> None:
    """Increment attempts; burn the code once the maximum is reached."""
    await session.execute(
        update(AdminOtp)
        .where(AdminOtp.id == otp_id)
        .values(
            attempts=AdminOtp.attempts + 1,
            is_used=(AdminOtp.attempts + 1) >= max_attempts,
        )
    )


@data_access("admin_otp_mark_used")
async def mark_used(session: AsyncSession, otp_id: UUID) -> None:
    await session.execute(update(AdminOtp).where(AdminOtp.id == otp_id).values(is_used=True))


@data_access("admin_otp_count_since")
async def count_since(session: AsyncSession, email: str, since: datetime) -> tuple[int, datetime | None]:
    """Number of codes issued to `email` since `since`, and the oldest issue time."""
    result = await session.execute(
        select(func.count(AdminOtp.id), func.min(AdminOtp.created_at)).where(
            AdminOtp.email == email, AdminOtp.created_at >= since
        )
    )
    count, oldest = result.one()
    return int(count or 0), oldest


@data_access("admin_otp_delete_before")
async def delete_before(session: AsyncSession, cutoff: datetime) -> int:
    result = await session.execute(delete(AdminOtp).where(AdminOtp.created_at < cutoff))
    return result.rowcount or 0
