"""User repository."""

from datetime import datetime
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from studyabroad.db.models import User
from studyabroad.db.repositories.base import data_access


@data_access("user_find_by_id")
async def find_by_id(session: AsyncSession, user_id: UUID) -> User | None:
    return await session.get(User, user_id)


@data_access("user_find_by_email")
async def find_by_email(session: AsyncSession, email: str) -> User | None:
    result = await session.execute(select(User).where(User.email == email.lower()))
    return result.scalar_one_or_none()


@data_access("user_find_by_username")
async def find_by_username(session: AsyncSession, username: str) -> User | None:
    result = await session.execute(select(User).where(User.username == username))
    return result.scalar_one_or_none()


@data_access("user_find_by_verification_token")
async def find_by_verification_token(session: AsyncSession, token_hash: str) -> User | None:
    result = await session.execute(
        select(User).where(User.verification_token_hash == token_hash)
    )
    return result.scalar_one_or_none()


@data_access("user_find_by_password_reset_token")
async def find_by_password_reset_token(session: AsyncSession, token_hash: str) -> User | None:
    result = await session.execute(
        select(User).where(User.password_reset_token_hash == token_hash)
    )
    return result.scalar_one_or_none()


@data_access("user_create")
async def create(session: AsyncSession, user: User) -> User:
    """Stage a new user and flush so constraint violations surface here."""
    session.add(user)
    await session.flush()
    return user


@data_access("user_record_login")
async def record_login(
    session: AsyncSession, user_id: UUID, refresh_token_hash: str, login_at: datetime
) -> None:
    await session.execute(
        update(User)
        .where(User.id == user_id)
        .values(refresh_token_hash=refresh_token_hash, last_login_at=login_at)
    )


@data_access("user_clear_refresh_token")
async def clear_refresh_token(session: AsyncSession, user_id: UUID) -> None:
    await session.execute(
        update(User).where(User.id == user_id).values(refresh_token_hash=None)
    )
