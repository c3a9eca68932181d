from __future__ import annotations

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from clubhouse.domain.models import Organization, User


async def get_user_by_email(session: AsyncSession, email: str) -> User | None:
    # Match emails case-insensitively and hide soft-deleted accounts from auth flows.
    result = await session.execute(
        select(User).where(func.lower(User.email) == email.strip().lower(), User.deleted_at.is_(None))
    )
    return result.scalar_one_or_none()


async def get_user(session: AsyncSession, user_id: str) -> User | None:
    result = await session.execute(select(User).where(User.id == user_id, User.deleted_at.is_(None)))
    return result.scalar_one_or_none()


async def organization_exists(session: AsyncSession, organization_id: str) -> bool:
    result = await session.execute(
        select(Organization.id).where(
            Organization.id == organization_id,
            Organization.deleted_at.is_(None),
        )
    )
    return result.scalar_one_or_none() is not None


async def email_in_use(session: AsyncSession, email: str) -> bool:
    # Deleted accounts still hold their email under the unique constraint.
    result = await session.execute(select(User.id).where(func.lower(User.email) == email.strip().lower()))
    return result.first() is not None


async def add_user(session: AsyncSession, user: User) -> User:
    session.add(user)
    await session.flush()
    return user
