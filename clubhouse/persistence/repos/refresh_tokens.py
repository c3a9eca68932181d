from __future__ import annotations

from datetime import datetime

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from clubhouse.domain.models import RefreshToken


async def add_token(session: AsyncSession, token: RefreshToken) -> RefreshToken:
    session.add(token)
    await session.flush()
    return token


async def get_by_hash(session: AsyncSession, token_hash: str) -> RefreshToken | None:
    result = await session.execute(select(RefreshToken).where(RefreshToken.token_hash == token_hash))
    return result.scalar_one_or_none()


async def revoke_if_active(session: AsyncSession, *, token_id: str, revoked_at: datetime) -> bool:
    # Compare-and-set on revoked so only one concurrent redemption can claim the row.
    result = await session.execute(
        update(RefreshToken)
        .where(RefreshToken.id == token_id, RefreshToken.revoked.is_(False))
        .values(revoked=True, revoked_at=revoked_at)
    )
    return (result.rowcount or 0) == 1


async def revoke_all_for_user(session: AsyncSession, *, user_id: str, revoked_at: datetime) -> int:
    result = await session.execute(
        update(RefreshToken)
        .where(RefreshToken.user_id == user_id, RefreshToken.revoked.is_(False))
        .values(revoked=True, revoked_at=revoked_at)
    )
    return result.rowcount or 0


async def list_for_user(session: AsyncSession, user_id: str) -> list[RefreshToken]:
    result = await session.execute(
        select(RefreshToken).where(RefreshToken.user_id == user_id).order_by(RefreshToken.issued_at.asc())
    )
    return list(result.scalars().all())


async def delete_expired(session: AsyncSession, *, now: datetime) -> int:
    # Pure expiry predicate; revoked status is irrelevant once the row is past expiry.
    result = await session.execute(delete(RefreshToken).where(RefreshToken.expires_at < now))
    return result.rowcount or 0
