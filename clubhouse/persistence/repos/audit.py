from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql import Select

from clubhouse.domain.audit import AuditAction
from clubhouse.domain.models import AuditEntry


RECENT_LIMIT = 100


@dataclass(frozen=True)
class AuditFilters:
    user_id: str | None = None
    action: str | None = None
    entity_type: str | None = None
    entity_id: str | None = None
    ip_address: str | None = None
    start: datetime | None = None
    end: datetime | None = None


def _window(stmt: Select, start: datetime | None, end: datetime | None) -> Select:
    if start is not None:
        stmt = stmt.where(AuditEntry.created_at >= start)
    if end is not None:
        stmt = stmt.where(AuditEntry.created_at <= end)
    return stmt


def _apply_filters(stmt: Select, filters: AuditFilters) -> Select:
    if filters.user_id:
        stmt = stmt.where(AuditEntry.user_id == filters.user_id)
    if filters.action:
        stmt = stmt.where(AuditEntry.action == filters.action)
    if filters.entity_type:
        stmt = stmt.where(AuditEntry.entity_type == filters.entity_type)
    if filters.entity_id:
        stmt = stmt.where(AuditEntry.entity_id == filters.entity_id)
    if filters.ip_address:
        stmt = stmt.where(AuditEntry.ip_address == filters.ip_address)
    return _window(stmt, filters.start, filters.end)


async def append_entry(session: AsyncSession, entry: AuditEntry, *, commit: bool = True) -> AuditEntry:
    # Insert-only: the store exposes no update path for persisted entries.
    session.add(entry)
    if commit:
        await session.commit()
    else:
        await session.flush()
    return entry


async def list_entries(
    session: AsyncSession,
    *,
    organization_id: str,
    filters: AuditFilters | None = None,
    offset: int = 0,
    limit: int = 50,
) -> tuple[list[AuditEntry], int]:
    # Scope every audit query to one organization to prevent cross-tenant leakage.
    resolved = filters or AuditFilters()
    base = _apply_filters(select(AuditEntry).where(AuditEntry.organization_id == organization_id), resolved)
    total = await session.scalar(select(func.count()).select_from(base.subquery()))
    stmt = base.order_by(AuditEntry.created_at.desc(), AuditEntry.id.desc()).offset(offset).limit(limit)
    result = await session.execute(stmt)
    return list(result.scalars().all()), int(total or 0)


async def get_entry(session: AsyncSession, *, organization_id: str, entry_id: str) -> AuditEntry | None:
    result = await session.execute(
        select(AuditEntry).where(AuditEntry.id == entry_id, AuditEntry.organization_id == organization_id)
    )
    return result.scalar_one_or_none()


async def list_for_entity(
    session: AsyncSession,
    *,
    organization_id: str,
    entity_type: str,
    entity_id: str,
) -> list[AuditEntry]:
    # Full history of one entity, newest first.
    result = await session.execute(
        select(AuditEntry)
        .where(
            AuditEntry.organization_id == organization_id,
            AuditEntry.entity_type == entity_type,
            AuditEntry.entity_id == entity_id,
        )
        .order_by(AuditEntry.created_at.desc())
    )
    return list(result.scalars().all())


async def list_for_user(
    session: AsyncSession,
    *,
    organization_id: str,
    user_id: str,
    limit: int = 100,
) -> list[AuditEntry]:
    result = await session.execute(
        select(AuditEntry)
        .where(AuditEntry.organization_id == organization_id, AuditEntry.user_id == user_id)
        .order_by(AuditEntry.created_at.desc())
        .limit(limit)
    )
    return list(result.scalars().all())


async def list_since(
    session: AsyncSession,
    *,
    organization_id: str,
    since: datetime,
    action: AuditAction | None = None,
    limit: int | None = None,
) -> list[AuditEntry]:
    stmt = select(AuditEntry).where(
        AuditEntry.organization_id == organization_id,
        AuditEntry.created_at >= since,
    )
    if action is not None:
        stmt = stmt.where(AuditEntry.action == action.value)
    stmt = stmt.order_by(AuditEntry.created_at.desc())
    if limit is not None:
        stmt = stmt.limit(limit)
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def list_recent(session: AsyncSession, *, organization_id: str, hours: int = 24) -> list[AuditEntry]:
    # Monitoring view: capped at the newest 100 entries in the window.
    since = datetime.now(timezone.utc) - timedelta(hours=hours)
    return await list_since(session, organization_id=organization_id, since=since, limit=RECENT_LIMIT)


async def list_failed_logins(session: AsyncSession, *, organization_id: str, hours: int = 24) -> list[AuditEntry]:
    since = datetime.now(timezone.utc) - timedelta(hours=hours)
    return await list_since(
        session,
        organization_id=organization_id,
        since=since,
        action=AuditAction.FAILED_LOGIN,
    )


async def export_entries(
    session: AsyncSession,
    *,
    organization_id: str,
    start: datetime | None = None,
    end: datetime | None = None,
) -> list[AuditEntry]:
    # Compliance export returns the complete window in chronological order.
    stmt = _window(select(AuditEntry).where(AuditEntry.organization_id == organization_id), start, end)
    stmt = stmt.order_by(AuditEntry.created_at.asc(), AuditEntry.id.asc())
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def compute_stats(session: AsyncSession, *, organization_id: str, since: datetime) -> dict[str, Any]:
    result = await session.execute(
        select(AuditEntry.action, AuditEntry.entity_type, AuditEntry.user_email, AuditEntry.success).where(
            AuditEntry.organization_id == organization_id,
            AuditEntry.created_at >= since,
        )
    )
    rows = result.all()
    by_action: Counter[str] = Counter()
    by_entity_type: Counter[str] = Counter()
    by_user: Counter[str] = Counter()
    succeeded = 0
    for action, entity_type, user_email, success in rows:
        by_action[action] += 1
        by_entity_type[entity_type] += 1
        if user_email:
            by_user[user_email] += 1
        if success:
            succeeded += 1
    return {
        "total": len(rows),
        "success": succeeded,
        "failed": len(rows) - succeeded,
        "by_action": dict(by_action),
        "by_entity_type": dict(by_entity_type),
        "by_user": dict(by_user),
    }


async def purge_older_than(
    session: AsyncSession,
    *,
    cutoff: datetime,
    organization_id: str | None = None,
) -> int:
    # Retention purge is the only delete path for audit entries.
    stmt = delete(AuditEntry).where(AuditEntry.created_at < cutoff)
    if organization_id is not None:
        stmt = stmt.where(AuditEntry.organization_id == organization_id)
    result = await session.execute(stmt)
    return result.rowcount or 0
