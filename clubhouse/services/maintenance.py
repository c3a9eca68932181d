from __future__ import annotations

from datetime import datetime, timedelta, timezone
import logging

from sqlalchemy.ext.asyncio import AsyncSession

from clubhouse.core.config import get_settings
from clubhouse.persistence.repos import audit as audit_repo
from clubhouse.persistence.repos import refresh_tokens as refresh_repo


logger = logging.getLogger(__name__)


def audit_cutoff(retention_days: int | None = None, *, now: datetime | None = None) -> datetime:
    days = retention_days if retention_days is not None else get_settings().audit_retention_days
    return (now or datetime.now(timezone.utc)) - timedelta(days=days)


async def prune_audit_entries(
    session: AsyncSession,
    *,
    retention_days: int | None = None,
    organization_id: str | None = None,
    now: datetime | None = None,
) -> int:
    # Remove audit entries beyond the retention window; callers own the commit.
    cutoff = audit_cutoff(retention_days, now=now)
    deleted = await audit_repo.purge_older_than(session, cutoff=cutoff, organization_id=organization_id)
    logger.info(
        "audit_entries_pruned deleted=%s cutoff=%s organization_id=%s",
        deleted,
        cutoff.isoformat(),
        organization_id,
    )
    return deleted


async def sweep_expired_refresh_tokens(session: AsyncSession, *, now: datetime | None = None) -> int:
    # Remove expired refresh tokens whether or not they were revoked.
    deleted = await refresh_repo.delete_expired(session, now=now or datetime.now(timezone.utc))
    logger.info("refresh_tokens_swept deleted=%s", deleted)
    return deleted
