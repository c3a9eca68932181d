from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from clubhouse.apps.api.deps import get_db, require_role
from clubhouse.apps.api.pipeline import SecuredRoute
from clubhouse.domain.audit import AuditAction, changed_fields
from clubhouse.domain.models import AuditEntry
from clubhouse.domain.principal import Principal
from clubhouse.persistence.repos import audit as audit_repo
from clubhouse.services.maintenance import audit_cutoff, prune_audit_entries


router = APIRouter(prefix="/audit-logs", tags=["audit"], route_class=SecuredRoute)


class AuditEntryResponse(BaseModel):
    id: str
    organization_id: str
    user_id: str | None
    user_email: str | None
    user_role: str | None
    action: str
    entity_type: str
    entity_id: str | None
    old_values: dict[str, Any] | None
    new_values: dict[str, Any] | None
    changes: list[str]
    http_method: str | None
    request_url: str | None
    ip_address: str | None
    user_agent: str | None
    request_id: str | None
    description: str | None
    metadata_json: dict[str, Any] | None
    success: bool
    error_message: str | None
    created_at: str


class AuditEntriesPage(BaseModel):
    data: list[AuditEntryResponse]
    total: int
    offset: int
    limit: int


class AuditStatsResponse(BaseModel):
    total: int
    success: int
    failed: int
    by_action: dict[str, int]
    by_entity_type: dict[str, int]
    by_user: dict[str, int]
    period_days: int


class AuditCleanResponse(BaseModel):
    deleted: int
    cutoff_date: str
    retention_days: int


def _to_response(entry: AuditEntry) -> AuditEntryResponse:
    # Serialize audit entry datetimes to ISO 8601 for API clients.
    return AuditEntryResponse(
        id=entry.id,
        organization_id=entry.organization_id,
        user_id=entry.user_id,
        user_email=entry.user_email,
        user_role=entry.user_role,
        action=entry.action,
        entity_type=entry.entity_type,
        entity_id=entry.entity_id,
        old_values=entry.old_values,
        new_values=entry.new_values,
        changes=changed_fields(entry.old_values, entry.new_values),
        http_method=entry.http_method,
        request_url=entry.request_url,
        ip_address=entry.ip_address,
        user_agent=entry.user_agent,
        request_id=entry.request_id,
        description=entry.description,
        metadata_json=entry.metadata_json,
        success=entry.success,
        error_message=entry.error_message,
        created_at=entry.created_at.isoformat(),
    )


def _db_error(action: str) -> HTTPException:
    return HTTPException(
        status_code=500,
        detail={"code": "INTERNAL_ERROR", "message": f"Database error while {action}"},
    )


@router.get("", name="audit.list", response_model=AuditEntriesPage)
async def list_audit_entries(
    user_id: str | None = None,
    action: AuditAction | None = None,
    entity_type: str | None = None,
    entity_id: str | None = None,
    ip_address: str | None = None,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=50, ge=1, le=200),
    principal: Principal = Depends(require_role("coach")),
    db: AsyncSession = Depends(get_db),
) -> AuditEntriesPage:
    # Scope every listing to the caller's organization; filters only narrow it.
    filters = audit_repo.AuditFilters(
        user_id=user_id,
        action=action.value if action else None,
        entity_type=entity_type,
        entity_id=entity_id,
        ip_address=ip_address,
        start=start_date,
        end=end_date,
    )
    try:
        entries, total = await audit_repo.list_entries(
            db,
            organization_id=principal.organization_id,
            filters=filters,
            offset=offset,
            limit=limit,
        )
    except SQLAlchemyError as exc:
        raise _db_error("fetching audit entries") from exc
    return AuditEntriesPage(
        data=[_to_response(entry) for entry in entries],
        total=total,
        offset=offset,
        limit=limit,
    )


@router.get("/stats", name="audit.stats", response_model=AuditStatsResponse)
async def audit_stats(
    days: int = Query(default=30, ge=1, le=3650),
    principal: Principal = Depends(require_role("admin")),
    db: AsyncSession = Depends(get_db),
) -> AuditStatsResponse:
    since = datetime.now(timezone.utc) - timedelta(days=days)
    try:
        stats = await audit_repo.compute_stats(db, organization_id=principal.organization_id, since=since)
    except SQLAlchemyError as exc:
        raise _db_error("computing audit statistics") from exc
    return AuditStatsResponse(**stats, period_days=days)


@router.get("/recent", name="audit.recent", response_model=list[AuditEntryResponse])
async def recent_audit_entries(
    hours: int = Query(default=24, ge=1, le=24 * 90),
    principal: Principal = Depends(require_role("coach")),
    db: AsyncSession = Depends(get_db),
) -> list[AuditEntryResponse]:
    try:
        entries = await audit_repo.list_recent(db, organization_id=principal.organization_id, hours=hours)
    except SQLAlchemyError as exc:
        raise _db_error("fetching recent audit entries") from exc
    return [_to_response(entry) for entry in entries]


@router.get("/failed-logins", name="audit.failed_logins", response_model=list[AuditEntryResponse])
async def failed_logins(
    hours: int = Query(default=24, ge=1, le=24 * 90),
    principal: Principal = Depends(require_role("admin")),
    db: AsyncSession = Depends(get_db),
) -> list[AuditEntryResponse]:
    try:
        entries = await audit_repo.list_failed_logins(db, organization_id=principal.organization_id, hours=hours)
    except SQLAlchemyError as exc:
        raise _db_error("fetching failed logins") from exc
    return [_to_response(entry) for entry in entries]


@router.get("/export", name="audit.export", response_model=list[AuditEntryResponse])
async def export_audit_entries(
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    principal: Principal = Depends(require_role("admin")),
    db: AsyncSession = Depends(get_db),
) -> list[AuditEntryResponse]:
    # Compliance export: the complete window, oldest first.
    try:
        entries = await audit_repo.export_entries(
            db,
            organization_id=principal.organization_id,
            start=start_date,
            end=end_date,
        )
    except SQLAlchemyError as exc:
        raise _db_error("exporting audit entries") from exc
    return [_to_response(entry) for entry in entries]


@router.get(
    "/entity/{entity_type}/{entity_id}",
    name="audit.entity_history",
    response_model=list[AuditEntryResponse],
)
async def entity_history(
    entity_type: str,
    entity_id: str,
    principal: Principal = Depends(require_role("coach")),
    db: AsyncSession = Depends(get_db),
) -> list[AuditEntryResponse]:
    try:
        entries = await audit_repo.list_for_entity(
            db,
            organization_id=principal.organization_id,
            entity_type=entity_type,
            entity_id=entity_id,
        )
    except SQLAlchemyError as exc:
        raise _db_error("fetching entity history") from exc
    return [_to_response(entry) for entry in entries]


@router.get("/user/{user_id}", name="audit.user_history", response_model=list[AuditEntryResponse])
async def user_history(
    user_id: str,
    limit: int = Query(default=100, ge=1, le=500),
    principal: Principal = Depends(require_role("coach")),
    db: AsyncSession = Depends(get_db),
) -> list[AuditEntryResponse]:
    try:
        entries = await audit_repo.list_for_user(
            db,
            organization_id=principal.organization_id,
            user_id=user_id,
            limit=limit,
        )
    except SQLAlchemyError as exc:
        raise _db_error("fetching user history") from exc
    return [_to_response(entry) for entry in entries]


@router.post("/clean", name="audit.clean", response_model=AuditCleanResponse)
async def clean_audit_entries(
    retention_days: int = Query(default=365, ge=1),
    principal: Principal = Depends(require_role("admin")),
    db: AsyncSession = Depends(get_db),
) -> AuditCleanResponse:
    # Retention purge limited to the caller's organization.
    now = datetime.now(timezone.utc)
    cutoff = audit_cutoff(retention_days, now=now)
    try:
        deleted = await prune_audit_entries(
            db,
            retention_days=retention_days,
            organization_id=principal.organization_id,
            now=now,
        )
        await db.commit()
    except SQLAlchemyError as exc:
        await db.rollback()
        raise _db_error("purging audit entries") from exc
    return AuditCleanResponse(deleted=deleted, cutoff_date=cutoff.isoformat(), retention_days=retention_days)


@router.get("/{entry_id}", name="audit.get", response_model=AuditEntryResponse)
async def get_audit_entry(
    entry_id: str,
    principal: Principal = Depends(require_role("coach")),
    db: AsyncSession = Depends(get_db),
) -> AuditEntryResponse:
    try:
        entry = await audit_repo.get_entry(db, organization_id=principal.organization_id, entry_id=entry_id)
    except SQLAlchemyError as exc:
        raise _db_error("fetching audit entry") from exc
    if entry is None:
        raise HTTPException(status_code=404, detail={"code": "NOT_FOUND", "message": "Audit entry not found"})
    return _to_response(entry)
