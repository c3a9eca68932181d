from __future__ import annotations

import asyncio
from datetime import datetime, timezone
import logging
from typing import Any, Iterable, Mapping

from sqlalchemy.exc import SQLAlchemyError
from starlette.requests import Request

from clubhouse.core.config import get_settings
from clubhouse.core.errors import AuditPersistFailure
from clubhouse.domain.audit import PAST_TENSE, AuditAction, action_for_method
from clubhouse.domain.models import AuditEntry
from clubhouse.domain.policy import RoutePolicy
from clubhouse.domain.principal import Principal
from clubhouse.persistence.db import SessionLocal
from clubhouse.persistence.repos import audit as audit_repo


logger = logging.getLogger(__name__)

SENSITIVE_FIELDS = frozenset({"password", "password_hash", "token", "secret", "api_key", "credit_card"})
REDACTED_VALUE = "[REDACTED]"
UNKNOWN_ENTITY = "Unknown"


def redact(values: Any, extra_fields: Iterable[str] = ()) -> dict[str, Any] | None:
    # Shallow copy with deny-listed top-level keys masked; the input is never mutated.
    if not isinstance(values, Mapping):
        return None
    denied = SENSITIVE_FIELDS | frozenset(extra_fields)
    return {
        str(key): (REDACTED_VALUE if str(key) in denied else value)
        for key, value in values.items()
    }


def infer_entity_type(path: str, ignored_segments: Iterable[str] = ("api", "v1")) -> str:
    # "/api/v1/courses/7" -> "Course": first meaningful segment, capitalized, trailing char dropped.
    ignored = {segment.lower() for segment in ignored_segments}
    for segment in path.split("/"):
        if not segment or segment.lower() in ignored:
            continue
        singular = (segment[:1].upper() + segment[1:])[:-1]
        return singular or UNKNOWN_ENTITY
    return UNKNOWN_ENTITY


def resolve_action(method: str, policy: RoutePolicy, *, success: bool) -> AuditAction:
    action = policy.action_override or action_for_method(method)
    if action is AuditAction.LOGIN and not success:
        return AuditAction.FAILED_LOGIN
    return action


def describe(email: str, action: AuditAction, entity_type: str, *, success: bool) -> str:
    description = f"{email} {PAST_TENSE[action]} {entity_type}"
    return description if success else f"Failed: {description}"


def get_request_context(request: Request | None) -> dict[str, str | None]:
    # Extract request identifiers and client hints without persisting credentials.
    if request is None:
        return {"request_id": None, "ip_address": None, "user_agent": None}
    request_id = getattr(request.state, "request_id", None) or request.headers.get("X-Request-Id")
    ip_address = request.client.host if request.client else None
    user_agent = request.headers.get("user-agent")
    return {"request_id": request_id, "ip_address": ip_address, "user_agent": user_agent}


def _truncate(value: str | None, limit: int) -> str | None:
    if value is None:
        return None
    return value[:limit]


def build_audit_entry(
    *,
    principal: Principal,
    policy: RoutePolicy,
    method: str,
    path: str,
    path_params: Mapping[str, Any] | None,
    body: Any,
    result: Any = None,
    success: bool,
    error_message: str | None = None,
    request_context: Mapping[str, str | None] | None = None,
    metadata: dict[str, Any] | None = None,
    created_at: datetime | None = None,
) -> AuditEntry:
    settings = get_settings()
    extra_fields = settings.extra_redacted_fields()
    action = resolve_action(method, policy, success=success)
    entity_type = policy.entity_type_override or infer_entity_type(path, settings.ignored_path_segments())

    entity_id = (path_params or {}).get("id")
    if entity_id is None and success and isinstance(result, Mapping):
        entity_id = result.get("id")

    new_values = redact(body, extra_fields) if body else None
    if new_values is None and success:
        new_values = redact(result, extra_fields)

    context = request_context or {}
    return AuditEntry(
        # Tenant always comes from the actor, never from the payload.
        organization_id=principal.organization_id,
        user_id=principal.id,
        user_email=principal.email,
        user_role=principal.role,
        action=action.value,
        entity_type=entity_type,
        entity_id=str(entity_id) if entity_id is not None else None,
        old_values=None,
        new_values=new_values,
        http_method=method.upper(),
        request_url=_truncate(path, 255),
        ip_address=_truncate(context.get("ip_address"), 45),
        user_agent=_truncate(context.get("user_agent"), 500),
        request_id=context.get("request_id"),
        description=describe(principal.email, action, entity_type, success=success),
        metadata_json=metadata or {},
        success=success,
        error_message=None if success else (error_message or "Request failed"),
        created_at=created_at or datetime.now(timezone.utc),
    )


async def persist_entry(entry: AuditEntry) -> AuditEntry:
    # Audit writes use their own session so a rolled-back handler cannot drop the entry.
    timeout = max(get_settings().audit_write_timeout_ms, 1) / 1000

    async def _write() -> AuditEntry:
        async with SessionLocal() as audit_session:
            try:
                return await audit_repo.append_entry(audit_session, entry)
            except SQLAlchemyError:
                await audit_session.rollback()
                raise

    try:
        return await asyncio.wait_for(_write(), timeout=timeout)
    except asyncio.TimeoutError as exc:
        raise AuditPersistFailure(f"Audit write exceeded {timeout:.3f}s") from exc
    except (SQLAlchemyError, OSError) as exc:
        raise AuditPersistFailure("Audit write failed") from exc


async def capture_outcome(
    *,
    principal: Principal | None,
    policy: RoutePolicy,
    method: str,
    path: str,
    path_params: Mapping[str, Any] | None,
    body: Any,
    result: Any = None,
    success: bool,
    error_message: str | None = None,
    request_context: Mapping[str, str | None] | None = None,
    metadata: dict[str, Any] | None = None,
) -> AuditEntry | None:
    """Record one audit entry for a finished request.

    Exempt routes and anonymous requests are skipped. Persistence failures are logged
    and swallowed; the caller's response is never affected by the audit write.
    """
    if policy.audit_exempt or principal is None:
        return None
    entry = build_audit_entry(
        principal=principal,
        policy=policy,
        method=method,
        path=path,
        path_params=path_params,
        body=body,
        result=result,
        success=success,
        error_message=error_message,
        request_context=request_context,
        metadata=metadata,
    )
    try:
        return await persist_entry(entry)
    except AuditPersistFailure as exc:
        logger.warning(
            "audit_entry_write_failed action=%s entity_type=%s request_id=%s",
            entry.action,
            entry.entity_type,
            entry.request_id,
            exc_info=exc,
        )
        return None
