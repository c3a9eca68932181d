from __future__ import annotations

from dataclasses import dataclass

from clubhouse.domain.audit import AuditAction


@dataclass(frozen=True)
class RoutePolicy:
    # Per-route pipeline metadata, resolved once at startup and never per request.
    audit_exempt: bool = False
    tenant_check_exempt: bool = False
    action_override: AuditAction | None = None
    entity_type_override: str | None = None


DEFAULT_POLICY = RoutePolicy()
