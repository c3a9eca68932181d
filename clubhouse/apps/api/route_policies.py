from __future__ import annotations

from typing import Mapping

from clubhouse.domain.audit import AuditAction
from clubhouse.domain.policy import RoutePolicy


# Keyed by route name; routes missing here get the default audited, tenant-checked policy.
CORE_ROUTE_POLICIES: Mapping[str, RoutePolicy] = {
    "health": RoutePolicy(audit_exempt=True, tenant_check_exempt=True),
    "auth.register": RoutePolicy(
        tenant_check_exempt=True,
        action_override=AuditAction.CREATE,
        entity_type_override="User",
    ),
    "auth.login": RoutePolicy(
        tenant_check_exempt=True,
        action_override=AuditAction.LOGIN,
        entity_type_override="User",
    ),
    "auth.refresh": RoutePolicy(
        tenant_check_exempt=True,
        action_override=AuditAction.OTHER,
        entity_type_override="RefreshToken",
    ),
    "auth.logout": RoutePolicy(
        tenant_check_exempt=True,
        action_override=AuditAction.LOGOUT,
        entity_type_override="User",
    ),
    "auth.me": RoutePolicy(audit_exempt=True, tenant_check_exempt=True),
    # Reading the trail is not itself audited; export and purge are.
    "audit.list": RoutePolicy(audit_exempt=True),
    "audit.stats": RoutePolicy(audit_exempt=True),
    "audit.recent": RoutePolicy(audit_exempt=True),
    "audit.failed_logins": RoutePolicy(audit_exempt=True),
    "audit.entity_history": RoutePolicy(audit_exempt=True),
    "audit.user_history": RoutePolicy(audit_exempt=True),
    "audit.get": RoutePolicy(audit_exempt=True),
    "audit.export": RoutePolicy(action_override=AuditAction.OTHER, entity_type_override="AuditLog"),
    "audit.clean": RoutePolicy(action_override=AuditAction.DELETE, entity_type_override="AuditLog"),
}


def merge_policies(*tables: Mapping[str, RoutePolicy] | None) -> dict[str, RoutePolicy]:
    merged: dict[str, RoutePolicy] = {}
    for table in tables:
        if table:
            merged.update(table)
    return merged
