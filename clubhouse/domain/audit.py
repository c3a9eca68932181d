from __future__ import annotations

from enum import Enum
import json
from typing import Any, Mapping


class AuditAction(str, Enum):
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    SOFT_DELETE = "SOFT_DELETE"
    RESTORE = "RESTORE"
    LOGIN = "LOGIN"
    LOGOUT = "LOGOUT"
    FAILED_LOGIN = "FAILED_LOGIN"
    PASSWORD_CHANGE = "PASSWORD_CHANGE"
    CANCEL = "CANCEL"
    RENEW = "RENEW"
    SUSPEND = "SUSPEND"
    REACTIVATE = "REACTIVATE"
    OTHER = "OTHER"


PAST_TENSE: dict[AuditAction, str] = {
    AuditAction.CREATE: "created",
    AuditAction.UPDATE: "updated",
    AuditAction.DELETE: "deleted",
    AuditAction.SOFT_DELETE: "soft deleted",
    AuditAction.RESTORE: "restored",
    AuditAction.LOGIN: "logged in",
    AuditAction.LOGOUT: "logged out",
    AuditAction.FAILED_LOGIN: "failed to login",
    AuditAction.PASSWORD_CHANGE: "changed password",
    AuditAction.CANCEL: "cancelled",
    AuditAction.RENEW: "renewed",
    AuditAction.SUSPEND: "suspended",
    AuditAction.REACTIVATE: "reactivated",
    AuditAction.OTHER: "performed action on",
}


def action_for_method(method: str) -> AuditAction:
    # Map HTTP verbs to the default audited action.
    verb = method.upper()
    if verb == "POST":
        return AuditAction.CREATE
    if verb in {"PUT", "PATCH"}:
        return AuditAction.UPDATE
    if verb == "DELETE":
        return AuditAction.DELETE
    return AuditAction.OTHER


def changed_fields(
    old_values: Mapping[str, Any] | None,
    new_values: Mapping[str, Any] | None,
) -> list[str]:
    # Compare snapshots by JSON value so nested structures diff deterministically.
    if not old_values or not new_values:
        return []
    keys = sorted(set(old_values) | set(new_values))
    return [
        key
        for key in keys
        if json.dumps(old_values.get(key), sort_keys=True, default=str)
        != json.dumps(new_values.get(key), sort_keys=True, default=str)
    ]
