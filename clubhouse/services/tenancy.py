"""Tenant isolation for every request.

The tenant is always taken from the verified principal. The guard then scans the
client-supplied payload for organization references and rejects any that point at
another organization before the handler runs.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Mapping

from clubhouse.core.errors import TenantMismatch
from clubhouse.domain.policy import DEFAULT_POLICY, RoutePolicy
from clubhouse.domain.principal import Principal


# Checked in this order; the first mismatch wins.
_FLAT_KEYS = ("organization_id", "organizationId", "organization.id", "organization[id]", "orgId")
_BODY_KEYS = ("organization_id", "organizationId")
_BODY_TRAILING_KEYS = ("orgId",)


@dataclass(frozen=True)
class TenantContext:
    organization_id: str
    principal: Principal
    policy: RoutePolicy = DEFAULT_POLICY


def resolve_tenant_context(
    principal: Principal | None,
    policy: RoutePolicy = DEFAULT_POLICY,
) -> TenantContext | None:
    # Unauthenticated routes have no tenant; client-supplied ids never establish one.
    if principal is None:
        return None
    return TenantContext(organization_id=principal.organization_id, principal=principal, policy=policy)


def _check(location: str, key: str, value: Any, organization_id: str) -> None:
    # Null and empty values count as absent.
    if value and str(value) != organization_id:
        raise TenantMismatch(location, key)


def _check_body(body: Any, organization_id: str) -> None:
    if not isinstance(body, Mapping):
        return
    for key in _BODY_KEYS:
        _check("body", key, body.get(key), organization_id)
    nested = body.get("organization")
    if isinstance(nested, Mapping):
        _check("body", "organization.id", nested.get("id"), organization_id)
    for key in _BODY_TRAILING_KEYS:
        _check("body", key, body.get(key), organization_id)


def _pairs(source: Mapping[str, Any] | Iterable[tuple[str, Any]] | None) -> list[tuple[str, Any]]:
    if source is None:
        return []
    if isinstance(source, Mapping):
        return list(source.items())
    return list(source)


def _check_flat(location: str, source: Any, organization_id: str) -> None:
    pairs = _pairs(source)
    for key in _FLAT_KEYS:
        # Multi-valued query keys are checked value by value.
        for name, value in pairs:
            if name == key:
                _check(location, key, value, organization_id)


def enforce_tenant_access(
    context: TenantContext | None,
    *,
    body: Any = None,
    path_params: Mapping[str, Any] | None = None,
    query_params: Mapping[str, Any] | Iterable[tuple[str, Any]] | None = None,
) -> None:
    """Reject requests that reference an organization other than the caller's.

    Locations are scanned as body, then path params, then query params. The body is
    checked for organization_id, organizationId, a nested organization.id object and
    orgId. Flat locations accept both nested spellings, ``organization.id`` and
    ``organization[id]``, alongside the other three keys. The raised TenantMismatch
    names the location and key only, never either organization id.
    """
    if context is None or context.policy.tenant_check_exempt:
        return
    organization_id = str(context.organization_id)
    _check_body(body, organization_id)
    _check_flat("params", path_params, organization_id)
    _check_flat("query", query_params, organization_id)
