from __future__ import annotations

from fastapi import APIRouter
import pytest

from clubhouse.apps.api.main import create_app
from clubhouse.apps.api.pipeline import SecuredRoute, bind_route_policies
from clubhouse.apps.api.route_policies import CORE_ROUTE_POLICIES
from clubhouse.core.errors import RoutePolicyError
from clubhouse.domain.policy import DEFAULT_POLICY, RoutePolicy


def _secured_router() -> APIRouter:
    router = APIRouter(prefix="/attendances", route_class=SecuredRoute)

    @router.post("", name="attendances.mark")
    async def mark_attendance() -> dict:
        return {"id": "a-1"}

    return router


def test_core_routes_are_bound_to_their_policies() -> None:
    policies = create_app().state.route_policies
    for name, policy in CORE_ROUTE_POLICIES.items():
        assert policies[name] == policy
    assert policies["audit.list"].audit_exempt is True
    assert policies["auth.login"].tenant_check_exempt is True


def test_collaborator_routes_default_to_audited_and_tenant_checked() -> None:
    policies = create_app(routers=[_secured_router()]).state.route_policies
    assert policies["attendances.mark"] == DEFAULT_POLICY


def test_collaborator_policies_are_applied() -> None:
    policy = RoutePolicy(entity_type_override="Attendance")
    app = create_app(routers=[_secured_router()], route_policies={"attendances.mark": policy})
    assert app.state.route_policies["attendances.mark"] is policy


def test_binding_walks_routers_before_they_are_mounted() -> None:
    router = _secured_router()
    policy = RoutePolicy(audit_exempt=True)
    resolved = bind_route_policies([router], {"attendances.mark": policy})
    assert resolved == {"attendances.mark": policy}


def test_unsecured_route_aborts_startup() -> None:
    router = APIRouter(prefix="/organizations")

    @router.get("", name="organizations.list")
    async def list_organizations() -> list:
        return []

    with pytest.raises(RoutePolicyError):
        create_app(routers=[router])


def test_policy_for_unknown_route_aborts_startup() -> None:
    with pytest.raises(RoutePolicyError):
        create_app(route_policies={"subscriptions.renew": RoutePolicy()})
