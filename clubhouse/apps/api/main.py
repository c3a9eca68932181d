from __future__ import annotations

from typing import Mapping, Sequence
from uuid import uuid4

from fastapi import APIRouter, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from clubhouse.apps.api.errors import (
    credential_exception_handler,
    http_exception_handler,
    registration_exception_handler,
    tenant_mismatch_exception_handler,
    unhandled_exception_handler,
    validation_exception_handler,
)
from clubhouse.apps.api.pipeline import bind_route_policies
from clubhouse.apps.api.route_policies import CORE_ROUTE_POLICIES, merge_policies
from clubhouse.apps.api.routes.audit import router as audit_router
from clubhouse.apps.api.routes.auth import router as auth_router
from clubhouse.apps.api.routes.health import router as health_router
from clubhouse.core.config import get_settings
from clubhouse.core.errors import CredentialError, RegistrationError, TenantMismatch
from clubhouse.core.logging import configure_logging
from clubhouse.domain.policy import RoutePolicy


def create_app(
    *,
    routers: Sequence[APIRouter] = (),
    route_policies: Mapping[str, RoutePolicy] | None = None,
) -> FastAPI:
    """Build the API with the security pipeline bound to every route.

    Business modules pass their SecuredRoute routers and the policies for their
    named routes; unknown policy names or unsecured routes abort startup.
    """
    configure_logging()
    app = FastAPI(title=f"{get_settings().app_name} API")

    @app.middleware("http")
    async def request_context_middleware(request: Request, call_next):  # type: ignore[override]
        # Preserve incoming request IDs or assign a new one for traceability.
        request_id = request.headers.get("X-Request-Id") or str(uuid4())
        request.state.request_id = request_id
        response = await call_next(request)
        response.headers.setdefault("X-Request-Id", request_id)
        return response

    app.add_exception_handler(CredentialError, credential_exception_handler)
    app.add_exception_handler(TenantMismatch, tenant_mismatch_exception_handler)
    app.add_exception_handler(RegistrationError, registration_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    mounted = [health_router, auth_router, audit_router, *routers]
    app.state.route_policies = bind_route_policies(
        mounted,
        merge_policies(CORE_ROUTE_POLICIES, route_policies),
    )
    for router in mounted:
        app.include_router(router)
    return app


app = create_app()
