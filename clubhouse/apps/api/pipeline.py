"""Security pipeline wrapped around every business route.

Order per request: verify credential, resolve tenant context, run the tenant guard,
execute the handler, capture the audit outcome, return the response. Collaborating
routers opt in with ``APIRouter(route_class=SecuredRoute)``; create_app refuses to
start when any API route bypasses the pipeline.
"""

from __future__ import annotations

import email.message
import json
import logging
from typing import Any, Awaitable, Callable, Iterable, Mapping

from fastapi import APIRouter, HTTPException, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.routing import APIRoute

from clubhouse.apps.api.deps import authenticate_request, get_request_principal
from clubhouse.core.errors import CredentialError, RoutePolicyError, TenantMismatch
from clubhouse.domain.policy import DEFAULT_POLICY, RoutePolicy
from clubhouse.domain.principal import Principal
from clubhouse.services.audit import capture_outcome, get_request_context
from clubhouse.services.tenancy import enforce_tenant_access, resolve_tenant_context


logger = logging.getLogger(__name__)

RouteHandler = Callable[[Request], Awaitable[Response]]


def _is_json_content_type(content_type: str | None) -> bool:
    # Same rule FastAPI applies before decoding a body parameter as JSON.
    if not content_type:
        return True
    message = email.message.Message()
    message["content-type"] = content_type
    if message.get_content_maintype() != "application":
        return False
    subtype = message.get_content_subtype()
    return subtype == "json" or subtype.endswith("+json")


async def read_json_body(request: Request) -> Any:
    # Starlette caches the body on the request, so the handler can still read it.
    if not _is_json_content_type(request.headers.get("content-type")):
        return None
    if not await request.body():
        return None
    try:
        return await request.json()
    except ValueError:
        return None


def _response_json(response: Response) -> Any:
    raw_body = getattr(response, "body", None)
    if not raw_body:
        return None
    try:
        return json.loads(raw_body)
    except (TypeError, ValueError):
        return None


def _detail_message(detail: Any) -> str:
    if isinstance(detail, dict):
        return str(detail.get("message") or detail.get("code") or "Request failed")
    if detail:
        return str(detail)
    return "Request failed"


def _describe_failure(exc: Exception) -> tuple[str, int]:
    # Credential failures carry their internal kind, never the token itself.
    if isinstance(exc, CredentialError):
        return exc.reason, 401
    if isinstance(exc, TenantMismatch):
        return str(exc), 403
    if isinstance(exc, HTTPException):
        return _detail_message(exc.detail), exc.status_code
    if isinstance(exc, RequestValidationError):
        return "Request validation failed", 422
    return str(exc) or type(exc).__name__, 500


class SecuredRoute(APIRoute):
    def get_route_handler(self) -> RouteHandler:
        handler = super().get_route_handler()

        async def secured_handler(request: Request) -> Response:
            return await self._run_pipeline(request, handler)

        return secured_handler

    def policy_for(self, request: Request) -> RoutePolicy:
        # Policies are resolved by route name at startup and stored on the app.
        policies = getattr(request.app.state, "route_policies", None) or {}
        return policies.get(self.name, DEFAULT_POLICY)

    async def _run_pipeline(self, request: Request, handler: RouteHandler) -> Response:
        policy = self.policy_for(request)
        authenticate_request(request)
        body = await read_json_body(request)
        context = resolve_tenant_context(get_request_principal(request), policy)
        request.state.tenant_context = context
        try:
            enforce_tenant_access(
                context,
                body=body,
                path_params=request.path_params,
                query_params=request.query_params.multi_items(),
            )
            response = await handler(request)
        except Exception as exc:
            error_message, status_code = _describe_failure(exc)
            await self._capture(
                request,
                policy,
                body,
                success=False,
                error_message=error_message,
                status_code=status_code,
                subject=getattr(exc, "subject", None),
            )
            raise

        result = _response_json(response)
        success = response.status_code < 400
        error_message = None
        if not success:
            detail = result.get("detail") if isinstance(result, dict) else None
            error_message = _detail_message(detail)
        await self._capture(
            request,
            policy,
            body,
            success=success,
            result=result,
            error_message=error_message,
            status_code=response.status_code,
        )
        return response

    async def _capture(
        self,
        request: Request,
        policy: RoutePolicy,
        body: Any,
        *,
        success: bool,
        status_code: int,
        result: Any = None,
        error_message: str | None = None,
        subject: Principal | None = None,
    ) -> None:
        # A credential failure names the account it targeted; that account is the actor.
        await capture_outcome(
            principal=subject or get_request_principal(request),
            policy=policy,
            method=request.method,
            path=request.url.path,
            path_params=request.path_params,
            body=body,
            result=result,
            success=success,
            error_message=error_message,
            request_context=get_request_context(request),
            metadata={"route": self.name, "status_code": status_code},
        )


def bind_route_policies(
    routers: Iterable[APIRouter],
    policies: Mapping[str, RoutePolicy],
) -> dict[str, RoutePolicy]:
    """Resolve the policy of every route by name, failing closed on any mismatch.

    Walks the routers before they are mounted, so the result does not depend on
    how the application flattens included routers.
    """
    secured: set[str] = set()
    for router in routers:
        for route in router.routes:
            if not isinstance(route, APIRoute):
                continue
            if not isinstance(route, SecuredRoute):
                raise RoutePolicyError(f"Route {route.name} ({route.path}) is not mounted through SecuredRoute")
            secured.add(route.name)

    unknown = sorted(set(policies) - secured)
    if unknown:
        raise RoutePolicyError(f"Route policies reference unknown routes: {', '.join(unknown)}")

    logger.info("route_policies_bound routes=%s policies=%s", len(secured), len(policies))
    return {name: policies.get(name, DEFAULT_POLICY) for name in secured}
