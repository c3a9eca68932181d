from __future__ import annotations

import logging
from typing import AsyncGenerator

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from clubhouse.core.config import get_settings
from clubhouse.core.errors import CredentialError, TokenInvalid
from clubhouse.domain.principal import Principal
from clubhouse.persistence.db import get_session
from clubhouse.services.auth.credentials import ClientInfo, decode_access_token
from clubhouse.services.auth.roles import role_allows
from clubhouse.services.tenancy import TenantContext


logger = logging.getLogger(__name__)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    # One AsyncSession per request; context manager ensures close on success/error.
    async with get_session() as session:
        yield session


def _forbidden_error(message: str) -> HTTPException:
    # Use 403 for authenticated principals lacking permissions.
    return HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail={"code": "AUTH_FORBIDDEN", "message": message},
    )


def _parse_bearer_token(header_value: str | None) -> str | None:
    # Enforce Bearer token format for access token authentication.
    if not header_value:
        return None
    parts = header_value.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise TokenInvalid("Malformed authorization header")
    return parts[1]


def authenticate_request(request: Request) -> Principal | None:
    """Verify the bearer access token once and attach the result to the request.

    A missing header leaves the request anonymous. A rejected token is kept on
    request.state so protected routes can raise it from get_current_principal;
    public routes stay reachable.
    """
    request.state.principal = None
    request.state.credential_error = None
    try:
        token = _parse_bearer_token(request.headers.get(get_settings().auth_header))
        if token is None:
            return None
        principal = decode_access_token(token)
    except CredentialError as exc:
        request.state.credential_error = exc
        logger.info("access_token_rejected reason=%s path=%s", exc.reason, request.url.path)
        return None
    request.state.principal = principal
    return principal


def bind_principal(request: Request, principal: Principal) -> None:
    # Credential endpoints attach the freshly authenticated actor for audit capture.
    request.state.principal = principal


def get_request_principal(request: Request) -> Principal | None:
    return getattr(request.state, "principal", None)


async def get_current_principal(request: Request) -> Principal:
    principal = get_request_principal(request)
    if principal is not None:
        return principal
    error = getattr(request.state, "credential_error", None)
    if error is not None:
        raise error
    raise TokenInvalid("Missing bearer token")


async def get_tenant_context(
    request: Request,
    principal: Principal = Depends(get_current_principal),
) -> TenantContext:
    context = getattr(request.state, "tenant_context", None)
    if context is None:
        # Non-pipeline routes still derive the tenant from the verified principal only.
        context = TenantContext(organization_id=principal.organization_id, principal=principal)
    return context


def require_role(minimum_role: str):
    # Dependency factory to enforce RBAC at the route level.
    async def _dependency(principal: Principal = Depends(get_current_principal)) -> Principal:
        if not role_allows(role=principal.role, minimum_role=minimum_role):
            logger.info(
                "rbac_forbidden user_id=%s role=%s required_role=%s",
                principal.id,
                principal.role,
                minimum_role,
            )
            raise _forbidden_error("Insufficient role for this operation")
        return principal

    return _dependency


def client_info(request: Request) -> ClientInfo:
    return ClientInfo(
        user_agent=request.headers.get("user-agent"),
        ip_address=request.client.host if request.client else None,
    )
