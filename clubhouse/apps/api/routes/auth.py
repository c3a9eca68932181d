from __future__ import annotations

from fastapi import APIRouter, Depends, Request, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from clubhouse.apps.api.deps import bind_principal, client_info, get_current_principal, get_db
from clubhouse.apps.api.pipeline import SecuredRoute
from clubhouse.domain.principal import Principal, Role
from clubhouse.services.auth import credentials


router = APIRouter(prefix="/auth", tags=["auth"], route_class=SecuredRoute)


class RegisterRequest(BaseModel):
    organization_id: str
    email: str = Field(min_length=3, max_length=255)
    password: str = Field(min_length=8, max_length=128)
    first_name: str = Field(min_length=1, max_length=100)
    last_name: str = Field(min_length=1, max_length=100)
    role: Role = "member"


class LoginRequest(BaseModel):
    email: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1, max_length=128)


class RefreshRequest(BaseModel):
    refresh_token: str = Field(min_length=1, max_length=256)


class TokenResponse(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int
    principal: Principal


class LogoutResponse(BaseModel):
    revoked: int


def _token_response(pair: credentials.TokenPair) -> TokenResponse:
    return TokenResponse(**pair.as_response())


@router.post(
    "/register",
    name="auth.register",
    status_code=status.HTTP_201_CREATED,
    response_model=TokenResponse,
)
async def register(
    payload: RegisterRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> TokenResponse:
    pair = await credentials.register_user(
        db,
        organization_id=payload.organization_id,
        email=payload.email,
        password=payload.password,
        first_name=payload.first_name,
        last_name=payload.last_name,
        role=payload.role,
        client=client_info(request),
    )
    bind_principal(request, pair.principal)
    return _token_response(pair)


@router.post("/login", name="auth.login", response_model=TokenResponse)
async def login(
    payload: LoginRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> TokenResponse:
    pair = await credentials.login(
        db,
        email=payload.email,
        password=payload.password,
        client=client_info(request),
    )
    bind_principal(request, pair.principal)
    return _token_response(pair)


@router.post("/refresh", name="auth.refresh", response_model=TokenResponse)
async def refresh(
    payload: RefreshRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> TokenResponse:
    pair = await credentials.refresh(
        db,
        raw_token=payload.refresh_token,
        client=client_info(request),
    )
    bind_principal(request, pair.principal)
    return _token_response(pair)


@router.post("/logout", name="auth.logout", response_model=LogoutResponse)
async def logout(
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> LogoutResponse:
    revoked = await credentials.logout(db, principal=principal)
    return LogoutResponse(revoked=revoked)


@router.get("/me", name="auth.me", response_model=Principal)
async def me(principal: Principal = Depends(get_current_principal)) -> Principal:
    return principal
