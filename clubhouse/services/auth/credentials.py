"""Credential lifecycle: password login, signed access tokens and rotating refresh tokens.

Access tokens are stateless HS256 JWTs and cannot be recalled before they expire.
Refresh tokens are opaque secrets stored as SHA-256 hashes; every redemption revokes
the presented token before a new pair is minted, so each refresh token is single-use.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
import hashlib
import logging
import secrets
from typing import Any
from uuid import uuid4

import jwt
from sqlalchemy.ext.asyncio import AsyncSession

from clubhouse.core.config import get_settings
from clubhouse.core.errors import (
    AuthFailed,
    EmailAlreadyRegistered,
    TokenExpired,
    TokenInvalid,
    TokenRevoked,
    UnknownOrganization,
)
from clubhouse.domain.models import RefreshToken, User
from clubhouse.domain.principal import Principal
from clubhouse.persistence.repos import refresh_tokens as refresh_repo
from clubhouse.persistence.repos import users as users_repo
from clubhouse.services.auth.passwords import (
    burn_verification,
    hash_password,
    needs_rehash,
    verify_password,
)
from clubhouse.services.auth.roles import normalize_role


logger = logging.getLogger(__name__)

TOKEN_PREFIX = "chrt_"
ACCESS_TOKEN_TYPE = "access"


@dataclass(frozen=True)
class ClientInfo:
    user_agent: str | None = None
    ip_address: str | None = None


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str
    expires_in: int
    refresh_expires_at: datetime
    principal: Principal

    def as_response(self) -> dict[str, Any]:
        return {
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "token_type": "bearer",
            "expires_in": self.expires_in,
            "principal": self.principal.model_dump(),
        }


def _utc_now() -> datetime:
    # Keep token timestamps in UTC for consistent expiry checks.
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    # SQLite returns naive datetimes; every stored timestamp is written in UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def principal_for_user(user: User) -> Principal:
    return Principal(
        id=user.id,
        organization_id=user.organization_id,
        role=normalize_role(user.role),
        email=user.email,
    )


def hash_refresh_token(raw_token: str) -> str:
    # Use SHA-256 for deterministic, non-reversible token storage.
    return hashlib.sha256(raw_token.encode("utf-8")).hexdigest()


def generate_refresh_token() -> tuple[str, str, str, str]:
    # Embed the row id so operators can trace a token without its secret.
    token_id = uuid4().hex
    secret = secrets.token_urlsafe(32)
    raw_token = f"{TOKEN_PREFIX}{token_id}_{secret}"
    return token_id, raw_token, raw_token[:12], hash_refresh_token(raw_token)


def encode_access_token(principal: Principal, *, now: datetime | None = None) -> str:
    settings = get_settings()
    issued_at = now or _utc_now()
    claims = {
        "sub": principal.id,
        "email": principal.email,
        "organization_id": principal.organization_id,
        "role": principal.role,
        "typ": ACCESS_TOKEN_TYPE,
        "jti": uuid4().hex,
        "iat": issued_at,
        "exp": issued_at + timedelta(seconds=settings.access_token_ttl_seconds),
    }
    return jwt.encode(claims, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> Principal:
    settings = get_settings()
    try:
        claims = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm],
            options={"require": ["exp", "iat", "sub"]},
        )
    except jwt.ExpiredSignatureError as exc:
        raise TokenExpired("Access token expired") from exc
    except jwt.InvalidTokenError as exc:
        raise TokenInvalid("Access token rejected") from exc
    if claims.get("typ") != ACCESS_TOKEN_TYPE:
        raise TokenInvalid("Unexpected token type")
    try:
        return Principal(
            id=claims["sub"],
            organization_id=claims["organization_id"],
            role=claims["role"],
            email=claims["email"],
        )
    except (KeyError, ValueError) as exc:
        raise TokenInvalid("Access token claims incomplete") from exc


async def issue_token_pair(
    session: AsyncSession,
    user: User,
    *,
    client: ClientInfo,
    now: datetime | None = None,
) -> TokenPair:
    # Persist the hashed refresh token; callers own the commit.
    settings = get_settings()
    issued_at = now or _utc_now()
    principal = principal_for_user(user)
    token_id, raw_token, token_prefix, token_hash = generate_refresh_token()
    expires_at = issued_at + timedelta(days=settings.refresh_token_ttl_days)
    await refresh_repo.add_token(
        session,
        RefreshToken(
            id=token_id,
            user_id=user.id,
            token_prefix=token_prefix,
            token_hash=token_hash,
            issued_at=issued_at,
            expires_at=expires_at,
            revoked=False,
            revoked_at=None,
            user_agent=client.user_agent,
            ip_address=client.ip_address,
        ),
    )
    return TokenPair(
        access_token=encode_access_token(principal, now=issued_at),
        refresh_token=raw_token,
        expires_in=settings.access_token_ttl_seconds,
        refresh_expires_at=expires_at,
        principal=principal,
    )


async def register_user(
    session: AsyncSession,
    *,
    organization_id: str,
    email: str,
    password: str,
    first_name: str,
    last_name: str,
    role: str,
    client: ClientInfo,
) -> TokenPair:
    if not await users_repo.organization_exists(session, organization_id):
        raise UnknownOrganization("Organization not found")
    if await users_repo.email_in_use(session, email):
        raise EmailAlreadyRegistered("Email already registered")
    user = await users_repo.add_user(
        session,
        User(
            organization_id=organization_id,
            email=email.strip().lower(),
            password_hash=hash_password(password),
            first_name=first_name,
            last_name=last_name,
            role=normalize_role(role),
            status="active",
        ),
    )
    pair = await issue_token_pair(session, user, client=client)
    await session.commit()
    logger.info("user_registered user_id=%s organization_id=%s", user.id, organization_id)
    return pair


async def login(
    session: AsyncSession,
    *,
    email: str,
    password: str,
    client: ClientInfo,
    now: datetime | None = None,
) -> TokenPair:
    # Every rejection raises the same AuthFailed; only logs see the reason.
    user = await users_repo.get_user_by_email(session, email)
    if user is None:
        burn_verification(password)
        logger.info("login_failed reason=unknown_email")
        raise AuthFailed()
    subject = principal_for_user(user)
    if not verify_password(user.password_hash, password):
        logger.info("login_failed reason=bad_password user_id=%s", user.id)
        raise AuthFailed(subject=subject)
    if user.status != "active":
        logger.info("login_failed reason=inactive user_id=%s status=%s", user.id, user.status)
        raise AuthFailed(subject=subject)

    logged_in_at = now or _utc_now()
    user.last_login_at = logged_in_at
    if needs_rehash(user.password_hash):
        user.password_hash = hash_password(password)
    pair = await issue_token_pair(session, user, client=client, now=logged_in_at)
    await session.commit()
    return pair


async def refresh(
    session: AsyncSession,
    *,
    raw_token: str,
    client: ClientInfo,
    now: datetime | None = None,
) -> TokenPair:
    redeemed_at = now or _utc_now()
    row = await refresh_repo.get_by_hash(session, hash_refresh_token(raw_token))
    if row is None:
        logger.info("refresh_failed reason=unknown_token")
        raise TokenInvalid()

    user = await users_repo.get_user(session, row.user_id)
    subject = principal_for_user(user) if user is not None else None
    if row.revoked:
        logger.warning("refresh_failed reason=revoked token_id=%s user_id=%s", row.id, row.user_id)
        raise TokenRevoked(subject=subject)
    if redeemed_at >= _as_utc(row.expires_at):
        logger.info("refresh_failed reason=expired token_id=%s user_id=%s", row.id, row.user_id)
        raise TokenExpired(subject=subject)
    if user is None or user.status != "active":
        logger.info("refresh_failed reason=inactive_owner token_id=%s", row.id)
        raise TokenInvalid(subject=subject)

    # Revoke and commit before minting so a replay observes the revoked row.
    claimed = await refresh_repo.revoke_if_active(session, token_id=row.id, revoked_at=redeemed_at)
    if not claimed:
        await session.rollback()
        logger.warning("refresh_failed reason=concurrent_redemption token_id=%s", row.id)
        raise TokenRevoked(subject=subject)
    await session.commit()

    pair = await issue_token_pair(session, user, client=client, now=redeemed_at)
    await session.commit()
    logger.info("refresh_rotated parent_token_id=%s user_id=%s", row.id, user.id)
    return pair


async def logout(session: AsyncSession, *, principal: Principal, now: datetime | None = None) -> int:
    # Revoke every outstanding refresh token; issued access tokens live until expiry.
    revoked = await refresh_repo.revoke_all_for_user(
        session,
        user_id=principal.id,
        revoked_at=now or _utc_now(),
    )
    await session.commit()
    logger.info("logout user_id=%s revoked_tokens=%s", principal.id, revoked)
    return revoked
