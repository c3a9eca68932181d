from __future__ import annotations

from datetime import datetime, timedelta, timezone

import jwt
import pytest

from clubhouse.core.config import get_settings
from clubhouse.core.errors import TokenExpired, TokenInvalid
from clubhouse.domain.principal import Principal
from clubhouse.services.auth.credentials import (
    TOKEN_PREFIX,
    decode_access_token,
    encode_access_token,
    generate_refresh_token,
    hash_refresh_token,
)


PRINCIPAL = Principal(id="user-1", organization_id="org-1", role="coach", email="coach@club.test")


def test_access_token_round_trips_principal() -> None:
    token = encode_access_token(PRINCIPAL)
    assert decode_access_token(token) == PRINCIPAL


def test_access_token_claims_and_lifetime() -> None:
    settings = get_settings()
    issued_at = datetime.now(timezone.utc).replace(microsecond=0)
    token = encode_access_token(PRINCIPAL, now=issued_at)
    claims = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    assert claims["sub"] == "user-1"
    assert claims["organization_id"] == "org-1"
    assert claims["role"] == "coach"
    assert claims["email"] == "coach@club.test"
    assert claims["typ"] == "access"
    assert claims["exp"] - claims["iat"] == 900
    # Each token carries a unique id.
    assert claims["jti"] != jwt.decode(
        encode_access_token(PRINCIPAL, now=issued_at),
        settings.jwt_secret,
        algorithms=[settings.jwt_algorithm],
    )["jti"]


def test_expired_access_token_is_rejected() -> None:
    issued_at = datetime.now(timezone.utc) - timedelta(hours=1)
    token = encode_access_token(PRINCIPAL, now=issued_at)
    with pytest.raises(TokenExpired):
        decode_access_token(token)


def test_tampered_access_token_is_rejected() -> None:
    token = encode_access_token(PRINCIPAL)
    forged = jwt.encode(
        {**jwt.decode(token, options={"verify_signature": False}), "organization_id": "org-2"},
        "another-signing-secret-0123456789abcdef",
        algorithm="HS256",
    )
    with pytest.raises(TokenInvalid):
        decode_access_token(forged)
    with pytest.raises(TokenInvalid):
        decode_access_token("not-a-jwt")


def test_non_access_token_type_is_rejected() -> None:
    settings = get_settings()
    now = datetime.now(timezone.utc)
    token = jwt.encode(
        {
            "sub": "user-1",
            "email": "coach@club.test",
            "organization_id": "org-1",
            "role": "coach",
            "typ": "refresh",
            "iat": now,
            "exp": now + timedelta(minutes=5),
        },
        settings.jwt_secret,
        algorithm=settings.jwt_algorithm,
    )
    with pytest.raises(TokenInvalid):
        decode_access_token(token)


def test_refresh_token_format_and_hash() -> None:
    token_id, raw_token, token_prefix, token_hash = generate_refresh_token()
    assert raw_token.startswith(f"{TOKEN_PREFIX}{token_id}_")
    assert raw_token.startswith(token_prefix)
    assert token_hash == hash_refresh_token(raw_token)
    assert len(token_hash) == 64
    assert raw_token not in token_hash
    assert generate_refresh_token()[1] != raw_token
