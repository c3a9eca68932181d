from __future__ import annotations

import pytest

from clubhouse.services.auth.passwords import hash_password, needs_rehash, verify_password
from clubhouse.services.auth.roles import normalize_role, role_allows


def test_password_hash_verifies_only_the_original() -> None:
    password_hash = hash_password("s3cret-passphrase")
    assert password_hash.startswith("$argon2id$")
    assert verify_password(password_hash, "s3cret-passphrase") is True
    assert verify_password(password_hash, "wrong-passphrase") is False
    assert needs_rehash(password_hash) is False


def test_missing_or_garbage_hash_never_verifies() -> None:
    assert verify_password(None, "anything") is False
    assert verify_password("", "anything") is False
    assert verify_password("not-an-argon2-hash", "anything") is False


def test_role_ordering() -> None:
    assert role_allows(role="admin", minimum_role="coach") is True
    assert role_allows(role="coach", minimum_role="coach") is True
    assert role_allows(role="member", minimum_role="coach") is False
    assert role_allows(role="unknown", minimum_role="member") is False


def test_normalize_role() -> None:
    assert normalize_role(" Admin ") == "admin"
    with pytest.raises(ValueError):
        normalize_role("owner")
