from __future__ import annotations

import asyncio
import logging

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from clubhouse.core.config import get_settings
from clubhouse.core.errors import AuditEntryImmutable
from clubhouse.domain.models import AuditEntry
from clubhouse.persistence.db import SessionLocal
from clubhouse.persistence.repos import audit as audit_repo
from clubhouse.tests.utils.auth import (
    DEFAULT_PASSWORD,
    bearer_headers,
    create_member_with_headers,
    create_organization,
    create_user,
)
from clubhouse.tests.utils.courses import create_courses_app


async def _audit_entries() -> list[AuditEntry]:
    async with SessionLocal() as session:
        result = await session.execute(select(AuditEntry).order_by(AuditEntry.created_at.asc()))
        return list(result.scalars().all())


def _client(app) -> AsyncClient:
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")


@pytest.mark.asyncio
async def test_successful_mutation_writes_one_redacted_entry() -> None:
    app, _courses = create_courses_app()
    user, headers = await create_member_with_headers(role="coach")

    async with _client(app) as client:
        response = await client.post(
            "/courses",
            json={"name": "Yoga", "password": "door-code-1234", "capacity": 12},
            headers={**headers, "X-Request-Id": "req-courses-1", "User-Agent": "pytest-agent"},
        )

    assert response.status_code == 201
    # The live response is never redacted.
    assert response.json()["password"] == "door-code-1234"
    assert response.headers["X-Request-Id"] == "req-courses-1"

    entries = await _audit_entries()
    assert len(entries) == 1
    entry = entries[0]
    assert entry.success is True
    assert entry.error_message is None
    assert entry.organization_id == user.organization_id
    assert entry.user_id == user.id
    assert entry.user_email == user.email
    assert entry.user_role == "coach"
    assert entry.action == "CREATE"
    assert entry.entity_type == "Course"
    assert entry.entity_id == response.json()["id"]
    assert entry.new_values == {"name": "Yoga", "password": "[REDACTED]", "capacity": 12}
    assert entry.http_method == "POST"
    assert entry.request_url == "/courses"
    assert entry.request_id == "req-courses-1"
    assert entry.user_agent == "pytest-agent"
    assert entry.description == f"{user.email} created Course"
    assert entry.metadata_json == {"route": "courses.create", "status_code": 201}


@pytest.mark.asyncio
async def test_raised_and_returned_failures_are_recorded() -> None:
    app, _courses = create_courses_app()
    user, headers = await create_member_with_headers(role="coach")

    async with _client(app) as client:
        raised = await client.delete("/courses/c-1", headers=headers)
        returned = await client.patch("/courses/c-2", json={"room": "B"}, headers=headers)

    assert raised.status_code == 409
    assert returned.status_code == 422

    entries = await _audit_entries()
    assert len(entries) == 2
    deleted, patched = entries
    assert deleted.success is False
    assert deleted.action == "DELETE"
    assert deleted.entity_id == "c-1"
    assert deleted.error_message == "Course has recorded attendance"
    assert deleted.description == f"Failed: {user.email} deleted Course"
    assert patched.success is False
    assert patched.action == "UPDATE"
    assert patched.error_message == "Schedule overlaps"
    assert patched.new_values == {"room": "B"}


@pytest.mark.asyncio
async def test_action_override_applies() -> None:
    app, _courses = create_courses_app()
    user, headers = await create_member_with_headers(role="coach")

    async with _client(app) as client:
        response = await client.post("/courses/c-9/cancel", headers=headers)

    assert response.status_code == 200
    entries = await _audit_entries()
    assert [(entry.action, entry.entity_id) for entry in entries] == [("CANCEL", "c-9")]
    assert entries[0].description == f"{user.email} cancelled Course"


@pytest.mark.asyncio
async def test_exempt_routes_write_nothing() -> None:
    app, _courses = create_courses_app()
    _user, headers = await create_member_with_headers(role="admin")

    async with _client(app) as client:
        assert (await client.get("/health")).status_code == 200
        assert (await client.get("/courses", headers=headers)).status_code == 200
        assert (await client.get("/auth/me", headers=headers)).status_code == 200
        assert (await client.get("/audit-logs", headers=headers)).status_code == 200
        assert (await client.get("/audit-logs/stats", headers=headers)).status_code == 200

    assert await _audit_entries() == []


@pytest.mark.asyncio
async def test_login_outcomes_are_audited() -> None:
    org_id = await create_organization()
    user = await create_user(organization_id=org_id, email="door@club.test")

    async with _client(create_courses_app()[0]) as client:
        ok = await client.post("/auth/login", json={"email": "door@club.test", "password": DEFAULT_PASSWORD})
        bad = await client.post("/auth/login", json={"email": "door@club.test", "password": "nope-nope"})
        ghost = await client.post("/auth/login", json={"email": "ghost@club.test", "password": "nope-nope"})

    assert (ok.status_code, bad.status_code, ghost.status_code) == (200, 401, 401)
    entries = await _audit_entries()
    # Unknown accounts have no tenant to attribute the attempt to.
    assert [entry.action for entry in entries] == ["LOGIN", "FAILED_LOGIN"]
    login, failed = entries
    assert login.success is True
    assert login.user_id == user.id
    assert login.organization_id == org_id
    assert login.entity_type == "User"
    assert login.new_values == {"email": "door@club.test", "password": "[REDACTED]"}
    assert failed.success is False
    assert failed.error_message == "auth_failed"
    assert failed.description == "Failed: door@club.test failed to login User"
    assert failed.new_values["password"] == "[REDACTED]"


@pytest.mark.asyncio
async def test_refresh_and_logout_never_store_live_tokens() -> None:
    org_id = await create_organization()
    await create_user(organization_id=org_id, email="tokens@club.test")

    async with _client(create_courses_app()[0]) as client:
        login = (
            await client.post("/auth/login", json={"email": "tokens@club.test", "password": DEFAULT_PASSWORD})
        ).json()
        rotated = await client.post("/auth/refresh", json={"refresh_token": login["refresh_token"]})
        logout = await client.post(
            "/auth/logout",
            headers={"Authorization": f"Bearer {rotated.json()['access_token']}"},
        )

    assert rotated.status_code == 200
    assert logout.status_code == 200
    entries = await _audit_entries()
    assert [entry.action for entry in entries] == ["LOGIN", "OTHER", "LOGOUT"]
    refresh_entry = entries[1]
    assert refresh_entry.entity_type == "RefreshToken"
    assert refresh_entry.new_values == {"refresh_token": "[REDACTED]"}
    assert entries[2].new_values == {"revoked": 1}
    for entry in entries:
        serialized = repr(entry.new_values)
        assert login["refresh_token"] not in serialized
        assert rotated.json()["refresh_token"] not in serialized


@pytest.mark.asyncio
async def test_audit_store_failure_does_not_fail_request(monkeypatch, caplog) -> None:
    app, courses = create_courses_app()
    _user, headers = await create_member_with_headers(role="coach")

    async def _broken_append(session, entry, *, commit=True):
        raise OperationalError("INSERT INTO audit_logs", {}, Exception("database is locked"))

    monkeypatch.setattr(audit_repo, "append_entry", _broken_append)
    caplog.set_level(logging.WARNING, logger="clubhouse.services.audit")

    async with _client(app) as client:
        response = await client.post("/courses", json={"name": "Yoga"}, headers=headers)

    assert response.status_code == 201
    assert len(courses.invocations) == 1
    assert any("audit_entry_write_failed" in record.getMessage() for record in caplog.records)
    monkeypatch.undo()
    assert await _audit_entries() == []


@pytest.mark.asyncio
async def test_slow_audit_store_is_bounded_by_timeout(monkeypatch, caplog) -> None:
    app, _courses = create_courses_app()
    _user, headers = await create_member_with_headers(role="coach")

    async def _slow_append(session, entry, *, commit=True):
        await asyncio.sleep(5)
        return entry

    monkeypatch.setattr(audit_repo, "append_entry", _slow_append)
    monkeypatch.setattr(get_settings(), "audit_write_timeout_ms", 50)
    caplog.set_level(logging.WARNING, logger="clubhouse.services.audit")

    async with _client(app) as client:
        response = await client.post("/courses", json={"name": "Yoga"}, headers=headers)

    assert response.status_code == 201
    assert any("audit_entry_write_failed" in record.getMessage() for record in caplog.records)


@pytest.mark.asyncio
async def test_persisted_entries_are_immutable() -> None:
    app, _courses = create_courses_app()
    _user, headers = await create_member_with_headers(role="coach")
    async with _client(app) as client:
        await client.post("/courses", json={"name": "Yoga"}, headers=headers)

    async with SessionLocal() as session:
        entry = (await session.execute(select(AuditEntry))).scalar_one()
        entry.description = "rewritten"
        with pytest.raises(AuditEntryImmutable):
            await session.commit()
        await session.rollback()

    entries = await _audit_entries()
    assert entries[0].description != "rewritten"


@pytest.mark.asyncio
async def test_failed_login_is_attributed_to_targeted_account() -> None:
    org_a = await create_organization()
    org_b = await create_organization()
    caller = await create_user(organization_id=org_a, email="caller@a.test")
    target = await create_user(organization_id=org_b, email="target@b.test")

    async with _client(create_courses_app()[0]) as client:
        response = await client.post(
            "/auth/login",
            json={"email": "target@b.test", "password": "wrong-password"},
            headers=bearer_headers(caller),
        )

    assert response.status_code == 401
    entries = await _audit_entries()
    assert [entry.action for entry in entries] == ["FAILED_LOGIN"]
    assert entries[0].user_id == target.id
    assert entries[0].organization_id == org_b
