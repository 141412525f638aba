from __future__ import annotations

from datetime import datetime, timezone
from uuid import uuid4

import pytest
from sqlalchemy import update

from paritymark.core.errors import PermissionDeniedError
from paritymark.domain.models import Role, User
from paritymark.persistence.db import SessionLocal
from paritymark.services.audit import internal_meta
from paritymark.services.authz.gate import check_permission, enforce_permission
from paritymark.services.identity import (
    CallerToken,
    active_roles_for,
    permissions_for,
    resolve_or_create_caller,
)
from paritymark.tests.utils.audit import audit_watermark, events_since
from paritymark.tests.utils.identity import create_caller


def _token(external_id: str | None = None) -> CallerToken:
    external_id = external_id or f"user-{uuid4().hex}"
    return CallerToken(external_id=external_id, display_name=f"Name {external_id}")


@pytest.mark.asyncio
async def test_anonymous_caller_is_unauthenticated() -> None:
    async with SessionLocal() as session:
        check = await check_permission(session, None, "config.activate")
    assert check.allowed is False
    assert check.reason == "unauthenticated"
    assert check.caller is None


@pytest.mark.asyncio
async def test_anonymous_denial_is_audited_once_with_null_subject() -> None:
    mark = await audit_watermark()
    async with SessionLocal() as session:
        with pytest.raises(PermissionDeniedError) as excinfo:
            await enforce_permission(
                session,
                None,
                "config.activate",
                meta=internal_meta("/config/D1/versions/2/activate"),
            )
    assert excinfo.value.code == "unauthenticated"

    events = await events_since(mark, event_type="PERMISSION_DENIED")
    assert len(events) == 1
    payload = events[0].payload
    assert payload["subject"] is None
    assert payload["meta"]["permission"] == "config.activate"
    assert payload["meta"]["reason"] == "unauthenticated"
    assert payload["meta"]["path"] == "/config/D1/versions/2/activate"
    assert events[0].outcome == "denied"
    assert events[0].actor_id is None


@pytest.mark.asyncio
async def test_missing_permission_denial_records_subject() -> None:
    headers, user_id = await create_caller()
    external_id = headers["X-User-External-Id"]
    mark = await audit_watermark()
    async with SessionLocal() as session:
        with pytest.raises(PermissionDeniedError) as excinfo:
            await enforce_permission(
                session,
                CallerToken(external_id=external_id, display_name="x"),
                "config.edit",
                meta=internal_meta("/config/D1/drafts"),
            )
    assert excinfo.value.code == "missing_permission"
    assert excinfo.value.permission_key == "config.edit"

    events = await events_since(mark, event_type="PERMISSION_DENIED")
    assert len(events) == 1
    assert events[0].payload["subject"]["id"] == user_id
    assert events[0].payload["subject"]["external_id"] == external_id
    assert events[0].payload["meta"]["reason"] == "missing_permission"
    assert events[0].actor_id == user_id


@pytest.mark.asyncio
async def test_granted_check_returns_permissions_and_writes_nothing() -> None:
    headers, _user_id = await create_caller(roles=("assessment-admin",))
    mark = await audit_watermark()
    async with SessionLocal() as session:
        check = await enforce_permission(
            session,
            CallerToken(external_id=headers["X-User-External-Id"], display_name="x"),
            "assessment.view",
            meta=internal_meta("/assessment/D1/tree"),
        )
    assert check.allowed is True
    assert check.reason == "granted"
    assert {"config.view", "assessment.view", "assessment.manage"} <= check.permissions
    assert "config.activate" not in check.permissions
    assert await events_since(mark) == []


@pytest.mark.asyncio
async def test_first_sight_creates_caller_once() -> None:
    token = _token()
    async with SessionLocal() as session:
        first = await resolve_or_create_caller(session, token)
        second = await resolve_or_create_caller(session, token)
    assert first is not None and second is not None
    assert first.id == second.id
    assert first.display_name == token.display_name


@pytest.mark.asyncio
async def test_archived_caller_resolves_to_none() -> None:
    token = _token()
    async with SessionLocal() as session:
        user = await resolve_or_create_caller(session, token)
        assert user is not None
        await session.execute(
            update(User).where(User.id == user.id).values(archived_at=datetime.now(timezone.utc))
        )
        await session.commit()

    async with SessionLocal() as session:
        assert await resolve_or_create_caller(session, token) is None
        check = await check_permission(session, token, "config.view")
    assert check.reason == "unauthenticated"


@pytest.mark.asyncio
async def test_archived_roles_grant_nothing() -> None:
    role_key = f"archived-{uuid4().hex}"
    headers, user_id = await create_caller(roles=(role_key,), permissions=())
    async with SessionLocal() as session:
        await session.execute(
            update(Role).where(Role.key == role_key).values(archived_at=datetime.now(timezone.utc))
        )
        await session.commit()
        roles = await active_roles_for(session, user_id)
        permissions = await permissions_for(session, user_id)
    assert role_key not in {role.key for role in roles}
    assert permissions == set()


@pytest.mark.asyncio
async def test_dev_admin_is_bootstrapped(dev_admin_settings) -> None:
    async with SessionLocal() as session:
        check = await check_permission(
            session,
            CallerToken(external_id="admin@pm", display_name="Admin"),
            "config.activate",
        )
    assert check.allowed is True
    assert check.caller is not None
    async with SessionLocal() as session:
        roles = {role.key for role in await active_roles_for(session, check.caller.id)}
    assert {"system-admin", "assessment-admin"} <= roles
