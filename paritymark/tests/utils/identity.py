from __future__ import annotations

from uuid import uuid4

from paritymark.persistence.db import SessionLocal
from paritymark.persistence.repos import identity as identity_repo
from paritymark.services.identity import ensure_core_rbac


def caller_headers(external_id: str, display_name: str | None = None) -> dict[str, str]:
    return {
        "X-User-External-Id": external_id,
        "X-User-Display-Name": display_name or external_id,
    }


async def create_caller(
    *,
    roles: tuple[str, ...] = (),
    permissions: tuple[str, ...] = (),
    external_id: str | None = None,
) -> tuple[dict[str, str], int]:
    # Provision a caller with core roles and/or an ad-hoc role holding extra permissions.
    external_id = external_id or f"user-{uuid4().hex}"
    async with SessionLocal() as session:
        await ensure_core_rbac(session)
        user = await identity_repo.get_or_create_user(
            session,
            external_id=external_id,
            display_name=f"Test {external_id}",
        )
        for role_key in roles:
            role = await identity_repo.get_or_create_role(session, key=role_key, name=role_key)
            await identity_repo.assign_role(session, user_id=user.id, role_id=role.id)
        if permissions:
            role = await identity_repo.get_or_create_role(
                session,
                key=f"test-{uuid4().hex}",
                name="Test role",
            )
            for key in permissions:
                permission = await identity_repo.get_or_create_permission(session, key=key)
                await identity_repo.grant_permission(session, role_id=role.id, permission_id=permission.id)
            await identity_repo.assign_role(session, user_id=user.id, role_id=role.id)
        await session.commit()
        user_id = user.id
    return caller_headers(external_id, f"Test {external_id}"), user_id
