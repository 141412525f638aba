from __future__ import annotations

from dataclasses import dataclass, field
import logging
from typing import Any, Mapping

from sqlalchemy.ext.asyncio import AsyncSession

from paritymark.core.config import get_settings
from paritymark.domain.models import Role, User
from paritymark.persistence.repos import identity as identity_repo


logger = logging.getLogger(__name__)

ROLE_SYSTEM_ADMIN = "system-admin"
ROLE_ASSESSMENT_ADMIN = "assessment-admin"
ROLE_MARKER = "marker"

CORE_PERMISSIONS: dict[str, str] = {
    "config.view": "View deployment configuration versions",
    "config.edit": "Create drafts and edit configuration artifacts",
    "config.activate": "Activate a configuration version",
    "assessment.view": "View the assessment structure",
    "assessment.manage": "Author the assessment structure",
    "marking.view": "Read marks",
    "marking.edit": "Save and submit marks",
    "audit.view": "Read the audit trail",
}

CORE_ROLE_NAMES: dict[str, str] = {
    ROLE_SYSTEM_ADMIN: "System administrator",
    ROLE_ASSESSMENT_ADMIN: "Assessment administrator",
    ROLE_MARKER: "Marker",
}

CORE_ROLE_PERMISSIONS: dict[str, list[str]] = {
    ROLE_SYSTEM_ADMIN: sorted(CORE_PERMISSIONS),
    ROLE_ASSESSMENT_ADMIN: ["config.view", "assessment.view", "assessment.manage"],
    ROLE_MARKER: ["assessment.view", "marking.view", "marking.edit"],
}

DEV_ADMIN_ROLES = (ROLE_SYSTEM_ADMIN, ROLE_ASSESSMENT_ADMIN)


@dataclass(frozen=True)
class CallerToken:
    # Identity asserted by the upstream IdP; display name is informational.
    external_id: str
    display_name: str


@dataclass(frozen=True)
class CallerRole:
    key: str
    name: str
    # Explicit (deployment_code, qig_code) reviewer scopes attached to this role.
    scopes: tuple[tuple[str, str], ...] = field(default_factory=tuple)


def extract_caller_token(headers: Mapping[str, str]) -> CallerToken | None:
    # Missing or blank external ids are anonymous callers.
    settings = get_settings()
    external_id = (headers.get(settings.identity_external_id_header) or "").strip()
    if not external_id:
        return None
    display_name = (headers.get(settings.identity_display_name_header) or "").strip()
    return CallerToken(external_id=external_id, display_name=display_name or external_id)


async def resolve_or_create_caller(session: AsyncSession, token: CallerToken | None) -> User | None:
    """Resolve a caller token to a user row, creating it on first sight.

    Archived users keep their external id, so they resolve to ``None`` rather
    than being silently re-provisioned.
    """
    if token is None:
        return None
    user = await identity_repo.get_user_by_external_id(session, token.external_id)
    if user is None:
        user = await identity_repo.get_or_create_user(
            session,
            external_id=token.external_id,
            display_name=token.display_name,
        )
        await session.commit()
        logger.info("caller_created user_id=%s external_id=%s", user.id, user.external_id)
    if user.archived_at is not None:
        logger.info("caller_archived external_id=%s", token.external_id)
        return None
    return user


async def permissions_for(session: AsyncSession, caller_id: int) -> set[str]:
    return await identity_repo.list_permission_keys(session, caller_id)


async def active_roles_for(
    session: AsyncSession,
    caller_id: int,
    *,
    deployment_code: str | None = None,
) -> list[CallerRole]:
    # Role records plus their reviewer scopes, as consumed by the scoping filter.
    # With a deployment code only that deployment's scopes are loaded.
    roles = await identity_repo.list_active_roles(session, caller_id)
    scopes = await identity_repo.list_reviewer_scopes(
        session,
        role_ids=[role.id for role in roles],
        deployment_code=deployment_code,
    )
    by_role: dict[int, list[tuple[str, str]]] = {}
    for scope in scopes:
        by_role.setdefault(scope.role_id, []).append((scope.deployment_code, scope.qig_code))
    return [
        CallerRole(key=role.key, name=role.name, scopes=tuple(by_role.get(role.id, [])))
        for role in roles
    ]


async def profile_for(session: AsyncSession, user: User) -> dict[str, Any]:
    """Identity, active roles and the flattened permission set of one caller."""
    roles = await active_roles_for(session, user.id)
    permissions = await permissions_for(session, user.id)
    return {
        "id": user.id,
        "external_id": user.external_id,
        "display_name": user.display_name,
        "created_at": user.created_at.isoformat() if user.created_at else None,
        "roles": [
            {
                "key": role.key,
                "name": role.name,
                "scopes": [{"deployment_code": code, "qig_code": qig} for code, qig in role.scopes],
            }
            for role in roles
        ],
        "permissions": sorted(permissions),
    }


async def ensure_core_rbac(session: AsyncSession) -> dict[str, Role]:
    # Idempotent; safe to run on every bootstrap.
    permissions = {}
    for key, description in CORE_PERMISSIONS.items():
        permissions[key] = await identity_repo.get_or_create_permission(
            session,
            key=key,
            description=description,
        )
    roles: dict[str, Role] = {}
    for key, name in CORE_ROLE_NAMES.items():
        role = await identity_repo.get_or_create_role(session, key=key, name=name)
        for permission_key in CORE_ROLE_PERMISSIONS[key]:
            await identity_repo.grant_permission(
                session,
                role_id=role.id,
                permission_id=permissions[permission_key].id,
            )
        roles[key] = role
    return roles


async def grant_role(
    session: AsyncSession,
    *,
    external_id: str,
    role_key: str,
    role_name: str | None = None,
    display_name: str | None = None,
) -> User:
    user = await identity_repo.get_or_create_user(
        session,
        external_id=external_id,
        display_name=display_name or external_id,
    )
    role = await identity_repo.get_or_create_role(session, key=role_key, name=role_name or role_key)
    await identity_repo.assign_role(session, user_id=user.id, role_id=role.id)
    return user


async def add_reviewer_scope(
    session: AsyncSession,
    *,
    role_key: str,
    deployment_code: str,
    qig_code: str,
) -> Role:
    role = await identity_repo.get_or_create_role(session, key=role_key, name=role_key)
    await identity_repo.add_reviewer_scope(
        session,
        role_id=role.id,
        deployment_code=deployment_code,
        qig_code=qig_code,
    )
    return role


async def ensure_dev_admin(session: AsyncSession, user: User) -> bool:
    # Local-only bootstrap: one configured external id gets the admin roles.
    settings = get_settings()
    if not settings.dev_admin_seed_enabled or not settings.dev_admin_external_id:
        return False
    if user.external_id != settings.dev_admin_external_id:
        return False
    roles = await ensure_core_rbac(session)
    for key in DEV_ADMIN_ROLES:
        await identity_repo.assign_role(session, user_id=user.id, role_id=roles[key].id)
    await session.commit()
    logger.info("dev_admin_seeded user_id=%s", user.id)
    return True
