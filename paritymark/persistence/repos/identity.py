from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from paritymark.domain.models import (
    Permission,
    ReviewerScope,
    Role,
    RolePermission,
    User,
    UserRole,
)
from paritymark.persistence.upsert import dialect_insert


async def get_user_by_external_id(session: AsyncSession, external_id: str) -> User | None:
    result = await session.execute(select(User).where(User.external_id == external_id))
    return result.scalar_one_or_none()


async def get_user(session: AsyncSession, user_id: int) -> User | None:
    result = await session.execute(select(User).where(User.id == user_id))
    return result.scalar_one_or_none()


async def get_or_create_user(session: AsyncSession, *, external_id: str, display_name: str) -> User:
    # Concurrent first sightings of the same external id collapse onto one row.
    stmt = dialect_insert(session, User).values(external_id=external_id, display_name=display_name)
    await session.execute(stmt.on_conflict_do_nothing(index_elements=[User.external_id]))
    result = await session.execute(
        select(User).where(User.external_id == external_id).execution_options(populate_existing=True)
    )
    return result.scalar_one()


async def list_active_roles(session: AsyncSession, user_id: int) -> list[Role]:
    result = await session.execute(
        select(Role)
        .join(UserRole, UserRole.role_id == Role.id)
        .where(UserRole.user_id == user_id, Role.archived_at.is_(None))
        .order_by(Role.key.asc())
    )
    return list(result.scalars().all())


async def list_permission_keys(session: AsyncSession, user_id: int) -> set[str]:
    # Permissions only flow through roles that are still live.
    result = await session.execute(
        select(Permission.key)
        .join(RolePermission, RolePermission.permission_id == Permission.id)
        .join(Role, Role.id == RolePermission.role_id)
        .join(UserRole, UserRole.role_id == Role.id)
        .where(UserRole.user_id == user_id, Role.archived_at.is_(None))
        .distinct()
    )
    return set(result.scalars().all())


async def list_reviewer_scopes(
    session: AsyncSession,
    *,
    role_ids: list[int],
    deployment_code: str | None = None,
) -> list[ReviewerScope]:
    if not role_ids:
        return []
    stmt = select(ReviewerScope).where(ReviewerScope.role_id.in_(role_ids))
    if deployment_code is not None:
        stmt = stmt.where(ReviewerScope.deployment_code == deployment_code)
    result = await session.execute(stmt.order_by(ReviewerScope.id.asc()))
    return list(result.scalars().all())


async def get_or_create_role(session: AsyncSession, *, key: str, name: str) -> Role:
    stmt = dialect_insert(session, Role).values(key=key, name=name)
    await session.execute(stmt.on_conflict_do_nothing(index_elements=[Role.key]))
    result = await session.execute(select(Role).where(Role.key == key))
    return result.scalar_one()


async def get_or_create_permission(
    session: AsyncSession,
    *,
    key: str,
    description: str | None = None,
) -> Permission:
    stmt = dialect_insert(session, Permission).values(key=key, description=description)
    await session.execute(stmt.on_conflict_do_nothing(index_elements=[Permission.key]))
    result = await session.execute(select(Permission).where(Permission.key == key))
    return result.scalar_one()


async def grant_permission(session: AsyncSession, *, role_id: int, permission_id: int) -> None:
    stmt = dialect_insert(session, RolePermission).values(role_id=role_id, permission_id=permission_id)
    await session.execute(
        stmt.on_conflict_do_nothing(index_elements=[RolePermission.role_id, RolePermission.permission_id])
    )


async def assign_role(session: AsyncSession, *, user_id: int, role_id: int) -> None:
    stmt = dialect_insert(session, UserRole).values(user_id=user_id, role_id=role_id)
    await session.execute(stmt.on_conflict_do_nothing(index_elements=[UserRole.user_id, UserRole.role_id]))


async def add_reviewer_scope(
    session: AsyncSession,
    *,
    role_id: int,
    deployment_code: str,
    qig_code: str,
) -> None:
    stmt = dialect_insert(session, ReviewerScope).values(
        role_id=role_id,
        deployment_code=deployment_code,
        qig_code=qig_code,
    )
    await session.execute(
        stmt.on_conflict_do_nothing(
            index_elements=[ReviewerScope.role_id, ReviewerScope.deployment_code, ReviewerScope.qig_code]
        )
    )
