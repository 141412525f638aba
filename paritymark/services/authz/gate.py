from __future__ import annotations

from dataclasses import dataclass, field
import logging
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from paritymark.core.errors import PermissionDeniedError
from paritymark.domain.models import User
from paritymark.services.audit import PERMISSION_DENIED, caller_ref, record_event
from paritymark.services.identity import (
    CallerToken,
    ensure_dev_admin,
    permissions_for,
    resolve_or_create_caller,
)


logger = logging.getLogger(__name__)

REASON_UNAUTHENTICATED = "unauthenticated"
REASON_MISSING_PERMISSION = "missing_permission"
REASON_GRANTED = "granted"


@dataclass(frozen=True)
class PermissionCheck:
    allowed: bool
    permission_key: str
    reason: str
    caller: User | None
    permissions: frozenset[str] = field(default_factory=frozenset)


async def check_permission(
    session: AsyncSession,
    token: CallerToken | None,
    permission_key: str,
) -> PermissionCheck:
    """Decide whether the caller behind ``token`` holds ``permission_key``.

    Pure decision apart from first-sight caller creation; denials are not
    audited here, see :func:`enforce_permission`.
    """
    caller = await resolve_or_create_caller(session, token)
    if caller is None:
        # Anonymous callers are never reported as missing a permission.
        return PermissionCheck(
            allowed=False,
            permission_key=permission_key,
            reason=REASON_UNAUTHENTICATED,
            caller=None,
        )

    await ensure_dev_admin(session, caller)
    permissions = frozenset(await permissions_for(session, caller.id))
    if permission_key not in permissions:
        return PermissionCheck(
            allowed=False,
            permission_key=permission_key,
            reason=REASON_MISSING_PERMISSION,
            caller=caller,
            permissions=permissions,
        )
    return PermissionCheck(
        allowed=True,
        permission_key=permission_key,
        reason=REASON_GRANTED,
        caller=caller,
        permissions=permissions,
    )


async def enforce_permission(
    session: AsyncSession,
    token: CallerToken | None,
    permission_key: str,
    *,
    meta: dict[str, Any],
) -> PermissionCheck:
    # The denial is committed to the audit trail before the error leaves the gate.
    check = await check_permission(session, token, permission_key)
    if check.allowed:
        return check

    await record_event(
        session,
        event_type=PERMISSION_DENIED,
        meta={**meta, "permission": permission_key, "reason": check.reason},
        subject=caller_ref(check.caller),
        commit=True,
    )
    logger.warning(
        "permission_denied permission=%s reason=%s caller_id=%s path=%s",
        permission_key,
        check.reason,
        check.caller.id if check.caller else None,
        meta.get("path"),
    )
    raise PermissionDeniedError(reason=check.reason, permission_key=permission_key)


async def enforce_authenticated(
    session: AsyncSession,
    token: CallerToken | None,
    *,
    meta: dict[str, Any],
) -> User:
    # Identity-only operations: any resolvable caller passes, anonymous callers are audited.
    caller = await resolve_or_create_caller(session, token)
    if caller is not None:
        await ensure_dev_admin(session, caller)
        return caller

    await record_event(
        session,
        event_type=PERMISSION_DENIED,
        meta={**meta, "permission": None, "reason": REASON_UNAUTHENTICATED},
        subject=None,
        commit=True,
    )
    logger.warning("caller_required reason=%s path=%s", REASON_UNAUTHENTICATED, meta.get("path"))
    raise PermissionDeniedError(reason=REASON_UNAUTHENTICATED, permission_key=None)
