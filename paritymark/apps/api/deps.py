from __future__ import annotations

from typing import Any, AsyncGenerator, Awaitable, Callable

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from paritymark.core.errors import PermissionDeniedError
from paritymark.domain.models import User
from paritymark.persistence.db import get_session
from paritymark.services.audit import caller_ref, get_request_meta
from paritymark.services.authz.gate import enforce_authenticated, enforce_permission
from paritymark.services.identity import extract_caller_token


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    # One AsyncSession per request; context manager ensures close on success/error.
    async with get_session() as session:
        yield session


def require_permission(permission_key: str) -> Callable[..., Awaitable[User]]:
    # Build a dependency that audits denials before rejecting the request.
    async def dependency(
        request: Request,
        db: AsyncSession = Depends(get_db),
    ) -> User:
        check = await enforce_permission(
            db,
            extract_caller_token(request.headers),
            permission_key,
            meta=get_request_meta(request),
        )
        caller = check.caller
        if caller is None:
            raise PermissionDeniedError(reason=check.reason, permission_key=permission_key)
        request.state.caller_id = caller.id
        return caller

    return dependency


def actor_for(caller: User) -> dict[str, Any]:
    return caller_ref(caller) or {}


async def require_caller(
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> User:
    # Any identified caller; anonymous requests are audited and rejected.
    caller = await enforce_authenticated(
        db,
        extract_caller_token(request.headers),
        meta=get_request_meta(request),
    )
    request.state.caller_id = caller.id
    return caller
