from __future__ import annotations

from datetime import datetime, timezone
import logging
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.requests import Request

from paritymark.core.errors import UnknownAuditEventTypeError
from paritymark.domain.models import AuditEvent, User


logger = logging.getLogger(__name__)

PERMISSION_DENIED = "PERMISSION_DENIED"
CONFIG_DRAFT_CREATED = "CONFIG_DRAFT_CREATED"
CONFIG_ACTIVATED = "CONFIG_ACTIVATED"
MARKING_DRAFT_SAVED = "MARKING_DRAFT_SAVED"
MARKING_SUBMITTED = "MARKING_SUBMITTED"
MARKING_LOCKED = "MARKING_LOCKED"
ASSESSMENT_TREE_VIEWED = "ASSESSMENT_TREE_VIEWED"
ASSESSMENT_STRUCTURE_UPDATED = "ASSESSMENT_STRUCTURE_UPDATED"

AUDIT_EVENT_TYPES = frozenset(
    {
        PERMISSION_DENIED,
        CONFIG_DRAFT_CREATED,
        CONFIG_ACTIVATED,
        MARKING_DRAFT_SAVED,
        MARKING_SUBMITTED,
        MARKING_LOCKED,
        ASSESSMENT_TREE_VIEWED,
        ASSESSMENT_STRUCTURE_UPDATED,
    }
)

OUTCOME_SUCCESS = "success"
OUTCOME_DENIED = "denied"

_SENSITIVE_KEY_PATTERNS = ["api_key", "authorization", "token", "secret", "password", "cookie"]
_REDACTED_VALUE = "[REDACTED]"


def _is_sensitive_key(key: str) -> bool:
    lowered = key.lower()
    return any(pattern in lowered for pattern in _SENSITIVE_KEY_PATTERNS)


def sanitize_payload(value: Any) -> Any:
    # Recursively scrub credential-shaped fields while preserving structure.
    if isinstance(value, dict):
        sanitized: dict[str, Any] = {}
        for raw_key, raw_value in value.items():
            key = str(raw_key)
            if _is_sensitive_key(key):
                sanitized[key] = _REDACTED_VALUE
            else:
                sanitized[key] = sanitize_payload(raw_value)
        return sanitized
    if isinstance(value, (list, tuple)):
        return [sanitize_payload(item) for item in value]
    return value


def get_request_meta(request: Request | None) -> dict[str, Any]:
    # Request context recorded in every event's meta; never includes headers.
    if request is None:
        return {"path": None, "method": "INTERNAL", "request_id": None}
    request_id = getattr(request.state, "request_id", None) or request.headers.get("X-Request-Id")
    return {"path": request.url.path, "method": request.method, "request_id": request_id}


def internal_meta(path: str) -> dict[str, Any]:
    # Meta for operations invoked outside an HTTP request (scripts, tests).
    return {"path": path, "method": "INTERNAL", "request_id": None}


def caller_ref(user: User | None) -> dict[str, Any] | None:
    if user is None:
        return None
    return {"id": user.id, "external_id": user.external_id, "display_name": user.display_name}


async def record_event(
    session: AsyncSession,
    *,
    event_type: str,
    meta: dict[str, Any],
    actor: dict[str, Any] | None = None,
    subject: dict[str, Any] | None = None,
    occurred_at: datetime | None = None,
    commit: bool = False,
) -> AuditEvent:
    """Append one audit event.

    Denials carry ``subject`` (``None`` for anonymous callers); every other
    event carries ``actor`` when one is known. With ``commit=True`` the event
    is durable before this returns; otherwise it joins the caller's
    transaction and lands or rolls back with it. Write failures propagate.
    """
    if event_type not in AUDIT_EVENT_TYPES:
        raise UnknownAuditEventTypeError(f"Unknown audit event type: {event_type}", event_type=event_type)

    payload: dict[str, Any] = {"meta": sanitize_payload(meta)}
    if event_type == PERMISSION_DENIED:
        payload["subject"] = subject
        outcome = OUTCOME_DENIED
        principal = subject
    else:
        if actor is not None:
            payload["actor"] = actor
        outcome = OUTCOME_SUCCESS
        principal = actor

    request_id = meta.get("request_id")
    event = AuditEvent(
        occurred_at=occurred_at or datetime.now(timezone.utc),
        event_type=event_type,
        outcome=outcome,
        actor_id=principal.get("id") if principal else None,
        request_id=request_id,
        payload=payload,
    )
    try:
        session.add(event)
        if commit:
            await session.commit()
        else:
            await session.flush()
    except SQLAlchemyError:
        if commit:
            await session.rollback()
        logger.error(
            "audit_event_write_failed event_type=%s request_id=%s",
            event_type,
            request_id,
            exc_info=True,
        )
        raise
    return event


def event_to_dict(event: AuditEvent) -> dict[str, Any]:
    return {
        "id": event.id,
        "occurred_at": event.occurred_at.isoformat() if event.occurred_at else None,
        "event_type": event.event_type,
        "outcome": event.outcome,
        "actor_id": event.actor_id,
        "request_id": event.request_id,
        "payload": event.payload,
    }
