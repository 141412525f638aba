from __future__ import annotations


class ParityMarkError(Exception):
    """Base error for ParityMark.

    Subclasses carry a stable ``code`` tag that the transport layer maps to a
    status code; the core never picks HTTP statuses itself.
    """

    code = "internal_error"

    def __init__(self, message: str | None = None, **details: object) -> None:
        super().__init__(message or self.code)
        self.message = message or self.code
        self.details = details


class NotFoundError(ParityMarkError):
    """A referenced row does not exist (or is archived)."""


class DeploymentNotFoundError(NotFoundError):
    code = "deployment_not_found"


class ConfigVersionNotFoundError(NotFoundError):
    code = "config_version_not_found"


class ActiveConfigNotFoundError(NotFoundError):
    code = "active_config_not_found"


class ResponseNotFoundError(NotFoundError):
    code = "response_not_found"


class MarkNotFoundError(NotFoundError):
    code = "mark_not_found"


class PreconditionError(ParityMarkError):
    """A state invariant forbids the requested transition."""


class ResponseLockedError(PreconditionError):
    code = "LOCKED"


class PermissionDeniedError(ParityMarkError):
    """Raised by the permission gate after the denial has been audited."""

    def __init__(self, *, reason: str, permission_key: str | None) -> None:
        # No permission key means the operation only required an identified caller.
        message = f"Permission {permission_key} denied: {reason}" if permission_key else f"Caller required: {reason}"
        super().__init__(message, permission=permission_key)
        # The deny reason doubles as the error tag (unauthenticated | missing_permission).
        self.code = reason
        self.reason = reason
        self.permission_key = permission_key


class UnknownAuditEventTypeError(ParityMarkError):
    code = "unknown_audit_event_type"
