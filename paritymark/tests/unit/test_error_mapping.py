from __future__ import annotations

import pytest

from paritymark.apps.api.errors import status_for_error
from paritymark.core.errors import (
    ActiveConfigNotFoundError,
    ConfigVersionNotFoundError,
    DeploymentNotFoundError,
    MarkNotFoundError,
    ParityMarkError,
    PermissionDeniedError,
    ResponseLockedError,
    ResponseNotFoundError,
)


@pytest.mark.parametrize(
    ("error", "code", "status"),
    [
        (DeploymentNotFoundError(), "deployment_not_found", 404),
        (ConfigVersionNotFoundError(), "config_version_not_found", 404),
        (ActiveConfigNotFoundError(), "active_config_not_found", 404),
        (ResponseNotFoundError(), "response_not_found", 404),
        (MarkNotFoundError(), "mark_not_found", 404),
        (ResponseLockedError(), "LOCKED", 409),
        (PermissionDeniedError(reason="unauthenticated", permission_key="config.edit"), "unauthenticated", 401),
        (PermissionDeniedError(reason="missing_permission", permission_key="config.edit"), "missing_permission", 403),
        (ParityMarkError(), "internal_error", 500),
    ],
)
def test_error_tags_map_to_statuses(error: ParityMarkError, code: str, status: int) -> None:
    assert error.code == code
    assert status_for_error(error) == status


def test_permission_denied_carries_permission_key() -> None:
    error = PermissionDeniedError(reason="missing_permission", permission_key="config.activate")
    assert error.details == {"permission": "config.activate"}
    assert error.permission_key == "config.activate"


def test_identity_only_denial_has_no_permission_key() -> None:
    error = PermissionDeniedError(reason="unauthenticated", permission_key=None)
    assert error.code == "unauthenticated"
    assert status_for_error(error) == 401
    assert error.message == "Caller required: unauthenticated"
