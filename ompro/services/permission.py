"""
Role capability table.

Every profile has exactly one role; the table below is the only place that
decides what a role may see or change. Blueprints consult it through the
``require_capability`` decorator, never by comparing role names inline.

Usage:
    from ompro.services.permission import check_capability, has_capability

    if has_capability(user.role, "reports.export"):
        ...
    check_capability(user.role, "tasks.import")   # raises PermissionDeniedError
"""

from ompro.core.exceptions import PermissionDeniedError
from ompro.models.auth import ROLE_ADMINISTRATOR, ROLE_EXECUTOR, ROLE_MANAGER


TASKS_VIEW = "tasks.view"
TASKS_UPDATE_STATUS = "tasks.update_status"
TASKS_DELETE = "tasks.delete"
TASKS_IMPORT = "tasks.import"
GROUPS_VIEW = "groups.view"
GROUPS_MANAGE = "groups.manage"
REPORTS_VIEW = "reports.view"
REPORTS_EXPORT = "reports.export"
OVERVIEW_VIEW = "overview.view"
USERS_VIEW = "users.view"
USERS_MANAGE = "users.manage"

_FIELD_WORK = {TASKS_VIEW, TASKS_UPDATE_STATUS, GROUPS_VIEW}
_SUPERVISION = {REPORTS_VIEW, REPORTS_EXPORT, OVERVIEW_VIEW, USERS_VIEW}

CAPABILITIES = {
    ROLE_MANAGER: frozenset(
        _FIELD_WORK | _SUPERVISION
        | {TASKS_DELETE, TASKS_IMPORT, GROUPS_MANAGE, USERS_MANAGE}
    ),
    ROLE_ADMINISTRATOR: frozenset(_FIELD_WORK | _SUPERVISION),
    ROLE_EXECUTOR: frozenset(_FIELD_WORK),
}


def has_capability(role: str | None, capability: str) -> bool:
    """True if ``role`` is granted ``capability``. Unknown roles get nothing."""
    return capability in CAPABILITIES.get(role, frozenset())


def check_capability(role: str | None, capability: str) -> None:
    """Raise PermissionDeniedError unless ``role`` has ``capability``."""
    if not has_capability(role, capability):
        raise PermissionDeniedError(role, capability)


def capabilities_for(role: str | None) -> list[str]:
    """Sorted capability list (returned by /auth/me for menu rendering)."""
    return sorted(CAPABILITIES.get(role, frozenset()))
