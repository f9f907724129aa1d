"""
Capability decorator — role-based route protection.

Usage:
    @bp.route("/groups/<int:group_id>/import", methods=["POST"])
    @require_capability("tasks.import")
    def import_tasks(group_id):
        ...

Requires the JWT middleware to have resolved ``g.current_user``.
"""

import functools
import logging

from flask import g

from ompro.services.permission import has_capability
from ompro.utils.errors import E, api_error

logger = logging.getLogger(__name__)


def require_capability(capability: str):
    """
    Decorator: require the signed-in user's role to grant ``capability``.

    Args:
        capability: Capability name, e.g. "tasks.import"
    """
    def decorator(f):
        @functools.wraps(f)
        def decorated(*args, **kwargs):
            user = getattr(g, "current_user", None)
            if user is None:
                return api_error(E.AUTH_REQUIRED, "Authentication required")

            if not has_capability(user.role, capability):
                logger.warning(
                    "User %d (%s) denied: missing capability '%s' on %s",
                    user.id, user.role, capability, f.__name__,
                )
                return api_error(
                    E.FORBIDDEN, "Permission denied",
                    details={"required": capability},
                )

            return f(*args, **kwargs)
        return decorated
    return decorator
