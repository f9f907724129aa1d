"""
OmPro — Maintenance Task Tracking
Blueprint registry and shared request helpers.
"""

import logging

from flask import request

from ompro.core.exceptions import (
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from ompro.utils.errors import E, api_error

logger = logging.getLogger(__name__)


def register_error_handlers(bp):
    """Map the canonical service exceptions to JSON errors on ``bp``."""

    @bp.errorhandler(NotFoundError)
    def _handle_not_found(error):
        return api_error(E.NOT_FOUND, str(error))

    @bp.errorhandler(ValidationError)
    def _handle_validation(error):
        return api_error(E.VALIDATION_RULE, str(error), details=error.details)

    @bp.errorhandler(ConflictError)
    def _handle_conflict(error):
        return api_error(E.CONFLICT_DUPLICATE, str(error))

    @bp.errorhandler(PermissionDeniedError)
    def _handle_forbidden(error):
        return api_error(E.FORBIDDEN, "Permission denied", details={"required": error.capability})


def json_body():
    """Request JSON as a dict ({} when absent or not an object)."""
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def task_filters():
    """search / status / shift query parameters shared by listing endpoints."""
    return {
        "search": request.args.get("search") or None,
        "status": request.args.get("status") or None,
        "shift": request.args.get("shift") or None,
    }
