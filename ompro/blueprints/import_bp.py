"""
Task Import Blueprint — spreadsheet upload into a group.

Endpoints:
  POST /api/v1/groups/<id>/import/preview  — headers, suggested mapping, sample rows
  POST /api/v1/groups/<id>/import          — import (optional "mapping" JSON form field)

Both take multipart/form-data with a ``file`` part (.xlsx, .xlsm or .csv).
"""

import json
import logging

from flask import Blueprint, g, jsonify, request

from ompro.blueprints import register_error_handlers
from ompro.middleware.permission_required import require_capability
from ompro.services import group_service
from ompro.services.permission import TASKS_IMPORT
from ompro.services.task_import_service import (
    EmptySpreadsheetError,
    TaskImportError,
    import_tasks,
    preview_import,
)
from ompro.utils.errors import E, api_error

logger = logging.getLogger(__name__)

import_bp = Blueprint("task_import", __name__, url_prefix="/api/v1/groups")
register_error_handlers(import_bp)


# ═══════════════════════════════════════════════════════════════
# Error Handlers
# ═══════════════════════════════════════════════════════════════
@import_bp.errorhandler(EmptySpreadsheetError)
def handle_empty_spreadsheet(e):
    return api_error(E.EMPTY_FILE, e.message, status=e.status_code)


@import_bp.errorhandler(TaskImportError)
def handle_import_error(e):
    return api_error(
        E.IMPORT_PARTIAL, e.message, status=e.status_code,
        details={"committed": e.committed, "total": e.total},
    )


def _uploaded_file():
    """(filename, bytes) of the ``file`` part, or (None, None)."""
    upload = request.files.get("file")
    if upload is None or not upload.filename:
        return None, None
    return upload.filename, upload.read()


# ═══════════════════════════════════════════════════════════════
# Preview
# ═══════════════════════════════════════════════════════════════
@import_bp.route("/<int:group_id>/import/preview", methods=["POST"])
@require_capability(TASKS_IMPORT)
def preview(group_id):
    group_service.get_group(group_id)
    filename, content = _uploaded_file()
    if not filename:
        return api_error(E.VALIDATION_REQUIRED, "file is required (multipart field 'file')")
    return jsonify(preview_import(filename, content)), 200


# ═══════════════════════════════════════════════════════════════
# Import
# ═══════════════════════════════════════════════════════════════
@import_bp.route("/<int:group_id>/import", methods=["POST"])
@require_capability(TASKS_IMPORT)
def run_import(group_id):
    group_service.get_group(group_id)
    filename, content = _uploaded_file()
    if not filename:
        return api_error(E.VALIDATION_REQUIRED, "file is required (multipart field 'file')")

    mapping = None
    raw_mapping = request.form.get("mapping")
    if raw_mapping:
        try:
            mapping = json.loads(raw_mapping)
        except ValueError:
            return api_error(E.VALIDATION_INVALID, "mapping must be valid JSON")

    result = import_tasks(group_id, filename, content, g.current_user, mapping=mapping)
    return jsonify(result), 201
