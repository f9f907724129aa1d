"""
Reports Blueprint — cross-group task reports, exports and the overview.

Endpoints:
  GET /api/v1/reports/tasks                       — filtered task list
  GET /api/v1/reports/tasks/export?format=excel   — excel | csv | pdf download
  GET /api/v1/overview                            — dashboard aggregates

Filters: group_id, status, shift, search.
"""

from datetime import datetime, timezone

from flask import Blueprint, Response, jsonify, request

from ompro.blueprints import register_error_handlers, task_filters
from ompro.middleware.permission_required import require_capability
from ompro.services import export_service, group_service, task_service
from ompro.services.overview_service import build_overview
from ompro.services.permission import OVERVIEW_VIEW, REPORTS_EXPORT, REPORTS_VIEW
from ompro.utils.errors import E, api_error

report_bp = Blueprint("reports", __name__, url_prefix="/api/v1")
register_error_handlers(report_bp)

EXPORT_FORMATS = {
    "excel": ("xlsx", "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"),
    "csv": ("csv", "text/csv"),
    "pdf": ("pdf", "application/pdf"),
}


def _filtered_tasks():
    group_id = request.args.get("group_id", type=int)
    group = group_service.get_group(group_id) if group_id is not None else None
    return group, task_service.list_tasks(group_id=group_id, **task_filters())


@report_bp.route("/reports/tasks", methods=["GET"])
@require_capability(REPORTS_VIEW)
def report_tasks():
    _, items = _filtered_tasks()
    return jsonify({"items": items, "total": len(items)}), 200


@report_bp.route("/reports/tasks/export", methods=["GET"])
@require_capability(REPORTS_EXPORT)
def export_tasks():
    fmt = (request.args.get("format") or "excel").lower()
    if fmt not in EXPORT_FORMATS:
        return api_error(
            E.VALIDATION_INVALID,
            f"format must be one of: {', '.join(EXPORT_FORMATS)}",
        )

    group, items = _filtered_tasks()
    stamp = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M")
    ext, mimetype = EXPORT_FORMATS[fmt]
    filename = f"tasks_{stamp}.{ext}"

    if fmt == "excel":
        body = export_service.generate_tasks_excel(items)
    elif fmt == "csv":
        body = export_service.generate_tasks_csv(items)
    else:
        title = f"Maintenance tasks - {group.name}" if group else "Maintenance tasks"
        body = export_service.generate_tasks_pdf(items, title=title)

    return Response(
        body,
        mimetype=mimetype,
        headers={"Content-Disposition": f"attachment; filename={filename}"},
    )


@report_bp.route("/overview", methods=["GET"])
@require_capability(OVERVIEW_VIEW)
def overview():
    return jsonify(build_overview()), 200
