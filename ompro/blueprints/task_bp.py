"""
Task Blueprint.

Endpoints:
  GET    /api/v1/tasks/<id>          — task with its status history
  PATCH  /api/v1/tasks/<id>/status   — record a status change
  DELETE /api/v1/tasks/<id>          — delete one task
"""

from flask import Blueprint, g, jsonify

from ompro.blueprints import json_body, register_error_handlers
from ompro.middleware.permission_required import require_capability
from ompro.services import task_service
from ompro.services.permission import TASKS_DELETE, TASKS_UPDATE_STATUS, TASKS_VIEW
from ompro.utils.errors import E, api_error

task_bp = Blueprint("tasks", __name__, url_prefix="/api/v1/tasks")
register_error_handlers(task_bp)


@task_bp.route("/<int:task_id>", methods=["GET"])
@require_capability(TASKS_VIEW)
def get_task(task_id):
    task = task_service.get_task(task_id)
    return jsonify(task.to_dict(include_history=True)), 200


@task_bp.route("/<int:task_id>/status", methods=["PATCH"])
@require_capability(TASKS_UPDATE_STATUS)
def update_task_status(task_id):
    """Body: { "status": "Done", "shift": "B", "reason": "..." }"""
    data = json_body()
    if not data.get("status"):
        return api_error(E.VALIDATION_REQUIRED, "status is required")

    task = task_service.update_status(
        task_id,
        status=data.get("status"),
        shift=data.get("shift"),
        reason=data.get("reason"),
        actor=g.current_user,
    )
    return jsonify(task.to_dict(include_history=True)), 200


@task_bp.route("/<int:task_id>", methods=["DELETE"])
@require_capability(TASKS_DELETE)
def delete_task(task_id):
    task_service.delete_task(task_id)
    return jsonify({"message": "Task deleted"}), 200
