"""
Group Blueprint.

Endpoints:
  GET    /api/v1/groups                       — list (creation order)
  POST   /api/v1/groups                       — create
  DELETE /api/v1/groups/<id>                  — delete with all tasks
  GET    /api/v1/groups/<id>/tasks            — tasks of a group (search/status/shift)
  DELETE /api/v1/groups/<id>/tasks            — clear a group's tasks
  GET    /api/v1/groups/<id>/tasks/stream     — live task mirror (SSE)
"""

import json
import logging
import queue

from flask import Blueprint, Response, current_app, jsonify, request, stream_with_context

from ompro.blueprints import json_body, register_error_handlers, task_filters
from ompro.middleware.permission_required import require_capability
from ompro.services import group_service, task_service
from ompro.services.change_feed import get_change_feed
from ompro.services.permission import GROUPS_MANAGE, GROUPS_VIEW, TASKS_DELETE, TASKS_VIEW
from ompro.services.task_sync import TaskSynchronizer
from ompro.utils.errors import E, api_error

logger = logging.getLogger(__name__)

group_bp = Blueprint("groups", __name__, url_prefix="/api/v1/groups")
register_error_handlers(group_bp)

STREAM_QUEUE_SIZE = 500


# ═══════════════════════════════════════════════════════════════
# Groups
# ═══════════════════════════════════════════════════════════════
@group_bp.route("", methods=["GET"])
@require_capability(GROUPS_VIEW)
def list_groups():
    include_counts = request.args.get("counts", "").lower() in ("1", "true", "yes")
    items = group_service.list_groups(include_counts=include_counts)
    return jsonify({"items": items, "total": len(items)}), 200


@group_bp.route("", methods=["POST"])
@require_capability(GROUPS_MANAGE)
def create_group():
    data = json_body()
    if "name" not in data:
        return api_error(E.VALIDATION_REQUIRED, "name is required")
    group = group_service.create_group(data.get("name"))
    return jsonify(group.to_dict(include_counts=True)), 201


@group_bp.route("/<int:group_id>", methods=["DELETE"])
@require_capability(GROUPS_MANAGE)
def delete_group(group_id):
    removed = group_service.delete_group(group_id)
    return jsonify({"message": "Group deleted", "tasks_deleted": removed}), 200


# ═══════════════════════════════════════════════════════════════
# Group tasks
# ═══════════════════════════════════════════════════════════════
@group_bp.route("/<int:group_id>/tasks", methods=["GET"])
@require_capability(TASKS_VIEW)
def list_group_tasks(group_id):
    group_service.get_group(group_id)
    items = task_service.list_tasks(group_id=group_id, **task_filters())
    return jsonify({"items": items, "total": len(items)}), 200


@group_bp.route("/<int:group_id>/tasks", methods=["DELETE"])
@require_capability(TASKS_DELETE)
def clear_group_tasks(group_id):
    group_service.get_group(group_id)
    removed = task_service.clear_group_tasks(group_id)
    return jsonify({"message": "Tasks deleted", "tasks_deleted": removed}), 200


def _sse(event_type, data):
    return f"event: {event_type}\ndata: {json.dumps(data)}\n\n"


@group_bp.route("/<int:group_id>/tasks/stream", methods=["GET"])
@require_capability(TASKS_VIEW)
def stream_group_tasks(group_id):
    """Server-Sent Events: one ``snapshot`` then ``added`` / ``modified`` / ``removed``.

    A client that falls too far behind receives a fresh ``snapshot``.
    """
    group_service.get_group(group_id)
    keepalive = current_app.config.get("SSE_KEEPALIVE_SECONDS", 30)

    q = queue.Queue(maxsize=STREAM_QUEUE_SIZE)
    overflow = {"hit": False}

    def _enqueue(event):
        try:
            q.put_nowait(event)
        except queue.Full:
            overflow["hit"] = True

    sync = TaskSynchronizer(get_change_feed(), task_service.snapshot_for_group)
    sync.add_listener(_enqueue)
    sync.select_group(group_id)

    def generate():
        try:
            yield _sse("snapshot", {"group_id": group_id, "tasks": sync.tasks()})
            while True:
                if overflow["hit"]:
                    overflow["hit"] = False
                    with q.mutex:
                        q.queue.clear()
                    yield _sse("snapshot", {"group_id": group_id, "tasks": sync.tasks()})
                try:
                    event = q.get(timeout=keepalive)
                    yield _sse(event.kind, event.to_dict())
                except queue.Empty:
                    yield ": ping\n\n"
        finally:
            sync.close()
            logger.debug("Task stream closed for group %s", group_id)

    response = Response(
        stream_with_context(generate()),
        mimetype="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )
    # HEAD, or a client gone before the first chunk: generate() never starts
    response.call_on_close(sync.close)
    return response
