"""Task service layer — listing, status updates and deletion.

Transaction policy: every mutating function commits itself and publishes the
matching change event only after the commit succeeded, so subscribers never
see a change that was rolled back.

Status rules:
- Pending is set by the import only; updates move a task to In Progress,
  Done or Not Done.
- A shift (A–D) is always recorded with a status change.
- In Progress and Not Done need a reason.
- Every accepted update appends one TaskHistory row.
"""
import logging
from datetime import datetime, timezone

from flask import current_app

from ompro.core.exceptions import NotFoundError, ValidationError
from ompro.models import db
from ompro.models.maintenance import (
    REASON_REQUIRED_STATUSES,
    STATUS_DONE,
    STATUS_IN_PROGRESS,
    STATUS_NOT_DONE,
    VALID_SHIFTS,
    Task,
    TaskHistory,
)
from ompro.services.change_feed import MODIFIED, REMOVED, publish_task_event
from ompro.services.permission import TASKS_UPDATE_STATUS, check_capability
from ompro.services.task_sync import filter_tasks

logger = logging.getLogger(__name__)

UPDATE_TARGET_STATUSES = (STATUS_IN_PROGRESS, STATUS_DONE, STATUS_NOT_DONE)


# ── Queries ──────────────────────────────────────────────────────────────


def list_tasks(group_id=None, search=None, status=None, shift=None):
    """Serialized tasks, filtered and in display order."""
    query = Task.query
    if group_id is not None:
        query = query.filter(Task.group_id == group_id)
    if status:
        query = query.filter(Task.status == status)
    if shift:
        query = query.filter(Task.shift == shift)
    return filter_tasks([t.to_dict() for t in query.all()], search=search)


def snapshot_for_group(group_id):
    """Loader for TaskSynchronizer: every task of the group."""
    return [t.to_dict() for t in Task.query.filter_by(group_id=group_id).all()]


def get_task(task_id):
    task = db.session.get(Task, task_id)
    if not task:
        raise NotFoundError(resource="Task", resource_id=task_id)
    return task


# ── Status updates ───────────────────────────────────────────────────────


def validate_status_update(status, shift, reason):
    """Return the cleaned (status, shift, reason) or raise ValidationError."""
    errors = {}
    if not isinstance(status, str) or status not in UPDATE_TARGET_STATUSES:
        errors["status"] = f"must be one of: {', '.join(UPDATE_TARGET_STATUSES)}"
        status = None
    if not isinstance(shift, str) or shift not in VALID_SHIFTS:
        errors["shift"] = f"must be one of: {', '.join(VALID_SHIFTS)}"

    if reason is not None and not isinstance(reason, str):
        errors["reason"] = "must be text"
        reason = None
    reason = (reason or "").strip() or None
    if status in REASON_REQUIRED_STATUSES and not reason and "reason" not in errors:
        errors["reason"] = f"a reason is required for status '{status}'"

    if errors:
        raise ValidationError("Invalid status update", details=errors)
    return status, shift, reason


def update_status(task_id, status, shift, reason, actor):
    """Record a status change on a task (last write wins).

    Raises:
        PermissionDeniedError: ``actor`` may not change statuses.
        NotFoundError: unknown task.
        ValidationError: rule violation; nothing is written.
    """
    check_capability(actor.role, TASKS_UPDATE_STATUS)
    try:
        status, shift, reason = validate_status_update(status, shift, reason)
    except ValidationError as exc:
        logger.info("Rejected status update on task %s by %s: %s",
                    task_id, actor.email, exc.details)
        raise

    task = get_task(task_id)
    now = datetime.now(timezone.utc)

    task.status = status
    task.shift = shift
    task.reason = reason
    task.updated_at = now
    task.updated_by = actor.id
    task.updated_by_email = actor.email

    db.session.add(TaskHistory(
        task_id=task.id,
        timestamp=now,
        status=status,
        shift=shift,
        reason=reason,
        user_id=actor.id,
        user_email=actor.email,
    ))
    db.session.commit()

    payload = task.to_dict()
    publish_task_event(MODIFIED, payload)
    logger.info("Task %s (OM %s) → %s shift %s by %s",
                task.id, task.om_number, status, shift, actor.email)
    return task


# ── Deletion ─────────────────────────────────────────────────────────────


def delete_task(task_id):
    task = get_task(task_id)
    payload = {"id": task.id, "group_id": task.group_id}
    db.session.delete(task)
    db.session.commit()
    publish_task_event(REMOVED, payload)
    logger.info("Deleted task %s from group %s", payload["id"], payload["group_id"])


def clear_group_tasks(group_id):
    """Delete every task of a group in DELETE_BATCH_SIZE chunks; returns the count."""
    batch_size = max(int(current_app.config.get("DELETE_BATCH_SIZE", 500)), 1)
    deleted = 0
    while True:
        ids = [
            row.id for row in
            db.session.query(Task.id).filter(Task.group_id == group_id)
            .order_by(Task.id).limit(batch_size).all()
        ]
        if not ids:
            break
        TaskHistory.query.filter(TaskHistory.task_id.in_(ids)).delete(synchronize_session=False)
        Task.query.filter(Task.id.in_(ids)).delete(synchronize_session=False)
        db.session.commit()
        deleted += len(ids)
        for task_id in ids:
            publish_task_event(REMOVED, {"id": task_id, "group_id": group_id})

    if deleted:
        logger.info("Cleared %d tasks from group %s", deleted, group_id)
    return deleted
