"""Group service — named containers of imported tasks (one per planning period or area)."""
import logging

from ompro.core.exceptions import NotFoundError, ValidationError
from ompro.models import db
from ompro.models.maintenance import Group
from ompro.services.change_feed import ADDED, REMOVED, publish_group_event
from ompro.services.task_service import clear_group_tasks

logger = logging.getLogger(__name__)

MAX_NAME_LENGTH = 200


def list_groups(include_counts=False):
    groups = Group.query.order_by(Group.created_at.asc(), Group.id.asc()).all()
    return [g.to_dict(include_counts=include_counts) for g in groups]


def get_group(group_id):
    group = db.session.get(Group, group_id)
    if not group:
        raise NotFoundError(resource="Group", resource_id=group_id)
    return group


def create_group(name):
    name = (name or "").strip()
    if not name:
        raise ValidationError("Group name is required", details={"name": "required"})
    if len(name) > MAX_NAME_LENGTH:
        raise ValidationError(
            "Group name is too long",
            details={"name": f"at most {MAX_NAME_LENGTH} characters"},
        )

    group = Group(name=name)
    db.session.add(group)
    db.session.commit()
    publish_group_event(ADDED, group.to_dict())
    logger.info("Created group %s (%s)", group.id, group.name)
    return group


def delete_group(group_id):
    """Delete the group's tasks chunk by chunk, then the group itself.

    Returns the number of tasks removed.
    """
    group = get_group(group_id)
    removed = clear_group_tasks(group_id)

    payload = group.to_dict()
    db.session.delete(group)
    db.session.commit()
    publish_group_event(REMOVED, payload)
    logger.info("Deleted group %s (%s) with %d tasks", payload["id"], payload["name"], removed)
    return removed
