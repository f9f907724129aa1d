"""Overview dashboard aggregates (all groups)."""
from sqlalchemy import func

from ompro.models import db
from ompro.models.maintenance import STATUS_DONE, VALID_SHIFTS, VALID_STATUSES, Group, Task


def _percent(part, whole) -> int:
    return round(part * 100 / whole) if whole else 0


def build_overview() -> dict:
    """Totals by status and shift, completion rate and per-group progress."""
    by_status = {s: 0 for s in VALID_STATUSES}
    for status, count in (
        db.session.query(Task.status, func.count(Task.id)).group_by(Task.status).all()
    ):
        by_status[status] = by_status.get(status, 0) + count

    by_shift = {s: 0 for s in VALID_SHIFTS}
    for shift, count in (
        db.session.query(Task.shift, func.count(Task.id))
        .filter(Task.shift.isnot(None))
        .group_by(Task.shift).all()
    ):
        by_shift[shift] = by_shift.get(shift, 0) + count

    total = sum(by_status.values())

    done_per_group = dict(
        db.session.query(Task.group_id, func.count(Task.id))
        .filter(Task.status == STATUS_DONE)
        .group_by(Task.group_id).all()
    )
    total_per_group = dict(
        db.session.query(Task.group_id, func.count(Task.id)).group_by(Task.group_id).all()
    )

    groups = []
    for group in Group.query.order_by(Group.created_at.asc(), Group.id.asc()).all():
        group_total = total_per_group.get(group.id, 0)
        group_done = done_per_group.get(group.id, 0)
        groups.append({
            "id": group.id,
            "name": group.name,
            "tasks": group_total,
            "done": group_done,
            "percent": _percent(group_done, group_total),
        })

    return {
        "total": total,
        "by_status": by_status,
        "by_shift": by_shift,
        "completion_rate": _percent(by_status.get(STATUS_DONE, 0), total),
        "groups": groups,
    }
