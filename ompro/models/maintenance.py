"""
Maintenance Models — groups, tasks (work orders) and the task status history.

Lifecycle:
    - Tasks are created in bulk by spreadsheet import, always as "Pending".
    - Status updates overwrite the current status fields AND append one
      TaskHistory row. History rows are never updated afterwards.
    - Deleting a group deletes its tasks (and their history).

Dates coming from the spreadsheet (min_date / max_date) are kept as the
DD/MM/YYYY strings produced at import time, not parsed dates.
"""

from datetime import datetime, timezone

from sqlalchemy import event as _sa_event

from ompro.models import db


# ── Constants ─────────────────────────────────────────────────────────────────

STATUS_PENDING = "Pending"
STATUS_IN_PROGRESS = "In Progress"
STATUS_DONE = "Done"
STATUS_NOT_DONE = "Not Done"

VALID_STATUSES = (STATUS_PENDING, STATUS_IN_PROGRESS, STATUS_DONE, STATUS_NOT_DONE)

# Statuses that can only be recorded together with a reason
REASON_REQUIRED_STATUSES = frozenset({STATUS_IN_PROGRESS, STATUS_NOT_DONE})

VALID_SHIFTS = ("A", "B", "C", "D")


def _utcnow():
    return datetime.now(timezone.utc)


# ═══════════════════════════════════════════════════════════════
# 1. GROUPS
# ═══════════════════════════════════════════════════════════════
class Group(db.Model):
    __tablename__ = "groups"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    created_at = db.Column(db.DateTime, default=_utcnow, nullable=False)

    tasks = db.relationship(
        "Task", back_populates="group", lazy="dynamic",
        cascade="all, delete-orphan", passive_deletes=True,
    )

    def to_dict(self, include_counts=False):
        d = {
            "id": self.id,
            "name": self.name,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
        if include_counts:
            d["task_count"] = self.tasks.count()
        return d


# ═══════════════════════════════════════════════════════════════
# 2. TASKS
# ═══════════════════════════════════════════════════════════════
class Task(db.Model):
    __tablename__ = "tasks"

    id = db.Column(db.Integer, primary_key=True)
    group_id = db.Column(
        db.Integer, db.ForeignKey("groups.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    om_number = db.Column(db.String(255), nullable=False, default="S/N")
    description = db.Column(db.Text, nullable=False, default="")
    work_center = db.Column(db.String(255), nullable=False, default="N/A")
    circuit = db.Column(db.String(255), nullable=False, default="")
    min_date = db.Column(db.String(40), nullable=False, default="")  # DD/MM/YYYY when parseable
    max_date = db.Column(db.String(40), nullable=False, default="")  # DD/MM/YYYY when parseable
    status = db.Column(db.String(20), nullable=False, default=STATUS_PENDING)
    shift = db.Column(db.String(1))
    reason = db.Column(db.Text)
    excel_data = db.Column(db.JSON, default=dict)
    updated_at = db.Column(db.DateTime, default=_utcnow, nullable=False)
    updated_by = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
    )
    updated_by_email = db.Column(db.String(200))

    __table_args__ = (
        db.Index("ix_tasks_group_status", "group_id", "status"),
    )

    group = db.relationship("Group", back_populates="tasks")
    history = db.relationship(
        "TaskHistory", back_populates="task", lazy="dynamic",
        cascade="all, delete-orphan", passive_deletes=True,
        order_by="TaskHistory.timestamp",
    )

    def to_dict(self, include_history=False):
        d = {
            "id": self.id,
            "group_id": self.group_id,
            "om_number": self.om_number,
            "description": self.description,
            "work_center": self.work_center,
            "circuit": self.circuit,
            "min_date": self.min_date,
            "max_date": self.max_date,
            "status": self.status,
            "shift": self.shift,
            "reason": self.reason,
            "excel_data": self.excel_data or {},
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
            "updated_by": self.updated_by,
            "updated_by_email": self.updated_by_email,
        }
        if include_history:
            d["history"] = [h.to_dict() for h in self.history.all()]
        return d

    def __repr__(self):
        return f"<Task {self.id}: OM {self.om_number} [{self.status}]>"


# ═══════════════════════════════════════════════════════════════
# 3. TASK HISTORY (append-only)
# ═══════════════════════════════════════════════════════════════
class TaskHistory(db.Model):
    """
    One status change of a task.

    Business rules:
    - Rows are appended by task_service.update_status and never modified.
    - user_email is a snapshot so the trail survives user deletion.
    """

    __tablename__ = "task_history"

    id = db.Column(db.Integer, primary_key=True)
    task_id = db.Column(
        db.Integer, db.ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    timestamp = db.Column(db.DateTime, default=_utcnow, nullable=False)
    status = db.Column(db.String(20), nullable=False)
    shift = db.Column(db.String(1))
    reason = db.Column(db.Text)
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
    )
    user_email = db.Column(db.String(200), nullable=False)

    task = db.relationship("Task", back_populates="history")

    def to_dict(self):
        return {
            "id": self.id,
            "task_id": self.task_id,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
            "status": self.status,
            "shift": self.shift,
            "reason": self.reason,
            "user_id": self.user_id,
            "user": self.user_email,
        }


class HistoryImmutableError(Exception):
    """Raised when code tries to modify a persisted history entry."""


@_sa_event.listens_for(TaskHistory, "before_update")
def _reject_history_update(mapper, connection, target):
    raise HistoryImmutableError(f"TaskHistory {target.id} is append-only")
