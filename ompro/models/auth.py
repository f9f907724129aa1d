"""
Auth Models — user profiles and roles.

A profile carries exactly one role. The role decides which views and
mutations are allowed (see the capability table in
``ompro.services.permission``); there is no finer-grained permission model.
"""

from datetime import datetime, timezone

from ompro.models import db


ROLE_MANAGER = "manager"
ROLE_ADMINISTRATOR = "administrator"
ROLE_EXECUTOR = "executor"

VALID_ROLES = frozenset({ROLE_MANAGER, ROLE_ADMINISTRATOR, ROLE_EXECUTOR})


class User(db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    email = db.Column(db.String(200), unique=True, nullable=False)
    role = db.Column(db.String(20), nullable=False, default=ROLE_EXECUTOR)
    password_hash = db.Column(db.String(256))
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        db.Index("ix_users_role", "role"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "role": self.role,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<User {self.id}: {self.email} ({self.role})>"
