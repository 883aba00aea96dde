"""
Expense Desk
User domain model.

Users are created on first login and never hard-deleted; ``is_active`` is the
soft-delete flag.
"""

from expensedesk.models import db, new_id, utcnow, iso


# ── Constants ────────────────────────────────────────────────────────────────

ROLE_USER = "USER"
ROLE_APPROVER = "APPROVER"
ROLE_ADMIN = "ADMIN"
ROLE_PRODUCTION_HEAD = "PRODUCTION_HEAD"
USER_ROLES = {ROLE_USER, ROLE_APPROVER, ROLE_ADMIN, ROLE_PRODUCTION_HEAD}

# Roles allowed to manage projects, users and delegations
MANAGER_ROLES = {ROLE_ADMIN, ROLE_PRODUCTION_HEAD}

DEFAULT_NOTIFICATION_PREFERENCES = {
    "push_notifications": True,
    "expense_submitted": True,
    "expense_approved": True,
    "expense_rejected": True,
    "project_assignment": True,
    "pending_approvals": True,
}


def _default_preferences():
    return dict(DEFAULT_NOTIFICATION_PREFERENCES)


class User(db.Model):
    """Application user identified by an opaque id and a unique phone number."""

    __tablename__ = "users"

    id = db.Column(db.String(32), primary_key=True, default=new_id)
    name = db.Column(db.String(150), nullable=False)
    email = db.Column(db.String(255), default="")
    phone = db.Column(db.String(32), unique=True, nullable=False, index=True)
    role = db.Column(db.String(30), nullable=False, default=ROLE_USER,
                     comment="USER | APPROVER | ADMIN | PRODUCTION_HEAD")
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    assigned_projects = db.Column(db.JSON, default=list)
    device_token = db.Column(db.String(512), nullable=True, comment="Push messaging token")
    notification_preferences = db.Column(db.JSON, default=_default_preferences)

    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    def wants(self, preference_key: str | None) -> bool:
        """True unless the user switched the given preference off."""
        prefs = {**DEFAULT_NOTIFICATION_PREFERENCES, **(self.notification_preferences or {})}
        if not prefs.get("push_notifications", True):
            return False
        if preference_key is None:
            return True
        return bool(prefs.get(preference_key, True))

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
            "role": self.role,
            "is_active": self.is_active,
            "assigned_projects": list(self.assigned_projects or []),
            "notification_preferences": {
                **DEFAULT_NOTIFICATION_PREFERENCES,
                **(self.notification_preferences or {}),
            },
            "has_device_token": bool(self.device_token),
            "created_at": iso(self.created_at),
        }

    def __repr__(self):
        return f"<User {self.id}: {self.name} ({self.role})>"
