"""
Expense Desk
Notification domain model.

Models:
    - Notification: in-app notification record with read tracking

One record per recipient per event. Apart from flipping ``is_read`` a record is
never updated.
"""

from expensedesk.models import db, new_id, utcnow, iso


# ── Constants ────────────────────────────────────────────────────────────────

PROJECT_ASSIGNMENT = "PROJECT_ASSIGNMENT"
PROJECT_CHANGED = "PROJECT_CHANGED"
EXPENSE_SUBMITTED = "EXPENSE_SUBMITTED"
EXPENSE_APPROVED = "EXPENSE_APPROVED"
EXPENSE_REJECTED = "EXPENSE_REJECTED"
PENDING_APPROVAL = "PENDING_APPROVAL"
ROLE_ASSIGNMENT = "ROLE_ASSIGNMENT"
TEMPORARY_APPROVER_ASSIGNMENT = "TEMPORARY_APPROVER_ASSIGNMENT"
DELEGATION_CHANGED = "DELEGATION_CHANGED"
DELEGATION_RESPONSE = "DELEGATION_RESPONSE"
DELEGATION_EXPIRED = "DELEGATION_EXPIRED"
DELEGATION_REMOVED = "DELEGATION_REMOVED"
CHAT_MESSAGE = "CHAT_MESSAGE"
INFO = "INFO"

NOTIFICATION_TYPES = {
    PROJECT_ASSIGNMENT, PROJECT_CHANGED,
    EXPENSE_SUBMITTED, EXPENSE_APPROVED, EXPENSE_REJECTED, PENDING_APPROVAL,
    ROLE_ASSIGNMENT,
    TEMPORARY_APPROVER_ASSIGNMENT, DELEGATION_CHANGED, DELEGATION_RESPONSE,
    DELEGATION_EXPIRED, DELEGATION_REMOVED,
    CHAT_MESSAGE, INFO,
}

# Notification type -> user preference key gating push delivery
PREFERENCE_KEYS = {
    EXPENSE_SUBMITTED: "expense_submitted",
    EXPENSE_APPROVED: "expense_approved",
    EXPENSE_REJECTED: "expense_rejected",
    PROJECT_ASSIGNMENT: "project_assignment",
    PENDING_APPROVAL: "pending_approvals",
}


class Notification(db.Model):
    """In-app notification entity."""

    __tablename__ = "notifications"

    id = db.Column(db.String(32), primary_key=True, default=new_id)
    recipient_id = db.Column(db.String(32), nullable=False, index=True)
    recipient_role = db.Column(db.String(30), default="")
    title = db.Column(db.String(300), nullable=False)
    message = db.Column(db.Text, default="")
    type = db.Column(db.String(40), nullable=False, default=INFO, index=True)

    project_id = db.Column(db.String(32), nullable=True, index=True)
    project_name = db.Column(db.String(200), default="")
    related_id = db.Column(db.String(32), default="", comment="Expense, delegation or chat id")

    is_read = db.Column(db.Boolean, nullable=False, default=False)
    read_at = db.Column(db.DateTime(timezone=True), nullable=True)
    action_required = db.Column(db.Boolean, default=False)
    navigation_target = db.Column(db.String(300), default="", comment="<route>/<id>[/...]")

    created_at = db.Column(db.DateTime(timezone=True), default=utcnow, index=True)

    def mark_read(self) -> bool:
        """Flip ``is_read``. Returns False when it was already read."""
        if self.is_read:
            return False
        self.is_read = True
        self.read_at = utcnow()
        return True

    def to_dict(self):
        return {
            "id": self.id,
            "recipient_id": self.recipient_id,
            "recipient_role": self.recipient_role,
            "title": self.title,
            "message": self.message,
            "type": self.type,
            "project_id": self.project_id,
            "project_name": self.project_name,
            "related_id": self.related_id,
            "is_read": self.is_read,
            "read_at": iso(self.read_at),
            "action_required": self.action_required,
            "navigation_target": self.navigation_target,
            "created_at": iso(self.created_at),
        }

    def __repr__(self):
        return f"<Notification {self.id}: {self.type} -> {self.recipient_id}>"
