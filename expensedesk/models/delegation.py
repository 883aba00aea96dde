"""
Expense Desk
Temporary approver delegation model.

A production head hands approval authority on one project to another user
until ``expiring_date``. The delegate accepts or rejects; expiry is evaluated
against the clock, independently of ``is_active``.
"""

from datetime import datetime

from expensedesk.models import as_utc, db, iso, new_id, utcnow


# ── Constants ────────────────────────────────────────────────────────────────

DELEGATION_PENDING = "PENDING"
DELEGATION_ACCEPTED = "ACCEPTED"
DELEGATION_REJECTED = "REJECTED"
DELEGATION_STATUSES = {DELEGATION_PENDING, DELEGATION_ACCEPTED, DELEGATION_REJECTED}


class TemporaryApprover(db.Model):
    """Time-bounded approval delegation on a single project."""

    __tablename__ = "temporary_approvers"

    id = db.Column(db.String(32), primary_key=True, default=new_id)
    project_id = db.Column(
        db.String(32), db.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    approver_id = db.Column(db.String(32), nullable=False, index=True)
    approver_name = db.Column(db.String(150), default="")
    approver_phone = db.Column(db.String(32), default="")

    assigned_date = db.Column(db.DateTime(timezone=True), default=utcnow)
    expiring_date = db.Column(db.DateTime(timezone=True), nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    status = db.Column(db.String(20), nullable=False, default=DELEGATION_PENDING)
    response_comment = db.Column(db.Text, default="")
    responded_at = db.Column(db.DateTime(timezone=True), nullable=True)

    assigned_by = db.Column(db.String(32), nullable=False)
    assigned_by_name = db.Column(db.String(150), default="")

    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    def is_expired(self, now: datetime | None = None) -> bool:
        """True once ``now`` is past ``expiring_date``, whatever ``is_active`` says."""
        expires = as_utc(self.expiring_date)
        if expires is None:
            return False
        return (as_utc(now) or utcnow()) > expires

    def is_effective(self, now: datetime | None = None) -> bool:
        """Active and not expired."""
        return bool(self.is_active) and not self.is_expired(now)

    def remaining_days(self, now: datetime | None = None) -> int | None:
        expires = as_utc(self.expiring_date)
        if expires is None:
            return None
        delta = expires - (as_utc(now) or utcnow())
        return max(delta.days, 0)

    def to_dict(self, now: datetime | None = None):
        return {
            "id": self.id,
            "project_id": self.project_id,
            "approver_id": self.approver_id,
            "approver_name": self.approver_name,
            "approver_phone": self.approver_phone,
            "assigned_date": iso(self.assigned_date),
            "expiring_date": iso(self.expiring_date),
            "is_active": self.is_active,
            "is_expired": self.is_expired(now),
            "remaining_days": self.remaining_days(now),
            "status": self.status,
            "response_comment": self.response_comment,
            "responded_at": iso(self.responded_at),
            "assigned_by": self.assigned_by,
            "assigned_by_name": self.assigned_by_name,
        }

    def __repr__(self):
        return f"<TemporaryApprover {self.id}: {self.approver_id} on {self.project_id} [{self.status}]>"
