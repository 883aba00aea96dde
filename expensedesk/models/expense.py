"""
Expense domain model.

Status lifecycle:
    DRAFT ──submit──▶ PENDING ──approve──▶ APPROVED
                         └──────reject───▶ REJECTED

APPROVED and REJECTED are terminal; only the review comment may change after
a decision.
"""

from expensedesk.models import db, new_id, utcnow, iso


STATUS_DRAFT = "DRAFT"
STATUS_PENDING = "PENDING"
STATUS_APPROVED = "APPROVED"
STATUS_REJECTED = "REJECTED"
EXPENSE_STATUSES = {STATUS_DRAFT, STATUS_PENDING, STATUS_APPROVED, STATUS_REJECTED}
TERMINAL_STATUSES = {STATUS_APPROVED, STATUS_REJECTED}

# current status -> statuses it may move to
EXPENSE_TRANSITIONS = {
    STATUS_DRAFT: {STATUS_PENDING},
    STATUS_PENDING: {STATUS_APPROVED, STATUS_REJECTED},
    STATUS_APPROVED: set(),
    STATUS_REJECTED: set(),
}

PAYMENT_MODES = {"cash", "upi", "check"}


def can_transition(current: str, target: str) -> bool:
    return target in EXPENSE_TRANSITIONS.get(current, set())


class Expense(db.Model):
    """A single expense claim raised against a project."""

    __tablename__ = "expenses"

    id = db.Column(db.String(32), primary_key=True, default=new_id)
    project_id = db.Column(
        db.String(32), db.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    user_id = db.Column(db.String(32), nullable=False, index=True, comment="Submitter")
    user_name = db.Column(db.String(150), default="")

    date = db.Column(db.Date, nullable=True)
    amount = db.Column(db.Float, nullable=False, default=0.0)
    department = db.Column(db.String(100), default="", index=True)
    category = db.Column(db.String(100), default="", index=True)
    description = db.Column(db.Text, default="")
    mode_of_payment = db.Column(db.String(20), default="cash")
    tds = db.Column(db.Float, default=0.0)
    gst = db.Column(db.Float, default=0.0)
    net_amount = db.Column(db.Float, default=0.0)
    attachment_url = db.Column(db.String(1000), default="")
    attachment_file_name = db.Column(db.String(255), default="")
    receipt_number = db.Column(db.String(100), default="")

    status = db.Column(db.String(20), nullable=False, default=STATUS_PENDING, index=True)
    submitted_at = db.Column(db.DateTime(timezone=True), nullable=True)
    reviewed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    reviewed_by = db.Column(db.String(150), default="")
    review_comments = db.Column(db.Text, default="")

    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    @property
    def is_decided(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def to_dict(self):
        return {
            "id": self.id,
            "project_id": self.project_id,
            "user_id": self.user_id,
            "user_name": self.user_name,
            "date": self.date.isoformat() if self.date else None,
            "amount": self.amount,
            "department": self.department,
            "category": self.category,
            "description": self.description,
            "mode_of_payment": self.mode_of_payment,
            "tds": self.tds,
            "gst": self.gst,
            "net_amount": self.net_amount,
            "attachment_url": self.attachment_url,
            "attachment_file_name": self.attachment_file_name,
            "receipt_number": self.receipt_number,
            "status": self.status,
            "submitted_at": iso(self.submitted_at),
            "reviewed_at": iso(self.reviewed_at),
            "reviewed_by": self.reviewed_by,
            "review_comments": self.review_comments,
            "created_at": iso(self.created_at),
        }

    def __repr__(self):
        return f"<Expense {self.id}: {self.amount} {self.status}>"
