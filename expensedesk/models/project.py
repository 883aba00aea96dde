"""Project domain model: budget, department budgets and team membership."""

from expensedesk.models import db, new_id, utcnow, iso


PROJECT_STATUSES = {"ACTIVE", "PAUSED", "COMPLETED", "CANCELLED", "ARCHIVED"}
OPEN_PROJECT_STATUSES = {"ACTIVE", "PAUSED"}


class Project(db.Model):
    """A production project with its approvers, production heads and team."""

    __tablename__ = "projects"

    id = db.Column(db.String(32), primary_key=True, default=new_id)
    name = db.Column(db.String(200), nullable=False)
    code = db.Column(db.String(20), default="", comment="Short project code, e.g. MO")
    description = db.Column(db.Text, default="")
    budget = db.Column(db.Float, nullable=False, default=0.0)
    department_budgets = db.Column(db.JSON, default=dict, comment="department -> allocated amount")
    categories = db.Column(db.JSON, default=list)
    status = db.Column(db.String(20), nullable=False, default="ACTIVE")

    manager_id = db.Column(db.String(32), nullable=True)
    approver_ids = db.Column(db.JSON, default=list)
    production_head_ids = db.Column(db.JSON, default=list)
    team_members = db.Column(db.JSON, default=list)
    temporary_approver_phone = db.Column(db.String(32), default="")

    start_date = db.Column(db.Date, nullable=True)
    end_date = db.Column(db.Date, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    def member_ids(self) -> set[str]:
        """Everyone attached to the project in any capacity."""
        ids = set(self.team_members or [])
        ids.update(self.approver_ids or [])
        ids.update(self.production_head_ids or [])
        if self.manager_id:
            ids.add(self.manager_id)
        return ids

    def is_member(self, user_id: str) -> bool:
        return user_id in self.member_ids()

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "code": self.code,
            "description": self.description,
            "budget": self.budget,
            "department_budgets": dict(self.department_budgets or {}),
            "categories": list(self.categories or []),
            "status": self.status,
            "manager_id": self.manager_id,
            "approver_ids": list(self.approver_ids or []),
            "production_head_ids": list(self.production_head_ids or []),
            "team_members": list(self.team_members or []),
            "temporary_approver_phone": self.temporary_approver_phone or "",
            "start_date": self.start_date.isoformat() if self.start_date else None,
            "end_date": self.end_date.isoformat() if self.end_date else None,
            "created_at": iso(self.created_at),
            "updated_at": iso(self.updated_at),
        }

    def __repr__(self):
        return f"<Project {self.id}: {self.name}>"
