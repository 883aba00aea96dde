"""
Expense Desk
Project expense reports.

Report presentation options (category palette, currency, recent-item limit)
come from app config through ``ReportOptions`` and are passed in explicitly;
there is no module-level cache.
"""

from __future__ import annotations

import zlib
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, timedelta

from expensedesk.core.exceptions import ValidationError
from expensedesk.models import utcnow
from expensedesk.models.expense import EXPENSE_STATUSES, Expense
from expensedesk.models.project import Project
from expensedesk.utils.helpers import parse_date

TIME_RANGES = {
    "this_month": "This Month",
    "this_year": "This Year",
    "last_6_months": "Last 6 Months",
    "last_12_months": "Last 12 Months",
    "all_time": "All Time",
}
ALL_DEPARTMENTS = "all"


@dataclass(frozen=True)
class ReportOptions:
    palette: tuple[str, ...] = ("#4E79A7",)
    currency_symbol: str = ""
    recent_limit: int = 5

    @classmethod
    def from_config(cls, config) -> "ReportOptions":
        return cls(
            palette=tuple(config.get("REPORT_COLOR_PALETTE") or cls.palette),
            currency_symbol=config.get("CURRENCY_SYMBOL", ""),
            recent_limit=int(config.get("REPORT_RECENT_LIMIT", cls.recent_limit)),
        )

    def color_for(self, category: str) -> str:
        """Same category, same colour, whichever filters are applied."""
        return self.palette[zlib.crc32(category.encode("utf-8")) % len(self.palette)]


@dataclass
class ReportFilters:
    status: str | None = None
    department: str | None = None
    category: str | None = None
    time_range: str = "all_time"
    date_from: date | None = None
    date_to: date | None = None
    today: date = field(default_factory=lambda: utcnow().date())

    @classmethod
    def from_args(cls, args) -> "ReportFilters":
        """Build filters from request query args; unparseable dates are ignored."""
        department = args.get("department") or None
        return cls(
            status=args.get("status") or None,
            department=None if department == ALL_DEPARTMENTS else department,
            category=args.get("category") or None,
            time_range=args.get("time_range") or "all_time",
            date_from=parse_date(args.get("date_from")),
            date_to=parse_date(args.get("date_to")),
        )

    def window_start(self) -> date | None:
        if self.time_range == "this_month":
            return self.today.replace(day=1)
        if self.time_range == "this_year":
            return self.today.replace(month=1, day=1)
        if self.time_range == "last_6_months":
            return self.today - timedelta(days=182)
        if self.time_range == "last_12_months":
            return self.today - timedelta(days=365)
        return None

    def validate(self) -> None:
        if self.status and self.status not in EXPENSE_STATUSES:
            raise ValidationError(f"status must be one of {sorted(EXPENSE_STATUSES)}")
        if self.time_range not in TIME_RANGES:
            raise ValidationError(f"time_range must be one of {sorted(TIME_RANGES)}")
        if self.date_from and self.date_to and self.date_to < self.date_from:
            raise ValidationError("date_to must not be before date_from")


def _filtered_expenses(project: Project, filters: ReportFilters) -> list[Expense]:
    q = Expense.query.filter(Expense.project_id == project.id)
    if filters.status:
        q = q.filter(Expense.status == filters.status)
    if filters.category:
        q = q.filter(Expense.category == filters.category)
    start = filters.window_start()
    if start:
        q = q.filter(Expense.date >= start)
    if filters.date_from:
        q = q.filter(Expense.date >= filters.date_from)
    if filters.date_to:
        q = q.filter(Expense.date <= filters.date_to)
    expenses = q.order_by(Expense.date.desc(), Expense.created_at.desc()).all()
    if filters.department:
        wanted = filters.department.lower()
        expenses = [e for e in expenses if (e.department or "").lower() == wanted]
    return expenses


def build_project_report(project: Project, options: ReportOptions, filters: ReportFilters | None = None) -> dict:
    """Totals by category and department for the expenses matching ``filters``."""
    filters = filters or ReportFilters()
    filters.validate()
    expenses = _filtered_expenses(project, filters)

    by_category: dict[str, float] = defaultdict(float)
    by_department: dict[str, float] = defaultdict(float)
    for expense in expenses:
        by_category[expense.category or "Other"] += expense.amount or 0
        by_department[expense.department or "Unassigned"] += expense.amount or 0

    total_spent = sum(e.amount or 0 for e in expenses)
    total_budget = float(project.budget or 0)
    allocations = project.department_budgets or {}

    return {
        "project_id": project.id,
        "project_name": project.name,
        "currency": options.currency_symbol,
        "time_range": TIME_RANGES[filters.time_range],
        "department": filters.department or "All Departments",
        "total_spent": total_spent,
        "total_budget": total_budget,
        "budget_usage_percentage": round(total_spent / total_budget * 100, 2) if total_budget > 0 else 0.0,
        "categories": [
            {"category": name, "amount": amount, "color": options.color_for(name)}
            for name, amount in sorted(by_category.items(), key=lambda kv: -kv[1])
        ],
        "departments": [
            {
                "department": name,
                "spent": amount,
                "budget_allocated": float(allocations.get(name) or 0),
                "color": options.color_for(name),
            }
            for name, amount in sorted(by_department.items())
        ],
        "detailed_expenses": [
            {
                "id": e.id,
                "date": e.date.isoformat() if e.date else None,
                "invoice": e.receipt_number or "N/A",
                "by": e.user_name,
                "amount": e.amount,
                "department": e.department,
                "mode_of_payment": e.mode_of_payment,
                "status": e.status,
            }
            for e in expenses
        ],
        "recent": [e.to_dict() for e in expenses[:options.recent_limit]],
    }
