"""
Expense Desk
Budget validation & project budget summary.

Spending is the sum of APPROVED expense amounts. Validation is advisory:
callers attach the result to their response and never block on it.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass

from flask import current_app
from sqlalchemy import func

from expensedesk.models import db
from expensedesk.models.expense import STATUS_APPROVED, Expense
from expensedesk.models.project import Project

logger = logging.getLogger(__name__)


@dataclass
class BudgetCheck:
    is_valid: bool
    department_budget: float
    current_spent: float
    new_expense_amount: float
    remaining_budget: float
    would_exceed_budget: bool
    warning_message: str | None = None

    def to_dict(self) -> dict:
        return asdict(self)


def approved_spend_by_department(project_id: str) -> dict[str, float]:
    rows = (
        db.session.query(Expense.department, func.coalesce(func.sum(Expense.amount), 0.0))
        .filter(Expense.project_id == project_id, Expense.status == STATUS_APPROVED)
        .group_by(Expense.department)
        .all()
    )
    return {dept or "": float(total) for dept, total in rows}


def validate_expense_against_budget(project: Project, department: str, amount: float) -> BudgetCheck:
    """Check whether ``amount`` fits in what is left of ``department``'s allocation."""
    amount = float(amount or 0)
    allocated = float((project.department_budgets or {}).get(department) or 0)
    if allocated <= 0:
        return BudgetCheck(
            is_valid=False,
            department_budget=allocated,
            current_spent=0.0,
            new_expense_amount=amount,
            remaining_budget=0.0,
            would_exceed_budget=True,
            warning_message=f"No budget allocated for department: {department}",
        )

    spent = approved_spend_by_department(project.id).get(department, 0.0)
    remaining = allocated - spent
    exceeds = amount > remaining
    warning = None
    if exceeds:
        currency = current_app.config.get("CURRENCY_SYMBOL", "")
        warning = (
            f"Expense amount ({currency}{amount:.2f}) would exceed remaining budget for "
            f"{department} department. Remaining budget: {currency}{remaining:.2f}"
        )
        logger.info("Budget warning on project %s: %s", project.id, warning,
                    extra={"project_id": project.id})
    return BudgetCheck(
        is_valid=not exceeds,
        department_budget=allocated,
        current_spent=spent,
        new_expense_amount=amount,
        remaining_budget=remaining,
        would_exceed_budget=exceeds,
        warning_message=warning,
    )


def project_budget_summary(project: Project) -> dict:
    """Total and per-department allocation, approved spend and remaining budget."""
    spent_by_dept = approved_spend_by_department(project.id)
    departments = []
    for department, allocated in (project.department_budgets or {}).items():
        allocated = float(allocated or 0)
        spent = spent_by_dept.get(department, 0.0)
        departments.append({
            "department": department,
            "allocated_budget": allocated,
            "spent": spent,
            "remaining": allocated - spent,
            "percentage": round(spent / allocated * 100, 2) if allocated > 0 else 0.0,
        })

    total_budget = float(project.budget or 0)
    total_spent = sum(spent_by_dept.values())
    return {
        "project_id": project.id,
        "total_budget": total_budget,
        "total_spent": total_spent,
        "total_remaining": total_budget - total_spent,
        "spent_percentage": round(total_spent / total_budget * 100, 2) if total_budget > 0 else 0.0,
        "departments": departments,
    }
