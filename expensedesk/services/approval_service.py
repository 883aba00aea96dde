"""
Expense Approval Service.

Owns the expense lifecycle and the summaries derived from it.

    DRAFT ──submit──▶ PENDING ──approve──▶ APPROVED
                         └──────reject───▶ REJECTED

Design decisions:
    - Every transition goes through ``_transition``, which consults
      ``EXPENSE_TRANSITIONS``; anything else raises InvalidStateError.
    - Decided expenses are frozen except for ``review_comments``.
    - Concurrent reviews are last-write-wins; the second reviewer of the same
      expense gets InvalidStateError because the row is already decided.
    - Budget validation runs on submission and is returned alongside the
      expense, never blocking it.
"""

from __future__ import annotations

import logging
from collections import defaultdict

from sqlalchemy import func

from expensedesk.core.exceptions import (
    InvalidStateError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from expensedesk.models import as_utc, db, utcnow
from expensedesk.models.expense import (
    EXPENSE_STATUSES,
    PAYMENT_MODES,
    STATUS_APPROVED,
    STATUS_DRAFT,
    STATUS_PENDING,
    STATUS_REJECTED,
    Expense,
    can_transition,
)
from expensedesk.models.project import Project
from expensedesk.models.user import ROLE_ADMIN, ROLE_APPROVER, ROLE_PRODUCTION_HEAD, User
from expensedesk.services import delegation_service
from expensedesk.services import recipients as ev
from expensedesk.services.budget_service import BudgetCheck, validate_expense_against_budget
from expensedesk.services.notification_dispatcher import NotificationDispatcher
from expensedesk.utils.helpers import commit_or_raise, parse_date

logger = logging.getLogger(__name__)

RECENT_LIMIT = 5


# ── Private helpers ────────────────────────────────────────────────────────────


def _float(data: dict, key: str, default: float = 0.0) -> float:
    value = data.get(key, default)
    if value in (None, ""):
        return default
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"{key} must be a number", details={key: value}) from exc


def _transition(expense: Expense, target: str) -> None:
    if not can_transition(expense.status, target):
        raise InvalidStateError("Expense", expense.status, target)
    expense.status = target


def _project_for(expense: Expense) -> Project:
    project = db.session.get(Project, expense.project_id)
    if project is None:
        raise NotFoundError(resource="Project", resource_id=expense.project_id)
    return project


def can_approve(user: User, project: Project) -> bool:
    """Approval authority on ``project``.

    ADMIN always; a PRODUCTION_HEAD listed on the project; an APPROVER listed
    on the project or as its manager; an accepted, unexpired delegate.
    """
    if not user.is_active:
        return False
    if user.role == ROLE_ADMIN:
        return True
    if user.role == ROLE_PRODUCTION_HEAD and user.id in (project.production_head_ids or []):
        return True
    if user.role == ROLE_APPROVER and (
        user.id in (project.approver_ids or []) or user.id == project.manager_id
    ):
        return True
    return delegation_service.is_temporary_approver(project.id, user.id)


def _require_approver(user: User, project: Project) -> None:
    if not can_approve(user, project):
        raise PermissionDeniedError("review expenses on this project", user.id)


# ── Queries ────────────────────────────────────────────────────────────────────


def get_expense(expense_id: str) -> Expense:
    expense = db.session.get(Expense, expense_id)
    if expense is None:
        raise NotFoundError(resource="Expense", resource_id=expense_id)
    return expense


def list_expenses(project_id=None, user_id=None, status=None, department=None, category=None):
    """Query of expenses, newest submission first; callers paginate."""
    q = Expense.query
    if project_id:
        q = q.filter(Expense.project_id == project_id)
    if user_id:
        q = q.filter(Expense.user_id == user_id)
    if status:
        q = q.filter(Expense.status == status)
    if department:
        q = q.filter(Expense.department == department)
    if category:
        q = q.filter(Expense.category == category)
    return q.order_by(Expense.submitted_at.desc(), Expense.created_at.desc())


def pending_for_project(project_id: str) -> list[Expense]:
    return list_expenses(project_id=project_id, status=STATUS_PENDING).all()


def status_counts(project_id=None, user_id=None) -> dict:
    """Count and amount per status; every status is present."""
    q = db.session.query(Expense.status, func.count(Expense.id), func.coalesce(func.sum(Expense.amount), 0.0))
    if project_id:
        q = q.filter(Expense.project_id == project_id)
    if user_id:
        q = q.filter(Expense.user_id == user_id)
    rows = q.group_by(Expense.status).all()

    counts = {status: {"count": 0, "amount": 0.0} for status in sorted(EXPENSE_STATUSES)}
    for status, count, amount in rows:
        counts[status] = {"count": int(count), "amount": float(amount)}
    counts["total"] = {
        "count": sum(c["count"] for c in counts.values()),
        "amount": sum(c["amount"] for c in counts.values()),
    }
    return counts


def expense_summary(project_id=None, user_id=None, recent_limit: int = RECENT_LIMIT) -> dict:
    """Status counts plus approved totals by category and department and the latest expenses."""
    expenses = list_expenses(project_id=project_id, user_id=user_id).all()
    by_category: dict[str, float] = defaultdict(float)
    by_department: dict[str, float] = defaultdict(float)
    for expense in expenses:
        if expense.status != STATUS_APPROVED:
            continue
        by_category[expense.category or "Uncategorised"] += expense.amount or 0
        by_department[expense.department or "Unassigned"] += expense.amount or 0
    return {
        "status_counts": status_counts(project_id, user_id),
        "approved_by_category": dict(by_category),
        "approved_by_department": dict(by_department),
        "recent": [e.to_dict() for e in expenses[:recent_limit]],
    }


def approval_summary(project_id: str, recent_limit: int = RECENT_LIMIT) -> dict:
    """Pending queue size and value with the most recent submissions."""
    pending = pending_for_project(project_id)
    return {
        "project_id": project_id,
        "pending_count": len(pending),
        "pending_amount": sum(e.amount or 0 for e in pending),
        "recent_submissions": [e.to_dict() for e in pending[:recent_limit]],
    }


# ── Commands ───────────────────────────────────────────────────────────────────


def create_expense(actor: User, project: Project, data: dict, submit: bool = True):
    """Create an expense for ``actor`` on ``project``.

    With ``submit`` the expense starts PENDING, approvers are notified, and a
    BudgetCheck is returned; otherwise it is stored as a DRAFT and the check
    is None.

    Returns:
        (expense, budget_check)
    """
    if not actor.is_active:
        raise PermissionDeniedError("submit expenses", actor.id)
    if actor.role != ROLE_ADMIN and not project.is_member(actor.id):
        raise PermissionDeniedError("submit expenses on this project", actor.id)

    amount = _float(data, "amount")
    if amount <= 0:
        raise ValidationError("amount must be greater than zero", details={"amount": data.get("amount")})
    department = (data.get("department") or "").strip()
    if not department:
        raise ValidationError("department is required", details={"department": "required"})
    mode = (data.get("mode_of_payment") or "cash").lower()
    if mode not in PAYMENT_MODES:
        raise ValidationError(
            f"mode_of_payment must be one of {sorted(PAYMENT_MODES)}",
            details={"mode_of_payment": mode},
        )

    gst = _float(data, "gst")
    tds = _float(data, "tds")
    net_amount = _float(data, "net_amount", amount + gst - tds)

    expense = Expense(
        project_id=project.id,
        user_id=actor.id,
        user_name=actor.name,
        date=parse_date(data.get("date")) or utcnow().date(),
        amount=amount,
        department=department,
        category=(data.get("category") or "").strip(),
        description=data.get("description") or "",
        mode_of_payment=mode,
        tds=tds,
        gst=gst,
        net_amount=net_amount,
        attachment_url=data.get("attachment_url") or "",
        attachment_file_name=data.get("attachment_file_name") or "",
        receipt_number=data.get("receipt_number") or "",
        status=STATUS_DRAFT,
    )
    db.session.add(expense)
    db.session.flush()

    if not submit:
        commit_or_raise("create draft expense")
        logger.info("Draft expense %s created", expense.id,
                    extra={"project_id": project.id, "expense_id": expense.id})
        return expense, None

    check = _submit(actor, project, expense)
    return expense, check


def _submit(actor: User, project: Project, expense: Expense) -> BudgetCheck:
    _transition(expense, STATUS_PENDING)
    expense.submitted_at = utcnow()
    db.session.flush()

    check = validate_expense_against_budget(project, expense.department, expense.amount)
    NotificationDispatcher.dispatch(ev.DomainEvent(
        kind=ev.EXPENSE_SUBMITTED,
        actor_id=actor.id,
        project_id=project.id,
        expense_id=expense.id,
        payload={"amount": expense.amount},
    ))
    logger.info("Expense %s submitted (%.2f)", expense.id, expense.amount,
                extra={"project_id": project.id, "expense_id": expense.id})
    return check


def submit_expense(actor: User, expense: Expense) -> BudgetCheck:
    """Move a DRAFT to PENDING. Only the submitter may do this."""
    if actor.id != expense.user_id:
        raise PermissionDeniedError("submit someone else's expense", actor.id)
    return _submit(actor, _project_for(expense), expense)


def _review(actor: User, expense: Expense, target: str, comments: str) -> Expense:
    project = _project_for(expense)
    _require_approver(actor, project)
    _transition(expense, target)
    expense.reviewed_by = actor.name
    expense.reviewed_at = utcnow()
    expense.review_comments = comments or ""
    db.session.flush()

    NotificationDispatcher.dispatch(ev.DomainEvent(
        kind=ev.EXPENSE_APPROVED if target == STATUS_APPROVED else ev.EXPENSE_REJECTED,
        actor_id=actor.id,
        project_id=project.id,
        expense_id=expense.id,
        payload={"amount": expense.amount, "comments": expense.review_comments},
    ))
    logger.info("Expense %s %s by %s", expense.id, target.lower(), actor.id,
                extra={"project_id": project.id, "expense_id": expense.id})
    return expense


def approve_expense(actor: User, expense: Expense, comments: str = "") -> Expense:
    return _review(actor, expense, STATUS_APPROVED, comments)


def reject_expense(actor: User, expense: Expense, comments: str = "") -> Expense:
    return _review(actor, expense, STATUS_REJECTED, comments)


def update_review_comments(actor: User, expense: Expense, comments: str) -> Expense:
    """Edit the review comment of a decided expense; nothing else may change."""
    if not expense.is_decided:
        raise InvalidStateError("Expense", expense.status, "COMMENTED")
    _require_approver(actor, _project_for(expense))
    expense.review_comments = comments or ""
    commit_or_raise("update review comments")
    return expense


def overdue_pending(older_than_days: int = 0) -> dict[str, list[Expense]]:
    """PENDING expenses grouped by project, optionally only those submitted before a cutoff."""
    q = Expense.query.filter(Expense.status == STATUS_PENDING)
    grouped: dict[str, list[Expense]] = defaultdict(list)
    now = utcnow()
    for expense in q.all():
        submitted = as_utc(expense.submitted_at)
        if older_than_days and submitted and (now - submitted).days < older_than_days:
            continue
        grouped[expense.project_id].append(expense)
    return dict(grouped)
