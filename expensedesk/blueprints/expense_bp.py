"""
Expense Blueprint.

Endpoints:
    POST  /api/v1/projects/<pid>/expenses            — body: amount, department, ...; submit (default true)
    GET   /api/v1/projects/<pid>/expenses            — ?status&user_id&department&category&limit&offset
    GET   /api/v1/projects/<pid>/pending-approvals
    GET   /api/v1/projects/<pid>/expense-summary
    GET   /api/v1/expenses/status-counts             — ?project_id
    GET   /api/v1/expenses/<id>
    POST  /api/v1/expenses/<id>/submit
    POST  /api/v1/expenses/<id>/approve              — body: comments
    POST  /api/v1/expenses/<id>/reject               — body: comments
    PATCH /api/v1/expenses/<id>/comments             — body: comments

Layer contract:
    - Blueprint: parse + validate input, call service, return JSON.
    - Transition rules and approval authority live in approval_service.
"""

import logging

from flask import Blueprint, jsonify, request

from expensedesk.auth import current_user
from expensedesk.blueprints import json_body, paginate_query
from expensedesk.core.exceptions import PermissionDeniedError
from expensedesk.models.expense import EXPENSE_STATUSES
from expensedesk.services import approval_service, project_service
from expensedesk.utils.errors import E, api_error

logger = logging.getLogger(__name__)

expense_bp = Blueprint("expense", __name__, url_prefix="/api/v1")


def _readable_expense(expense_id):
    expense = approval_service.get_expense(expense_id)
    user = current_user()
    if expense.user_id != user.id:
        project = project_service.get_project(expense.project_id)
        if not approval_service.can_approve(user, project):
            raise PermissionDeniedError("view this expense", user.id)
    return expense


# ── Project-scoped ─────────────────────────────────────────────────────────────


@expense_bp.route("/projects/<project_id>/expenses", methods=["POST"])
def create_expense(project_id):
    data, err = json_body()
    if err:
        return err
    if data.get("amount") in (None, ""):
        return api_error(E.VALIDATION_REQUIRED, "amount is required")
    if not data.get("department"):
        return api_error(E.VALIDATION_REQUIRED, "department is required")

    project = project_service.get_project(project_id)
    submit = data.get("submit", True) is not False
    expense, check = approval_service.create_expense(current_user(), project, data, submit=submit)
    return jsonify({
        "expense": expense.to_dict(),
        "budget_check": check.to_dict() if check else None,
    }), 201


@expense_bp.route("/projects/<project_id>/expenses", methods=["GET"])
def list_expenses(project_id):
    project = project_service.get_project(project_id)
    user = current_user()
    status = request.args.get("status")
    if status and status not in EXPENSE_STATUSES:
        return api_error(E.VALIDATION_INVALID, f"status must be one of {sorted(EXPENSE_STATUSES)}")

    # reviewers see every expense, everyone else only their own
    user_id = request.args.get("user_id")
    if not approval_service.can_approve(user, project):
        if not project.is_member(user.id):
            raise PermissionDeniedError("view expenses on this project", user.id)
        user_id = user.id

    q = approval_service.list_expenses(
        project_id=project.id,
        user_id=user_id,
        status=status,
        department=request.args.get("department"),
        category=request.args.get("category"),
    )
    items, total = paginate_query(q)
    return jsonify({"items": [e.to_dict() for e in items], "total": total}), 200


@expense_bp.route("/projects/<project_id>/pending-approvals", methods=["GET"])
def pending_approvals(project_id):
    project = project_service.get_project(project_id)
    user = current_user()
    if not approval_service.can_approve(user, project):
        raise PermissionDeniedError("review expenses on this project", user.id)
    summary = approval_service.approval_summary(project.id)
    summary["items"] = [e.to_dict() for e in approval_service.pending_for_project(project.id)]
    return jsonify(summary), 200


@expense_bp.route("/projects/<project_id>/expense-summary", methods=["GET"])
def expense_summary(project_id):
    project = project_service.get_project(project_id)
    user = current_user()
    if approval_service.can_approve(user, project):
        return jsonify(approval_service.expense_summary(project_id=project.id)), 200
    if not project.is_member(user.id):
        raise PermissionDeniedError("view expenses on this project", user.id)
    return jsonify(approval_service.expense_summary(project_id=project.id, user_id=user.id)), 200


# ── Expense-scoped ─────────────────────────────────────────────────────────────


@expense_bp.route("/expenses/status-counts", methods=["GET"])
def status_counts():
    user = current_user()
    project_id = request.args.get("project_id")
    if project_id:
        project = project_service.get_project(project_id)
        if approval_service.can_approve(user, project):
            return jsonify(approval_service.status_counts(project_id=project.id)), 200
    return jsonify(approval_service.status_counts(project_id=project_id, user_id=user.id)), 200


@expense_bp.route("/expenses/<expense_id>", methods=["GET"])
def get_expense(expense_id):
    return jsonify(_readable_expense(expense_id).to_dict()), 200


@expense_bp.route("/expenses/<expense_id>/submit", methods=["POST"])
def submit_expense(expense_id):
    expense = approval_service.get_expense(expense_id)
    check = approval_service.submit_expense(current_user(), expense)
    return jsonify({"expense": expense.to_dict(), "budget_check": check.to_dict()}), 200


@expense_bp.route("/expenses/<expense_id>/approve", methods=["POST"])
def approve_expense(expense_id):
    data, err = json_body()
    if err:
        return err
    expense = approval_service.approve_expense(
        current_user(), approval_service.get_expense(expense_id), data.get("comments") or ""
    )
    return jsonify(expense.to_dict()), 200


@expense_bp.route("/expenses/<expense_id>/reject", methods=["POST"])
def reject_expense(expense_id):
    data, err = json_body()
    if err:
        return err
    expense = approval_service.reject_expense(
        current_user(), approval_service.get_expense(expense_id), data.get("comments") or ""
    )
    return jsonify(expense.to_dict()), 200


@expense_bp.route("/expenses/<expense_id>/comments", methods=["PATCH"])
def update_comments(expense_id):
    data, err = json_body()
    if err:
        return err
    if "comments" not in data:
        return api_error(E.VALIDATION_REQUIRED, "comments is required")
    expense = approval_service.update_review_comments(
        current_user(), approval_service.get_expense(expense_id), data["comments"]
    )
    return jsonify(expense.to_dict()), 200
