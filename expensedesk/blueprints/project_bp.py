"""
Project Blueprint.

Endpoints:
    POST /api/v1/projects
    GET  /api/v1/projects                       — visible to the caller
    GET  /api/v1/projects/<id>
    PUT  /api/v1/projects/<id>
    POST /api/v1/projects/<id>/members          — body: user_id, as_role
    GET  /api/v1/projects/<id>/budget-summary
    GET  /api/v1/projects/<id>/report           — ?status&department&category&time_range&date_from&date_to

Layer contract: parse and validate input here, business guards in
``project_service``.
"""

import logging

from flask import Blueprint, current_app, jsonify, request

from expensedesk.auth import current_user
from expensedesk.blueprints import json_body
from expensedesk.core.exceptions import PermissionDeniedError
from expensedesk.models.project import PROJECT_STATUSES
from expensedesk.models.user import ROLE_ADMIN
from expensedesk.services import budget_service, delegation_service, project_service, reporting
from expensedesk.utils.errors import E, api_error

logger = logging.getLogger(__name__)

project_bp = Blueprint("project", __name__, url_prefix="/api/v1")


def _visible_project(project_id):
    """Load a project the caller may read: admins, members and delegates."""
    project = project_service.get_project(project_id)
    user = current_user()
    if user.role != ROLE_ADMIN and not project.is_member(user.id) and not any(
        d.approver_id == user.id for d in delegation_service.list_active(project.id)
    ):
        raise PermissionDeniedError("view this project", user.id)
    return project


@project_bp.route("/projects", methods=["POST"])
def create_project():
    data, err = json_body()
    if err:
        return err
    if not (data.get("name") or "").strip():
        return api_error(E.VALIDATION_REQUIRED, "name is required")
    project = project_service.create_project(current_user(), data)
    return jsonify(project.to_dict()), 201


@project_bp.route("/projects", methods=["GET"])
def list_projects():
    status = request.args.get("status")
    if status and status not in PROJECT_STATUSES:
        return api_error(E.VALIDATION_INVALID, f"status must be one of {sorted(PROJECT_STATUSES)}")
    projects = project_service.list_projects_for(current_user(), status=status)
    return jsonify({"items": [p.to_dict() for p in projects], "total": len(projects)}), 200


@project_bp.route("/projects/<project_id>", methods=["GET"])
def get_project(project_id):
    return jsonify(_visible_project(project_id).to_dict()), 200


@project_bp.route("/projects/<project_id>", methods=["PUT"])
def update_project(project_id):
    data, err = json_body()
    if err:
        return err
    project = project_service.get_project(project_id)
    project, changes = project_service.update_project(current_user(), project, data)
    return jsonify({"project": project.to_dict(), "changes": changes}), 200


@project_bp.route("/projects/<project_id>/members", methods=["POST"])
def assign_member(project_id):
    data, err = json_body()
    if err:
        return err
    if not data.get("user_id"):
        return api_error(E.VALIDATION_REQUIRED, "user_id is required")
    project = project_service.assign_member(
        current_user(),
        project_service.get_project(project_id),
        data["user_id"],
        as_role=data.get("as_role") or "team",
    )
    return jsonify(project.to_dict()), 200


@project_bp.route("/projects/<project_id>/budget-summary", methods=["GET"])
def budget_summary(project_id):
    return jsonify(budget_service.project_budget_summary(_visible_project(project_id))), 200


@project_bp.route("/projects/<project_id>/report", methods=["GET"])
def project_report(project_id):
    project = _visible_project(project_id)
    options = reporting.ReportOptions.from_config(current_app.config)
    filters = reporting.ReportFilters.from_args(request.args)
    return jsonify(reporting.build_project_report(project, options, filters)), 200
