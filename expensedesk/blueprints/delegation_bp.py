"""
Temporary Approver (Delegation) Blueprint.

Endpoints:
    POST   /api/v1/projects/<pid>/delegations     — body: approver_id, expiring_date (ISO-8601)
    GET    /api/v1/projects/<pid>/delegations     — ?active=true for live ones only
    GET    /api/v1/delegations/mine               — the caller's live delegations
    POST   /api/v1/delegations/<id>/respond       — body: accept (bool), comment
    PATCH  /api/v1/delegations/<id>               — body: expiring_date
    DELETE /api/v1/delegations/<id>
"""

import logging

from flask import Blueprint, jsonify, request

from expensedesk.auth import current_user
from expensedesk.blueprints import json_body
from expensedesk.core.exceptions import PermissionDeniedError
from expensedesk.models import utcnow
from expensedesk.models.user import ROLE_ADMIN
from expensedesk.services import delegation_service, project_service
from expensedesk.utils.errors import E, api_error
from expensedesk.utils.helpers import parse_datetime

logger = logging.getLogger(__name__)

delegation_bp = Blueprint("delegation", __name__, url_prefix="/api/v1")


def _expiring_date(data):
    """Returns (datetime, None) or (None, error_response)."""
    if not data.get("expiring_date"):
        return None, api_error(E.VALIDATION_REQUIRED, "expiring_date is required")
    try:
        return parse_datetime(data["expiring_date"]), None
    except ValueError as exc:
        return None, api_error(E.VALIDATION_INVALID, str(exc))


@delegation_bp.route("/projects/<project_id>/delegations", methods=["POST"])
def assign_delegate(project_id):
    data, err = json_body()
    if err:
        return err
    if not data.get("approver_id"):
        return api_error(E.VALIDATION_REQUIRED, "approver_id is required")
    expires, err = _expiring_date(data)
    if err:
        return err
    delegation = delegation_service.assign_delegate(
        current_user(), project_service.get_project(project_id), data["approver_id"], expires
    )
    return jsonify(delegation.to_dict()), 201


@delegation_bp.route("/projects/<project_id>/delegations", methods=["GET"])
def list_delegations(project_id):
    project = project_service.get_project(project_id)
    user = current_user()
    if user.role != ROLE_ADMIN and not project.is_member(user.id):
        raise PermissionDeniedError("view delegations on this project", user.id)
    if request.args.get("active", "false").lower() == "true":
        delegations = delegation_service.list_active(project.id)
    else:
        delegations = delegation_service.list_for_project(project.id)
    now = utcnow()
    return jsonify({"items": [d.to_dict(now) for d in delegations], "total": len(delegations)}), 200


@delegation_bp.route("/delegations/mine", methods=["GET"])
def my_delegations():
    now = utcnow()
    delegations = delegation_service.active_for_user(current_user().id, now)
    return jsonify({"items": [d.to_dict(now) for d in delegations]}), 200


@delegation_bp.route("/delegations/<delegation_id>/respond", methods=["POST"])
def respond(delegation_id):
    data, err = json_body()
    if err:
        return err
    if not isinstance(data.get("accept"), bool):
        return api_error(E.VALIDATION_REQUIRED, "accept (boolean) is required")
    delegation = delegation_service.respond(
        current_user(),
        delegation_service.get_delegation(delegation_id),
        data["accept"],
        comment=data.get("comment") or "",
    )
    return jsonify(delegation.to_dict()), 200


@delegation_bp.route("/delegations/<delegation_id>", methods=["PATCH"])
def extend(delegation_id):
    data, err = json_body()
    if err:
        return err
    expires, err = _expiring_date(data)
    if err:
        return err
    delegation = delegation_service.extend(
        current_user(), delegation_service.get_delegation(delegation_id), expires
    )
    return jsonify(delegation.to_dict()), 200


@delegation_bp.route("/delegations/<delegation_id>", methods=["DELETE"])
def remove(delegation_id):
    delegation = delegation_service.remove(current_user(), delegation_service.get_delegation(delegation_id))
    return jsonify(delegation.to_dict()), 200
