"""
User Blueprint.

Endpoints:
    POST  /api/v1/users/login                         — get-or-create by verified phone
    GET   /api/v1/users/me
    POST  /api/v1/users                               — ADMIN / PRODUCTION_HEAD
    GET   /api/v1/users
    GET   /api/v1/users/<id>
    PATCH /api/v1/users/<id>/role
    POST  /api/v1/users/<id>/deactivate
    PUT   /api/v1/users/<id>/notification-preferences
    PUT   /api/v1/users/<id>/device-token
"""

import logging

from flask import Blueprint, jsonify, request

from expensedesk.auth import current_user, require_roles
from expensedesk.blueprints import json_body, paginate_query
from expensedesk.models.user import MANAGER_ROLES, ROLE_ADMIN, ROLE_PRODUCTION_HEAD
from expensedesk.services import user_service
from expensedesk.utils.errors import E, api_error

logger = logging.getLogger(__name__)

user_bp = Blueprint("user", __name__, url_prefix="/api/v1")


@user_bp.route("/users/login", methods=["POST"])
def login():
    data, err = json_body()
    if err:
        return err
    if not data.get("phone"):
        return api_error(E.VALIDATION_REQUIRED, "phone is required")
    user, created = user_service.login(data["phone"], data.get("name"))
    return jsonify({"user": user.to_dict(), "created": created}), 201 if created else 200


@user_bp.route("/users/me", methods=["GET"])
def me():
    return jsonify(current_user().to_dict()), 200


@user_bp.route("/users", methods=["POST"])
@require_roles(ROLE_ADMIN, ROLE_PRODUCTION_HEAD)
def create_user():
    data, err = json_body()
    if err:
        return err
    for field in ("name", "phone"):
        if not data.get(field):
            return api_error(E.VALIDATION_REQUIRED, f"{field} is required")
    user = user_service.create_user(current_user(), data)
    return jsonify(user.to_dict()), 201


@user_bp.route("/users", methods=["GET"])
@require_roles(*MANAGER_ROLES)
def list_users():
    active_only = request.args.get("include_inactive", "false").lower() != "true"
    q = user_service.list_users(role=request.args.get("role"), active_only=active_only)
    items, total = paginate_query(q)
    return jsonify({"items": [u.to_dict() for u in items], "total": total}), 200


@user_bp.route("/users/<user_id>", methods=["GET"])
def get_user(user_id):
    return jsonify(user_service.get_user(user_id).to_dict()), 200


@user_bp.route("/users/<user_id>/role", methods=["PATCH"])
@require_roles(*MANAGER_ROLES)
def change_role(user_id):
    data, err = json_body()
    if err:
        return err
    if not data.get("role"):
        return api_error(E.VALIDATION_REQUIRED, "role is required")
    user = user_service.change_role(current_user(), user_service.get_user(user_id), data["role"])
    return jsonify(user.to_dict()), 200


@user_bp.route("/users/<user_id>/deactivate", methods=["POST"])
@require_roles(*MANAGER_ROLES)
def deactivate_user(user_id):
    user = user_service.deactivate_user(current_user(), user_service.get_user(user_id))
    return jsonify(user.to_dict()), 200


@user_bp.route("/users/<user_id>/notification-preferences", methods=["PUT"])
def update_preferences(user_id):
    data, err = json_body()
    if err:
        return err
    user = user_service.update_preferences(current_user(), user_service.get_user(user_id), data)
    return jsonify(user.to_dict()), 200


@user_bp.route("/users/<user_id>/device-token", methods=["PUT"])
def register_device_token(user_id):
    data, err = json_body()
    if err:
        return err
    user = user_service.register_device_token(
        current_user(), user_service.get_user(user_id), data.get("device_token")
    )
    return jsonify({"user_id": user.id, "registered": user.device_token is not None}), 200
