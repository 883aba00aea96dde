"""
Chat Blueprint.

Endpoints:
    POST /api/v1/projects/<pid>/chats         — body: peer_id; returns the existing chat if any
    GET  /api/v1/projects/<pid>/chats         — the caller's chats, latest activity first
    GET  /api/v1/chats/<id>/messages          — ?limit
    POST /api/v1/chats/<id>/messages          — body: message, message_type, media_url
    POST /api/v1/chats/<id>/read
"""

import logging

from flask import Blueprint, jsonify

from expensedesk.auth import current_user
from expensedesk.blueprints import json_body, page_args
from expensedesk.services import chat_service, project_service, user_service
from expensedesk.utils.errors import E, api_error

logger = logging.getLogger(__name__)

chat_bp = Blueprint("chat", __name__, url_prefix="/api/v1")


@chat_bp.route("/projects/<project_id>/chats", methods=["POST"])
def open_chat(project_id):
    data, err = json_body()
    if err:
        return err
    if not data.get("peer_id"):
        return api_error(E.VALIDATION_REQUIRED, "peer_id is required")
    project = project_service.get_project(project_id)
    peer = user_service.get_user(data["peer_id"])
    user = current_user()
    chat, created = chat_service.get_or_create_chat(project, user, peer)
    return jsonify(chat.to_dict(user.id)), 201 if created else 200


@chat_bp.route("/projects/<project_id>/chats", methods=["GET"])
def list_chats(project_id):
    user = current_user()
    chats = chat_service.list_user_chats(user.id, project_service.get_project(project_id).id)
    return jsonify({"items": [c.to_dict(user.id) for c in chats]}), 200


@chat_bp.route("/chats/<chat_id>/messages", methods=["GET"])
def list_messages(chat_id):
    chat = chat_service.get_chat(chat_id, viewer=current_user())
    limit, _offset = page_args(default_limit=200, max_limit=1000)
    messages = chat_service.list_messages(chat, limit=limit)
    return jsonify({"items": [m.to_dict() for m in messages]}), 200


@chat_bp.route("/chats/<chat_id>/messages", methods=["POST"])
def send_message(chat_id):
    data, err = json_body()
    if err:
        return err
    chat = chat_service.get_chat(chat_id, viewer=current_user())
    message = chat_service.send_message(
        chat,
        current_user(),
        data.get("message") or "",
        message_type=data.get("message_type") or "Text",
        media_url=data.get("media_url"),
    )
    return jsonify(message.to_dict()), 201


@chat_bp.route("/chats/<chat_id>/read", methods=["POST"])
def mark_read(chat_id):
    user = current_user()
    chat = chat_service.get_chat(chat_id, viewer=user)
    updated = chat_service.mark_messages_read(chat, user)
    return jsonify({"marked_read": updated, "chat": chat.to_dict(user.id)}), 200
