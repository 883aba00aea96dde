"""
Notification & Scheduling Blueprint.

Provides:
    - Recipient-scoped notification listing, badge and per-project summaries
    - Server-Sent-Events stream of the caller's notifications
    - Read tracking (single and bulk)
    - Scheduled job management (list, trigger, toggle) for administrators

Notifications are only ever created by the dispatcher; there is no create
endpoint here.
"""

from __future__ import annotations

import json
import logging

from flask import Blueprint, Response, jsonify, request, stream_with_context

from expensedesk.auth import current_user, require_roles
from expensedesk.blueprints import json_body, page_args
from expensedesk.models.user import ROLE_ADMIN, USER_ROLES
from expensedesk.services.notification_store import NotificationStore
from expensedesk.services.scheduler_service import SchedulerService, get_registered_jobs
from expensedesk.utils.errors import E, api_error

logger = logging.getLogger(__name__)

notification_bp = Blueprint("notification", __name__, url_prefix="/api/v1")


# ═══════════════════════════════════════════════════════════════════════════
#  NOTIFICATIONS
# ═══════════════════════════════════════════════════════════════════════════

@notification_bp.route("/notifications", methods=["GET"])
def list_notifications():
    """List the caller's notifications, newest first.

    Query params: project_id, role, unread_only, limit, offset
    """
    role = request.args.get("role")
    if role and role not in USER_ROLES:
        return api_error(E.VALIDATION_INVALID, f"role must be one of {sorted(USER_ROLES)}")
    limit, offset = page_args()
    items, total = NotificationStore.list_for_recipient(
        current_user().id,
        project_id=request.args.get("project_id"),
        role=role,
        unread_only=request.args.get("unread_only", "false").lower() == "true",
        limit=limit,
        offset=offset,
    )
    return jsonify({"items": [n.to_dict() for n in items], "total": total}), 200


@notification_bp.route("/notifications/badge", methods=["GET"])
def badge():
    return jsonify(NotificationStore.badge(current_user().id, request.args.get("project_id"))), 200


@notification_bp.route("/notifications/project-summaries", methods=["GET"])
def project_summaries():
    """Per-project unread counts; ``project_ids`` is a comma separated filter."""
    raw = request.args.get("project_ids", "")
    project_ids = [p.strip() for p in raw.split(",") if p.strip()] or None
    return jsonify({"items": NotificationStore.project_summaries(current_user().id, project_ids)}), 200


@notification_bp.route("/notifications/stream", methods=["GET"])
def stream():
    """Server-Sent-Events feed: one ``notifications`` event per change.

    ``max_polls`` bounds the stream (clients normally omit it and reconnect
    when the connection drops).
    """
    try:
        max_polls = int(request.args["max_polls"]) if "max_polls" in request.args else None
    except ValueError:
        return api_error(E.VALIDATION_INVALID, "max_polls must be an integer")
    if max_polls is not None and max_polls < 1:
        return api_error(E.VALIDATION_INVALID, "max_polls must be positive")

    user_id = current_user().id

    def _events():
        for snapshot in NotificationStore.stream_notifications(user_id, max_polls=max_polls):
            payload = json.dumps([n.to_dict() for n in snapshot])
            yield f"event: notifications\ndata: {payload}\n\n"

    logger.info("Notification stream opened", extra={"user_id": user_id})
    return Response(
        stream_with_context(_events()),
        mimetype="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@notification_bp.route("/notifications/<notification_id>/read", methods=["POST"])
def mark_read(notification_id):
    notif = NotificationStore.mark_read(notification_id, user_id=current_user().id)
    return jsonify(notif.to_dict()), 200


@notification_bp.route("/notifications/read-all", methods=["POST"])
def mark_all_read():
    data, err = json_body()
    if err:
        return err
    count = NotificationStore.mark_all_read(current_user().id, project_id=data.get("project_id"))
    return jsonify({"marked_read": count}), 200


# ═══════════════════════════════════════════════════════════════════════════
#  SCHEDULED JOBS
# ═══════════════════════════════════════════════════════════════════════════

@notification_bp.route("/scheduler/jobs", methods=["GET"])
@require_roles(ROLE_ADMIN)
def list_jobs():
    return jsonify({"items": SchedulerService.list_jobs()}), 200


@notification_bp.route("/scheduler/jobs/<job_name>/trigger", methods=["POST"])
@require_roles(ROLE_ADMIN)
def trigger_job(job_name):
    if job_name not in get_registered_jobs():
        return api_error(E.NOT_FOUND, f"Unknown job: {job_name}")
    logger.info("Job %s triggered manually by %s", job_name, current_user().id,
                extra={"job_name": job_name})
    result = SchedulerService.run_job(job_name, force=True)
    return jsonify(result), 200 if result["status"] == "success" else 500


@notification_bp.route("/scheduler/jobs/<job_name>", methods=["PATCH"])
@require_roles(ROLE_ADMIN)
def toggle_job(job_name):
    data, err = json_body()
    if err:
        return err
    if not isinstance(data.get("is_enabled"), bool):
        return api_error(E.VALIDATION_REQUIRED, "is_enabled (boolean) is required")
    job = SchedulerService.toggle_job(job_name, data["is_enabled"])
    if job is None:
        return api_error(E.NOT_FOUND, f"Unknown job: {job_name}")
    return jsonify(job), 200
