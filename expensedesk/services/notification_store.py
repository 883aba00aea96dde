"""
Expense Desk
Notification Store.

Read side of notifications: per-recipient listing, badges, per-project
summaries, read tracking and retention. ``stream_notifications`` replaces a
push-based document listener with polling: it yields a fresh snapshot whenever
the recipient's notification set changes.
"""

from __future__ import annotations

import logging
import time
from datetime import timedelta
from typing import Callable, Iterator

from flask import current_app
from sqlalchemy import case, func

from expensedesk.core.exceptions import NotFoundError
from expensedesk.models import db, utcnow
from expensedesk.models.notification import Notification
from expensedesk.utils.helpers import commit_or_raise

logger = logging.getLogger(__name__)

STREAM_SNAPSHOT_LIMIT = 100


class NotificationStore:
    """Stateless service class for notification reads and read-state changes."""

    # ── Query ─────────────────────────────────────────────────────────────

    @staticmethod
    def _base_query(user_id, project_id=None, role=None, unread_only=False):
        q = Notification.query.filter(Notification.recipient_id == user_id)
        if project_id:
            q = q.filter(Notification.project_id == project_id)
        if role:
            q = q.filter(Notification.recipient_role == role)
        if unread_only:
            q = q.filter(Notification.is_read.is_(False))
        return q

    @staticmethod
    def list_for_recipient(user_id, project_id=None, role=None, unread_only=False,
                           limit=50, offset=0):
        """
        Retrieve notifications for a recipient, newest first.

        Returns:
            (items, total)
        """
        q = NotificationStore._base_query(user_id, project_id, role, unread_only)
        total = q.count()
        items = (
            q.order_by(Notification.created_at.desc(), Notification.id.desc())
            .offset(offset).limit(limit).all()
        )
        return items, total

    @staticmethod
    def badge(user_id, project_id=None) -> dict:
        """Unread and action-required counts for a recipient."""
        unread = NotificationStore._base_query(user_id, project_id, unread_only=True)
        return {
            "unread": unread.count(),
            "action_required": unread.filter(Notification.action_required.is_(True)).count(),
        }

    @staticmethod
    def project_summaries(user_id, project_ids=None) -> list[dict]:
        """Per-project unread/total counts with the latest notification, newest project first."""
        q = db.session.query(
            Notification.project_id,
            func.count(Notification.id),
            func.sum(case((Notification.is_read.is_(False), 1), else_=0)),
            func.max(Notification.created_at),
        ).filter(
            Notification.recipient_id == user_id,
            Notification.project_id.isnot(None),
        )
        if project_ids:
            q = q.filter(Notification.project_id.in_(list(project_ids)))
        rows = q.group_by(Notification.project_id).all()

        summaries = []
        for project_id, total, unread, _latest_at in rows:
            latest = (
                NotificationStore._base_query(user_id, project_id)
                .order_by(Notification.created_at.desc(), Notification.id.desc())
                .first()
            )
            summaries.append({
                "project_id": project_id,
                "project_name": latest.project_name if latest else "",
                "total": int(total or 0),
                "unread": int(unread or 0),
                "latest": latest.to_dict() if latest else None,
            })
        summaries.sort(key=lambda s: (s["latest"] or {}).get("created_at") or "", reverse=True)
        return summaries

    # ── Stream ────────────────────────────────────────────────────────────

    @staticmethod
    def _fingerprint(user_id, limit) -> tuple:
        rows = (
            db.session.query(Notification.id, Notification.is_read)
            .filter(Notification.recipient_id == user_id)
            .order_by(Notification.created_at.desc(), Notification.id.desc())
            .limit(limit)
            .all()
        )
        return tuple((row.id, bool(row.is_read)) for row in rows)

    @staticmethod
    def _snapshot(user_id, limit) -> list[Notification]:
        return (
            NotificationStore._base_query(user_id)
            .order_by(Notification.created_at.desc(), Notification.id.desc())
            .populate_existing()
            .limit(limit)
            .all()
        )

    @staticmethod
    def stream_notifications(
        user_id,
        *,
        poll_interval: float | None = None,
        max_polls: int | None = None,
        limit: int = STREAM_SNAPSHOT_LIMIT,
        sleep: Callable[[float], None] = time.sleep,
    ) -> Iterator[list[Notification]]:
        """
        Yield the recipient's notifications (newest first) now and after every change.

        Each new call starts from a fresh snapshot, so a dropped client simply
        reconnects. ``max_polls`` bounds the number of database polls; None
        polls until the consumer stops iterating.
        """
        if poll_interval is None:
            poll_interval = current_app.config.get("NOTIFICATION_STREAM_POLL_SECONDS", 2)

        last_seen = None
        polls = 0
        while max_polls is None or polls < max_polls:
            if polls:
                sleep(poll_interval)
                # end the read transaction so the next poll sees new commits
                db.session.rollback()
            polls += 1
            fingerprint = NotificationStore._fingerprint(user_id, limit)
            if fingerprint != last_seen:
                last_seen = fingerprint
                yield NotificationStore._snapshot(user_id, limit)

    # ── Actions ───────────────────────────────────────────────────────────

    @staticmethod
    def mark_read(notification_id, user_id=None) -> Notification:
        """Mark one notification read. Repeated calls change nothing."""
        notif = db.session.get(Notification, notification_id)
        if notif is None or (user_id is not None and notif.recipient_id != user_id):
            raise NotFoundError(resource="Notification", resource_id=notification_id)
        if notif.mark_read():
            commit_or_raise("mark notification read")
        return notif

    @staticmethod
    def mark_all_read(user_id, project_id=None) -> int:
        """Mark every unread notification of a recipient read; returns how many changed."""
        q = NotificationStore._base_query(user_id, project_id, unread_only=True)
        count = q.update({"is_read": True, "read_at": utcnow()}, synchronize_session="fetch")
        commit_or_raise("mark all notifications read")
        return count

    @staticmethod
    def delete_older_than(days: int, *, read_only: bool = True) -> int:
        """Delete notifications created more than ``days`` ago (read ones only by default)."""
        cutoff = utcnow() - timedelta(days=days)
        q = Notification.query.filter(Notification.created_at < cutoff)
        if read_only:
            q = q.filter(Notification.is_read.is_(True))
        count = q.delete(synchronize_session="fetch")
        commit_or_raise("delete old notifications")
        logger.info("Deleted %d notifications older than %d days", count, days)
        return count
