"""
Expense Desk
Push delivery gateway.

All outbound calls to the push messaging endpoint go through ``PushService``.
Delivery is best-effort: a single attempt, a bounded timeout, and a result
object instead of an exception. In-app notification records are already
committed by the time a push is attempted, so a failed push loses nothing.

Without ``FCM_SERVER_KEY`` (development, tests) deliveries are logged and
reported as ``skipped``.

Testability: pass a stub ``session`` to ``PushService`` instead of letting it
create a real ``requests.Session``.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass

import requests
from flask import current_app

from expensedesk.models import db
from expensedesk.models.notification import PREFERENCE_KEYS, Notification
from expensedesk.models.user import User

logger = logging.getLogger(__name__)

SENT = "sent"
SKIPPED = "skipped"
FAILED = "failed"

_DEFAULT_TIMEOUT = 5


@dataclass
class PushResult:
    """Outcome of one delivery attempt."""

    status: str
    reason: str | None = None
    status_code: int | None = None
    duration_ms: int = 0

    @property
    def ok(self) -> bool:
        return self.status == SENT


class PushService:
    """Push messaging gateway.

    Usage:
        from expensedesk.services.push_service import push_service
        push_service.deliver(notification)
    """

    def __init__(self, session: requests.Session | None = None) -> None:
        self._session: requests.Session | None = session

    @property
    def session(self) -> requests.Session:
        if self._session is None:
            self._session = requests.Session()
        return self._session

    @staticmethod
    def build_payload(notification: Notification, device_token: str) -> dict:
        return {
            "to": device_token,
            "notification": {
                "title": notification.title,
                "body": notification.message,
            },
            "data": {
                "notification_id": notification.id,
                "type": notification.type,
                "project_id": notification.project_id or "",
                "related_id": notification.related_id or "",
                "navigation_target": notification.navigation_target or "",
            },
        }

    def deliver(self, notification: Notification, user: User | None = None) -> PushResult:
        """Send ``notification`` to its recipient's device. Never raises."""
        user = user or db.session.get(User, notification.recipient_id)
        extra = {"recipient_id": notification.recipient_id, "event_type": notification.type}

        if user is None or not user.device_token:
            return PushResult(SKIPPED, "no device token")
        if not user.wants(PREFERENCE_KEYS.get(notification.type)):
            logger.debug("Push suppressed by preferences for %s", user.id, extra=extra)
            return PushResult(SKIPPED, "disabled by preferences")

        server_key = current_app.config.get("FCM_SERVER_KEY")
        if not server_key:
            logger.info("Push (dev mode, not sent): %s -> %s", notification.title, user.id, extra=extra)
            return PushResult(SKIPPED, "push not configured")

        endpoint = current_app.config.get("FCM_ENDPOINT")
        timeout = current_app.config.get("PUSH_TIMEOUT_SECONDS", _DEFAULT_TIMEOUT)
        headers = {
            "Authorization": f"key={server_key}",
            "Content-Type": "application/json",
        }

        t0 = time.perf_counter()
        try:
            resp = self.session.post(
                endpoint,
                json=self.build_payload(notification, user.device_token),
                headers=headers,
                timeout=timeout,
            )
        except requests.Timeout:
            logger.warning("Push timed out after %ss for %s", timeout, user.id, extra=extra)
            return PushResult(FAILED, f"timed out after {timeout}s",
                              duration_ms=int(timeout * 1000))
        except requests.RequestException as exc:
            logger.warning("Push network error for %s: %s", user.id, exc, extra=extra)
            return PushResult(FAILED, str(exc)[:500])

        duration_ms = int((time.perf_counter() - t0) * 1000)
        if not resp.ok:
            logger.warning("Push rejected status=%d for %s", resp.status_code, user.id, extra=extra)
            return PushResult(FAILED, f"HTTP {resp.status_code}: {resp.text[:200]}",
                              status_code=resp.status_code, duration_ms=duration_ms)

        logger.debug("Push sent to %s", user.id, extra={**extra, "duration_ms": duration_ms})
        return PushResult(SENT, status_code=resp.status_code, duration_ms=duration_ms)


push_service = PushService()
