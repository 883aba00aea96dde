"""
Expense Desk
Navigation target codec.

Notifications carry a ``navigation_target`` string of the form
``<route>[/<id>[/<id>...]]`` that the mobile client resolves to a screen.
This module is the only place that knows which route a notification type
opens for a given recipient role.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from urllib.parse import unquote

from expensedesk.models import notification as nt
from expensedesk.models.user import (
    ROLE_ADMIN,
    ROLE_APPROVER,
    ROLE_PRODUCTION_HEAD,
    ROLE_USER,
)


# ── Routes ───────────────────────────────────────────────────────────────────

PROJECT_SELECTION = "project_selection"
PENDING_APPROVALS = "pending_approvals"
EXPENSE_LIST = "expense_list"
DELEGATION = "delegation"
CHAT = "chat"
USER_PROJECT_DASHBOARD = "user_project_dashboard"
APPROVER_PROJECT_DASHBOARD = "approver_project_dashboard"
PRODUCTION_HEAD_PROJECT_DASHBOARD = "production_head_project_dashboard"

KNOWN_ROUTES = {
    PROJECT_SELECTION, PENDING_APPROVALS, EXPENSE_LIST, DELEGATION, CHAT,
    USER_PROJECT_DASHBOARD, APPROVER_PROJECT_DASHBOARD,
    PRODUCTION_HEAD_PROJECT_DASHBOARD,
}

# None means the route takes no project id
_ROLE_DASHBOARDS: dict[str, str | None] = {
    ROLE_USER: USER_PROJECT_DASHBOARD,
    ROLE_APPROVER: APPROVER_PROJECT_DASHBOARD,
    ROLE_PRODUCTION_HEAD: PRODUCTION_HEAD_PROJECT_DASHBOARD,
    ROLE_ADMIN: None,
}

# Types whose route does not depend on the recipient role
_FIXED_ROUTES = {
    nt.EXPENSE_SUBMITTED: PENDING_APPROVALS,
    nt.PENDING_APPROVAL: PENDING_APPROVALS,
    nt.EXPENSE_APPROVED: EXPENSE_LIST,
    nt.EXPENSE_REJECTED: EXPENSE_LIST,
    nt.TEMPORARY_APPROVER_ASSIGNMENT: APPROVER_PROJECT_DASHBOARD,
    nt.DELEGATION_CHANGED: APPROVER_PROJECT_DASHBOARD,
    nt.DELEGATION_RESPONSE: DELEGATION,
}

_SELECTION_TYPES = {
    nt.ROLE_ASSIGNMENT, nt.DELEGATION_EXPIRED, nt.DELEGATION_REMOVED, nt.INFO,
}


def _escape(param: str) -> str:
    """Escape ``/`` and ``%``; every other character is stored as typed."""
    return param.replace("%", "%25").replace("/", "%2F")


@dataclass(frozen=True)
class NavigationTarget:
    route: str
    params: tuple[str, ...] = field(default_factory=tuple)

    @property
    def project_id(self) -> str | None:
        if self.route == PROJECT_SELECTION or not self.params:
            return None
        return self.params[0]

    def encode(self) -> str:
        return "/".join([self.route, *(_escape(p) for p in self.params)])

    def __str__(self) -> str:
        return self.encode()


def dashboard_for(role: str, project_id: str | None) -> NavigationTarget:
    route = _ROLE_DASHBOARDS.get(role, USER_PROJECT_DASHBOARD)
    if route is None or not project_id:
        return NavigationTarget(PROJECT_SELECTION)
    return NavigationTarget(route, (project_id,))


def target_for(
    notification_type: str,
    recipient_role: str,
    project_id: str | None,
    *,
    chat_id: str | None = None,
    sender_name: str | None = None,
) -> NavigationTarget:
    """Route a notification of ``notification_type`` to a screen for ``recipient_role``."""
    if notification_type in (nt.PROJECT_ASSIGNMENT, nt.PROJECT_CHANGED):
        return dashboard_for(recipient_role, project_id)
    if notification_type == nt.CHAT_MESSAGE:
        return NavigationTarget(CHAT, (project_id or "", chat_id or "", sender_name or ""))
    if notification_type in _SELECTION_TYPES or not project_id:
        return NavigationTarget(PROJECT_SELECTION)
    route = _FIXED_ROUTES.get(notification_type)
    if route is None:
        raise ValueError(f"No navigation route for notification type {notification_type!r}")
    return NavigationTarget(route, (project_id,))


def parse(target: str) -> NavigationTarget:
    """Decode a stored ``navigation_target``. Raises ValueError on unknown routes."""
    if not target:
        raise ValueError("Empty navigation target")
    route, *params = target.split("/")
    if route not in KNOWN_ROUTES:
        raise ValueError(f"Unknown navigation route {route!r}")
    return NavigationTarget(route, tuple(unquote(p) for p in params))
