"""
Expense Desk
Recipient resolution.

One table maps each domain event kind to the recipient groups it notifies;
each group resolver returns ``Recipient(user, role)`` pairs. The role is the
capacity in which the user is notified (it drives the navigation route), not
necessarily ``user.role``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable

from expensedesk.models import db, utcnow
from expensedesk.models.chat import Chat
from expensedesk.models.delegation import DELEGATION_ACCEPTED as STATUS_ACCEPTED
from expensedesk.models.delegation import TemporaryApprover
from expensedesk.models.expense import Expense
from expensedesk.models.project import Project
from expensedesk.models.user import ROLE_APPROVER, ROLE_PRODUCTION_HEAD, User

logger = logging.getLogger(__name__)


# ── Event kinds ──────────────────────────────────────────────────────────────

EXPENSE_SUBMITTED = "expense_submitted"
EXPENSE_APPROVED = "expense_approved"
EXPENSE_REJECTED = "expense_rejected"
PENDING_APPROVAL_REMINDER = "pending_approval_reminder"
PROJECT_ASSIGNED = "project_assigned"
PROJECT_CHANGED = "project_changed"
ROLE_CHANGED = "role_changed"
DELEGATION_ASSIGNED = "delegation_assigned"
DELEGATION_CHANGED = "delegation_changed"
DELEGATION_ACCEPTED = "delegation_accepted"
DELEGATION_REJECTED = "delegation_rejected"
DELEGATION_EXPIRED = "delegation_expired"
DELEGATION_REMOVED = "delegation_removed"
CHAT_MESSAGE = "chat_message"


@dataclass(frozen=True)
class DomainEvent:
    """A state change that may notify users.

    ``payload`` carries event-specific values used for message text
    (amount, comments, user_ids for assignments, change descriptions...).
    """

    kind: str
    actor_id: str | None
    project_id: str | None
    expense_id: str | None = None
    delegation_id: str | None = None
    chat_id: str | None = None
    payload: dict = field(default_factory=dict)


@dataclass(frozen=True)
class Recipient:
    user: User
    role: str


# ── Group resolvers ──────────────────────────────────────────────────────────

def _users_by_id(user_ids) -> dict[str, User]:
    ids = [uid for uid in dict.fromkeys(user_ids or []) if uid]
    if not ids:
        return {}
    return {u.id: u for u in User.query.filter(User.id.in_(ids)).all()}


def _ordered(user_ids, users: dict[str, User]) -> list[User]:
    return [users[uid] for uid in dict.fromkeys(user_ids or []) if uid in users]


def _approvers(event: DomainEvent, project: Project | None) -> list[Recipient]:
    """Listed approvers and an approver manager, plus accepted live delegates."""
    if project is None:
        return []
    candidate_ids = list(project.approver_ids or [])
    if project.manager_id:
        candidate_ids.append(project.manager_id)
    users = _users_by_id(candidate_ids)
    found = [Recipient(u, ROLE_APPROVER) for u in _ordered(candidate_ids, users)
             if u.role == ROLE_APPROVER]

    now = utcnow()
    delegations = TemporaryApprover.query.filter_by(
        project_id=project.id, status=STATUS_ACCEPTED, is_active=True,
    ).all()
    delegate_ids = [d.approver_id for d in delegations if not d.is_expired(now)]
    delegates = _users_by_id(delegate_ids)
    found.extend(Recipient(u, ROLE_APPROVER) for u in _ordered(delegate_ids, delegates))
    return found


def _production_heads(event: DomainEvent, project: Project | None) -> list[Recipient]:
    if project is None:
        return []
    ids = list(project.production_head_ids or [])
    users = _users_by_id(ids)
    return [Recipient(u, ROLE_PRODUCTION_HEAD) for u in _ordered(ids, users)
            if u.role == ROLE_PRODUCTION_HEAD]


def _reviewer_pool(event: DomainEvent, project: Project | None) -> list[Recipient]:
    """Approvers then production heads; every approver/head in the system if the project names none."""
    found = _approvers(event, project) + _production_heads(event, project)
    if found:
        return found
    logger.warning(
        "No approvers or production heads on project %s, falling back to all reviewers",
        event.project_id, extra={"project_id": event.project_id, "event_type": event.kind},
    )
    everyone = User.query.filter(
        User.role.in_([ROLE_APPROVER, ROLE_PRODUCTION_HEAD]),
    ).order_by(User.created_at).all()
    return [Recipient(u, u.role) for u in everyone]


def _submitter(event: DomainEvent, project: Project | None) -> list[Recipient]:
    expense = db.session.get(Expense, event.expense_id) if event.expense_id else None
    if expense is None:
        return []
    user = db.session.get(User, expense.user_id)
    return [Recipient(user, user.role)] if user else []


def _team(event: DomainEvent, project: Project | None) -> list[Recipient]:
    """Manager, approvers and team members."""
    if project is None:
        return []
    ids = []
    if project.manager_id:
        ids.append(project.manager_id)
    ids.extend(project.approver_ids or [])
    ids.extend(project.team_members or [])
    users = _users_by_id(ids)
    return [Recipient(u, u.role) for u in _ordered(ids, users)]


def _target_users(event: DomainEvent, project: Project | None) -> list[Recipient]:
    ids = event.payload.get("user_ids") or []
    if not ids and event.payload.get("user_id"):
        ids = [event.payload["user_id"]]
    users = _users_by_id(ids)
    return [Recipient(u, u.role) for u in _ordered(ids, users)]


def _delegation(event: DomainEvent) -> TemporaryApprover | None:
    if not event.delegation_id:
        return None
    return db.session.get(TemporaryApprover, event.delegation_id)


def _delegate(event: DomainEvent, project: Project | None) -> list[Recipient]:
    delegation = _delegation(event)
    if delegation is None:
        return []
    user = db.session.get(User, delegation.approver_id)
    return [Recipient(user, ROLE_APPROVER)] if user else []


def _assigner(event: DomainEvent, project: Project | None) -> list[Recipient]:
    delegation = _delegation(event)
    if delegation is None:
        return []
    user = db.session.get(User, delegation.assigned_by)
    return [Recipient(user, user.role)] if user else []


def _chat_peer(event: DomainEvent, project: Project | None) -> list[Recipient]:
    chat = db.session.get(Chat, event.chat_id) if event.chat_id else None
    if chat is None:
        return []
    peer_id = chat.peer_of(event.actor_id)
    user = db.session.get(User, peer_id) if peer_id else None
    return [Recipient(user, user.role)] if user else []


Resolver = Callable[[DomainEvent, Project], list]

# Groups that never include the acting user
_EXCLUDES_ACTOR = {"REVIEWERS", "PRODUCTION_HEADS", "TEAM"}

_GROUPS: dict[str, Resolver] = {
    "REVIEWERS": _reviewer_pool,
    "PRODUCTION_HEADS": _production_heads,
    "SUBMITTER": _submitter,
    "TEAM": _team,
    "TARGET_USERS": _target_users,
    "DELEGATE": _delegate,
    "ASSIGNER": _assigner,
    "CHAT_PEER": _chat_peer,
}

EVENT_RECIPIENT_GROUPS: dict[str, tuple[str, ...]] = {
    EXPENSE_SUBMITTED: ("REVIEWERS",),
    EXPENSE_APPROVED: ("SUBMITTER",),
    EXPENSE_REJECTED: ("SUBMITTER",),
    PENDING_APPROVAL_REMINDER: ("PRODUCTION_HEADS",),
    PROJECT_ASSIGNED: ("TARGET_USERS",),
    PROJECT_CHANGED: ("TEAM",),
    ROLE_CHANGED: ("TARGET_USERS",),
    DELEGATION_ASSIGNED: ("DELEGATE",),
    DELEGATION_CHANGED: ("DELEGATE",),
    DELEGATION_ACCEPTED: ("ASSIGNER",),
    DELEGATION_REJECTED: ("ASSIGNER",),
    DELEGATION_EXPIRED: ("DELEGATE", "ASSIGNER"),
    DELEGATION_REMOVED: ("DELEGATE",),
    CHAT_MESSAGE: ("CHAT_PEER",),
}


def resolve_recipients(event: DomainEvent, project: Project | None) -> list[Recipient]:
    """Return the active users ``event`` notifies, first capacity wins on duplicates."""
    groups = EVENT_RECIPIENT_GROUPS.get(event.kind)
    if groups is None:
        raise ValueError(f"Unknown event kind {event.kind!r}")

    seen: set[str] = set()
    resolved: list[Recipient] = []
    for group in groups:
        for recipient in _GROUPS[group](event, project):
            user = recipient.user
            if user.id in seen or not user.is_active:
                continue
            if group in _EXCLUDES_ACTOR and user.id == event.actor_id:
                continue
            seen.add(user.id)
            resolved.append(recipient)
    return resolved
