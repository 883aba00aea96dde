"""
Expense Desk
Notification Dispatcher.

Turns a ``DomainEvent`` into one Notification record per recipient:
    1. resolve recipients (``recipients.resolve_recipients``)
    2. compose title / message / type for each recipient
    3. derive the navigation target (``navigation.target_for``)
    4. commit all records in one unit, together with whatever the calling
       service flushed before dispatching
    5. offer each record to the push gateway

Re-emitting an event creates new records; there is no deduplication key.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from flask import current_app

from expensedesk.models import as_utc, db
from expensedesk.models import notification as nt
from expensedesk.models.delegation import TemporaryApprover
from expensedesk.models.expense import Expense
from expensedesk.models.notification import Notification
from expensedesk.models.project import Project
from expensedesk.models.user import User
from expensedesk.services import navigation
from expensedesk.services import recipients as ev
from expensedesk.services.push_service import push_service
from expensedesk.utils.helpers import commit_or_raise

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Composed:
    type: str
    title: str
    message: str
    action_required: bool = False


# ═══════════════════════════════════════════════════════════════════════════
#  Message composition
# ═══════════════════════════════════════════════════════════════════════════

class _Context:
    """Lazily loaded entities an event refers to."""

    def __init__(self, event: ev.DomainEvent, project: Project | None):
        self.event = event
        self.project = project
        self.payload = event.payload
        self.currency = current_app.config.get("CURRENCY_SYMBOL", "")

    @property
    def project_name(self) -> str:
        return self.project.name if self.project else ""

    @property
    def expense(self) -> Expense | None:
        if not self.event.expense_id:
            return None
        return db.session.get(Expense, self.event.expense_id)

    @property
    def delegation(self) -> TemporaryApprover | None:
        if not self.event.delegation_id:
            return None
        return db.session.get(TemporaryApprover, self.event.delegation_id)

    @property
    def actor_name(self) -> str:
        if self.payload.get("actor_name"):
            return self.payload["actor_name"]
        actor = db.session.get(User, self.event.actor_id) if self.event.actor_id else None
        return actor.name if actor else "System"

    def money(self, amount) -> str:
        return f"{self.currency}{float(amount or 0):.2f}"


def _expiry(delegation: TemporaryApprover | None) -> str:
    expires = as_utc(delegation.expiring_date) if delegation else None
    return expires.strftime("%d %b %Y") if expires else "further notice"


def _expense_submitted(ctx: _Context, recipient: ev.Recipient) -> Composed:
    expense = ctx.expense
    amount = expense.amount if expense else ctx.payload.get("amount")
    submitter = expense.user_name if expense else ctx.actor_name
    category = expense.category if expense else ""
    return Composed(
        nt.EXPENSE_SUBMITTED,
        "New Expense Submitted",
        f"New expense of {ctx.money(amount)} submitted by {submitter} "
        f"in {ctx.project_name} (Category: {category})",
        action_required=True,
    )


def _expense_decided(ctx: _Context, recipient: ev.Recipient) -> Composed:
    approved = ctx.event.kind == ev.EXPENSE_APPROVED
    expense = ctx.expense
    amount = expense.amount if expense else ctx.payload.get("amount")
    reviewer = (expense.reviewed_by if expense else "") or ctx.actor_name
    verb = "approved" if approved else "rejected"
    message = f"Your expense of {ctx.money(amount)} in {ctx.project_name} has been {verb} by {reviewer}"
    comments = (expense.review_comments if expense else "") or ctx.payload.get("comments")
    if not approved and comments:
        message += f" - Reason: {comments}"
    return Composed(
        nt.EXPENSE_APPROVED if approved else nt.EXPENSE_REJECTED,
        "Expense Approved" if approved else "Expense Rejected",
        message,
    )


def _pending_reminder(ctx: _Context, recipient: ev.Recipient) -> Composed:
    count = ctx.payload.get("pending_count", 0)
    return Composed(
        nt.PENDING_APPROVAL,
        "Pending Approvals",
        f"{count} expenses awaiting approval in {ctx.project_name}",
        action_required=True,
    )


def _project_assigned(ctx: _Context, recipient: ev.Recipient) -> Composed:
    capacity = ctx.payload.get("capacity", {}).get(recipient.user.id) or recipient.role
    return Composed(
        nt.PROJECT_ASSIGNMENT,
        "New Project Assignment",
        f"You have been assigned as {capacity} to project: {ctx.project_name}",
        action_required=True,
    )


def _project_changed(ctx: _Context, recipient: ev.Recipient) -> Composed:
    changes = ctx.payload.get("changes") or []
    summary = ". ".join(changes) if changes else "details updated"
    return Composed(
        nt.PROJECT_CHANGED,
        "Project Updated",
        f"{ctx.project_name} was updated by {ctx.actor_name}: {summary}",
    )


def _role_changed(ctx: _Context, recipient: ev.Recipient) -> Composed:
    new_role = ctx.payload.get("new_role") or recipient.user.role
    return Composed(
        nt.ROLE_ASSIGNMENT,
        "Role Updated",
        f"Your role has been changed to {new_role} by {ctx.actor_name}",
    )


def _delegation_assigned(ctx: _Context, recipient: ev.Recipient) -> Composed:
    return Composed(
        nt.TEMPORARY_APPROVER_ASSIGNMENT,
        "Temporary Approver Assignment",
        f"You have been assigned as a temporary approver to project '{ctx.project_name}' "
        f"until {_expiry(ctx.delegation)}. Please accept or reject the assignment.",
        action_required=True,
    )


def _delegation_changed(ctx: _Context, recipient: ev.Recipient) -> Composed:
    return Composed(
        nt.DELEGATION_CHANGED,
        "Delegation Updated",
        f"Your temporary approver access to '{ctx.project_name}' now runs until "
        f"{_expiry(ctx.delegation)}",
    )


def _delegation_response(ctx: _Context, recipient: ev.Recipient) -> Composed:
    accepted = ctx.event.kind == ev.DELEGATION_ACCEPTED
    delegation = ctx.delegation
    delegate = delegation.approver_name if delegation else ctx.actor_name
    verb = "accepted" if accepted else "rejected"
    message = f"{delegate} {verb} the temporary approver role for '{ctx.project_name}'"
    comment = delegation.response_comment if delegation else ""
    if comment:
        message += f": {comment}"
    return Composed(
        nt.DELEGATION_RESPONSE,
        "Delegation Accepted" if accepted else "Delegation Rejected",
        message,
    )


def _delegation_expired(ctx: _Context, recipient: ev.Recipient) -> Composed:
    delegation = ctx.delegation
    delegate = delegation.approver_name if delegation else ""
    if delegation and recipient.user.id == delegation.approver_id:
        message = f"Your temporary approver access to '{ctx.project_name}' has expired"
    else:
        message = f"Temporary approver access of {delegate} to '{ctx.project_name}' has expired"
    return Composed(nt.DELEGATION_EXPIRED, "Delegation Expired", message)


def _delegation_removed(ctx: _Context, recipient: ev.Recipient) -> Composed:
    return Composed(
        nt.DELEGATION_REMOVED,
        "Delegation Removed",
        f"Your temporary approver access to '{ctx.project_name}' was removed by {ctx.actor_name}",
    )


def _chat_message(ctx: _Context, recipient: ev.Recipient) -> Composed:
    sender = ctx.payload.get("sender_name") or ctx.actor_name
    if ctx.payload.get("message_type") == "Media":
        preview = "📷 Image"
    else:
        preview = (ctx.payload.get("text") or "")[:140]
    return Composed(nt.CHAT_MESSAGE, f"New message from {sender}", preview)


_COMPOSERS = {
    ev.EXPENSE_SUBMITTED: _expense_submitted,
    ev.EXPENSE_APPROVED: _expense_decided,
    ev.EXPENSE_REJECTED: _expense_decided,
    ev.PENDING_APPROVAL_REMINDER: _pending_reminder,
    ev.PROJECT_ASSIGNED: _project_assigned,
    ev.PROJECT_CHANGED: _project_changed,
    ev.ROLE_CHANGED: _role_changed,
    ev.DELEGATION_ASSIGNED: _delegation_assigned,
    ev.DELEGATION_CHANGED: _delegation_changed,
    ev.DELEGATION_ACCEPTED: _delegation_response,
    ev.DELEGATION_REJECTED: _delegation_response,
    ev.DELEGATION_EXPIRED: _delegation_expired,
    ev.DELEGATION_REMOVED: _delegation_removed,
    ev.CHAT_MESSAGE: _chat_message,
}


def _related_id(event: ev.DomainEvent) -> str:
    return event.expense_id or event.delegation_id or event.chat_id or ""


# ═══════════════════════════════════════════════════════════════════════════
#  Dispatcher
# ═══════════════════════════════════════════════════════════════════════════

class NotificationDispatcher:
    """Stateless dispatcher: one event in, committed notifications out."""

    @staticmethod
    def dispatch(event: ev.DomainEvent, *, push: bool = True) -> list[Notification]:
        """
        Create and commit one notification per recipient of ``event``.

        Raises:
            ValueError: unknown event kind.
            WriteError: the commit failed (session rolled back).
        """
        composer = _COMPOSERS.get(event.kind)
        if composer is None:
            raise ValueError(f"Unknown event kind {event.kind!r}")

        project = db.session.get(Project, event.project_id) if event.project_id else None
        ctx = _Context(event, project)
        chat_sender = None
        if event.kind == ev.CHAT_MESSAGE:
            chat_sender = event.payload.get("sender_name") or ctx.actor_name

        created: list[Notification] = []
        for recipient in ev.resolve_recipients(event, project):
            composed = composer(ctx, recipient)
            target = navigation.target_for(
                composed.type,
                recipient.role,
                event.project_id,
                chat_id=event.chat_id,
                sender_name=chat_sender,
            )
            notif = Notification(
                recipient_id=recipient.user.id,
                recipient_role=recipient.role,
                title=composed.title,
                message=composed.message,
                type=composed.type,
                project_id=event.project_id,
                project_name=ctx.project_name,
                related_id=_related_id(event),
                action_required=composed.action_required,
                navigation_target=target.encode(),
            )
            db.session.add(notif)
            created.append(notif)

        commit_or_raise(f"dispatch {event.kind}")
        logger.info(
            "Dispatched %s to %d recipient(s)", event.kind, len(created),
            extra={"event_type": event.kind, "project_id": event.project_id},
        )

        if push:
            for notif in created:
                push_service.deliver(notif)
        return created