"""
Temporary Approver Delegation Service.

A production head (or admin) hands approval authority on one project to a
user from the project's approver pool until an expiry date.

Lifecycle:
    PENDING ──respond(accept)──▶ ACCEPTED
        └─────respond(reject)──▶ REJECTED   (is_active=False)

Independently of status, a delegation stops counting once ``expiring_date``
passes. Every "active" query re-checks expiry against the clock;
``process_expired`` additionally deactivates such rows and notifies, so an
expiry notification fires even when nobody reads the delegation.

Business rules enforced here (not in blueprint):
    - only ADMIN or a production head listed on the project may assign,
      extend or remove
    - the delegate must be active, in approver_ids or team_members, and not a
      production head of the project
    - at most one active delegation per project
    - only the delegate may respond, only from PENDING, and not after expiry
"""

from __future__ import annotations

import logging
from datetime import datetime

from expensedesk.core.exceptions import (
    ConflictError,
    InvalidStateError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from expensedesk.models import as_utc, db, utcnow
from expensedesk.models.delegation import (
    DELEGATION_ACCEPTED,
    DELEGATION_PENDING,
    DELEGATION_REJECTED,
    TemporaryApprover,
)
from expensedesk.models.project import Project
from expensedesk.models.user import ROLE_ADMIN, ROLE_PRODUCTION_HEAD, User
from expensedesk.services import recipients as ev
from expensedesk.services.notification_dispatcher import NotificationDispatcher

logger = logging.getLogger(__name__)


# ── Private helpers ────────────────────────────────────────────────────────────


def _can_manage(actor: User, project: Project) -> bool:
    if actor.role == ROLE_ADMIN:
        return True
    return actor.role == ROLE_PRODUCTION_HEAD and actor.id in (project.production_head_ids or [])


def _require_manager(actor: User, project: Project, action: str) -> None:
    if not _can_manage(actor, project):
        raise PermissionDeniedError(action, actor.id)


def _require_future(expiring_date: datetime | None, now: datetime) -> datetime:
    expires = as_utc(expiring_date)
    if expires is None:
        raise ValidationError("expiring_date is required", details={"expiring_date": "required"})
    if expires <= now:
        raise ValidationError(
            "expiring_date must be in the future",
            details={"expiring_date": expires.isoformat()},
        )
    return expires


def _project_of(delegation: TemporaryApprover) -> Project:
    project = db.session.get(Project, delegation.project_id)
    if project is None:
        raise NotFoundError(resource="Project", resource_id=delegation.project_id)
    return project


def _clear_phone(project: Project, delegation: TemporaryApprover, now: datetime | None = None) -> None:
    """Blank the project's delegate phone unless another live delegation still holds it."""
    phone = delegation.approver_phone
    if project.temporary_approver_phone != phone:
        return
    if any(d.id != delegation.id and d.approver_phone == phone for d in list_active(project.id, now)):
        return
    project.temporary_approver_phone = ""


def _dispatch(kind: str, actor_id: str | None, delegation: TemporaryApprover):
    return NotificationDispatcher.dispatch(ev.DomainEvent(
        kind=kind,
        actor_id=actor_id,
        project_id=delegation.project_id,
        delegation_id=delegation.id,
    ))


# ── Queries ────────────────────────────────────────────────────────────────────


def get_delegation(delegation_id: str) -> TemporaryApprover:
    delegation = db.session.get(TemporaryApprover, delegation_id)
    if delegation is None:
        raise NotFoundError(resource="Delegation", resource_id=delegation_id)
    return delegation


def list_for_project(project_id: str) -> list[TemporaryApprover]:
    """Every delegation of a project, newest first (history included)."""
    return (
        TemporaryApprover.query.filter_by(project_id=project_id)
        .order_by(TemporaryApprover.assigned_date.desc())
        .all()
    )


def list_active(project_id: str | None = None, now: datetime | None = None) -> list[TemporaryApprover]:
    """Delegations that are ``is_active``, not rejected, and not past expiry at ``now``."""
    now = as_utc(now) or utcnow()
    q = TemporaryApprover.query.filter(
        TemporaryApprover.is_active.is_(True),
        TemporaryApprover.status != DELEGATION_REJECTED,
    )
    if project_id:
        q = q.filter(TemporaryApprover.project_id == project_id)
    return [d for d in q.order_by(TemporaryApprover.assigned_date.desc()).all()
            if not d.is_expired(now)]


def active_for_user(user_id: str, now: datetime | None = None) -> list[TemporaryApprover]:
    return [d for d in list_active(now=now) if d.approver_id == user_id]


def is_temporary_approver(project_id: str, user_id: str, now: datetime | None = None) -> bool:
    """True when ``user_id`` holds an accepted, unexpired delegation on the project."""
    return any(
        d.approver_id == user_id and d.status == DELEGATION_ACCEPTED
        for d in list_active(project_id, now)
    )


# ── Commands ───────────────────────────────────────────────────────────────────


def assign_delegate(
    actor: User,
    project: Project,
    approver_id: str,
    expiring_date: datetime,
    now: datetime | None = None,
) -> TemporaryApprover:
    """Create a PENDING delegation and notify the delegate.

    Raises:
        PermissionDeniedError: actor may not manage this project.
        ValidationError: delegate not eligible, or expiry not in the future.
        ConflictError: the project already has an active delegation.
    """
    now = as_utc(now) or utcnow()
    _require_manager(actor, project, "assign a temporary approver")
    expires = _require_future(expiring_date, now)

    delegate = db.session.get(User, approver_id)
    if delegate is None or not delegate.is_active:
        raise ValidationError("Delegate must be an active user", details={"approver_id": approver_id})
    pool = set(project.approver_ids or []) | set(project.team_members or [])
    if approver_id not in pool:
        raise ValidationError(
            "Delegate must be one of the project's approvers or team members",
            details={"approver_id": approver_id},
        )
    if approver_id in (project.production_head_ids or []) or delegate.role == ROLE_PRODUCTION_HEAD:
        raise ValidationError(
            "A production head cannot be a temporary approver",
            details={"approver_id": approver_id},
        )
    if list_active(project.id, now):
        raise ConflictError(resource="Delegation", field="project_id", value=project.id)

    delegation = TemporaryApprover(
        project_id=project.id,
        approver_id=delegate.id,
        approver_name=delegate.name,
        approver_phone=delegate.phone,
        assigned_date=now,
        expiring_date=expires,
        is_active=True,
        status=DELEGATION_PENDING,
        assigned_by=actor.id,
        assigned_by_name=actor.name,
    )
    db.session.add(delegation)
    project.temporary_approver_phone = delegate.phone
    db.session.flush()

    _dispatch(ev.DELEGATION_ASSIGNED, actor.id, delegation)
    logger.info(
        "Delegation %s assigned to %s until %s", delegation.id, delegate.id, expires.isoformat(),
        extra={"project_id": project.id, "delegation_id": delegation.id},
    )
    return delegation


def respond(
    actor: User,
    delegation: TemporaryApprover,
    accept: bool,
    comment: str = "",
    now: datetime | None = None,
) -> TemporaryApprover:
    """Delegate accepts or rejects a PENDING delegation; the assigner is notified."""
    now = as_utc(now) or utcnow()
    if actor.id != delegation.approver_id:
        raise PermissionDeniedError("respond to this delegation", actor.id)
    requested = DELEGATION_ACCEPTED if accept else DELEGATION_REJECTED
    if delegation.status != DELEGATION_PENDING:
        raise InvalidStateError("Delegation", delegation.status, requested)
    if accept and (delegation.is_expired(now) or not delegation.is_active):
        raise InvalidStateError("Delegation", "EXPIRED" if delegation.is_expired(now) else "INACTIVE", requested)

    delegation.status = requested
    delegation.response_comment = comment or ""
    delegation.responded_at = now
    if not accept:
        delegation.is_active = False
        _clear_phone(_project_of(delegation), delegation, now)
    db.session.flush()

    _dispatch(ev.DELEGATION_ACCEPTED if accept else ev.DELEGATION_REJECTED, actor.id, delegation)
    logger.info(
        "Delegation %s %s", delegation.id, requested.lower(),
        extra={"project_id": delegation.project_id, "delegation_id": delegation.id},
    )
    return delegation


def extend(
    actor: User,
    delegation: TemporaryApprover,
    new_expiring_date: datetime,
    now: datetime | None = None,
) -> TemporaryApprover:
    """Move the expiry of a live delegation; the delegate is notified."""
    now = as_utc(now) or utcnow()
    project = _project_of(delegation)
    _require_manager(actor, project, "change a temporary approver")
    if delegation.status == DELEGATION_REJECTED or not delegation.is_active:
        raise InvalidStateError("Delegation", delegation.status, "EXTENDED")
    delegation.expiring_date = _require_future(new_expiring_date, now)
    db.session.flush()

    _dispatch(ev.DELEGATION_CHANGED, actor.id, delegation)
    return delegation


def remove(actor: User, delegation: TemporaryApprover) -> TemporaryApprover:
    """Deactivate a delegation before it expires; the delegate is notified."""
    project = _project_of(delegation)
    _require_manager(actor, project, "remove a temporary approver")
    if not delegation.is_active:
        raise InvalidStateError("Delegation", "INACTIVE", "REMOVED")
    delegation.is_active = False
    _clear_phone(project, delegation)
    db.session.flush()

    _dispatch(ev.DELEGATION_REMOVED, actor.id, delegation)
    logger.info("Delegation %s removed", delegation.id,
                extra={"project_id": project.id, "delegation_id": delegation.id})
    return delegation


def process_expired(now: datetime | None = None) -> list[TemporaryApprover]:
    """Deactivate every active-but-expired delegation and notify delegate and assigner."""
    now = as_utc(now) or utcnow()
    candidates = TemporaryApprover.query.filter(
        TemporaryApprover.is_active.is_(True),
        TemporaryApprover.expiring_date.isnot(None),
    ).all()

    expired = []
    for delegation in candidates:
        if not delegation.is_expired(now):
            continue
        delegation.is_active = False
        project = db.session.get(Project, delegation.project_id)
        if project is not None:
            _clear_phone(project, delegation, now)
        db.session.flush()
        _dispatch(ev.DELEGATION_EXPIRED, None, delegation)
        expired.append(delegation)

    if expired:
        logger.info("Expired %d delegation(s)", len(expired))
    return expired
