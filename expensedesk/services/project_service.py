"""
Project Service.

Project creation, updates and membership. Assignments notify the assigned
users; updates diff the tracked fields and notify the team with a joined
description of what changed.
"""

from __future__ import annotations

import logging

from expensedesk.core.exceptions import NotFoundError, PermissionDeniedError, ValidationError
from expensedesk.models import db
from expensedesk.models.project import PROJECT_STATUSES, Project
from expensedesk.models.user import MANAGER_ROLES, ROLE_ADMIN, User
from expensedesk.services import recipients as ev
from expensedesk.services.delegation_service import active_for_user
from expensedesk.services.notification_dispatcher import NotificationDispatcher
from expensedesk.utils.helpers import commit_or_raise, parse_date

logger = logging.getLogger(__name__)

MEMBER_CAPACITIES = {
    "team": "team_members",
    "approver": "approver_ids",
    "production_head": "production_head_ids",
}

_CAPACITY_LABELS = {
    "manager_id": "Manager",
    "approver_ids": "Approver",
    "production_head_ids": "Production Head",
    "team_members": "Team Member",
}


# ── Private helpers ────────────────────────────────────────────────────────────


def _require_manager_role(actor: User, action: str) -> None:
    if actor.role not in MANAGER_ROLES:
        raise PermissionDeniedError(action, actor.id)


def _require_project_authority(actor: User, project: Project, action: str) -> None:
    _require_manager_role(actor, action)
    if actor.role != ROLE_ADMIN and actor.id not in (project.production_head_ids or []):
        raise PermissionDeniedError(action, actor.id)


def _id_list(data: dict, key: str) -> list[str]:
    value = data.get(key) or []
    if not isinstance(value, list):
        raise ValidationError(f"{key} must be a list", details={key: value})
    return [str(v) for v in dict.fromkeys(value) if v]


def _budget_map(data: dict) -> dict[str, float]:
    value = data.get("department_budgets") or {}
    if not isinstance(value, dict):
        raise ValidationError("department_budgets must be an object")
    try:
        budgets = {str(k): float(v) for k, v in value.items()}
    except (TypeError, ValueError) as exc:
        raise ValidationError("department budgets must be numbers") from exc
    if any(v < 0 for v in budgets.values()):
        raise ValidationError("department budgets cannot be negative")
    return budgets


def _check_users_exist(user_ids) -> None:
    ids = {uid for uid in user_ids if uid}
    if not ids:
        return
    found = {u.id for u in User.query.filter(User.id.in_(ids)).all()}
    missing = sorted(ids - found)
    if missing:
        raise ValidationError("Unknown users", details={"user_ids": missing})


def _sync_assigned_projects(project: Project) -> None:
    """Add the project to ``assigned_projects`` of every member."""
    for user in User.query.filter(User.id.in_(list(project.member_ids()))).all():
        assigned = list(user.assigned_projects or [])
        if project.id not in assigned:
            # reassign so the JSON column is flagged dirty
            user.assigned_projects = assigned + [project.id]


def _capacities(project: Project, user_ids) -> dict[str, str]:
    labels = {}
    for uid in user_ids:
        for field, label in _CAPACITY_LABELS.items():
            value = getattr(project, field)
            if uid == value or (isinstance(value, list) and uid in value):
                labels.setdefault(uid, label)
    return labels


def _notify_assigned(actor: User, project: Project, user_ids) -> None:
    user_ids = [uid for uid in dict.fromkeys(user_ids) if uid and uid != actor.id]
    if not user_ids:
        commit_or_raise("save project assignments")
        return
    NotificationDispatcher.dispatch(ev.DomainEvent(
        kind=ev.PROJECT_ASSIGNED,
        actor_id=actor.id,
        project_id=project.id,
        payload={"user_ids": user_ids, "capacity": _capacities(project, user_ids)},
    ))


# ── Queries ────────────────────────────────────────────────────────────────────


def get_project(project_id: str) -> Project:
    project = db.session.get(Project, project_id)
    if project is None:
        raise NotFoundError(resource="Project", resource_id=project_id)
    return project


def list_projects_for(user: User, status: str | None = None):
    """Projects visible to ``user``: all for ADMIN, otherwise those they belong to."""
    q = Project.query
    if status:
        q = q.filter(Project.status == status)
    projects = q.order_by(Project.created_at.desc()).all()
    if user.role == ROLE_ADMIN:
        return projects
    delegated = {d.project_id for d in active_for_user(user.id)}
    return [p for p in projects if p.is_member(user.id) or p.id in delegated]


# ── Commands ───────────────────────────────────────────────────────────────────


def create_project(actor: User, data: dict) -> Project:
    """Create a project and notify its manager, approvers and team."""
    _require_manager_role(actor, "create projects")
    name = (data.get("name") or "").strip()
    if not name:
        raise ValidationError("name is required", details={"name": "required"})
    try:
        budget = float(data.get("budget") or 0)
    except (TypeError, ValueError) as exc:
        raise ValidationError("budget must be a number", details={"budget": data.get("budget")}) from exc
    if budget < 0:
        raise ValidationError("budget cannot be negative", details={"budget": budget})

    status = data.get("status") or "ACTIVE"
    if status not in PROJECT_STATUSES:
        raise ValidationError(f"status must be one of {sorted(PROJECT_STATUSES)}")

    production_heads = _id_list(data, "production_head_ids")
    if actor.role != ROLE_ADMIN and actor.id not in production_heads:
        production_heads.insert(0, actor.id)

    project = Project(
        name=name,
        code=(data.get("code") or "").strip(),
        description=data.get("description") or "",
        budget=budget,
        department_budgets=_budget_map(data),
        categories=_id_list(data, "categories"),
        status=status,
        manager_id=data.get("manager_id") or None,
        approver_ids=_id_list(data, "approver_ids"),
        production_head_ids=production_heads,
        team_members=_id_list(data, "team_members"),
        start_date=parse_date(data.get("start_date")),
        end_date=parse_date(data.get("end_date")),
    )
    _check_users_exist(project.member_ids())
    if project.start_date and project.end_date and project.end_date < project.start_date:
        raise ValidationError("end_date must not be before start_date")

    db.session.add(project)
    db.session.flush()
    _sync_assigned_projects(project)

    _notify_assigned(actor, project, [project.manager_id, *project.approver_ids, *project.team_members])
    logger.info("Project %s created by %s", project.id, actor.id, extra={"project_id": project.id})
    return project


def _describe_changes(before: dict, after: Project) -> list[str]:
    changes = []
    if before["name"] != after.name:
        changes.append(f"Project name changed from '{before['name']}' to '{after.name}'")
    if before["description"] != after.description:
        changes.append("Project description updated")
    if before["budget"] != after.budget:
        changes.append(f"Budget changed from {before['budget']:g} to {after.budget:g}")
    if before["start_date"] != after.start_date:
        changes.append("Start date updated")
    if before["end_date"] != after.end_date:
        changes.append("End date updated")
    if before["manager_id"] != after.manager_id:
        changes.append("Project manager changed")
    if before["team_members"] != list(after.team_members or []) or \
            before["approver_ids"] != list(after.approver_ids or []):
        changes.append("Team members updated")
    if before["department_budgets"] != dict(after.department_budgets or {}):
        changes.append("Department budgets updated")
    if before["categories"] != list(after.categories or []):
        changes.append("Project categories updated")
    if before["status"] != after.status:
        changes.append(f"Status changed from {before['status']} to {after.status}")
    return changes


def update_project(actor: User, project: Project, data: dict) -> tuple[Project, list[str]]:
    """Apply ``data`` and notify the team when anything changed.

    Returns:
        (project, changes) where ``changes`` lists human-readable descriptions.
    """
    _require_project_authority(actor, project, "update this project")
    before = {
        "name": project.name,
        "description": project.description,
        "budget": project.budget,
        "start_date": project.start_date,
        "end_date": project.end_date,
        "manager_id": project.manager_id,
        "team_members": list(project.team_members or []),
        "approver_ids": list(project.approver_ids or []),
        "department_budgets": dict(project.department_budgets or {}),
        "categories": list(project.categories or []),
        "status": project.status,
    }
    previous_members = project.member_ids()

    if "name" in data:
        name = (data.get("name") or "").strip()
        if not name:
            raise ValidationError("name cannot be empty", details={"name": "required"})
        project.name = name
    if "description" in data:
        project.description = data.get("description") or ""
    if "code" in data:
        project.code = (data.get("code") or "").strip()
    if "budget" in data:
        try:
            project.budget = float(data.get("budget") or 0)
        except (TypeError, ValueError) as exc:
            raise ValidationError("budget must be a number") from exc
    if "status" in data:
        if data["status"] not in PROJECT_STATUSES:
            raise ValidationError(f"status must be one of {sorted(PROJECT_STATUSES)}")
        project.status = data["status"]
    if "start_date" in data:
        project.start_date = parse_date(data.get("start_date"))
    if "end_date" in data:
        project.end_date = parse_date(data.get("end_date"))
    if "manager_id" in data:
        project.manager_id = data.get("manager_id") or None
    for key in ("approver_ids", "production_head_ids", "team_members", "categories"):
        if key in data:
            setattr(project, key, _id_list(data, key))
    if "department_budgets" in data:
        project.department_budgets = _budget_map(data)
    _check_users_exist(project.member_ids())

    changes = _describe_changes(before, project)
    if not changes:
        commit_or_raise("update project")
        return project, []

    db.session.flush()
    _sync_assigned_projects(project)
    NotificationDispatcher.dispatch(ev.DomainEvent(
        kind=ev.PROJECT_CHANGED,
        actor_id=actor.id,
        project_id=project.id,
        payload={"changes": changes, "actor_name": actor.name},
    ))

    new_members = project.member_ids() - previous_members
    if new_members:
        _notify_assigned(actor, project, sorted(new_members))
    logger.info("Project %s updated: %s", project.id, "; ".join(changes),
                extra={"project_id": project.id})
    return project, changes


def assign_member(actor: User, project: Project, user_id: str, as_role: str = "team") -> Project:
    """Add ``user_id`` to the project in the given capacity and notify them."""
    _require_project_authority(actor, project, "assign project members")
    field = MEMBER_CAPACITIES.get(as_role)
    if field is None:
        raise ValidationError(f"as_role must be one of {sorted(MEMBER_CAPACITIES)}",
                              details={"as_role": as_role})
    user = db.session.get(User, user_id)
    if user is None or not user.is_active:
        raise ValidationError("User must exist and be active", details={"user_id": user_id})

    current = list(getattr(project, field) or [])
    if user_id in current:
        return project
    setattr(project, field, current + [user_id])
    db.session.flush()
    _sync_assigned_projects(project)

    _notify_assigned(actor, project, [user_id])
    logger.info("User %s assigned to project %s as %s", user_id, project.id, as_role,
                extra={"project_id": project.id})
    return project
