"""
User Service.

User lifecycle: first-login creation, admin-side creation, role changes,
soft deactivation, notification preferences and push device tokens.
"""

from __future__ import annotations

import logging
import re

from expensedesk.core.exceptions import ConflictError, NotFoundError, PermissionDeniedError, ValidationError
from expensedesk.models import db
from expensedesk.models.user import (
    DEFAULT_NOTIFICATION_PREFERENCES,
    MANAGER_ROLES,
    ROLE_ADMIN,
    ROLE_USER,
    USER_ROLES,
    User,
)
from expensedesk.services import recipients as ev
from expensedesk.services.notification_dispatcher import NotificationDispatcher
from expensedesk.utils.helpers import commit_or_raise

logger = logging.getLogger(__name__)

_PHONE_RE = re.compile(r"^\+?[0-9]{7,15}$")


def normalize_phone(phone: str | None) -> str:
    """Strip spaces, dashes and brackets; the result must look like a phone number."""
    cleaned = re.sub(r"[\s\-()]", "", phone or "")
    if not _PHONE_RE.match(cleaned):
        raise ValidationError("phone must be 7-15 digits, optionally prefixed with +",
                              details={"phone": phone})
    return cleaned


def get_user(user_id: str) -> User:
    user = db.session.get(User, user_id)
    if user is None:
        raise NotFoundError(resource="User", resource_id=user_id)
    return user


def find_by_phone(phone: str) -> User | None:
    return User.query.filter_by(phone=normalize_phone(phone)).first()


def list_users(role: str | None = None, active_only: bool = True):
    q = User.query
    if role:
        q = q.filter(User.role == role)
    if active_only:
        q = q.filter(User.is_active.is_(True))
    return q.order_by(User.name)


def _new_user(name: str, phone: str, role: str, email: str = "") -> User:
    if role not in USER_ROLES:
        raise ValidationError(f"role must be one of {sorted(USER_ROLES)}", details={"role": role})
    if not (name or "").strip():
        raise ValidationError("name is required", details={"name": "required"})
    if User.query.filter_by(phone=phone).first():
        raise ConflictError(resource="User", field="phone", value=phone)
    user = User(name=name.strip(), phone=phone, role=role, email=email or "")
    db.session.add(user)
    return user


def login(phone: str, name: str | None = None) -> tuple[User, bool]:
    """Return the user for a verified phone number, creating a USER on first login.

    Returns:
        (user, created)

    Raises:
        PermissionDeniedError: the account was deactivated.
    """
    phone = normalize_phone(phone)
    user = User.query.filter_by(phone=phone).first()
    if user is not None:
        if not user.is_active:
            raise PermissionDeniedError("sign in with a deactivated account", user.id)
        return user, False
    user = _new_user(name or phone, phone, ROLE_USER)
    commit_or_raise("create user on login")
    logger.info("User %s created on first login", user.id, extra={"user_id": user.id})
    return user, True


def create_user(actor: User, data: dict) -> User:
    """Admin / production-head creation of a user with an explicit role."""
    if actor.role not in MANAGER_ROLES:
        raise PermissionDeniedError("create users", actor.id)
    role = data.get("role") or ROLE_USER
    if role == ROLE_ADMIN and actor.role != ROLE_ADMIN:
        raise PermissionDeniedError("create administrators", actor.id)
    user = _new_user(data.get("name"), normalize_phone(data.get("phone")), role, data.get("email"))
    commit_or_raise("create user")
    logger.info("User %s created by %s as %s", user.id, actor.id, role)
    return user


def change_role(actor: User, user: User, role: str) -> User:
    """Change a user's role and notify them."""
    if actor.role not in MANAGER_ROLES:
        raise PermissionDeniedError("change user roles", actor.id)
    if role not in USER_ROLES:
        raise ValidationError(f"role must be one of {sorted(USER_ROLES)}", details={"role": role})
    if ROLE_ADMIN in (role, user.role) and actor.role != ROLE_ADMIN:
        raise PermissionDeniedError("grant or revoke the admin role", actor.id)
    if user.role == role:
        return user

    previous = user.role
    user.role = role
    db.session.flush()
    NotificationDispatcher.dispatch(ev.DomainEvent(
        kind=ev.ROLE_CHANGED,
        actor_id=actor.id,
        project_id=None,
        payload={"user_id": user.id, "new_role": role, "previous_role": previous},
    ))
    logger.info("Role of %s changed %s -> %s by %s", user.id, previous, role, actor.id,
                extra={"user_id": user.id})
    return user


def deactivate_user(actor: User, user: User) -> User:
    """Soft delete: the row stays, ``is_active`` goes false."""
    if actor.role not in MANAGER_ROLES:
        raise PermissionDeniedError("deactivate users", actor.id)
    if actor.id == user.id:
        raise ValidationError("You cannot deactivate your own account")
    user.is_active = False
    user.device_token = None
    commit_or_raise("deactivate user")
    logger.info("User %s deactivated by %s", user.id, actor.id, extra={"user_id": user.id})
    return user


def update_preferences(actor: User, user: User, preferences: dict) -> User:
    if actor.id != user.id and actor.role != ROLE_ADMIN:
        raise PermissionDeniedError("change another user's preferences", actor.id)
    unknown = sorted(set(preferences) - set(DEFAULT_NOTIFICATION_PREFERENCES))
    if unknown:
        raise ValidationError("Unknown notification preferences", details={"keys": unknown})
    merged = {**DEFAULT_NOTIFICATION_PREFERENCES, **(user.notification_preferences or {})}
    merged.update({k: bool(v) for k, v in preferences.items()})
    user.notification_preferences = merged
    commit_or_raise("update notification preferences")
    return user


def register_device_token(actor: User, user: User, token: str | None) -> User:
    """Store (or clear, with an empty token) the push device token."""
    if actor.id != user.id:
        raise PermissionDeniedError("register a device for another user", actor.id)
    user.device_token = (token or "").strip() or None
    commit_or_raise("register device token")
    return user
