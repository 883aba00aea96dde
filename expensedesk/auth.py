"""
Expense Desk
Request identity & role checks.

Provides:
    - X-User-Id header resolution into ``g.current_user`` for /api/v1/* routes
    - Role-based access decorator

Phone/OTP verification happens upstream of this service; callers present the
already verified user id. Public routes (health, login) skip resolution.
"""

import functools
import logging

from flask import g, request

from expensedesk.models import db
from expensedesk.models.user import User
from expensedesk.utils.errors import E, api_error

logger = logging.getLogger(__name__)

USER_HEADER = "X-User-Id"

_PUBLIC_PATHS = frozenset({"/api/v1/health", "/api/v1/users/login"})


def current_user() -> User | None:
    return getattr(g, "current_user", None)


def require_roles(*roles: str):
    """
    Decorator: restrict an endpoint to the given user roles.

    Usage:
        @bp.route("/users/<user_id>/role", methods=["PATCH"])
        @require_roles(ROLE_ADMIN, ROLE_PRODUCTION_HEAD)
        def change_role(user_id): ...
    """
    def decorator(f):
        @functools.wraps(f)
        def decorated(*args, **kwargs):
            user = current_user()
            if user is None:
                return api_error(E.UNAUTHENTICATED, "Authentication required")
            if user.role not in roles:
                logger.warning(
                    "Access denied: role '%s' tried to access %s",
                    user.role, request.path,
                )
                return api_error(E.FORBIDDEN, "Insufficient permissions")
            return f(*args, **kwargs)
        return decorated
    return decorator


def init_auth(app):
    """Install the identity hook for API routes."""

    @app.before_request
    def _resolve_current_user():
        g.current_user = None
        if not request.path.startswith("/api/v1/"):
            return None
        if request.path in _PUBLIC_PATHS or request.method == "OPTIONS":
            return None

        user_id = request.headers.get(USER_HEADER, "").strip()
        if not user_id:
            return api_error(E.UNAUTHENTICATED, f"Authentication required. Provide {USER_HEADER} header.")

        user = db.session.get(User, user_id)
        if user is None or not user.is_active:
            logger.warning("Rejected identity %s on %s", user_id[:12], request.path)
            return api_error(E.UNAUTHENTICATED, "Unknown or inactive user")

        g.current_user = user
        return None
