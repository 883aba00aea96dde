"""Standardised API error responses.

Usage
-----
    from expensedesk.utils.errors import api_error, E

    return api_error(E.NOT_FOUND, "Expense not found")
    return api_error(E.VALIDATION_REQUIRED, "amount is required")
"""

from __future__ import annotations

import logging

from flask import jsonify

from expensedesk.core.exceptions import (
    ConflictError,
    InvalidStateError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
    WriteError,
)
from expensedesk.models import db

logger = logging.getLogger(__name__)


# ── Error code constants ──────────────────────────────────────────────
class E:
    """Machine-readable error code constants (``ERR_`` prefix)."""

    # Validation – HTTP 400 / 422
    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"
    VALIDATION_CONSTRAINT = "ERR_VALIDATION_CONSTRAINT"

    # Authentication – HTTP 401
    UNAUTHENTICATED = "ERR_UNAUTHENTICATED"

    # Not-found – HTTP 404
    NOT_FOUND = "ERR_NOT_FOUND"

    # Conflict / duplicate – HTTP 409
    CONFLICT_DUPLICATE = "ERR_CONFLICT_DUPLICATE"
    CONFLICT_STATE = "ERR_CONFLICT_STATE"

    # Permissions – HTTP 403
    FORBIDDEN = "ERR_FORBIDDEN"

    # Rate limiting – HTTP 429
    RATE_LIMITED = "ERR_RATE_LIMITED"

    # Server – HTTP 500
    DATABASE = "ERR_DATABASE"
    INTERNAL = "ERR_INTERNAL"


# ── Default HTTP status mapping ───────────────────────────────────────
_DEFAULT_STATUS: dict[str, int] = {
    E.VALIDATION_REQUIRED: 400,
    E.VALIDATION_INVALID: 400,
    E.VALIDATION_CONSTRAINT: 422,
    E.UNAUTHENTICATED: 401,
    E.NOT_FOUND: 404,
    E.CONFLICT_DUPLICATE: 409,
    E.CONFLICT_STATE: 409,
    E.FORBIDDEN: 403,
    E.RATE_LIMITED: 429,
    E.DATABASE: 500,
    E.INTERNAL: 500,
}


def api_error(
    code: str,
    message: str,
    *,
    status: int | None = None,
    details: dict | None = None,
):
    """Return a standard JSON error response.

    Parameters
    ----------
    code : str
        Machine-readable error code (use ``E.*`` constants).
    message : str
        Human-readable explanation for developers / UI.
    status : int, optional
        HTTP status override.  Falls back to ``_DEFAULT_STATUS[code]``,
        then to ``400``.
    details : dict, optional
        Extra structured payload.

    Returns
    -------
    tuple[Response, int]
        ``(jsonify(body), http_status)`` – drop-in for Flask views.
    """

    http_status = status or _DEFAULT_STATUS.get(code, 400)

    body: dict = {
        "error": message,
        "code": code,
    }
    if details:
        body["details"] = details

    return jsonify(body), http_status


def register_error_handlers(app):
    """Map service exceptions to JSON responses for every blueprint.

    Services may have mutated the session before raising; every handler
    discards those pending changes.
    """

    @app.errorhandler(NotFoundError)
    def _not_found(exc):
        db.session.rollback()
        logger.info("Not found: %s", exc)
        return api_error(E.NOT_FOUND, f"{exc.resource} not found")

    # Flask resolves by MRO, so this wins over the ValidationError handler
    @app.errorhandler(InvalidStateError)
    def _invalid_state(exc):
        db.session.rollback()
        return api_error(E.CONFLICT_STATE, str(exc), details=exc.details)

    @app.errorhandler(ValidationError)
    def _validation(exc):
        db.session.rollback()
        return api_error(E.VALIDATION_CONSTRAINT, str(exc), details=exc.details)

    @app.errorhandler(ConflictError)
    def _conflict(exc):
        db.session.rollback()
        return api_error(E.CONFLICT_DUPLICATE, f"{exc.resource} with this {exc.field} already exists")

    @app.errorhandler(PermissionDeniedError)
    def _forbidden(exc):
        db.session.rollback()
        logger.warning("Permission denied: user=%s action=%s", exc.user_id, exc.action)
        return api_error(E.FORBIDDEN, str(exc))

    @app.errorhandler(WriteError)
    def _write_failed(exc):
        logger.error("Write failed: %s (%r)", exc.operation, exc.cause)
        return api_error(E.DATABASE, "Database error")
