"""Shared helpers for blueprints and services.

parse_date:      lenient date parsing (None on bad input)
parse_datetime:  strict aware-UTC datetime parsing (ValueError on bad input)
commit_or_raise: commit the session, converting backend failures to WriteError
"""
import logging
from datetime import date, datetime, timezone

from sqlalchemy.exc import SQLAlchemyError

from expensedesk.core.exceptions import WriteError
from expensedesk.models import db

logger = logging.getLogger(__name__)


def parse_date(value):
    """Parse a date string (ISO or DD.MM.YYYY) to a date object.

    Returns None for empty/invalid input.
    """
    if not value:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except (ValueError, TypeError):
        pass
    try:
        return datetime.fromisoformat(str(value)).date()
    except (ValueError, TypeError):
        pass
    try:
        return datetime.strptime(str(value), "%d.%m.%Y").date()
    except (ValueError, TypeError):
        return None


def parse_datetime(value):
    """Parse an ISO-8601 datetime, raising ValueError on bad input.

    Naive values are taken as UTC; a trailing ``Z`` is accepted.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError as exc:
            raise ValueError("Invalid datetime format. Use ISO-8601.") from exc
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


# ── Database commit helper ───────────────────────────────────────────────────

def commit_or_raise(operation: str):
    """Commit the current session; on failure roll back and raise WriteError.

    Usage::

        db.session.add(obj)
        commit_or_raise("create expense")
    """
    try:
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.exception("Database error during %s", operation)
        raise WriteError(operation, exc) from exc
