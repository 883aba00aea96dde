"""
Expense Desk
SQLAlchemy instance and shared column helpers.

Every model module imports ``db`` from here so that ``create_app`` can bind a
single extension instance.
"""

import uuid
from datetime import datetime, timezone

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()


def new_id() -> str:
    """Opaque string id, the same shape as a document id."""
    return uuid.uuid4().hex


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """Normalise a stored datetime to aware UTC.

    SQLite hands ``DateTime(timezone=True)`` columns back naive; those are
    treated as UTC.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def iso(value: datetime | None) -> str | None:
    value = as_utc(value)
    return value.isoformat() if value else None
