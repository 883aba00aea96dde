"""
Shared pytest fixtures for the Expense Desk test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - make_user / make_project / make_expense: ORM factories (committed)
    - auth: header helper, ``client.get(url, headers=auth(user))``
"""

from datetime import timedelta

import pytest

from expensedesk import create_app
from expensedesk.models import db as _db
from expensedesk.models import utcnow
from expensedesk.models.delegation import DELEGATION_ACCEPTED, TemporaryApprover
from expensedesk.models.expense import STATUS_PENDING, Expense
from expensedesk.models.project import Project
from expensedesk.models.user import User


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    return create_app("testing")


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Factories ────────────────────────────────────────────────────────────
# Factories commit: API requests and error handlers roll the session back,
# which would otherwise discard rows that were only flushed.

_phone_seq = iter(range(9000000000, 9999999999))


def _make_user(name="Test User", role="USER", *, phone=None, is_active=True, **kwargs):
    u = User(
        name=name,
        role=role,
        phone=phone or f"+91{next(_phone_seq)}",
        is_active=is_active,
        **kwargs,
    )
    _db.session.add(u)
    _db.session.commit()
    return u


def _make_project(name="Test Project", *, approvers=(), heads=(), team=(), manager=None,
                  budget=100000.0, department_budgets=None, **kwargs):
    p = Project(
        name=name,
        budget=budget,
        department_budgets=department_budgets if department_budgets is not None else {"Production": 50000.0},
        approver_ids=[u.id for u in approvers],
        production_head_ids=[u.id for u in heads],
        team_members=[u.id for u in team],
        manager_id=manager.id if manager else None,
        **kwargs,
    )
    _db.session.add(p)
    _db.session.commit()
    return p


def _make_expense(project, submitter, *, amount=1000.0, status=STATUS_PENDING,
                  department="Production", category="Catering & Food", **kwargs):
    e = Expense(
        project_id=project.id,
        user_id=submitter.id,
        user_name=submitter.name,
        date=utcnow().date(),
        amount=amount,
        department=department,
        category=category,
        status=status,
        submitted_at=utcnow() if status != "DRAFT" else None,
        **kwargs,
    )
    _db.session.add(e)
    _db.session.commit()
    return e


def _make_delegation(project, delegate, assigner, *, days=3, status=DELEGATION_ACCEPTED,
                     is_active=True):
    d = TemporaryApprover(
        project_id=project.id,
        approver_id=delegate.id,
        approver_name=delegate.name,
        approver_phone=delegate.phone,
        assigned_date=utcnow(),
        expiring_date=utcnow() + timedelta(days=days),
        is_active=is_active,
        status=status,
        assigned_by=assigner.id,
        assigned_by_name=assigner.name,
    )
    _db.session.add(d)
    _db.session.commit()
    return d


@pytest.fixture()
def make_user():
    return _make_user


@pytest.fixture()
def make_project():
    return _make_project


@pytest.fixture()
def make_expense():
    return _make_expense


@pytest.fixture()
def make_delegation():
    return _make_delegation


@pytest.fixture()
def auth():
    """Return request headers identifying ``user``."""
    def _headers(user):
        return {"X-User-Id": user.id}
    return _headers


# ── Convenience fixtures ─────────────────────────────────────────────────


@pytest.fixture()
def team(make_user, make_project):
    """A project with two approvers, one production head and one submitter."""
    head = make_user("Priya Head", "PRODUCTION_HEAD")
    approver_a = make_user("Arjun Approver", "APPROVER")
    approver_b = make_user("Bela Approver", "APPROVER")
    submitter = make_user("Sam Submitter", "USER")
    project = make_project(
        "Monsoon Shoot",
        approvers=[approver_a, approver_b],
        heads=[head],
        team=[submitter],
    )
    return {
        "project": project,
        "head": head,
        "approver_a": approver_a,
        "approver_b": approver_b,
        "submitter": submitter,
    }
