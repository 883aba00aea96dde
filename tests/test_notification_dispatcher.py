"""
Tests — Notification Dispatcher & recipient resolution.

Covers:
    1. Expense submitted / approved / rejected fan-out
    2. Reviewer pool: delegates, manager, fallback, deduplication, inactive users
    3. Project, role and delegation events
    4. Push hand-off and write failures
"""

import pytest
import requests
from sqlalchemy.exc import OperationalError

from expensedesk.core.exceptions import WriteError
from expensedesk.models import db
from expensedesk.models.notification import Notification
from expensedesk.services import approval_service
from expensedesk.services import notification_dispatcher as dispatcher_module
from expensedesk.services import recipients as ev
from expensedesk.services.notification_dispatcher import NotificationDispatcher
from expensedesk.services.push_service import FAILED, PushService


def _submit(submitter, project, amount=1200.0):
    expense, _check = approval_service.create_expense(
        submitter, project, {"amount": amount, "department": "Production", "category": "Catering & Food"}
    )
    return expense


def _of_type(type_):
    return Notification.query.filter_by(type=type_).all()


# ═══════════════════════════════════════════════════════════════════════════
#  Expense events
# ═══════════════════════════════════════════════════════════════════════════

class TestExpenseEvents:
    def test_submission_notifies_each_approver_once(self, make_user, make_project):
        a = make_user("A", "APPROVER")
        b = make_user("B", "APPROVER")
        submitter = make_user("Sam", "USER")
        project = make_project(approvers=[a, b], team=[submitter])

        _submit(submitter, project)

        records = _of_type("EXPENSE_SUBMITTED")
        assert len(records) == 2
        assert {n.recipient_id for n in records} == {a.id, b.id}
        for n in records:
            assert n.navigation_target == f"pending_approvals/{project.id}"
            assert n.action_required is True
            assert n.title == "New Expense Submitted"
            assert n.recipient_role == "APPROVER"

    def test_submission_message_names_amount_submitter_and_project(self, team):
        _submit(team["submitter"], team["project"], amount=1500)
        n = _of_type("EXPENSE_SUBMITTED")[0]
        assert "₹1500.00" in n.message
        assert "Sam Submitter" in n.message
        assert "Monsoon Shoot" in n.message

    def test_production_heads_are_included_with_their_role(self, team):
        _submit(team["submitter"], team["project"])
        roles = {n.recipient_id: n.recipient_role for n in _of_type("EXPENSE_SUBMITTED")}
        assert roles[team["head"].id] == "PRODUCTION_HEAD"
        assert len(roles) == 3

    def test_approval_notifies_only_the_submitter(self, team, make_expense):
        expense = make_expense(team["project"], team["submitter"])
        approval_service.approve_expense(team["approver_a"], expense)

        records = _of_type("EXPENSE_APPROVED")
        assert len(records) == 1
        n = records[0]
        assert n.recipient_id == team["submitter"].id
        assert n.title == "Expense Approved"
        assert n.navigation_target == f"expense_list/{team['project'].id}"
        assert n.related_id == expense.id

    def test_rejection_carries_the_reason(self, team, make_expense):
        expense = make_expense(team["project"], team["submitter"])
        approval_service.reject_expense(team["approver_b"], expense, "Missing receipt")

        n = _of_type("EXPENSE_REJECTED")[0]
        assert n.title == "Expense Rejected"
        assert n.message.endswith(" - Reason: Missing receipt")
        assert "Bela Approver" in n.message


# ═══════════════════════════════════════════════════════════════════════════
#  Recipient resolution
# ═══════════════════════════════════════════════════════════════════════════

class TestRecipientResolution:
    def test_accepted_delegate_joins_the_reviewer_pool(self, team, make_user, make_delegation):
        delegate = make_user("Dev Delegate", "USER")
        make_delegation(team["project"], delegate, team["head"])

        _submit(team["submitter"], team["project"])

        ids = {n.recipient_id for n in _of_type("EXPENSE_SUBMITTED")}
        assert delegate.id in ids

    def test_pending_or_expired_delegates_are_left_out(self, team, make_user, make_delegation):
        pending = make_user("Pending Delegate", "USER")
        expired = make_user("Expired Delegate", "USER")
        make_delegation(team["project"], pending, team["head"], status="PENDING")
        make_delegation(team["project"], expired, team["head"], days=-1)

        _submit(team["submitter"], team["project"])

        ids = {n.recipient_id for n in _of_type("EXPENSE_SUBMITTED")}
        assert pending.id not in ids
        assert expired.id not in ids

    def test_manager_listed_twice_receives_one_record(self, make_user, make_project):
        a = make_user("A", "APPROVER")
        submitter = make_user("Sam", "USER")
        project = make_project(approvers=[a], manager=a, team=[submitter])

        _submit(submitter, project)

        assert [n.recipient_id for n in _of_type("EXPENSE_SUBMITTED")] == [a.id]

    def test_inactive_users_receive_nothing(self, make_user, make_project):
        a = make_user("A", "APPROVER")
        gone = make_user("Gone", "APPROVER", is_active=False)
        submitter = make_user("Sam", "USER")
        project = make_project(approvers=[a, gone], team=[submitter])

        _submit(submitter, project)

        assert {n.recipient_id for n in _of_type("EXPENSE_SUBMITTED")} == {a.id}

    def test_falls_back_to_every_reviewer_when_project_names_none(self, make_user, make_project):
        a = make_user("A", "APPROVER")
        head = make_user("H", "PRODUCTION_HEAD")
        make_user("Plain", "USER")
        submitter = make_user("Sam", "USER")
        project = make_project(team=[submitter])

        _submit(submitter, project)

        assert {n.recipient_id for n in _of_type("EXPENSE_SUBMITTED")} == {a.id, head.id}

    def test_actor_is_not_notified_of_their_own_submission(self, make_user, make_project):
        a = make_user("A", "APPROVER")
        b = make_user("B", "APPROVER")
        project = make_project(approvers=[a, b])

        _submit(a, project)

        assert {n.recipient_id for n in _of_type("EXPENSE_SUBMITTED")} == {b.id}

    def test_unknown_event_kind_is_rejected(self, team):
        with pytest.raises(ValueError):
            ev.resolve_recipients(
                ev.DomainEvent(kind="expense_teleported", actor_id=None, project_id=team["project"].id),
                team["project"],
            )


# ═══════════════════════════════════════════════════════════════════════════
#  Other events
# ═══════════════════════════════════════════════════════════════════════════

class TestOtherEvents:
    def test_pending_reminder_goes_to_production_heads(self, team):
        created = NotificationDispatcher.dispatch(ev.DomainEvent(
            kind=ev.PENDING_APPROVAL_REMINDER,
            actor_id=None,
            project_id=team["project"].id,
            payload={"pending_count": 4},
        ))
        assert [n.recipient_id for n in created] == [team["head"].id]
        assert created[0].type == "PENDING_APPROVAL"
        assert created[0].title == "Pending Approvals"
        assert created[0].message == "4 expenses awaiting approval in Monsoon Shoot"
        assert created[0].navigation_target == f"pending_approvals/{team['project'].id}"

    def test_project_assignment_routes_to_role_dashboard(self, team, make_user):
        admin = make_user("Admin", "ADMIN")
        NotificationDispatcher.dispatch(ev.DomainEvent(
            kind=ev.PROJECT_ASSIGNED,
            actor_id=team["head"].id,
            project_id=team["project"].id,
            payload={"user_ids": [team["submitter"].id, team["approver_a"].id, admin.id]},
        ))
        targets = {n.recipient_id: n.navigation_target for n in _of_type("PROJECT_ASSIGNMENT")}
        pid = team["project"].id
        assert targets[team["submitter"].id] == f"user_project_dashboard/{pid}"
        assert targets[team["approver_a"].id] == f"approver_project_dashboard/{pid}"
        assert targets[admin.id] == "project_selection"
        assert all(n.action_required for n in _of_type("PROJECT_ASSIGNMENT"))

    def test_project_change_skips_the_actor(self, team):
        NotificationDispatcher.dispatch(ev.DomainEvent(
            kind=ev.PROJECT_CHANGED,
            actor_id=team["approver_a"].id,
            project_id=team["project"].id,
            payload={"changes": ["Budget changed from 1 to 2", "Start date updated"]},
        ))
        records = _of_type("PROJECT_CHANGED")
        assert {n.recipient_id for n in records} == {team["approver_b"].id, team["submitter"].id}
        assert records[0].message.endswith("Budget changed from 1 to 2. Start date updated")

    def test_role_change_routes_to_project_selection(self, team):
        created = NotificationDispatcher.dispatch(ev.DomainEvent(
            kind=ev.ROLE_CHANGED,
            actor_id=team["head"].id,
            project_id=None,
            payload={"user_id": team["submitter"].id, "new_role": "APPROVER"},
        ))
        assert len(created) == 1
        assert created[0].type == "ROLE_ASSIGNMENT"
        assert created[0].navigation_target == "project_selection"
        assert "APPROVER" in created[0].message

    def test_redispatch_creates_new_records(self, team):
        event = ev.DomainEvent(
            kind=ev.PENDING_APPROVAL_REMINDER,
            actor_id=None,
            project_id=team["project"].id,
            payload={"pending_count": 1},
        )
        NotificationDispatcher.dispatch(event)
        NotificationDispatcher.dispatch(event)
        assert len(_of_type("PENDING_APPROVAL")) == 2

    def test_unknown_kind_raises(self, team):
        with pytest.raises(ValueError):
            NotificationDispatcher.dispatch(ev.DomainEvent(kind="nope", actor_id=None, project_id=None))


# ═══════════════════════════════════════════════════════════════════════════
#  Push hand-off and failures
# ═══════════════════════════════════════════════════════════════════════════

class _BrokenSession:
    def __init__(self):
        self.calls = 0

    def post(self, *args, **kwargs):
        self.calls += 1
        raise requests.ConnectionError("gateway unreachable")


class TestDeliveryAndFailures:
    def test_push_failure_keeps_committed_records(self, app, team, monkeypatch):
        team["approver_a"].device_token = "device-a"
        db.session.commit()
        broken = _BrokenSession()
        monkeypatch.setattr(dispatcher_module, "push_service", PushService(session=broken))
        monkeypatch.setitem(app.config, "FCM_SERVER_KEY", "test-key")

        _submit(team["submitter"], team["project"])

        assert broken.calls == 1
        assert len(_of_type("EXPENSE_SUBMITTED")) == 3

    def test_push_failure_is_reported_not_raised(self, app, team, monkeypatch):
        monkeypatch.setitem(app.config, "FCM_SERVER_KEY", "test-key")
        user = team["approver_a"]
        user.device_token = "device-a"
        db.session.commit()
        n = Notification(recipient_id=user.id, title="t", message="m", type="INFO")
        db.session.add(n)
        db.session.commit()

        result = PushService(session=_BrokenSession()).deliver(n)

        assert result.status == FAILED
        assert not result.ok

    def test_commit_failure_raises_write_error(self, team, monkeypatch):
        def _boom():
            raise OperationalError("INSERT", {}, Exception("disk full"))

        monkeypatch.setattr(db.session(), "commit", _boom)
        with pytest.raises(WriteError):
            NotificationDispatcher.dispatch(ev.DomainEvent(
                kind=ev.PENDING_APPROVAL_REMINDER,
                actor_id=None,
                project_id=team["project"].id,
                payload={"pending_count": 1},
            ))
        monkeypatch.undo()
        assert Notification.query.count() == 0
