"""
Tests — Expense lifecycle and approval.

Covers:
    1. Creation, drafts and submission
    2. Approve / reject permissions and terminal states
    3. Status counts and summaries
"""

import pytest

from expensedesk.core.exceptions import InvalidStateError, PermissionDeniedError, ValidationError
from expensedesk.models.notification import Notification
from expensedesk.services import approval_service


def _payload(**overrides):
    data = {"amount": 2500, "department": "Production", "category": "Transport"}
    data.update(overrides)
    return data


class TestCreateExpense:
    def test_submitted_expense_is_pending(self, team):
        expense, check = approval_service.create_expense(team["submitter"], team["project"], _payload())
        assert expense.status == "PENDING"
        assert expense.submitted_at is not None
        assert expense.user_name == "Sam Submitter"
        assert check.is_valid is True

    def test_net_amount_defaults_to_amount_plus_gst_minus_tds(self, team):
        expense, _ = approval_service.create_expense(
            team["submitter"], team["project"], _payload(amount=1000, gst=180, tds=20),
        )
        assert expense.net_amount == pytest.approx(1160.0)

    def test_explicit_net_amount_is_kept(self, team):
        expense, _ = approval_service.create_expense(
            team["submitter"], team["project"], _payload(amount=1000, net_amount=900),
        )
        assert expense.net_amount == pytest.approx(900.0)

    def test_draft_does_not_notify(self, team):
        expense, check = approval_service.create_expense(
            team["submitter"], team["project"], _payload(), submit=False,
        )
        assert expense.status == "DRAFT"
        assert check is None
        assert Notification.query.count() == 0

    def test_submit_draft_later(self, team):
        expense, _ = approval_service.create_expense(
            team["submitter"], team["project"], _payload(), submit=False,
        )
        check = approval_service.submit_expense(team["submitter"], expense)
        assert expense.status == "PENDING"
        assert check.department_budget == 50000.0
        assert Notification.query.filter_by(type="EXPENSE_SUBMITTED").count() == 3

    def test_only_owner_submits_draft(self, team):
        expense, _ = approval_service.create_expense(
            team["submitter"], team["project"], _payload(), submit=False,
        )
        with pytest.raises(PermissionDeniedError):
            approval_service.submit_expense(team["approver_a"], expense)

    @pytest.mark.parametrize("bad", [
        {"amount": 0},
        {"amount": "lots"},
        {"department": ""},
        {"mode_of_payment": "barter"},
    ])
    def test_invalid_input(self, team, bad):
        with pytest.raises(ValidationError):
            approval_service.create_expense(team["submitter"], team["project"], _payload(**bad))

    def test_non_member_cannot_submit(self, team, make_user):
        outsider = make_user("Outsider", "USER")
        with pytest.raises(PermissionDeniedError):
            approval_service.create_expense(outsider, team["project"], _payload())

    def test_over_budget_warns_but_submits(self, team):
        expense, check = approval_service.create_expense(
            team["submitter"], team["project"], _payload(amount=60000),
        )
        assert expense.status == "PENDING"
        assert check.would_exceed_budget is True
        assert "Remaining budget: ₹50000.00" in check.warning_message


class TestReview:
    def test_approve_records_reviewer(self, team, make_expense):
        expense = make_expense(team["project"], team["submitter"])
        approval_service.approve_expense(team["approver_a"], expense, "ok")
        assert expense.status == "APPROVED"
        assert expense.reviewed_by == "Arjun Approver"
        assert expense.reviewed_at is not None
        assert expense.review_comments == "ok"

    @pytest.mark.parametrize("first", ["APPROVED", "REJECTED"])
    def test_decided_expenses_are_final(self, team, make_expense, first):
        expense = make_expense(team["project"], team["submitter"], status=first)
        with pytest.raises(InvalidStateError):
            approval_service.approve_expense(team["approver_a"], expense)
        with pytest.raises(InvalidStateError):
            approval_service.reject_expense(team["approver_a"], expense)
        assert expense.status == first

    def test_second_reviewer_gets_invalid_state(self, team, make_expense):
        expense = make_expense(team["project"], team["submitter"])
        approval_service.approve_expense(team["approver_a"], expense)
        with pytest.raises(InvalidStateError):
            approval_service.reject_expense(team["approver_b"], expense, "late")
        assert Notification.query.filter_by(type="EXPENSE_REJECTED").count() == 0

    def test_draft_cannot_be_approved(self, team, make_expense):
        expense = make_expense(team["project"], team["submitter"], status="DRAFT")
        with pytest.raises(InvalidStateError):
            approval_service.approve_expense(team["approver_a"], expense)

    def test_submitter_cannot_approve(self, team, make_expense):
        expense = make_expense(team["project"], team["submitter"])
        with pytest.raises(PermissionDeniedError):
            approval_service.approve_expense(team["submitter"], expense)

    def test_approver_of_other_project_cannot_approve(self, team, make_user, make_project, make_expense):
        other = make_user("Other Approver", "APPROVER")
        make_project("Other", approvers=[other])
        expense = make_expense(team["project"], team["submitter"])
        with pytest.raises(PermissionDeniedError):
            approval_service.approve_expense(other, expense)

    def test_accepted_delegate_can_approve(self, team, make_expense, make_delegation):
        make_delegation(team["project"], team["submitter"], team["head"])
        colleague_expense = make_expense(team["project"], team["approver_b"])
        approval_service.approve_expense(team["submitter"], colleague_expense)
        assert colleague_expense.status == "APPROVED"

    def test_review_comments_editable_after_decision(self, team, make_expense):
        expense = make_expense(team["project"], team["submitter"], status="REJECTED")
        approval_service.update_review_comments(team["approver_a"], expense, "Resubmit with GST")
        assert expense.review_comments == "Resubmit with GST"
        assert expense.status == "REJECTED"

    def test_review_comments_need_a_decision(self, team, make_expense):
        expense = make_expense(team["project"], team["submitter"])
        with pytest.raises(InvalidStateError):
            approval_service.update_review_comments(team["approver_a"], expense, "early")


class TestSummaries:
    def test_status_counts_cover_every_status(self, team, make_expense):
        make_expense(team["project"], team["submitter"], amount=100)
        make_expense(team["project"], team["submitter"], amount=200, status="APPROVED")
        make_expense(team["project"], team["submitter"], amount=300, status="APPROVED")

        counts = approval_service.status_counts(project_id=team["project"].id)

        assert counts["PENDING"] == {"count": 1, "amount": 100.0}
        assert counts["APPROVED"] == {"count": 2, "amount": 500.0}
        assert counts["REJECTED"]["count"] == 0
        assert counts["DRAFT"]["count"] == 0
        assert counts["total"] == {"count": 3, "amount": 600.0}

    def test_approval_summary(self, team, make_expense):
        make_expense(team["project"], team["submitter"], amount=100)
        make_expense(team["project"], team["submitter"], amount=250)
        make_expense(team["project"], team["submitter"], amount=999, status="APPROVED")

        summary = approval_service.approval_summary(team["project"].id)

        assert summary["pending_count"] == 2
        assert summary["pending_amount"] == 350
        assert len(summary["recent_submissions"]) == 2

    def test_expense_summary_groups_approved_only(self, team, make_expense):
        make_expense(team["project"], team["submitter"], amount=100, status="APPROVED", category="Props")
        make_expense(team["project"], team["submitter"], amount=50, status="APPROVED", category="Props")
        make_expense(team["project"], team["submitter"], amount=75, category="Props")

        summary = approval_service.expense_summary(project_id=team["project"].id)

        assert summary["approved_by_category"] == {"Props": 150.0}
        assert summary["approved_by_department"] == {"Production": 150.0}

    def test_overdue_pending_groups_by_project(self, team, make_expense):
        e = make_expense(team["project"], team["submitter"])
        grouped = approval_service.overdue_pending()
        assert [x.id for x in grouped[team["project"].id]] == [e.id]
        assert approval_service.overdue_pending(older_than_days=1) == {}
