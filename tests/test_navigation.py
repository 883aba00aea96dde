"""Tests — navigation target encoding and routing."""

import pytest

from expensedesk.models import notification as nt
from expensedesk.services import navigation


class TestTargetFor:
    @pytest.mark.parametrize("ntype,route", [
        (nt.EXPENSE_SUBMITTED, "pending_approvals"),
        (nt.PENDING_APPROVAL, "pending_approvals"),
        (nt.EXPENSE_APPROVED, "expense_list"),
        (nt.EXPENSE_REJECTED, "expense_list"),
        (nt.TEMPORARY_APPROVER_ASSIGNMENT, "approver_project_dashboard"),
        (nt.DELEGATION_RESPONSE, "delegation"),
    ])
    def test_fixed_routes_carry_the_project(self, ntype, route):
        assert navigation.target_for(ntype, "USER", "p1").encode() == f"{route}/p1"

    @pytest.mark.parametrize("role,expected", [
        ("USER", "user_project_dashboard/p1"),
        ("APPROVER", "approver_project_dashboard/p1"),
        ("PRODUCTION_HEAD", "production_head_project_dashboard/p1"),
        ("ADMIN", "project_selection"),
    ])
    def test_assignment_depends_on_role(self, role, expected):
        assert navigation.target_for(nt.PROJECT_ASSIGNMENT, role, "p1").encode() == expected

    def test_role_and_expiry_go_to_project_selection(self):
        for ntype in (nt.ROLE_ASSIGNMENT, nt.DELEGATION_EXPIRED, nt.DELEGATION_REMOVED):
            assert navigation.target_for(ntype, "USER", "p1").encode() == "project_selection"

    def test_missing_project_falls_back_to_selection(self):
        assert navigation.target_for(nt.EXPENSE_APPROVED, "USER", None).encode() == "project_selection"

    def test_chat_target_keeps_plain_sender_name(self):
        target = navigation.target_for(
            nt.CHAT_MESSAGE, "USER", "p1", chat_id="c9", sender_name="Sam Submitter",
        )
        assert target.encode() == "chat/p1/c9/Sam Submitter"

    def test_chat_target_escapes_separator_in_sender_name(self):
        target = navigation.target_for(
            nt.CHAT_MESSAGE, "USER", "p1", chat_id="c9", sender_name="Ravi K/Unit 2 (100%)",
        )
        encoded = target.encode()
        assert encoded == "chat/p1/c9/Ravi K%2FUnit 2 (100%25)"
        assert navigation.parse(encoded).params == ("p1", "c9", "Ravi K/Unit 2 (100%)")


class TestParse:
    def test_project_id_of_routed_target(self):
        assert navigation.parse("expense_list/p7").project_id == "p7"

    def test_project_selection_has_no_project(self):
        parsed = navigation.parse("project_selection")
        assert parsed.route == "project_selection"
        assert parsed.project_id is None

    @pytest.mark.parametrize("bad", ["", "teleport/p1"])
    def test_rejects_unknown_routes(self, bad):
        with pytest.raises(ValueError):
            navigation.parse(bad)
