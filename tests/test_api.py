"""
Tests — HTTP API.

Covers:
    1. Identity header, health and login
    2. Expense submission / approval over HTTP and error mapping
    3. Notifications: listing, badge, read tracking, SSE stream
    4. Delegations and chats
    5. Scheduler administration
"""

import json
from datetime import timedelta

from expensedesk.models import utcnow


def _submit(client, auth, team, **overrides):
    body = {"amount": 1800, "department": "Production", "category": "Catering & Food"}
    body.update(overrides)
    return client.post(
        f"/api/v1/projects/{team['project'].id}/expenses",
        json=body,
        headers=auth(team["submitter"]),
    )


# ═══════════════════════════════════════════════════════════════════════════
#  Identity
# ═══════════════════════════════════════════════════════════════════════════

class TestIdentity:
    def test_missing_header_is_401(self, client):
        res = client.get("/api/v1/notifications")
        assert res.status_code == 401
        assert res.get_json()["code"] == "ERR_UNAUTHENTICATED"

    def test_inactive_user_is_401(self, client, auth, make_user):
        gone = make_user("Gone", "USER", is_active=False)
        assert client.get("/api/v1/users/me", headers=auth(gone)).status_code == 401

    def test_health_is_public(self, client):
        res = client.get("/api/v1/health")
        assert res.status_code == 200
        assert res.get_json()["status"] == "ok"

    def test_login_creates_then_returns_user(self, client):
        first = client.post("/api/v1/users/login", json={"phone": "+91 90000 11111", "name": "Isha"})
        assert first.status_code == 201
        assert first.get_json()["created"] is True
        again = client.post("/api/v1/users/login", json={"phone": "+919000011111"})
        assert again.status_code == 200
        assert again.get_json()["user"]["id"] == first.get_json()["user"]["id"]

    def test_login_requires_phone(self, client):
        assert client.post("/api/v1/users/login", json={}).status_code == 400

    def test_me(self, client, auth, team):
        res = client.get("/api/v1/users/me", headers=auth(team["head"]))
        assert res.get_json()["role"] == "PRODUCTION_HEAD"

    def test_user_listing_needs_manager_role(self, client, auth, team):
        assert client.get("/api/v1/users", headers=auth(team["submitter"])).status_code == 403
        res = client.get("/api/v1/users?role=APPROVER", headers=auth(team["head"]))
        assert res.get_json()["total"] == 2


# ═══════════════════════════════════════════════════════════════════════════
#  Expenses
# ═══════════════════════════════════════════════════════════════════════════

class TestExpenseApi:
    def test_submit_returns_budget_check(self, client, auth, team):
        res = _submit(client, auth, team)
        assert res.status_code == 201
        body = res.get_json()
        assert body["expense"]["status"] == "PENDING"
        assert body["budget_check"]["is_valid"] is True

    def test_malformed_json_is_400(self, client, auth, team):
        res = client.post(
            f"/api/v1/projects/{team['project'].id}/expenses",
            data="{not json",
            content_type="application/json",
            headers=auth(team["submitter"]),
        )
        assert res.status_code == 400
        assert res.get_json()["code"] == "ERR_VALIDATION_INVALID"

    def test_missing_amount_is_400(self, client, auth, team):
        res = _submit(client, auth, team, amount=None)
        assert res.status_code == 400
        assert res.get_json()["code"] == "ERR_VALIDATION_REQUIRED"

    def test_service_validation_is_422(self, client, auth, team):
        res = _submit(client, auth, team, amount=-5)
        assert res.status_code == 422

    def test_unknown_project_is_404(self, client, auth, team):
        res = client.post("/api/v1/projects/nope/expenses", json={"amount": 1, "department": "X"},
                          headers=auth(team["submitter"]))
        assert res.status_code == 404

    def test_approve_then_reapprove_conflicts(self, client, auth, team):
        expense_id = _submit(client, auth, team).get_json()["expense"]["id"]
        headers = auth(team["approver_a"])

        ok = client.post(f"/api/v1/expenses/{expense_id}/approve", json={"comments": "fine"}, headers=headers)
        assert ok.status_code == 200
        assert ok.get_json()["status"] == "APPROVED"

        again = client.post(f"/api/v1/expenses/{expense_id}/reject", json={}, headers=auth(team["approver_b"]))
        assert again.status_code == 409
        assert again.get_json()["code"] == "ERR_CONFLICT_STATE"

    def test_submitter_cannot_open_review_queue(self, client, auth, team):
        res = client.get(f"/api/v1/projects/{team['project'].id}/pending-approvals",
                         headers=auth(team["submitter"]))
        assert res.status_code == 403

    def test_review_queue(self, client, auth, team):
        _submit(client, auth, team, amount=100)
        _submit(client, auth, team, amount=200)
        res = client.get(f"/api/v1/projects/{team['project'].id}/pending-approvals",
                         headers=auth(team["approver_a"]))
        body = res.get_json()
        assert body["pending_count"] == 2
        assert body["pending_amount"] == 300
        assert len(body["items"]) == 2

    def test_submitters_only_list_their_own(self, client, auth, team, make_expense):
        make_expense(team["project"], team["approver_b"])
        _submit(client, auth, team)
        res = client.get(f"/api/v1/projects/{team['project'].id}/expenses", headers=auth(team["submitter"]))
        assert res.get_json()["total"] == 1
        res = client.get(f"/api/v1/projects/{team['project'].id}/expenses", headers=auth(team["approver_a"]))
        assert res.get_json()["total"] == 2

    def test_project_report_rejects_unknown_time_range(self, client, auth, team):
        url = f"/api/v1/projects/{team['project'].id}/report?time_range=forever"
        assert client.get(url, headers=auth(team["head"])).status_code == 422
        ok = client.get(f"/api/v1/projects/{team['project'].id}/report?department=all",
                        headers=auth(team["head"]))
        assert ok.status_code == 200
        assert ok.get_json()["department"] == "All Departments"


# ═══════════════════════════════════════════════════════════════════════════
#  Notifications
# ═══════════════════════════════════════════════════════════════════════════

class TestNotificationApi:
    def test_approvers_see_submission(self, client, auth, team):
        _submit(client, auth, team)
        res = client.get("/api/v1/notifications", headers=auth(team["approver_a"]))
        body = res.get_json()
        assert body["total"] == 1
        assert body["items"][0]["navigation_target"] == f"pending_approvals/{team['project'].id}"

        badge = client.get("/api/v1/notifications/badge", headers=auth(team["approver_a"])).get_json()
        assert badge == {"unread": 1, "action_required": 1}

    def test_mark_read_and_read_all(self, client, auth, team):
        _submit(client, auth, team)
        _submit(client, auth, team)
        headers = auth(team["approver_a"])
        items = client.get("/api/v1/notifications", headers=headers).get_json()["items"]

        res = client.post(f"/api/v1/notifications/{items[0]['id']}/read", headers=headers)
        assert res.get_json()["is_read"] is True

        res = client.post("/api/v1/notifications/read-all", json={}, headers=headers)
        assert res.get_json() == {"marked_read": 1}

    def test_cannot_read_other_users_notification(self, client, auth, team):
        _submit(client, auth, team)
        items = client.get("/api/v1/notifications", headers=auth(team["approver_a"])).get_json()["items"]
        res = client.post(f"/api/v1/notifications/{items[0]['id']}/read", headers=auth(team["submitter"]))
        assert res.status_code == 404

    def test_stream_emits_snapshot_event(self, client, auth, team):
        _submit(client, auth, team)
        res = client.get("/api/v1/notifications/stream?max_polls=1", headers=auth(team["approver_b"]))
        assert res.status_code == 200
        assert res.mimetype == "text/event-stream"

        text = res.get_data(as_text=True)
        assert text.startswith("event: notifications\ndata: ")
        assert text.endswith("\n\n")
        payload = json.loads(text.split("data: ", 1)[1])
        assert [n["type"] for n in payload] == ["EXPENSE_SUBMITTED"]

    def test_stream_rejects_bad_max_polls(self, client, auth, team):
        headers = auth(team["approver_b"])
        assert client.get("/api/v1/notifications/stream?max_polls=soon", headers=headers).status_code == 400
        assert client.get("/api/v1/notifications/stream?max_polls=0", headers=headers).status_code == 400


# ═══════════════════════════════════════════════════════════════════════════
#  Delegations & chats
# ═══════════════════════════════════════════════════════════════════════════

class TestDelegationApi:
    def test_assign_and_accept(self, client, auth, team):
        expires = (utcnow() + timedelta(days=3)).isoformat()
        res = client.post(
            f"/api/v1/projects/{team['project'].id}/delegations",
            json={"approver_id": team["submitter"].id, "expiring_date": expires},
            headers=auth(team["head"]),
        )
        assert res.status_code == 201
        delegation_id = res.get_json()["id"]

        mine = client.get("/api/v1/delegations/mine", headers=auth(team["submitter"])).get_json()
        assert [d["id"] for d in mine["items"]] == [delegation_id]

        res = client.post(f"/api/v1/delegations/{delegation_id}/respond", json={"accept": True},
                          headers=auth(team["submitter"]))
        assert res.get_json()["status"] == "ACCEPTED"

    def test_invalid_expiry_is_400(self, client, auth, team):
        res = client.post(
            f"/api/v1/projects/{team['project'].id}/delegations",
            json={"approver_id": team["submitter"].id, "expiring_date": "next tuesday"},
            headers=auth(team["head"]),
        )
        assert res.status_code == 400

    def test_respond_requires_boolean(self, client, auth, team, make_delegation):
        d = make_delegation(team["project"], team["submitter"], team["head"], status="PENDING")
        res = client.post(f"/api/v1/delegations/{d.id}/respond", json={"accept": "yes"},
                          headers=auth(team["submitter"]))
        assert res.status_code == 400


class TestChatApi:
    def test_open_send_and_read(self, client, auth, team):
        url = f"/api/v1/projects/{team['project'].id}/chats"
        first = client.post(url, json={"peer_id": team["approver_a"].id}, headers=auth(team["submitter"]))
        assert first.status_code == 201
        chat_id = first.get_json()["id"]
        again = client.post(url, json={"peer_id": team["submitter"].id}, headers=auth(team["approver_a"]))
        assert again.status_code == 200
        assert again.get_json()["id"] == chat_id

        sent = client.post(f"/api/v1/chats/{chat_id}/messages", json={"message": "Bill attached"},
                           headers=auth(team["submitter"]))
        assert sent.status_code == 201

        res = client.post(f"/api/v1/chats/{chat_id}/read", headers=auth(team["approver_a"]))
        body = res.get_json()
        assert body["marked_read"] == 1
        assert body["chat"]["unread"] == 0

    def test_outsider_cannot_read_chat(self, client, auth, team):
        url = f"/api/v1/projects/{team['project'].id}/chats"
        chat_id = client.post(url, json={"peer_id": team["approver_a"].id},
                              headers=auth(team["submitter"])).get_json()["id"]
        res = client.get(f"/api/v1/chats/{chat_id}/messages", headers=auth(team["head"]))
        assert res.status_code == 403


# ═══════════════════════════════════════════════════════════════════════════
#  Scheduler
# ═══════════════════════════════════════════════════════════════════════════

class TestSchedulerApi:
    def test_admin_only(self, client, auth, team):
        assert client.get("/api/v1/scheduler/jobs", headers=auth(team["head"])).status_code == 403

    def test_trigger_known_and_unknown_jobs(self, client, auth, make_user):
        admin = make_user("Admin", "ADMIN")
        res = client.post("/api/v1/scheduler/jobs/delegation_expiry_sweep/trigger", headers=auth(admin))
        assert res.status_code == 200
        assert res.get_json()["result"]["expired"] == 0

        res = client.post("/api/v1/scheduler/jobs/make_coffee/trigger", headers=auth(admin))
        assert res.status_code == 404

    def test_toggle_requires_boolean(self, client, auth, make_user):
        admin = make_user("Admin", "ADMIN")
        res = client.patch("/api/v1/scheduler/jobs/pending_approval_reminder", json={},
                           headers=auth(admin))
        assert res.status_code == 400
