"""
Tests — Notification Store.

Covers:
    1. Listing, filtering and badges
    2. Read tracking (single, bulk, idempotency)
    3. Per-project summaries
    4. Polling stream
    5. Retention cleanup
"""

from datetime import timedelta

import pytest

from expensedesk.core.exceptions import NotFoundError
from expensedesk.models import db, utcnow
from expensedesk.models.notification import Notification
from expensedesk.services.notification_store import NotificationStore


def _notify(user, project=None, *, title="Heads up", action_required=False, created_at=None,
            is_read=False, role="USER"):
    n = Notification(
        recipient_id=user.id,
        recipient_role=role,
        title=title,
        message=title,
        type="INFO",
        project_id=project.id if project else None,
        project_name=project.name if project else "",
        action_required=action_required,
        is_read=is_read,
        created_at=created_at or utcnow(),
    )
    db.session.add(n)
    db.session.commit()
    return n


class TestListing:
    def test_newest_first_with_total(self, team):
        user = team["submitter"]
        old = _notify(user, title="old", created_at=utcnow() - timedelta(hours=2))
        new = _notify(user, title="new")
        _notify(team["head"], title="someone else's")

        items, total = NotificationStore.list_for_recipient(user.id)

        assert total == 2
        assert [n.id for n in items] == [new.id, old.id]

    def test_filters(self, team, make_project):
        user = team["submitter"]
        other = make_project("Other")
        _notify(user, team["project"])
        _notify(user, other, role="APPROVER")
        _notify(user, team["project"], is_read=True)

        assert NotificationStore.list_for_recipient(user.id, project_id=team["project"].id)[1] == 2
        assert NotificationStore.list_for_recipient(user.id, role="APPROVER")[1] == 1
        assert NotificationStore.list_for_recipient(user.id, unread_only=True)[1] == 2

    def test_pagination(self, team):
        for i in range(5):
            _notify(team["submitter"], title=f"n{i}", created_at=utcnow() - timedelta(minutes=i))
        items, total = NotificationStore.list_for_recipient(team["submitter"].id, limit=2, offset=2)
        assert total == 5
        assert [n.title for n in items] == ["n2", "n3"]

    def test_badge_counts_unread_and_actions(self, team):
        user = team["approver_a"]
        _notify(user, team["project"], action_required=True)
        _notify(user, team["project"])
        _notify(user, team["project"], action_required=True, is_read=True)

        assert NotificationStore.badge(user.id) == {"unread": 2, "action_required": 1}


class TestReadTracking:
    def test_mark_read_is_idempotent(self, team):
        n = _notify(team["submitter"])
        first = NotificationStore.mark_read(n.id, team["submitter"].id)
        read_at = first.read_at
        second = NotificationStore.mark_read(n.id, team["submitter"].id)
        assert second.is_read is True
        assert second.read_at == read_at

    def test_cannot_mark_someone_elses(self, team):
        n = _notify(team["submitter"])
        with pytest.raises(NotFoundError):
            NotificationStore.mark_read(n.id, team["head"].id)

    def test_mark_all_read_scoped_to_project(self, team, make_project):
        user = team["submitter"]
        other = make_project("Other")
        _notify(user, team["project"])
        _notify(user, team["project"])
        _notify(user, other)

        assert NotificationStore.mark_all_read(user.id, team["project"].id) == 2
        assert NotificationStore.badge(user.id)["unread"] == 1
        assert NotificationStore.mark_all_read(user.id) == 1
        assert NotificationStore.mark_all_read(user.id) == 0


class TestProjectSummaries:
    def test_summaries_per_project(self, team, make_project):
        user = team["submitter"]
        other = make_project("Other")
        _notify(user, team["project"], created_at=utcnow() - timedelta(hours=1))
        _notify(user, team["project"], is_read=True, created_at=utcnow() - timedelta(hours=1))
        latest = _notify(user, other, title="latest")
        _notify(user)

        summaries = NotificationStore.project_summaries(user.id)

        assert [s["project_id"] for s in summaries] == [other.id, team["project"].id]
        assert summaries[0]["latest"]["id"] == latest.id
        assert summaries[1]["total"] == 2
        assert summaries[1]["unread"] == 1
        assert summaries[1]["project_name"] == "Monsoon Shoot"

    def test_summaries_restricted_to_requested_projects(self, team, make_project):
        other = make_project("Other")
        _notify(team["submitter"], team["project"])
        _notify(team["submitter"], other)
        summaries = NotificationStore.project_summaries(team["submitter"].id, [other.id])
        assert [s["project_id"] for s in summaries] == [other.id]


class TestStream:
    def test_yields_initial_snapshot_then_changes_only(self, team):
        user = team["submitter"]
        first = _notify(user, title="first")
        naps = []

        def _sleep(seconds):
            naps.append(seconds)
            if len(naps) == 2:
                _notify(user, title="second")

        snapshots = list(NotificationStore.stream_notifications(
            user.id, poll_interval=0.5, max_polls=4, sleep=_sleep,
        ))

        assert naps == [0.5, 0.5, 0.5]
        assert len(snapshots) == 2
        assert [n.id for n in snapshots[0]] == [first.id]
        assert [n.title for n in snapshots[1]] == ["second", "first"]

    def test_read_state_change_triggers_snapshot(self, team):
        user = team["submitter"]
        n = _notify(user)

        def _sleep(_seconds):
            NotificationStore.mark_read(n.id, user.id)

        snapshots = list(NotificationStore.stream_notifications(user.id, max_polls=2, sleep=_sleep))

        assert len(snapshots) == 2
        assert snapshots[1][0].is_read is True

    def test_empty_inbox_yields_empty_snapshot(self, team):
        snapshots = list(NotificationStore.stream_notifications(
            team["head"].id, max_polls=1, sleep=lambda _s: None,
        ))
        assert snapshots == [[]]


class TestRetention:
    def test_deletes_only_old_read_notifications(self, team):
        user = team["submitter"]
        long_ago = utcnow() - timedelta(days=45)
        _notify(user, is_read=True, created_at=long_ago)
        keep_unread = _notify(user, created_at=long_ago)
        keep_recent = _notify(user, is_read=True)

        assert NotificationStore.delete_older_than(30) == 1
        remaining = {n.id for n in Notification.query.all()}
        assert remaining == {keep_unread.id, keep_recent.id}

    def test_can_include_unread(self, team):
        _notify(team["submitter"], created_at=utcnow() - timedelta(days=45))
        assert NotificationStore.delete_older_than(30, read_only=False) == 1
