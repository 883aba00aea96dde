"""Tests — project chats: opening, messaging, unread counters and read receipts."""

import pytest

from expensedesk.core.exceptions import PermissionDeniedError, ValidationError
from expensedesk.models.notification import Notification
from expensedesk.services import chat_service, navigation


@pytest.fixture()
def chat(team):
    c, _ = chat_service.get_or_create_chat(team["project"], team["submitter"], team["approver_a"])
    return c


class TestOpenChat:
    def test_reopening_returns_same_chat(self, team, chat):
        again, created = chat_service.get_or_create_chat(
            team["project"], team["approver_a"], team["submitter"],
        )
        assert created is False
        assert again.id == chat.id

    def test_members_must_differ(self, team):
        with pytest.raises(ValidationError):
            chat_service.get_or_create_chat(team["project"], team["submitter"], team["submitter"])

    def test_outsiders_cannot_chat(self, team, make_user):
        outsider = make_user("Outsider", "USER")
        with pytest.raises(PermissionDeniedError):
            chat_service.get_or_create_chat(team["project"], team["submitter"], outsider)

    def test_non_member_cannot_read(self, team, chat):
        with pytest.raises(PermissionDeniedError):
            chat_service.get_chat(chat.id, viewer=team["approver_b"])


class TestMessages:
    def test_send_bumps_peer_unread_and_notifies(self, team, chat):
        chat_service.send_message(chat, team["submitter"], "Receipt attached?")

        assert chat.unread_count[team["approver_a"].id] == 1
        assert chat.unread_count[team["submitter"].id] == 0
        assert chat.last_message == "Receipt attached?"

        note = Notification.query.filter_by(type="CHAT_MESSAGE").one()
        assert note.recipient_id == team["approver_a"].id
        assert note.title == "New message from Sam Submitter"
        parsed = navigation.parse(note.navigation_target)
        assert parsed.route == "chat"
        assert parsed.params == (team["project"].id, chat.id, "Sam Submitter")

    def test_media_message_preview(self, team, chat):
        chat_service.send_message(chat, team["submitter"], "", message_type="Media",
                                  media_url="https://cdn.example.com/r.jpg")
        assert chat.last_message == "📷 Image"
        assert Notification.query.filter_by(type="CHAT_MESSAGE").one().message == "📷 Image"

    @pytest.mark.parametrize("kwargs", [
        {"text": "   "},
        {"text": "", "message_type": "Media"},
        {"text": "hi", "message_type": "Sticker"},
        {"text": "x" * 4001},
    ])
    def test_invalid_messages(self, team, chat, kwargs):
        text = kwargs.pop("text")
        with pytest.raises(ValidationError):
            chat_service.send_message(chat, team["submitter"], text, **kwargs)

    def test_mark_read_resets_counter(self, team, chat):
        chat_service.send_message(chat, team["submitter"], "one")
        chat_service.send_message(chat, team["submitter"], "two")
        chat_service.send_message(chat, team["approver_a"], "reply")

        updated = chat_service.mark_messages_read(chat, team["approver_a"])

        assert updated == 2
        assert chat.unread_count[team["approver_a"].id] == 0
        assert chat_service.mark_messages_read(chat, team["approver_a"]) == 0

    def test_messages_are_chronological(self, team, chat):
        for text in ("first", "second", "third"):
            chat_service.send_message(chat, team["submitter"], text)
        assert [m.message for m in chat_service.list_messages(chat)] == ["first", "second", "third"]
        assert [m.message for m in chat_service.list_messages(chat, limit=2)] == ["second", "third"]

    def test_user_chats_latest_first(self, team, chat):
        other, _ = chat_service.get_or_create_chat(team["project"], team["submitter"], team["approver_b"])
        chat_service.send_message(chat, team["submitter"], "older")
        chat_service.send_message(other, team["submitter"], "newer")

        chats = chat_service.list_user_chats(team["submitter"].id, team["project"].id)

        assert [c.id for c in chats] == [other.id, chat.id]
        assert chat_service.list_user_chats(team["head"].id) == []
