"""
Chat Service.

One-to-one conversations between members of the same project. Messages are
append-only; each send bumps the peer's unread counter and notifies them.
"""

from __future__ import annotations

import logging

from expensedesk.core.exceptions import NotFoundError, PermissionDeniedError, ValidationError
from expensedesk.models import as_utc, db, utcnow
from expensedesk.models.chat import MESSAGE_TYPES, Chat, Message
from expensedesk.models.project import Project
from expensedesk.models.user import ROLE_ADMIN, User
from expensedesk.services import recipients as ev
from expensedesk.services.notification_dispatcher import NotificationDispatcher
from expensedesk.utils.helpers import commit_or_raise

logger = logging.getLogger(__name__)

MAX_MESSAGE_LENGTH = 4000


def _require_member(chat: Chat, user: User) -> None:
    if user.id not in (chat.members or []):
        raise PermissionDeniedError("access this chat", user.id)


def get_chat(chat_id: str, viewer: User | None = None) -> Chat:
    chat = db.session.get(Chat, chat_id)
    if chat is None:
        raise NotFoundError(resource="Chat", resource_id=chat_id)
    if viewer is not None:
        _require_member(chat, viewer)
    return chat


def get_or_create_chat(project: Project, user_a: User, user_b: User) -> tuple[Chat, bool]:
    """Return the chat between two project members, creating it on first use.

    Returns:
        (chat, created)
    """
    if user_a.id == user_b.id:
        raise ValidationError("A chat needs two different members")
    for user in (user_a, user_b):
        if user.role != ROLE_ADMIN and not project.is_member(user.id):
            raise PermissionDeniedError("chat outside the project team", user.id)
        if not user.is_active:
            raise ValidationError("Chat members must be active", details={"user_id": user.id})

    pair = {user_a.id, user_b.id}
    for chat in Chat.query.filter_by(project_id=project.id).all():
        if set(chat.members or []) == pair:
            return chat, False

    chat = Chat(
        project_id=project.id,
        members=sorted(pair),
        unread_count={user_a.id: 0, user_b.id: 0},
    )
    db.session.add(chat)
    commit_or_raise("create chat")
    return chat, True


def send_message(chat: Chat, sender: User, text: str, message_type: str = "Text",
                 media_url: str | None = None) -> Message:
    """Append a message, update the chat preview and notify the other member."""
    _require_member(chat, sender)
    if message_type not in MESSAGE_TYPES:
        raise ValidationError(f"message_type must be one of {sorted(MESSAGE_TYPES)}")
    text = (text or "").strip()
    if message_type == "Text" and not text:
        raise ValidationError("message cannot be empty", details={"message": "required"})
    if message_type == "Media" and not media_url:
        raise ValidationError("media_url is required for media messages")
    if len(text) > MAX_MESSAGE_LENGTH:
        raise ValidationError(f"message exceeds {MAX_MESSAGE_LENGTH} characters")

    now = utcnow()
    message = Message(
        chat_id=chat.id,
        sender_id=sender.id,
        sender_name=sender.name,
        sender_role=sender.role,
        message_type=message_type,
        message=text,
        media_url=media_url,
        timestamp=now,
        read_by=[sender.id],
    )
    db.session.add(message)

    chat.last_message = text if message_type == "Text" else "📷 Image"
    chat.last_message_time = now
    chat.last_message_sender_id = sender.id
    unread = dict(chat.unread_count or {})
    peer_id = chat.peer_of(sender.id)
    if peer_id:
        unread[peer_id] = unread.get(peer_id, 0) + 1
    chat.unread_count = unread
    db.session.flush()

    NotificationDispatcher.dispatch(ev.DomainEvent(
        kind=ev.CHAT_MESSAGE,
        actor_id=sender.id,
        project_id=chat.project_id,
        chat_id=chat.id,
        payload={"sender_name": sender.name, "text": text, "message_type": message_type},
    ))
    return message


def mark_messages_read(chat: Chat, user: User) -> int:
    """Add ``user`` to ``read_by`` of every message and reset their unread counter."""
    _require_member(chat, user)
    updated = 0
    for message in chat.messages.filter(Message.sender_id != user.id).all():
        readers = list(message.read_by or [])
        if user.id not in readers:
            message.read_by = readers + [user.id]
            updated += 1
    unread = dict(chat.unread_count or {})
    unread[user.id] = 0
    chat.unread_count = unread
    commit_or_raise("mark chat read")
    return updated


def list_user_chats(user_id: str, project_id: str | None = None) -> list[Chat]:
    """Chats ``user_id`` belongs to, most recent activity first."""
    q = Chat.query
    if project_id:
        q = q.filter(Chat.project_id == project_id)
    chats = [c for c in q.all() if user_id in (c.members or [])]
    chats.sort(key=lambda c: as_utc(c.last_message_time or c.created_at), reverse=True)
    return chats


def list_messages(chat: Chat, limit: int = 200) -> list[Message]:
    """Messages in chronological order, the latest ``limit`` of them."""
    latest = chat.messages.order_by(None).order_by(Message.timestamp.desc()).limit(limit).all()
    return list(reversed(latest))
