"""
Expense Desk
Project chat models.

Models:
    - Chat: two-member conversation scoped to a project
    - Message: append-only chat message
"""

from expensedesk.models import db, iso, new_id, utcnow


MESSAGE_TYPES = {"Text", "Media"}


class Chat(db.Model):
    """Conversation between exactly two project members."""

    __tablename__ = "chats"

    id = db.Column(db.String(32), primary_key=True, default=new_id)
    project_id = db.Column(
        db.String(32), db.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    members = db.Column(db.JSON, nullable=False, default=list)
    last_message = db.Column(db.Text, default="")
    last_message_time = db.Column(db.DateTime(timezone=True), nullable=True)
    last_message_sender_id = db.Column(db.String(32), default="")
    unread_count = db.Column(db.JSON, default=dict, comment="user id -> unread messages")

    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    messages = db.relationship(
        "Message", backref="chat", lazy="dynamic", cascade="all, delete-orphan",
        order_by="Message.timestamp",
    )

    def peer_of(self, user_id: str) -> str | None:
        for member in self.members or []:
            if member != user_id:
                return member
        return None

    def to_dict(self, viewer_id: str | None = None):
        data = {
            "id": self.id,
            "project_id": self.project_id,
            "members": list(self.members or []),
            "last_message": self.last_message,
            "last_message_time": iso(self.last_message_time),
            "last_message_sender_id": self.last_message_sender_id,
            "unread_count": dict(self.unread_count or {}),
            "created_at": iso(self.created_at),
        }
        if viewer_id:
            data["unread"] = (self.unread_count or {}).get(viewer_id, 0)
        return data

    def __repr__(self):
        return f"<Chat {self.id}: {self.members}>"


class Message(db.Model):
    """Single chat message. Only ``read_by`` grows after insert."""

    __tablename__ = "chat_messages"

    id = db.Column(db.String(32), primary_key=True, default=new_id)
    chat_id = db.Column(
        db.String(32), db.ForeignKey("chats.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    sender_id = db.Column(db.String(32), nullable=False)
    sender_name = db.Column(db.String(150), default="")
    sender_role = db.Column(db.String(30), default="")
    message_type = db.Column(db.String(10), default="Text")
    message = db.Column(db.Text, default="")
    media_url = db.Column(db.String(1000), nullable=True)
    timestamp = db.Column(db.DateTime(timezone=True), default=utcnow, index=True)
    read_by = db.Column(db.JSON, default=list)

    def to_dict(self):
        return {
            "id": self.id,
            "chat_id": self.chat_id,
            "sender_id": self.sender_id,
            "sender_name": self.sender_name,
            "sender_role": self.sender_role,
            "message_type": self.message_type,
            "message": self.message,
            "media_url": self.media_url,
            "timestamp": iso(self.timestamp),
            "read_by": list(self.read_by or []),
        }

    def __repr__(self):
        return f"<Message {self.id} in {self.chat_id}>"
