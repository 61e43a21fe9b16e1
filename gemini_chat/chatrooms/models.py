from sqlalchemy import Column, String, TIMESTAMP, ForeignKey, Text, Integer, Index, UniqueConstraint
from sqlalchemy.orm import relationship

from ..database import Base, utcnow


class MessageAuthor:
    USER = "user"
    BOT = "bot"


class ReplyStatus:
    """Lifecycle of the bot reply owed to a user message"""
    PENDING = "pending"          # job enqueued, no reply yet
    ANSWERED = "answered"        # model replied
    FALLBACK = "fallback"        # model failed, fallback text stored
    STALLED = "stalled"          # no worker finished in time, sweep stored fallback
    NOT_QUEUED = "not_queued"    # broker refused the job


class Chatroom(Base):
    __tablename__ = "chatrooms"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String, nullable=False)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    created_at = Column(TIMESTAMP(timezone=True), default=utcnow, nullable=False)

    owner = relationship("User", back_populates="chatrooms")
    messages = relationship(
        "Message",
        back_populates="room",
        cascade="all, delete-orphan",
        order_by="Message.sent_at",
    )


class Message(Base):
    __tablename__ = "messages"
    __table_args__ = (
        # At most one user message and one bot reply per job
        UniqueConstraint("job_key", "who", name="uq_messages_job_key_who"),
        Index("ix_messages_room_id_sent_at", "room_id", "sent_at"),
    )

    id = Column(Integer, primary_key=True, index=True)
    who = Column(String(8), nullable=False)  # MessageAuthor
    content = Column(Text, nullable=False)
    room_id = Column(Integer, ForeignKey("chatrooms.id", ondelete="CASCADE"), nullable=False)
    sent_at = Column(TIMESTAMP(timezone=True), default=utcnow, nullable=False)

    job_key = Column(String(64), nullable=True, index=True)
    reply_status = Column(String(16), nullable=True)  # ReplyStatus, user messages only

    room = relationship("Chatroom", back_populates="messages")
