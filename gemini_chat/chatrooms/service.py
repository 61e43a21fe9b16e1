# gemini_chat/chatrooms/service.py
"""
Durable store operations for chatrooms and messages.

Messages are append-only: content is never edited. The only in-place update
is the ``reply_status`` bookkeeping column on user messages.
"""

from datetime import datetime
from typing import List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError

from .models import Chatroom, Message, MessageAuthor, ReplyStatus
from ..database import utcnow
from ..error_handlers import ForbiddenException
from ..logging_config import get_logger

logger = get_logger(__name__)


class ChatroomService:
    """Chatroom and message persistence bound to one SQLAlchemy session"""

    def __init__(self, db: Session):
        self.db = db

    # ========================================================================
    # CHATROOMS
    # ========================================================================

    def create_chatroom(self, title: str, owner_id: int) -> Chatroom:
        chatroom = Chatroom(title=title, user_id=owner_id)
        self.db.add(chatroom)
        self.db.commit()
        self.db.refresh(chatroom)

        logger.info(
            f"Chatroom created: {chatroom.id}",
            extra={"user_id": owner_id, "extra_data": {"chatroom_id": chatroom.id}}
        )
        return chatroom

    def list_chatrooms(self, owner_id: int) -> List[Chatroom]:
        """Newest first"""
        return (
            self.db.query(Chatroom)
            .filter(Chatroom.user_id == owner_id)
            .order_by(Chatroom.created_at.desc(), Chatroom.id.desc())
            .all()
        )

    def get_chatroom(self, chatroom_id: int) -> Optional[Chatroom]:
        return self.db.get(Chatroom, chatroom_id)

    def get_owned_chatroom(self, chatroom_id: int, user_id: int) -> Chatroom:
        """Missing and foreign chatrooms look the same to the caller"""
        chatroom = self.get_chatroom(chatroom_id)
        if chatroom is None or chatroom.user_id != user_id:
            raise ForbiddenException("not allowed to access this chatroom")
        return chatroom

    # ========================================================================
    # MESSAGES
    # ========================================================================

    def list_messages(self, chatroom_id: int) -> List[Message]:
        """Conversation order: oldest first"""
        return (
            self.db.query(Message)
            .filter(Message.room_id == chatroom_id)
            .order_by(Message.sent_at.asc(), Message.id.asc())
            .all()
        )

    def create_message(
        self,
        who: str,
        content: str,
        room_id: int,
        sent_at: Optional[datetime] = None,
        job_key: Optional[str] = None,
        reply_status: Optional[str] = None
    ) -> Message:
        message = Message(
            who=who,
            content=content,
            room_id=room_id,
            sent_at=sent_at or utcnow(),
            job_key=job_key,
            reply_status=reply_status,
        )
        self.db.add(message)
        self.db.commit()
        self.db.refresh(message)
        return message

    def count_user_messages(self, owner_id: int, since: datetime) -> int:
        """User-authored messages accepted since ``since`` across all of the owner's chatrooms"""
        return (
            self.db.query(func.count(Message.id))
            .join(Chatroom, Message.room_id == Chatroom.id)
            .filter(
                Chatroom.user_id == owner_id,
                Message.who == MessageAuthor.USER,
                Message.sent_at >= since,
                (Message.reply_status.is_(None)) | (Message.reply_status != ReplyStatus.NOT_QUEUED),
            )
            .scalar()
        )

    def set_reply_status(self, job_key: str, status: str) -> None:
        self.db.query(Message).filter(
            Message.job_key == job_key,
            Message.who == MessageAuthor.USER
        ).update({Message.reply_status: status}, synchronize_session=False)
        self.db.commit()

    # ========================================================================
    # BOT REPLIES
    # ========================================================================

    def has_bot_reply(self, job_key: str) -> bool:
        return self.db.query(
            self.db.query(Message).filter(
                Message.job_key == job_key,
                Message.who == MessageAuthor.BOT
            ).exists()
        ).scalar()

    def record_bot_reply(
        self,
        job_key: str,
        room_id: int,
        content: str,
        reply_status: str
    ) -> Optional[Message]:
        """
        Append the bot reply for a job and settle the user message's status
        in one transaction. Returns None when a reply for the job already exists.
        """
        message = Message(
            who=MessageAuthor.BOT,
            content=content,
            room_id=room_id,
            sent_at=utcnow(),
            job_key=job_key,
        )
        self.db.add(message)
        self.db.query(Message).filter(
            Message.job_key == job_key,
            Message.who == MessageAuthor.USER
        ).update({Message.reply_status: reply_status}, synchronize_session=False)

        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            logger.info(
                "Bot reply already recorded for job",
                extra={"job_key": job_key, "extra_data": {"chatroom_id": room_id}}
            )
            return None

        self.db.refresh(message)
        return message

    def find_stalled_messages(self, sent_before: datetime, limit: int = 100) -> List[Message]:
        """User messages still waiting for a reply that were sent before ``sent_before``"""
        return (
            self.db.query(Message)
            .filter(
                Message.who == MessageAuthor.USER,
                Message.reply_status == ReplyStatus.PENDING,
                Message.sent_at < sent_before,
            )
            .order_by(Message.sent_at.asc())
            .limit(limit)
            .all()
        )
