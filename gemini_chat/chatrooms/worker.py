# gemini_chat/chatrooms/worker.py
"""
Reply worker: turns a queued MessageJob into a persisted bot message.

Per job:  received -> model call -> completed (success | fallback)

A model failure of any kind (timeout, API error, empty response) produces the
fixed fallback reply instead of a retry, so every accepted user message ends
up with exactly one bot message. Both outcomes complete the job.
"""

from contextlib import AbstractContextManager
from dataclasses import dataclass
from datetime import timedelta
from enum import Enum
from typing import Callable, Optional, Protocol

from sqlalchemy.orm import Session

from .models import ReplyStatus
from .queue import MessageJob
from .service import ChatroomService
from ..database import utcnow
from ..logging_config import get_logger, log_business_event
from ..monitoring import track_operation

logger = get_logger(__name__)

FALLBACK_REPLY = "Sorry, Gemini could not respond right now."


class TextModel(Protocol):
    def generate(self, text: str) -> str: ...


SessionFactory = Callable[[], AbstractContextManager[Session]]


@dataclass(frozen=True)
class ReplyOutcome:
    """What the worker will persist for a job"""
    content: str
    is_fallback: bool
    error: Optional[str] = None

    @classmethod
    def success(cls, text: str) -> "ReplyOutcome":
        return cls(content=text, is_fallback=False)

    @classmethod
    def fallback(cls, error: str) -> "ReplyOutcome":
        return cls(content=FALLBACK_REPLY, is_fallback=True, error=error)

    @property
    def reply_status(self) -> str:
        return ReplyStatus.FALLBACK if self.is_fallback else ReplyStatus.ANSWERED


class JobResult(str, Enum):
    ANSWERED = "answered"
    FALLBACK = "fallback"
    DUPLICATE = "duplicate"


class ReplyWorker:
    """
    Usage:
        worker = ReplyWorker(session_scope, GeminiClient())
        worker.process(job)
    """

    def __init__(self, session_factory: SessionFactory, model: Optional[TextModel]):
        self.session_factory = session_factory
        self.model = model

    def generate(self, job: MessageJob) -> ReplyOutcome:
        try:
            with track_operation("gemini_generate", chatroom_id=job.chatroom_id):
                text = self.model.generate(job.content)
        except Exception as e:
            logger.warning(
                "Model call failed, using fallback reply",
                extra={"job_key": job.job_key, "extra_data": {"chatroom_id": job.chatroom_id, "error": str(e)}}
            )
            return ReplyOutcome.fallback(str(e))

        return ReplyOutcome.success(text)

    def persist(self, job: MessageJob, outcome: ReplyOutcome, reply_status: Optional[str] = None) -> Optional[int]:
        """Single write path for every outcome; returns the bot message id, or None for a duplicate"""
        with self.session_factory() as db:
            message = ChatroomService(db).record_bot_reply(
                job_key=job.job_key,
                room_id=job.chatroom_id,
                content=outcome.content,
                reply_status=reply_status or outcome.reply_status,
            )
            return message.id if message is not None else None

    def process(self, job: MessageJob) -> JobResult:
        with self.session_factory() as db:
            if ChatroomService(db).has_bot_reply(job.job_key):
                logger.info(
                    "Skipping redelivered job, reply already stored",
                    extra={"job_key": job.job_key, "extra_data": {"chatroom_id": job.chatroom_id}}
                )
                return JobResult.DUPLICATE

        outcome = self.generate(job)

        if self.persist(job, outcome) is None:
            return JobResult.DUPLICATE

        log_business_event(
            "bot_reply_stored",
            chatroom_id=job.chatroom_id,
            job_key=job.job_key,
            fallback=outcome.is_fallback,
            queue_latency_ms=int((utcnow() - job.enqueued_at).total_seconds() * 1000),
        )
        return JobResult.FALLBACK if outcome.is_fallback else JobResult.ANSWERED

    def sweep_stalled(self, older_than: timedelta, batch_size: int = 100) -> int:
        """
        Store the fallback reply for user messages nobody answered within
        ``older_than`` (worker crash, lost job). Returns how many were settled.
        """
        with self.session_factory() as db:
            stalled = [
                MessageJob(
                    chatroom_id=message.room_id,
                    content=message.content,
                    enqueued_at=message.sent_at,
                    job_key=message.job_key,
                )
                for message in ChatroomService(db).find_stalled_messages(utcnow() - older_than, limit=batch_size)
            ]

        settled = 0
        for job in stalled:
            outcome = ReplyOutcome.fallback("reply stalled")
            if self.persist(job, outcome, reply_status=ReplyStatus.STALLED) is not None:
                settled += 1

        if stalled:
            logger.warning(
                "Settled stalled replies with fallback",
                extra={"extra_data": {"found": len(stalled), "settled": settled}}
            )
        return settled
