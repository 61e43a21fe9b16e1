# gemini_chat/chatrooms/queue.py
"""
Job queue for bot replies.

``MessageQueue.enqueue`` publishes a ``process_message`` task to the named
Celery queue and returns once the broker accepted it; it never waits for the
reply. Delivery is at-least-once (late acks), so every job carries a
``job_key`` the worker uses to drop redeliveries.
"""

import hashlib
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional

from kombu.exceptions import OperationalError as BrokerOperationalError

from ..config import settings
from ..database import utcnow
from ..error_handlers import ExternalServiceException, ErrorCode
from ..logging_config import get_logger

logger = get_logger(__name__)

PROCESS_MESSAGE_TASK = "process_message"


def make_job_key(chatroom_id: int, content: str, enqueued_at: datetime) -> str:
    raw = f"{chatroom_id}|{enqueued_at.isoformat()}|{content}"
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class MessageJob:
    chatroom_id: int
    content: str
    enqueued_at: datetime = field(default_factory=utcnow)
    job_key: str = ""

    def __post_init__(self):
        if not self.job_key:
            object.__setattr__(self, "job_key", make_job_key(self.chatroom_id, self.content, self.enqueued_at))

    def to_payload(self) -> Dict[str, Any]:
        return {
            "job_key": self.job_key,
            "chatroom_id": self.chatroom_id,
            "content": self.content,
            "enqueued_at": self.enqueued_at.isoformat(),
        }

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "MessageJob":
        return cls(
            chatroom_id=int(payload["chatroom_id"]),
            content=payload["content"],
            enqueued_at=datetime.fromisoformat(payload["enqueued_at"]),
            job_key=payload.get("job_key", ""),
        )


class MessageQueue:
    """
    Thin producer over anything exposing Celery's ``send_task``.

    Usage:
        queue = MessageQueue(celery_app)
        queue.enqueue(MessageJob(chatroom_id=42, content="hello"))
    """

    def __init__(self, broker, queue_name: Optional[str] = None):
        self.broker = broker
        self.queue_name = queue_name or settings.MESSAGE_QUEUE_NAME

    def enqueue(self, job: MessageJob) -> MessageJob:
        try:
            self.broker.send_task(
                PROCESS_MESSAGE_TASK,
                kwargs=job.to_payload(),
                queue=self.queue_name,
            )
        except (BrokerOperationalError, ConnectionError) as e:
            logger.error(
                "Failed to enqueue reply job",
                extra={
                    "job_key": job.job_key,
                    "extra_data": {"chatroom_id": job.chatroom_id, "queue": self.queue_name, "error": str(e)}
                },
                exc_info=True
            )
            raise ExternalServiceException("Broker", "could not queue message for reply", ErrorCode.BROKER_ERROR)

        logger.info(
            "Reply job enqueued",
            extra={"job_key": job.job_key, "extra_data": {"chatroom_id": job.chatroom_id, "queue": self.queue_name}}
        )
        return job
