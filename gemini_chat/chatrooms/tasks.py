# gemini_chat/chatrooms/tasks.py
"""
Celery entry points for the reply pipeline.

Run a worker with:
    celery -A gemini_chat.celery_app worker -Q gemini-messages
and the stall sweep with:
    celery -A gemini_chat.celery_app beat
"""

from datetime import timedelta

from ..celery_app import celery_app
from ..config import settings
from ..database import session_scope
from ..llm import get_model_client
from ..logging_config import get_logger
from .queue import MessageJob, PROCESS_MESSAGE_TASK
from .worker import ReplyWorker

logger = get_logger(__name__)


def build_reply_worker() -> ReplyWorker:
    return ReplyWorker(session_factory=session_scope, model=get_model_client())


@celery_app.task(name=PROCESS_MESSAGE_TASK, bind=True, acks_late=True)
def process_message(self, job_key: str, chatroom_id: int, content: str, enqueued_at: str):
    """
    Generate and store the bot reply for one user message.

    Model failures never fail the task (they become the fallback reply).
    Only a database failure propagates; the user message then stays
    ``pending`` until the stall sweep settles it.
    """
    job = MessageJob.from_payload({
        "job_key": job_key,
        "chatroom_id": chatroom_id,
        "content": content,
        "enqueued_at": enqueued_at,
    })

    logger.info(
        "Processing reply job",
        extra={
            "job_key": job.job_key,
            "extra_data": {
                "task_id": self.request.id,
                "chatroom_id": job.chatroom_id,
                "redelivered": bool(self.request.delivery_info and self.request.delivery_info.get("redelivered")),
            }
        }
    )

    result = build_reply_worker().process(job)
    return result.value


@celery_app.task(name="sweep_stalled_replies")
def sweep_stalled_replies() -> int:
    # The sweep only writes fallbacks, it never calls the model
    settled = ReplyWorker(session_factory=session_scope, model=None).sweep_stalled(timedelta(seconds=settings.REPLY_STALL_SECONDS))
    return settled
