"""
Chatrooms API
Endpoints:
- POST /chatroom                      (create, invalidates the list cache)
- GET  /chatroom                      (list, served through the cache)
- GET  /chatroom/{chatroom_id}        (details with messages, oldest first)
- POST /chatroom/{chatroom_id}/message (store user message, queue bot reply)
"""

from typing import Annotated

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session
import redis as redis_lib

from ..auth.dependencies import get_current_user
from ..celery_app import celery_app
from ..database import get_db
from ..error_handlers import ExternalServiceException
from ..logging_config import get_logger, log_business_event
from ..rate_limit import DailyMessageQuota
from ..redis_client import get_redis
from ..users.models import User
from . import schemas
from .cache import ChatroomListCache
from .models import MessageAuthor, ReplyStatus
from .queue import MessageJob, MessageQueue
from .service import ChatroomService

logger = get_logger(__name__)

router = APIRouter(prefix="/chatroom", tags=["chatrooms"])


def get_chatroom_cache(redis_client: redis_lib.Redis = Depends(get_redis)) -> ChatroomListCache:
    return ChatroomListCache(redis_client)


def get_message_queue() -> MessageQueue:
    return MessageQueue(celery_app)


def get_message_quota(db: Session = Depends(get_db)) -> DailyMessageQuota:
    return DailyMessageQuota(db)


# ============================================================================
# CREATE / LIST
# ============================================================================

@router.post("", response_model=schemas.ChatroomOut, status_code=status.HTTP_201_CREATED)
def create_chatroom(
    payload: schemas.ChatroomCreate,
    user: Annotated[User, Depends(get_current_user)],
    db: Session = Depends(get_db),
    cache: ChatroomListCache = Depends(get_chatroom_cache)
):
    chatroom = ChatroomService(db).create_chatroom(payload.title, user.id)

    # Before responding, so the very next list read cannot be stale
    cache.invalidate(user.id)

    log_business_event("chatroom_created", user_id=user.id, chatroom_id=chatroom.id)
    return chatroom


@router.get("", response_model=schemas.ChatroomListResponse)
def list_chatrooms(
    user: Annotated[User, Depends(get_current_user)],
    db: Session = Depends(get_db),
    cache: ChatroomListCache = Depends(get_chatroom_cache)
):
    def load():
        return [
            schemas.ChatroomOut.model_validate(chatroom).model_dump(mode="json")
            for chatroom in ChatroomService(db).list_chatrooms(user.id)
        ]

    chatrooms, from_cache = cache.get_or_load(user.id, load)
    return schemas.ChatroomListResponse(from_cache=from_cache, chatrooms=chatrooms)


# ============================================================================
# DETAILS
# ============================================================================

@router.get("/{chatroom_id}", response_model=schemas.ChatroomDetail)
def get_chatroom(
    chatroom_id: int,
    user: Annotated[User, Depends(get_current_user)],
    db: Session = Depends(get_db)
):
    service = ChatroomService(db)
    chatroom = service.get_owned_chatroom(chatroom_id, user.id)

    return schemas.ChatroomDetail(
        id=chatroom.id,
        title=chatroom.title,
        user_id=chatroom.user_id,
        created_at=chatroom.created_at,
        messages=[schemas.MessageOut.model_validate(m) for m in service.list_messages(chatroom.id)],
    )


# ============================================================================
# SEND MESSAGE
# ============================================================================

@router.post(
    "/{chatroom_id}/message",
    response_model=schemas.SendMessageResponse,
    status_code=status.HTTP_202_ACCEPTED
)
def send_message(
    chatroom_id: int,
    payload: schemas.SendMessageRequest,
    user: Annotated[User, Depends(get_current_user)],
    db: Session = Depends(get_db),
    quota: DailyMessageQuota = Depends(get_message_quota),
    queue: MessageQueue = Depends(get_message_queue)
):
    """
    Store the user's message and queue the bot reply. Returns as soon as the
    broker accepted the job; the reply shows up in GET /chatroom/{id} later.
    """
    service = ChatroomService(db)
    chatroom = service.get_owned_chatroom(chatroom_id, user.id)

    quota.enforce(user)

    job = MessageJob(chatroom_id=chatroom.id, content=payload.content)

    # Committed before the job exists on the broker
    message = service.create_message(
        who=MessageAuthor.USER,
        content=payload.content,
        room_id=chatroom.id,
        job_key=job.job_key,
        reply_status=ReplyStatus.PENDING,
    )
    response = schemas.SendMessageResponse(message=schemas.MessageOut.model_validate(message))

    try:
        queue.enqueue(job)
    except ExternalServiceException:
        service.set_reply_status(job.job_key, ReplyStatus.NOT_QUEUED)
        raise

    log_business_event(
        "message_sent",
        user_id=user.id,
        chatroom_id=chatroom.id,
        job_key=job.job_key,
        premium=user.is_premium,
    )
    return response
