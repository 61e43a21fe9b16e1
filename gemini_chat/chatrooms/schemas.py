from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ChatroomCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)

    @field_validator("title")
    @classmethod
    def title_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("chatroom title is required")
        return value


class ChatroomOut(BaseModel):
    id: int
    title: str
    user_id: int
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ChatroomListResponse(BaseModel):
    from_cache: bool
    chatrooms: List[ChatroomOut]


class MessageOut(BaseModel):
    id: int
    who: str
    content: str
    room_id: int
    sent_at: datetime
    reply_status: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class ChatroomDetail(ChatroomOut):
    messages: List[MessageOut]


class SendMessageRequest(BaseModel):
    content: str = Field(..., min_length=1, max_length=4000)

    @field_validator("content")
    @classmethod
    def content_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("message content is required")
        return value


class SendMessageResponse(BaseModel):
    message: MessageOut
    status: str = "queued"
