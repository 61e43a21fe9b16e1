# gemini_chat/chatrooms/cache.py
"""
Read-through cache of each user's chatroom list.

One Redis key per user (``chatrooms:<user_id>``) holding the JSON-serialized
list, newest first. Invalidation is whole-entry: creating a chatroom drops the
key and the next read rebuilds it from the database.
"""

import json
from typing import Any, Callable, Dict, List, Tuple

import redis as redis_lib

from ..config import settings
from ..error_handlers import ExternalServiceException, ErrorCode
from ..logging_config import get_logger

logger = get_logger(__name__)

ChatroomList = List[Dict[str, Any]]


class ChatroomListCache:

    def __init__(self, redis_client: redis_lib.Redis, ttl_seconds: int = settings.CHATROOM_CACHE_TTL_SECONDS):
        self.redis = redis_client
        self.ttl_seconds = ttl_seconds

    @staticmethod
    def key(user_id: int) -> str:
        return f"chatrooms:{user_id}"

    def get_or_load(self, user_id: int, loader: Callable[[], ChatroomList]) -> Tuple[ChatroomList, bool]:
        """
        Returns (chatrooms, from_cache). On a miss ``loader`` is called and its
        result stored with the configured TTL.
        """
        key = self.key(user_id)
        try:
            cached = self.redis.get(key)
        except redis_lib.RedisError as e:
            raise self._unavailable("read", e)

        if cached is not None:
            logger.debug("Chatroom list cache hit", extra={"user_id": user_id})
            return json.loads(cached), True

        chatrooms = loader()

        try:
            self.redis.set(key, json.dumps(chatrooms), ex=self.ttl_seconds)
        except redis_lib.RedisError as e:
            raise self._unavailable("write", e)

        logger.debug(
            "Chatroom list cache miss",
            extra={"user_id": user_id, "extra_data": {"count": len(chatrooms), "ttl_seconds": self.ttl_seconds}}
        )
        return chatrooms, False

    def invalidate(self, user_id: int) -> None:
        try:
            self.redis.delete(self.key(user_id))
        except redis_lib.RedisError as e:
            raise self._unavailable("invalidate", e)

    def _unavailable(self, operation: str, error: Exception) -> ExternalServiceException:
        logger.error(
            f"Chatroom cache {operation} failed",
            extra={"extra_data": {"error": str(error)}},
            exc_info=True
        )
        return ExternalServiceException("Redis", f"chatroom cache {operation} failed", ErrorCode.REDIS_ERROR)
