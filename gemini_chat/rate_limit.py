"""
Rate limiting for the Gemini Chatrooms API

Two separate mechanisms live here:

- ``DailyMessageQuota``: the free-tier allowance of user messages per calendar
  day, counted from persisted messages. Premium users are never limited.
- SlowAPI request limits (Redis backed) on the authentication endpoints, keyed
  by user when known and by client IP otherwise, to blunt OTP guessing.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

from fastapi import Request
from slowapi import Limiter
from slowapi.util import get_remote_address
from sqlalchemy.orm import Session

from .config import settings
from .chatrooms.service import ChatroomService
from .error_handlers import QuotaExceededException, UnauthorizedException
from .logging_config import get_logger, log_business_event
from .users.models import User

logger = get_logger(__name__)


# ============================================================================
# DAILY MESSAGE QUOTA (free tier)
# ============================================================================

def local_midnight(now: Optional[datetime] = None) -> datetime:
    """Start of the current local day, expressed in UTC for comparison with stored timestamps"""
    local_now = (now or datetime.now(timezone.utc)).astimezone()
    start = local_now.replace(hour=0, minute=0, second=0, microsecond=0)
    return start.astimezone(timezone.utc)


@dataclass(frozen=True)
class QuotaDecision:
    allowed: bool
    reason: Optional[str] = None
    used: int = 0
    limit: Optional[int] = None


class DailyMessageQuota:
    """
    Free users may send ``limit`` messages per local calendar day.

    The count and the subsequent message insert are not one transaction: two
    concurrent sends from a user at ``limit - 1`` can both be accepted. That
    overshoot is tolerated.
    """

    def __init__(
        self,
        db: Session,
        limit: int = settings.FREE_DAILY_MESSAGE_LIMIT,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc)
    ):
        self.chatrooms = ChatroomService(db)
        self.limit = limit
        self.clock = clock

    def allow(self, user: Optional[User]) -> QuotaDecision:
        if user is None:
            raise UnauthorizedException("User not resolved for rate limiting")

        if user.is_premium:
            return QuotaDecision(allowed=True)

        used = self.chatrooms.count_user_messages(user.id, local_midnight(self.clock()))
        if used >= self.limit:
            return QuotaDecision(
                allowed=False,
                reason="daily_limit_reached",
                used=used,
                limit=self.limit
            )

        return QuotaDecision(allowed=True, used=used, limit=self.limit)

    def enforce(self, user: Optional[User]) -> QuotaDecision:
        decision = self.allow(user)
        if not decision.allowed:
            logger.warning(
                "Daily message quota exceeded",
                extra={"user_id": user.id, "extra_data": {"used": decision.used, "limit": decision.limit}}
            )
            log_business_event("daily_quota_exceeded", user_id=user.id, used=decision.used)
            raise QuotaExceededException(limit=decision.limit, used=decision.used)
        return decision


# ============================================================================
# HTTP REQUEST LIMITS (SlowAPI)
# ============================================================================

def get_user_id_or_ip(request: Request) -> str:
    """Per account once authenticated, per IP before that"""
    if getattr(request.state, "user_id", None):
        return f"user:{request.state.user_id}"
    return f"ip:{get_remote_address(request)}"


limiter = Limiter(
    key_func=get_user_id_or_ip,
    storage_uri=settings.RATE_LIMIT_STORAGE_URI,
    default_limits=[],
    enabled=settings.RATE_LIMIT_ENABLED,
)

# Login, signup and reset flows
AUTH_LIMIT = "10/minute"

if settings.ENVIRONMENT == "development":
    AUTH_LIMIT = "60/minute"
    logger.info("Rate limiting: DEVELOPMENT mode (relaxed limits)")

auth_limit = limiter.limit(AUTH_LIMIT)


def get_rate_limit_message(endpoint: str, limit: str) -> dict:
    return {
        "error": "rate_limit_exceeded",
        "message": f"Too many requests to {endpoint}. Please try again later.",
        "limit": limit,
    }


def log_rate_limit_hit(request: Request, limit: str):
    logger.warning(
        "Rate limit exceeded",
        extra={
            "extra_data": {
                "path": request.url.path,
                "limit": limit,
                "key": get_user_id_or_ip(request),
                "user_agent": request.headers.get("user-agent"),
            }
        }
    )
