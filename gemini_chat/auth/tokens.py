# gemini_chat/auth/tokens.py
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt

from ..config import settings
from ..error_handlers import UnauthorizedException


def issue_session(user_id: int, now: Optional[datetime] = None) -> str:
    """Signed session token whose only custom claim is the user id"""
    issued_at = now or datetime.now(timezone.utc)
    payload = {
        "sub": str(user_id),
        "iat": issued_at,
        "exp": issued_at + timedelta(days=settings.SESSION_TTL_DAYS),
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def decode_session(token: str) -> int:
    """Return the user id from a session token, or raise UnauthorizedException"""
    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET,
            algorithms=[settings.JWT_ALGORITHM],
            options={"require": ["exp", "sub"]},
        )
    except jwt.ExpiredSignatureError:
        raise UnauthorizedException("Token expired")
    except jwt.InvalidTokenError:
        raise UnauthorizedException("Invalid token")

    try:
        return int(payload["sub"])
    except (TypeError, ValueError):
        raise UnauthorizedException("Invalid token: missing user ID")
