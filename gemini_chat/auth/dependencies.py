from typing import Annotated, Optional

from fastapi import Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session

from ..database import get_db
from ..error_handlers import UnauthorizedException
from ..users import service as user_service
from ..users.models import User
from .tokens import decode_session

bearer_scheme = HTTPBearer(auto_error=False)


def authenticate(token: str, db: Session) -> User:
    """Resolve a session token to a live user or raise UnauthorizedException"""
    user_id = decode_session(token)
    user = user_service.get_user(db, user_id)
    if user is None:
        raise UnauthorizedException("User not found")
    return user


def get_current_user(
    request: Request,
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(bearer_scheme)],
    db: Session = Depends(get_db)
) -> User:
    if credentials is None or not credentials.credentials:
        raise UnauthorizedException("Bearer token required")

    user = authenticate(credentials.credentials, db)

    # Picked up by the request logger and the SlowAPI key function
    request.state.user_id = user.id
    return user
