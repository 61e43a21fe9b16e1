from typing import Annotated

from fastapi import APIRouter, Depends

from ..auth.dependencies import get_current_user
from . import schemas
from .models import User

router = APIRouter(prefix="/user", tags=["users"])


@router.get("/me", response_model=schemas.UserOut)
def read_me(user: Annotated[User, Depends(get_current_user)]):
    """Current logged-in user's profile"""
    return user
