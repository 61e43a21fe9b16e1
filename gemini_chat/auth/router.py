"""
Auth API
Endpoints:
- POST /auth/signup
- POST /auth/send-otp         (login challenge, 120s)
- POST /auth/verify-otp       (consume challenge, issue session token)
- POST /auth/forgot-password  (reset challenge, 300s)
- POST /auth/reset-password
- POST /auth/change-password
- GET  /auth/me
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.orm import Session
import redis as redis_lib

from ..config import settings
from ..database import get_db
from ..error_handlers import (
    ErrorCode,
    ExternalServiceException,
    InvalidOTPException,
    NotFoundException,
    UnauthorizedException,
)
from ..logging_config import get_logger, log_business_event
from ..rate_limit import auth_limit
from ..redis_client import get_redis
from ..users import service as user_service
from ..users.models import User
from ..users.schemas import UserOut
from . import schemas
from .dependencies import get_current_user
from .otp import OTPPurpose, OTPStore
from .passwords import hash_password, verify_password
from .tokens import issue_session

logger = get_logger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


def get_otp_store(redis_client: redis_lib.Redis = Depends(get_redis)) -> OTPStore:
    return OTPStore(redis_client)


def _issue_challenge(otp_store: OTPStore, phone_no: str, purpose: OTPPurpose) -> schemas.SendOTPResponse:
    try:
        code = otp_store.issue_challenge(phone_no, purpose)
    except redis_lib.RedisError as e:
        logger.error("Could not store OTP challenge", extra={"extra_data": {"error": str(e)}}, exc_info=True)
        raise ExternalServiceException("Redis", "could not issue OTP", ErrorCode.REDIS_ERROR)

    # TODO: hand the code to an SMS provider and drop it from the response in production
    return schemas.SendOTPResponse(
        phone_no=phone_no,
        expires_in=otp_store.ttl_for(purpose),
        otp=code if settings.EXPOSE_OTP_IN_RESPONSE else None,
    )


@router.post("/signup", response_model=UserOut, status_code=status.HTTP_201_CREATED)
@auth_limit
def signup(
    request: Request,
    payload: schemas.SignupRequest,
    db: Session = Depends(get_db)
):
    return user_service.create_user(
        db,
        phone_no=payload.phone_no,
        password_hash=hash_password(payload.password),
        name=payload.name,
        email=payload.email,
    )


@router.post("/send-otp", response_model=schemas.SendOTPResponse)
@auth_limit
def send_otp(
    request: Request,
    payload: schemas.PhoneRequest,
    otp_store: OTPStore = Depends(get_otp_store)
):
    return _issue_challenge(otp_store, payload.phone_no, OTPPurpose.LOGIN)


@router.post("/verify-otp", response_model=schemas.TokenResponse)
@auth_limit
def verify_otp(
    request: Request,
    payload: schemas.VerifyOTPRequest,
    db: Session = Depends(get_db),
    otp_store: OTPStore = Depends(get_otp_store)
):
    result = otp_store.verify(payload.phone_no, payload.otp)
    if not result.ok:
        raise InvalidOTPException()

    user = user_service.get_or_create_by_phone(db, payload.phone_no)
    log_business_event("user_logged_in", user_id=user.id, otp_purpose=result.purpose.value)
    return schemas.TokenResponse(access_token=issue_session(user.id))


@router.post("/forgot-password", response_model=schemas.SendOTPResponse)
@auth_limit
def forgot_password(
    request: Request,
    payload: schemas.PhoneRequest,
    db: Session = Depends(get_db),
    otp_store: OTPStore = Depends(get_otp_store)
):
    if user_service.get_user_by_phone(db, payload.phone_no) is None:
        raise NotFoundException("User", payload.phone_no)
    return _issue_challenge(otp_store, payload.phone_no, OTPPurpose.RESET)


@router.post("/reset-password", response_model=schemas.MessageResponse)
@auth_limit
def reset_password(
    request: Request,
    payload: schemas.ResetPasswordRequest,
    db: Session = Depends(get_db),
    otp_store: OTPStore = Depends(get_otp_store)
):
    user = user_service.get_user_by_phone(db, payload.phone_no)
    if user is None:
        raise InvalidOTPException()

    if not otp_store.verify(payload.phone_no, payload.otp, purposes=(OTPPurpose.RESET,)).ok:
        raise InvalidOTPException()

    user_service.update_user(db, user.id, password_hash=hash_password(payload.new_password))
    log_business_event("password_reset", user_id=user.id)
    return schemas.MessageResponse(message="Password updated")


@router.post("/change-password", response_model=schemas.MessageResponse)
@auth_limit
def change_password(
    request: Request,
    payload: schemas.ChangePasswordRequest,
    user: Annotated[User, Depends(get_current_user)],
    db: Session = Depends(get_db)
):
    # OTP-only accounts set their first password without an old one
    if user.password_hash and not verify_password(payload.old_password or "", user.password_hash):
        raise UnauthorizedException("Old password is incorrect", ErrorCode.INVALID_CREDENTIALS)

    user_service.update_user(db, user.id, password_hash=hash_password(payload.new_password))
    log_business_event("password_changed", user_id=user.id)
    return schemas.MessageResponse(message="Password updated")


@router.get("/me", response_model=UserOut)
def me(user: Annotated[User, Depends(get_current_user)]):
    return user
