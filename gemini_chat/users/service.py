from typing import Optional

from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError

from . import models
from ..error_handlers import ConflictException, NotFoundException
from ..logging_config import get_logger, log_business_event

logger = get_logger(__name__)

# Columns the rest of the app may change through update_user
UPDATABLE_FIELDS = {"name", "email", "password_hash", "is_premium"}


def get_user(db: Session, user_id: int) -> Optional[models.User]:
    return db.get(models.User, user_id)


def get_user_by_phone(db: Session, phone_no: str) -> Optional[models.User]:
    return db.query(models.User).filter(models.User.phone_no == phone_no).first()


def get_or_create_by_phone(db: Session, phone_no: str) -> models.User:
    """Login by OTP creates the account on first use"""
    db_user = get_user_by_phone(db, phone_no)
    if db_user:
        return db_user

    db_user = models.User(phone_no=phone_no)
    db.add(db_user)
    try:
        db.commit()
    except IntegrityError:
        # Concurrent first login for the same phone
        db.rollback()
        return get_user_by_phone(db, phone_no)

    db.refresh(db_user)
    log_business_event("user_created", user_id=db_user.id, source="otp_login")
    return db_user


def create_user(
    db: Session,
    phone_no: str,
    password_hash: str,
    name: Optional[str] = None,
    email: Optional[str] = None
) -> models.User:
    """Signup with a password. An OTP-only account for the phone is upgraded in place."""
    db_user = get_user_by_phone(db, phone_no)
    if db_user and db_user.password_hash:
        raise ConflictException("User already exists", details={"phone_no": phone_no})

    if email and db.query(models.User).filter(
        models.User.email == email,
        models.User.phone_no != phone_no
    ).first():
        raise ConflictException("Email already registered", details={"email": email})

    if db_user is None:
        db_user = models.User(phone_no=phone_no)
        db.add(db_user)

    db_user.password_hash = password_hash
    db_user.name = name or db_user.name
    db_user.email = email or db_user.email

    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ConflictException("User already exists", details={"phone_no": phone_no})

    db.refresh(db_user)
    log_business_event("user_created", user_id=db_user.id, source="signup")
    return db_user


def update_user(db: Session, user_id: int, **fields) -> models.User:
    unknown = set(fields) - UPDATABLE_FIELDS
    if unknown:
        raise ValueError(f"Cannot update user fields: {sorted(unknown)}")

    db_user = get_user(db, user_id)
    if db_user is None:
        raise NotFoundException("User", user_id)

    for name, value in fields.items():
        setattr(db_user, name, value)

    db.commit()
    db.refresh(db_user)

    logger.info(
        "User updated",
        extra={"user_id": user_id, "extra_data": {"fields": sorted(fields)}}
    )
    return db_user
