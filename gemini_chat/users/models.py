from sqlalchemy import Column, String, TIMESTAMP, Boolean, Integer
from sqlalchemy.orm import relationship

from ..database import Base, utcnow


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    phone_no = Column(String, unique=True, index=True, nullable=False)
    name = Column(String, nullable=True)
    email = Column(String, unique=True, index=True, nullable=True)
    password_hash = Column(String, nullable=True)  # bcrypt; NULL for OTP-only accounts
    is_premium = Column(Boolean, default=False, nullable=False, server_default='false')
    joined_at = Column(TIMESTAMP(timezone=True), default=utcnow, nullable=False)

    chatrooms = relationship("Chatroom", back_populates="owner", cascade="all, delete-orphan")
