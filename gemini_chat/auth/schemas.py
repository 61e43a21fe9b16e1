import re
from typing import Optional

from pydantic import BaseModel, Field, field_validator

PHONE_PATTERN = re.compile(r"^\+?[0-9]{7,15}$")


class PhoneRequest(BaseModel):
    phone_no: str

    @field_validator("phone_no")
    @classmethod
    def valid_phone(cls, value: str) -> str:
        value = value.strip().replace(" ", "").replace("-", "")
        if not PHONE_PATTERN.match(value):
            raise ValueError("phone_no must be 7-15 digits, optionally prefixed with +")
        return value


class SendOTPResponse(BaseModel):
    phone_no: str
    expires_in: int
    otp: Optional[str] = None  # only when EXPOSE_OTP_IN_RESPONSE is on


class VerifyOTPRequest(PhoneRequest):
    otp: str = Field(..., min_length=1, max_length=12)


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"


class SignupRequest(PhoneRequest):
    password: str = Field(..., min_length=8, max_length=72)  # bcrypt input limit
    name: Optional[str] = Field(None, max_length=100)
    email: Optional[str] = Field(None, max_length=254)


class ResetPasswordRequest(VerifyOTPRequest):
    new_password: str = Field(..., min_length=8, max_length=72)


class ChangePasswordRequest(BaseModel):
    old_password: Optional[str] = Field(None, max_length=72)
    new_password: str = Field(..., min_length=8, max_length=72)


class MessageResponse(BaseModel):
    message: str
