# gemini_chat/auth/otp.py
"""
One-time passcodes for phone login and password reset.

Challenges live only in Redis under ``otp:<purpose>:<phone>`` with a hard TTL,
so expiry is automatic and unconsumed codes never accumulate. Only an HMAC of
the code is stored. A new challenge for the same (purpose, phone) overwrites
the previous one; a successful verification deletes it.
"""

import enum
import hashlib
import hmac
import secrets
from dataclasses import dataclass
from typing import Dict, Iterable, Optional

import redis as redis_lib

from ..config import settings
from ..logging_config import get_logger

logger = get_logger(__name__)

OTP_LENGTH = 6


class OTPPurpose(str, enum.Enum):
    LOGIN = "login"
    RESET = "reset"


DEFAULT_TTLS: Dict[OTPPurpose, int] = {
    OTPPurpose.LOGIN: settings.OTP_LOGIN_TTL_SECONDS,
    OTPPurpose.RESET: settings.OTP_RESET_TTL_SECONDS,
}


@dataclass(frozen=True)
class OTPVerification:
    ok: bool
    consumed: bool = False
    purpose: Optional[OTPPurpose] = None


class OTPStore:
    """Issues and verifies OTP challenges against a Redis-compatible client"""

    def __init__(
        self,
        redis_client: redis_lib.Redis,
        secret: Optional[str] = None,
        ttls: Optional[Dict[OTPPurpose, int]] = None
    ):
        self.redis = redis_client
        self.secret = (secret or settings.OTP_SECRET).encode("utf-8")
        self.ttls = ttls or DEFAULT_TTLS

    @staticmethod
    def key(purpose: OTPPurpose, phone_no: str) -> str:
        return f"otp:{purpose.value}:{phone_no}"

    def _digest(self, phone_no: str, code: str) -> str:
        return hmac.new(self.secret, f"{phone_no}:{code}".encode("utf-8"), hashlib.sha256).hexdigest()

    def ttl_for(self, purpose: OTPPurpose) -> int:
        return self.ttls[purpose]

    def issue_challenge(self, phone_no: str, purpose: OTPPurpose) -> str:
        """Generate a fresh code, replacing any live challenge for the same purpose"""
        code = "".join(str(secrets.randbelow(10)) for _ in range(OTP_LENGTH))
        ttl = self.ttl_for(purpose)

        self.redis.set(self.key(purpose, phone_no), self._digest(phone_no, code), ex=ttl)

        logger.info(
            "OTP challenge issued",
            extra={"extra_data": {"purpose": purpose.value, "ttl_seconds": ttl}}
        )
        return code

    def verify(
        self,
        phone_no: str,
        code: str,
        purposes: Iterable[OTPPurpose] = (OTPPurpose.LOGIN, OTPPurpose.RESET)
    ) -> OTPVerification:
        """
        Check ``code`` against the live challenges for ``purposes`` in order.

        On a match the challenge is deleted before success is returned; the
        delete must actually remove the key, so a code raced by two callers is
        consumed by exactly one. Any Redis failure is treated as an invalid code.
        """
        if not code or len(code) != OTP_LENGTH or not code.isdigit():
            return OTPVerification(ok=False)

        supplied = self._digest(phone_no, code)

        try:
            for purpose in purposes:
                key = self.key(purpose, phone_no)
                stored = self.redis.get(key)
                if stored is None:
                    continue
                if isinstance(stored, bytes):
                    stored = stored.decode("utf-8")
                if not hmac.compare_digest(stored, supplied):
                    continue
                if self.redis.delete(key) != 1:
                    # Someone else consumed it between our get and delete
                    continue

                logger.info(
                    "OTP challenge consumed",
                    extra={"extra_data": {"purpose": purpose.value}}
                )
                return OTPVerification(ok=True, consumed=True, purpose=purpose)

        except redis_lib.RedisError as e:
            logger.error(
                "OTP lookup failed, rejecting code",
                extra={"extra_data": {"error": str(e)}},
                exc_info=True
            )

        return OTPVerification(ok=False)
