"""
Caller identity.

The caller is identified by a JWT carried in the auth cookie, with the
account id in `userId` and the phone number in `phone`. Token issuance
belongs to the auth service; create_access_token() is kept for seeding
and tests.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Request
from jose import JWTError, jwt

from marketchat.config import settings
from marketchat.errors import Unauthenticated
from marketchat.identity import AliasSet

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Viewer:
    user_id: str
    phone: str

    @property
    def aliases(self) -> AliasSet:
        return AliasSet.of(self.user_id, self.phone)

    @property
    def sender_alias(self) -> str:
        """Alias new messages are written under: phone when known."""
        return self.phone or self.user_id


def create_access_token(user_id: str, phone: str, expires_delta: Optional[timedelta] = None) -> str:
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(days=30))
    payload = {"userId": user_id, "phone": phone, "exp": expire}
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def decode_token(token: str) -> Optional[dict]:
    """
    Decode and validate a JWT.

    Returns:
        Decoded payload if valid, None otherwise
    """
    try:
        return jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    except JWTError as e:
        logger.info(f"Rejected auth token: {e}")
        return None


def get_current_viewer(request: Request) -> Viewer:
    """FastAPI dependency resolving the caller from the auth cookie."""
    token = request.cookies.get(settings.AUTH_COOKIE_NAME)
    if not token:
        raise Unauthenticated()

    payload = decode_token(token)
    if payload is None or not payload.get("userId") or not payload.get("phone"):
        raise Unauthenticated("توکن نامعتبر")

    return Viewer(user_id=str(payload["userId"]), phone=str(payload["phone"]))
