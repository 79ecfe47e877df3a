"""JWT access and refresh tokens."""
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt

from digipay.settings import settings

logger = logging.getLogger(__name__)


def _encode(subject: str, token_type: str, expires_delta: timedelta) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "sub": subject,
        "type": token_type,
        "iat": now,
        "exp": now + expires_delta,
    }
    return jwt.encode(payload, settings.secret_key, algorithm=settings.algorithm)


def create_access_token(subject: str, expires_delta: Optional[timedelta] = None) -> str:
    return _encode(subject, "access", expires_delta or timedelta(minutes=settings.access_token_expire_minutes))


def create_refresh_token(subject: str, expires_delta: Optional[timedelta] = None) -> str:
    return _encode(subject, "refresh", expires_delta or timedelta(days=settings.refresh_token_expire_days))


def decode_token(token: str) -> Optional[dict]:
    """Decode and validate a token; None when invalid or expired."""
    try:
        return jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
    except jwt.ExpiredSignatureError:
        logger.info("Token expired")
        return None
    except jwt.InvalidTokenError as e:
        logger.warning(f"Invalid token: {e}")
        return None
