import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from jose import jwt

from ..config import settings


def create_access_token(user_id: uuid.UUID, email: str, expires_minutes: Optional[int] = None) -> str:
    now = datetime.now(timezone.utc)
    minutes = expires_minutes if expires_minutes is not None else settings.access_token_expire_minutes
    claims = {
        "sub": str(user_id),
        "email": email,
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(minutes=minutes)).timestamp()),
    }
    return jwt.encode(claims, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> Dict[str, Any]:
    """Raises ``jose.JWTError`` (or its ``ExpiredSignatureError`` subclass) on a bad token."""
    return jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
