import hashlib
import hmac
import os
import uuid
from typing import Optional

from fastapi import Depends, Header, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer
from jose.exceptions import ExpiredSignatureError, JWTError
from sqlmodel import Session

from ..config import settings
from ..database import get_session
from ..models.user import User
from .jwt import decode_access_token


ALGORITHM = "pbkdf2_sha256"
ITERATIONS = 100_000
SALT_BYTES = 16

ACCESS_COOKIE = "access_token"


def _pbkdf2_hash(password: str, salt: bytes) -> bytes:
    return hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, ITERATIONS)


def hash_password(password: str) -> str:
    salt = os.urandom(SALT_BYTES)
    return f"{ALGORITHM}${salt.hex()}${_pbkdf2_hash(password, salt).hex()}"


def verify_password(password: str, stored: str) -> bool:
    parts = (stored or "").strip().split("$")
    if len(parts) != 3 or parts[0] != ALGORITHM:
        return False
    try:
        salt = bytes.fromhex(parts[1])
        expected = bytes.fromhex(parts[2])
    except ValueError:
        return False
    return hmac.compare_digest(_pbkdf2_hash(password, salt), expected)


# auto_error=False so the cookie set by /auth/login works as a fallback
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/token", auto_error=False)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def get_current_user(
    request: Request,
    token: Optional[str] = Depends(oauth2_scheme),
    session: Session = Depends(get_session),
) -> User:
    token = token or request.cookies.get(ACCESS_COOKIE)
    if not token:
        raise _unauthorized("Not authenticated")

    try:
        payload = decode_access_token(token)
    except ExpiredSignatureError:
        raise _unauthorized("Token expired")
    except JWTError:
        raise _unauthorized("Invalid token")

    sub = payload.get("sub")
    if sub is None:
        raise _unauthorized("Invalid token: missing subject")
    try:
        user_id = uuid.UUID(str(sub))
    except ValueError:
        raise _unauthorized("Invalid token: bad subject format")

    user = session.get(User, user_id)
    if user is None or user.deleted_at is not None:
        raise _unauthorized("User not found")
    return user


def require_job_token(x_job_token: Optional[str] = Header(default=None)) -> None:
    """Guard for the scheduled-job endpoints; open when JOBS_TOKEN is unset."""
    if not settings.jobs_token:
        return
    if not x_job_token or not hmac.compare_digest(x_job_token, settings.jobs_token):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid job token")
