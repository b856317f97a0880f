import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Response, status
from fastapi.security import OAuth2PasswordRequestForm
from pydantic import EmailStr
from sqlmodel import Field, Session, SQLModel, select

from ..config import settings
from ..core.jwt import create_access_token
from ..core.security import ACCESS_COOKIE, get_current_user, hash_password, verify_password
from ..database import get_session
from ..logger import get_logger
from ..models.user import User


router = APIRouter(
    prefix="/auth",
    tags=["auth"],
)

logger = get_logger(__name__)


class RegisterIn(SQLModel):
    email: EmailStr
    password: str = Field(min_length=6)
    default_currency: str = Field(default="USD", min_length=3, max_length=3, regex="^[A-Z]{3}$")


class LoginIn(SQLModel):
    email: EmailStr
    password: str


class PreferencesIn(SQLModel):
    default_currency: str = Field(min_length=3, max_length=3, regex="^[A-Z]{3}$")


class UserRead(SQLModel):
    id: uuid.UUID
    email: str
    default_currency: str
    current_income_annual: Decimal
    current_income_monthly: Decimal
    current_income_updated_at: Optional[datetime] = None
    total_expenses: int
    created_at: datetime
    updated_at: datetime


class TokenOut(SQLModel):
    access_token: str
    token_type: str


def _reject_spaces(password: str) -> None:
    if any(c.isspace() for c in password):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Password must not contain whitespace",
        )


def _authenticate(session: Session, email: str, password: str) -> User:
    _reject_spaces(password)
    user = session.exec(select(User).where(User.email == email.strip().lower())).first()
    if user is None or user.deleted_at is not None or not verify_password(password, user.hashed_password):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password",
        )
    return user


@router.post(
    "/register",
    response_model=UserRead,
    status_code=status.HTTP_201_CREATED,
)
def register_user(
    payload: RegisterIn,
    session: Session = Depends(get_session),
):
    _reject_spaces(payload.password)
    email_norm = payload.email.strip().lower()
    if session.exec(select(User).where(User.email == email_norm)).first() is not None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Email already registered",
        )

    now = datetime.utcnow()
    user = User(
        id=uuid.uuid4(),
        email=email_norm,
        hashed_password=hash_password(payload.password),
        default_currency=payload.default_currency.strip().upper(),
        created_at=now,
        updated_at=now,
        deleted_at=None,
    )
    session.add(user)
    session.commit()
    session.refresh(user)
    logger.info("user_registered", user_id=str(user.id))
    return user


@router.post(
    "/login",
    response_model=UserRead,
    status_code=status.HTTP_200_OK,
)
def login(payload: LoginIn, response: Response, session: Session = Depends(get_session)):
    user = _authenticate(session, payload.email, payload.password)
    token = create_access_token(user.id, user.email)

    # Cross-site deployments need SameSite=None, which browsers only accept with Secure
    is_prod = settings.environment.lower() == "production"
    response.set_cookie(
        key=ACCESS_COOKIE,
        value=token,
        httponly=True,
        secure=is_prod,
        samesite="none" if is_prod else "lax",
        max_age=settings.access_token_expire_minutes * 60,
        path="/",
    )
    return user


@router.post(
    "/token",
    response_model=TokenOut,
    status_code=status.HTTP_200_OK,
)
def token(form_data: OAuth2PasswordRequestForm = Depends(), session: Session = Depends(get_session)):
    # OAuth2 password flow: the email travels in the "username" field
    user = _authenticate(session, form_data.username, form_data.password)
    return TokenOut(access_token=create_access_token(user.id, user.email), token_type="bearer")


@router.get(
    "/me",
    response_model=UserRead,
    status_code=status.HTTP_200_OK,
)
def me(current_user: User = Depends(get_current_user)):
    return current_user


@router.patch(
    "/me/preferences",
    response_model=UserRead,
    status_code=status.HTTP_200_OK,
)
def update_preferences(
    payload: PreferencesIn,
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    current_user.default_currency = payload.default_currency.upper()
    current_user.updated_at = datetime.utcnow()
    session.add(current_user)
    session.commit()
    session.refresh(current_user)
    return current_user


@router.post(
    "/logout",
    status_code=status.HTTP_204_NO_CONTENT,
)
def logout(response: Response):
    response.delete_cookie(key=ACCESS_COOKIE, path="/")
    return None
