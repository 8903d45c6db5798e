from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.security import OAuth2PasswordRequestForm
from sqlalchemy import select
from sqlalchemy.orm import Session

from localbiz.core.rate_limit import rate_limit
from localbiz.core.security import create_access_token, get_password_hash, verify_password
from localbiz.db.session import get_db
from localbiz.models.users import UserAuth
from localbiz.schemas.auth import RegisterRequest, TokenResponse

router = APIRouter(prefix="/auth", tags=["auth"])
logger = logging.getLogger(__name__)


@router.post(
    "/register",
    response_model=TokenResponse,
    status_code=201,
    dependencies=[rate_limit("auth:register", limit=10, window_seconds=60)],
)
def register(payload: RegisterRequest, db: Session = Depends(get_db)) -> TokenResponse:
    email = payload.email.lower()
    existing = db.scalar(select(UserAuth).where(UserAuth.email == email))
    if existing:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Email already registered")

    # New accounts are always plain users; admins are promoted with scripts/set_role.py.
    user = UserAuth(
        email=email,
        password_hash=get_password_hash(payload.password),
        display_name=(payload.display_name or "").strip() or None,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    logger.info("Registered user %s", user.id)

    return TokenResponse(access_token=create_access_token(user.id))


@router.post(
    "/token",
    response_model=TokenResponse,
    dependencies=[rate_limit("auth:token", limit=10, window_seconds=60)],
)
def login(form: OAuth2PasswordRequestForm = Depends(), db: Session = Depends(get_db)) -> TokenResponse:
    user = db.scalar(select(UserAuth).where(UserAuth.email == form.username.lower()))
    if not user or not verify_password(form.password, user.password_hash):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials")
    if not user.is_active:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User inactive")

    return TokenResponse(access_token=create_access_token(user.id))
