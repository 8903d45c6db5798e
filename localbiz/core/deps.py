from __future__ import annotations

import logging

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError
from sqlalchemy.orm import Session

from localbiz.core.config import settings
from localbiz.core.security import Identity, decode_access_token
from localbiz.db.session import get_db
from localbiz.models.enums import UserRole
from localbiz.models.users import UserAuth
from localbiz.services.storage import ImageStorage, build_storage

logger = logging.getLogger(__name__)

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/token")
optional_oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/token", auto_error=False)


def _user_from_token(token: str, db: Session) -> UserAuth:
    try:
        payload = decode_access_token(token)
        user_id: str | None = payload.get("sub")
        if not user_id:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
    except JWTError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")

    user = db.get(UserAuth, user_id)
    if not user or not user.is_active:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User inactive or not found")
    return user


def to_identity(user: UserAuth) -> Identity:
    return Identity(id=user.id, email=user.email, role=user.role, display_name=user.display_name)


def get_current_user(
    token: str = Depends(oauth2_scheme),
    db: Session = Depends(get_db),
) -> UserAuth:
    return _user_from_token(token, db)


def get_current_identity(user: UserAuth = Depends(get_current_user)) -> Identity:
    return to_identity(user)


def get_optional_identity(
    token: str | None = Depends(optional_oauth2_scheme),
    db: Session = Depends(get_db),
) -> Identity | None:
    """Identity for endpoints that also serve anonymous visitors."""
    if not token:
        return None
    return to_identity(_user_from_token(token, db))


def require_role(*allowed: UserRole):
    allowed_values = {r.value for r in allowed}

    def _dep(user: UserAuth = Depends(get_current_user)) -> Identity:
        if user.role not in allowed_values:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden")
        return to_identity(user)

    return _dep


_storage: ImageStorage | None = None


def get_storage() -> ImageStorage:
    global _storage
    if _storage is None:
        _storage = build_storage(settings)
        logger.info("Image storage backend: %s", type(_storage).__name__)
    return _storage


def get_viewer_if_valid(
    token: str | None = Depends(optional_oauth2_scheme),
    db: Session = Depends(get_db),
) -> Identity | None:
    """Like ``get_optional_identity`` but an unusable token means anonymous."""
    if not token:
        return None
    try:
        return to_identity(_user_from_token(token, db))
    except HTTPException:
        return None
