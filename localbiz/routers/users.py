from __future__ import annotations

import logging

from fastapi import APIRouter, Depends
from sqlalchemy import update
from sqlalchemy.orm import Session

from localbiz.core.deps import get_current_identity, get_current_user
from localbiz.core.security import Identity
from localbiz.db.session import get_db
from localbiz.models.businesses import Business
from localbiz.models.users import UserAuth
from localbiz.schemas.auth import UserMeResponse, UserUpdateRequest

router = APIRouter(tags=["users"])
logger = logging.getLogger(__name__)


def _me_response(user: UserAuth, identity: Identity) -> UserMeResponse:
    return UserMeResponse(
        id=user.id,
        email=user.email,
        display_name=user.display_name,
        role=user.role,
        is_admin=identity.is_admin,
        is_active=user.is_active,
    )


@router.get("/me", response_model=UserMeResponse)
def me(
    current: UserAuth = Depends(get_current_user),
    identity: Identity = Depends(get_current_identity),
) -> UserMeResponse:
    return _me_response(current, identity)


@router.patch("/me", response_model=UserMeResponse)
def update_me(
    payload: UserUpdateRequest,
    current: UserAuth = Depends(get_current_user),
    identity: Identity = Depends(get_current_identity),
    db: Session = Depends(get_db),
) -> UserMeResponse:
    display_name = (payload.display_name or "").strip() or None
    current.display_name = display_name
    # Listings carry a copy of the owner's name.
    db.execute(
        update(Business)
        .where(Business.owner_id == current.id)
        .values(owner_name=display_name)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    db.refresh(current)
    logger.info("User %s updated profile", current.id)
    return _me_response(current, identity)
