from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.orm import Session

from localbiz.core.config import settings
from localbiz.core.deps import get_current_identity, get_optional_identity, get_storage
from localbiz.core.security import Identity
from localbiz.db.session import get_db
from localbiz.models.businesses import Business
from localbiz.schemas.businesses import (
    BusinessCreate,
    BusinessListResponse,
    BusinessPageResponse,
    BusinessResponse,
    BusinessUpdate,
    CategoryListResponse,
)
from localbiz.services.businesses import BusinessRepository
from localbiz.services.storage import ImageStorage, resolve_image_url

router = APIRouter(prefix="/businesses", tags=["businesses"])


def get_repository(
    db: Session = Depends(get_db),
    storage: ImageStorage = Depends(get_storage),
) -> BusinessRepository:
    return BusinessRepository(db, storage)


def _to_business_response(business: Business, storage: ImageStorage, *, include_admin: bool = False) -> BusinessResponse:
    placeholder = settings.placeholder_image_url
    images = [resolve_image_url(storage, img.image_url, placeholder=placeholder) for img in business.images]
    return BusinessResponse(
        id=business.id,
        name=business.name,
        category=business.category,
        description=business.description,
        address=business.address,
        phone=business.phone,
        hours=business.hours,
        email=business.email,
        website=business.website,
        price_range=business.price_range,
        lat=business.lat,
        lng=business.lng,
        image=images[0] if images else placeholder,
        images=images,
        rating=business.rating,
        review_count=business.review_count,
        approval_status=business.approval_status,
        admin_notes=business.admin_notes if include_admin else None,
        approved_at=business.approved_at if include_admin else None,
        approved_by=business.approved_by if include_admin else None,
        owner_id=business.owner_id,
        owner_email=business.owner_email,
        owner_name=business.owner_name,
        created_at=business.created_at,
        updated_at=business.updated_at,
    )


def _private_view(business: Business, identity: Identity | None) -> bool:
    return identity is not None and (identity.is_admin or identity.id == business.owner_id)


@router.get("", response_model=BusinessPageResponse)
def list_businesses(
    repo: BusinessRepository = Depends(get_repository),
    q: str | None = Query(default=None, max_length=200),
    category: str | None = Query(default=None, max_length=80),
    min_rating: float | None = Query(default=None, ge=0, le=5),
    sort: str = Query(default="newest", pattern="^(newest|rating|name)$"),
    page: int = Query(default=0, ge=0),
    page_size: int = Query(default=settings.default_page_size, ge=1, le=100),
) -> BusinessPageResponse:
    result = repo.list_approved(page, page_size, q=q, category=category, min_rating=min_rating, sort=sort)
    return BusinessPageResponse(
        items=[_to_business_response(b, repo.storage) for b in result.items],
        total=result.total,
        page=result.page,
        page_size=result.page_size,
        has_more=result.has_more,
    )


@router.get("/categories", response_model=CategoryListResponse)
def list_categories(repo: BusinessRepository = Depends(get_repository)) -> CategoryListResponse:
    return CategoryListResponse(items=repo.list_categories())


@router.get("/mine", response_model=BusinessListResponse)
def my_businesses(
    current: Identity = Depends(get_current_identity),
    repo: BusinessRepository = Depends(get_repository),
) -> BusinessListResponse:
    items = repo.list_by_owner(current.id)
    return BusinessListResponse(
        items=[_to_business_response(b, repo.storage, include_admin=True) for b in items],
        total=len(items),
    )


@router.get("/{business_id}", response_model=BusinessResponse)
def get_business(
    business_id: str,
    viewer: Identity | None = Depends(get_optional_identity),
    repo: BusinessRepository = Depends(get_repository),
) -> BusinessResponse:
    business = repo.get_by_id(business_id, viewer=viewer, enforce_visibility=True)
    return _to_business_response(business, repo.storage, include_admin=_private_view(business, viewer))


@router.post("", response_model=BusinessResponse, status_code=201)
def create_business(
    payload: BusinessCreate,
    current: Identity = Depends(get_current_identity),
    repo: BusinessRepository = Depends(get_repository),
) -> BusinessResponse:
    business = repo.create(current, payload.model_dump())
    return _to_business_response(business, repo.storage, include_admin=True)


@router.patch("/{business_id}", response_model=BusinessResponse)
def update_business(
    business_id: str,
    payload: BusinessUpdate,
    current: Identity = Depends(get_current_identity),
    repo: BusinessRepository = Depends(get_repository),
) -> BusinessResponse:
    business = repo.update(current, business_id, payload.model_dump(exclude_unset=True))
    return _to_business_response(business, repo.storage, include_admin=True)


@router.delete("/{business_id}", status_code=204)
def delete_business(
    business_id: str,
    current: Identity = Depends(get_current_identity),
    repo: BusinessRepository = Depends(get_repository),
) -> Response:
    repo.delete(current, business_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
