from __future__ import annotations

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.orm import Session

from localbiz.core.deps import get_current_identity, get_optional_identity
from localbiz.core.errors import NotFoundError
from localbiz.core.rate_limit import rate_limit
from localbiz.core.security import Identity
from localbiz.db.session import get_db
from localbiz.models.businesses import Business
from localbiz.models.reviews import Review
from localbiz.schemas.reviews import (
    RatingBreakdownResponse,
    ReviewCreate,
    ReviewListResponse,
    ReviewResponse,
    ReviewUpdate,
    VoteRequest,
    VoteResponse,
)
from localbiz.services.businesses import can_view
from localbiz.services.reviews import ReviewService

router = APIRouter(tags=["reviews"])


def get_review_service(db: Session = Depends(get_db)) -> ReviewService:
    return ReviewService(db)


def _to_review_response(r: Review, *, user_vote: bool | None = None) -> ReviewResponse:
    return ReviewResponse(
        id=r.id,
        business_id=r.business_id,
        user_id=r.user_id,
        rating=r.rating,
        title=r.title,
        comment=r.comment,
        visit_date=r.visit_date,
        helpful_votes=r.helpful_votes,
        created_at=r.created_at,
        updated_at=r.updated_at,
        user_has_voted=user_vote is not None,
        user_vote=user_vote,
    )


def _visible_business(db: Session, business_id: str, viewer: Identity | None) -> Business:
    business = db.get(Business, business_id)
    if business is None or not can_view(business, viewer):
        raise NotFoundError("Business not found")
    return business


@router.get("/businesses/{business_id}/reviews", response_model=ReviewListResponse)
def list_reviews(
    business_id: str,
    viewer: Identity | None = Depends(get_optional_identity),
    db: Session = Depends(get_db),
    service: ReviewService = Depends(get_review_service),
) -> ReviewListResponse:
    business = _visible_business(db, business_id, viewer)
    rows = service.list_reviews(business_id, viewer=viewer)
    return ReviewListResponse(
        items=[_to_review_response(row.review, user_vote=row.user_vote) for row in rows],
        total=len(rows),
        rating=business.rating,
        review_count=business.review_count,
    )


@router.get("/businesses/{business_id}/reviews/breakdown", response_model=RatingBreakdownResponse)
def rating_breakdown(
    business_id: str,
    viewer: Identity | None = Depends(get_optional_identity),
    db: Session = Depends(get_db),
    service: ReviewService = Depends(get_review_service),
) -> RatingBreakdownResponse:
    business = _visible_business(db, business_id, viewer)
    counts = service.rating_breakdown(business_id)
    return RatingBreakdownResponse(
        business_id=business_id,
        counts=counts,
        total=sum(counts.values()),
        rating=business.rating,
    )


@router.post(
    "/businesses/{business_id}/reviews",
    response_model=ReviewResponse,
    status_code=201,
    dependencies=[rate_limit("reviews:write", limit=20, window_seconds=60)],
)
def create_review(
    business_id: str,
    payload: ReviewCreate,
    current: Identity = Depends(get_current_identity),
    service: ReviewService = Depends(get_review_service),
) -> ReviewResponse:
    review = service.add_review(
        current,
        business_id,
        payload.rating,
        title=payload.title,
        comment=payload.comment,
        visit_date=payload.visit_date,
    )
    return _to_review_response(review)


@router.put(
    "/businesses/{business_id}/reviews/mine",
    response_model=ReviewResponse,
    dependencies=[rate_limit("reviews:write", limit=20, window_seconds=60)],
)
def upsert_my_review(
    business_id: str,
    payload: ReviewCreate,
    response: Response,
    current: Identity = Depends(get_current_identity),
    service: ReviewService = Depends(get_review_service),
) -> ReviewResponse:
    review, created = service.upsert_review(current, business_id, payload.model_dump())
    if created:
        response.status_code = status.HTTP_201_CREATED
    return _to_review_response(review)


@router.patch("/reviews/{review_id}", response_model=ReviewResponse)
def update_review(
    review_id: str,
    payload: ReviewUpdate,
    current: Identity = Depends(get_current_identity),
    service: ReviewService = Depends(get_review_service),
) -> ReviewResponse:
    review = service.update_review(current, review_id, payload.model_dump(exclude_unset=True))
    return _to_review_response(review)


@router.delete("/reviews/{review_id}", status_code=204)
def delete_review(
    review_id: str,
    current: Identity = Depends(get_current_identity),
    service: ReviewService = Depends(get_review_service),
) -> Response:
    service.delete_review(current, review_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/reviews/{review_id}/vote",
    response_model=VoteResponse,
    dependencies=[rate_limit("reviews:vote", limit=60, window_seconds=60)],
)
def vote_review(
    review_id: str,
    payload: VoteRequest,
    current: Identity = Depends(get_current_identity),
    service: ReviewService = Depends(get_review_service),
) -> VoteResponse:
    result = service.vote_review(current, review_id, payload.is_helpful)
    return VoteResponse(review_id=result.review_id, helpful_votes=result.helpful_votes, user_vote=result.user_vote)
