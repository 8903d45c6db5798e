from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from typing import Any

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from localbiz.core.errors import AuthError, ConflictError, ForbiddenError, NotFoundError, StoreError, ValidationError
from localbiz.core.security import Identity
from localbiz.models.businesses import Business
from localbiz.models.enums import ApprovalStatus
from localbiz.models.reviews import Review, ReviewVote
from localbiz.services.ratings import recompute_business_rating

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = ("rating", "title", "comment", "visit_date")


@dataclass
class VoteResult:
    review_id: str
    helpful_votes: int
    user_vote: bool | None
    delta: int


@dataclass
class ReviewView:
    review: Review
    user_vote: bool | None = None

    @property
    def user_has_voted(self) -> bool:
        return self.user_vote is not None


def validate_rating(rating: Any) -> int:
    if isinstance(rating, bool) or not isinstance(rating, int) or not 1 <= rating <= 5:
        raise ValidationError("Rating must be an integer between 1 and 5")
    return rating


def _text(value: str | None) -> str | None:
    return (value or "").strip() or None


def _require_identity(identity: Identity | None) -> Identity:
    if identity is None:
        raise AuthError("Not authenticated")
    return identity


class ReviewService:
    """Review CRUD that keeps the business rating aggregate in sync."""

    def __init__(self, db: Session) -> None:
        self.db = db

    def _business(self, business_id: str) -> Business:
        business = self.db.get(Business, business_id)
        if business is None:
            raise NotFoundError("Business not found")
        return business

    def _review(self, review_id: str) -> Review:
        review = self.db.get(Review, review_id)
        if review is None:
            raise NotFoundError("Review not found")
        return review

    def find_user_review(self, business_id: str, user_id: str) -> Review | None:
        return self.db.scalar(
            select(Review).where(Review.business_id == business_id, Review.user_id == user_id)
        )

    def add_review(
        self,
        identity: Identity | None,
        business_id: str,
        rating: int,
        *,
        title: str | None = None,
        comment: str | None = None,
        visit_date: date | None = None,
    ) -> Review:
        identity = _require_identity(identity)
        rating = validate_rating(rating)

        business = self._business(business_id)
        if business.approval_status != ApprovalStatus.approved.value:
            raise NotFoundError("Business not found")
        if business.owner_id == identity.id:
            raise ForbiddenError("Owners cannot review their own business")
        if self.find_user_review(business_id, identity.id) is not None:
            raise ConflictError("You have already reviewed this business")

        review = Review(
            business_id=business_id,
            user_id=identity.id,
            rating=rating,
            title=_text(title),
            comment=_text(comment),
            visit_date=visit_date,
            helpful_votes=0,
        )
        self.db.add(review)
        try:
            self.db.commit()
        except IntegrityError as exc:
            self.db.rollback()
            raise ConflictError("You have already reviewed this business") from exc
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise StoreError("Could not save review") from exc

        recompute_business_rating(self.db, business_id=business_id)
        logger.info("Review %s added for business %s by %s", review.id, business_id, identity.id)
        self.db.refresh(review)
        return review

    def update_review(self, identity: Identity | None, review_id: str, fields: dict[str, Any]) -> Review:
        identity = _require_identity(identity)
        review = self._review(review_id)
        if review.user_id != identity.id:
            raise ForbiddenError("Only the author can edit this review")

        if fields.get("rating") is not None:
            review.rating = validate_rating(fields["rating"])
        for key in ("title", "comment"):
            if key in fields:
                setattr(review, key, _text(fields[key]))
        if "visit_date" in fields:
            review.visit_date = fields["visit_date"]

        try:
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise StoreError("Could not save review") from exc

        recompute_business_rating(self.db, business_id=review.business_id)
        self.db.refresh(review)
        return review

    def upsert_review(self, identity: Identity | None, business_id: str, fields: dict[str, Any]) -> tuple[Review, bool]:
        """Create the caller's review or update the existing one.

        Returns the review and whether it was created.
        """
        identity = _require_identity(identity)
        existing = self.find_user_review(business_id, identity.id)
        if existing is None:
            try:
                review = self.add_review(
                    identity,
                    business_id,
                    fields.get("rating"),
                    title=fields.get("title"),
                    comment=fields.get("comment"),
                    visit_date=fields.get("visit_date"),
                )
                return review, True
            except ConflictError:
                # Lost a race against another request from the same user.
                existing = self.find_user_review(business_id, identity.id)
                if existing is None:
                    raise
        return self.update_review(identity, existing.id, fields), False

    def delete_review(self, identity: Identity | None, review_id: str) -> None:
        identity = _require_identity(identity)
        review = self._review(review_id)
        if review.user_id != identity.id and not identity.is_admin:
            raise ForbiddenError("Not authorized to delete this review")

        business_id = review.business_id
        try:
            self.db.execute(delete(ReviewVote).where(ReviewVote.review_id == review_id))
            self.db.delete(review)
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise StoreError("Could not delete review") from exc

        recompute_business_rating(self.db, business_id=business_id)
        logger.info("Review %s deleted by %s", review_id, identity.id)

    def vote_review(self, identity: Identity | None, review_id: str, is_helpful: bool) -> VoteResult:
        """Record, flip or retract the caller's helpful vote.

        Same value twice retracts, the opposite value flips. ``helpful_votes``
        is re-derived from the vote rows afterwards.
        """
        identity = _require_identity(identity)
        review = self._review(review_id)
        if review.user_id == identity.id:
            raise ForbiddenError("You cannot vote on your own review")
        is_helpful = bool(is_helpful)

        for attempt in (1, 2):
            before = review.helpful_votes
            previous = self.db.scalar(
                select(ReviewVote).where(ReviewVote.review_id == review_id, ReviewVote.user_id == identity.id)
            )
            if previous is None:
                self.db.add(ReviewVote(review_id=review_id, user_id=identity.id, is_helpful=is_helpful))
                user_vote: bool | None = is_helpful
            elif previous.is_helpful == is_helpful:
                self.db.delete(previous)
                user_vote = None
            else:
                previous.is_helpful = is_helpful
                user_vote = is_helpful

            try:
                self.db.flush()
                helpful = int(
                    self.db.scalar(
                        select(func.count(ReviewVote.id)).where(
                            ReviewVote.review_id == review_id, ReviewVote.is_helpful.is_(True)
                        )
                    )
                    or 0
                )
                self.db.execute(update(Review).where(Review.id == review_id).values(helpful_votes=helpful))
                self.db.commit()
            except IntegrityError as exc:
                # A concurrent request inserted this user's vote first; diff against it instead.
                self.db.rollback()
                if attempt == 2:
                    raise ConflictError("Vote could not be recorded") from exc
                review = self._review(review_id)
                continue
            except SQLAlchemyError as exc:
                self.db.rollback()
                raise StoreError("Could not record vote") from exc

            return VoteResult(review_id=review_id, helpful_votes=helpful, user_vote=user_vote, delta=helpful - before)

        raise ConflictError("Vote could not be recorded")

    def list_reviews(self, business_id: str, *, viewer: Identity | None = None) -> list[ReviewView]:
        self._business(business_id)
        reviews = list(
            self.db.scalars(
                select(Review)
                .where(Review.business_id == business_id)
                .order_by(Review.created_at.desc(), Review.id.desc())
            ).all()
        )

        votes: dict[str, bool] = {}
        if viewer is not None and reviews:
            rows = self.db.execute(
                select(ReviewVote.review_id, ReviewVote.is_helpful).where(
                    ReviewVote.user_id == viewer.id,
                    ReviewVote.review_id.in_([r.id for r in reviews]),
                )
            ).all()
            votes = {review_id: is_helpful for review_id, is_helpful in rows}

        return [ReviewView(review=r, user_vote=votes.get(r.id)) for r in reviews]

    def rating_breakdown(self, business_id: str) -> dict[int, int]:
        self._business(business_id)
        rows = self.db.execute(
            select(Review.rating, func.count(Review.id)).where(Review.business_id == business_id).group_by(Review.rating)
        ).all()
        counts = {star: 0 for star in range(5, 0, -1)}
        for rating, cnt in rows:
            counts[int(rating)] = int(cnt)
        return counts
