from __future__ import annotations

from datetime import date, datetime

from pydantic import BaseModel, Field


class ReviewCreate(BaseModel):
    rating: int = Field(ge=1, le=5, strict=True)
    title: str | None = Field(default=None, max_length=200)
    comment: str | None = Field(default=None, max_length=2000)
    visit_date: date | None = None


class ReviewUpdate(BaseModel):
    rating: int | None = Field(default=None, ge=1, le=5, strict=True)
    title: str | None = Field(default=None, max_length=200)
    comment: str | None = Field(default=None, max_length=2000)
    visit_date: date | None = None


class ReviewResponse(BaseModel):
    id: str
    business_id: str
    user_id: str
    rating: int
    title: str | None
    comment: str | None
    visit_date: date | None
    helpful_votes: int
    created_at: datetime
    updated_at: datetime
    user_has_voted: bool = False
    user_vote: bool | None = None


class ReviewListResponse(BaseModel):
    items: list[ReviewResponse]
    total: int
    rating: float
    review_count: int


class RatingBreakdownResponse(BaseModel):
    business_id: str
    counts: dict[int, int]
    total: int
    rating: float


class VoteRequest(BaseModel):
    is_helpful: bool


class VoteResponse(BaseModel):
    review_id: str
    helpful_votes: int
    user_vote: bool | None
