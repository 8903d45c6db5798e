from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from localbiz.models.enums import ApprovalStatus


class BusinessCreate(BaseModel):
    name: str = Field(max_length=200)
    category: str = Field(max_length=80)
    description: str = Field(max_length=5000)
    address: str = Field(max_length=250)
    phone: str = Field(max_length=40)
    hours: str = Field(max_length=250)
    email: str | None = Field(default=None, max_length=320)
    website: str | None = Field(default=None, max_length=500)
    price_range: str | None = Field(default=None, max_length=10)
    lat: float | None = Field(default=None, ge=-90, le=90)
    lng: float | None = Field(default=None, ge=-180, le=180)
    images: list[str] = Field(default_factory=list)


class BusinessUpdate(BaseModel):
    name: str | None = Field(default=None, max_length=200)
    category: str | None = Field(default=None, max_length=80)
    description: str | None = Field(default=None, max_length=5000)
    address: str | None = Field(default=None, max_length=250)
    phone: str | None = Field(default=None, max_length=40)
    hours: str | None = Field(default=None, max_length=250)
    email: str | None = Field(default=None, max_length=320)
    website: str | None = Field(default=None, max_length=500)
    price_range: str | None = Field(default=None, max_length=10)
    lat: float | None = Field(default=None, ge=-90, le=90)
    lng: float | None = Field(default=None, ge=-180, le=180)
    images: list[str] | None = None
    # Accepted only so that owner attempts can be refused explicitly.
    approval_status: ApprovalStatus | None = None


class BusinessResponse(BaseModel):
    id: str
    name: str
    category: str
    description: str
    address: str
    phone: str
    hours: str
    email: str | None
    website: str | None
    price_range: str | None
    lat: float | None
    lng: float | None
    image: str
    images: list[str]
    rating: float
    review_count: int
    approval_status: ApprovalStatus
    admin_notes: str | None = None
    approved_at: datetime | None = None
    approved_by: str | None = None
    owner_id: str
    owner_email: str
    owner_name: str | None
    created_at: datetime
    updated_at: datetime


class BusinessListResponse(BaseModel):
    items: list[BusinessResponse]
    total: int


class BusinessPageResponse(BusinessListResponse):
    page: int
    page_size: int
    has_more: bool


class CategoryListResponse(BaseModel):
    items: list[str]
