from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel

from localbiz.models.enums import ViewSource


# Tracking payloads are deliberately loose: unknown values are normalised by
# the recorder instead of failing the request.
class TrackViewRequest(BaseModel):
    source: str = ViewSource.direct.value
    session_id: str | None = None
    referrer: str | None = None


class TrackContactRequest(BaseModel):
    channel: str = ""
    session_id: str | None = None


class ViewBusinessRef(BaseModel):
    id: str
    name: str


class ViewRecordResponse(BaseModel):
    id: str
    business_id: str
    user_id: str | None
    session_id: str | None
    user_agent: str | None
    referrer: str | None
    source: str
    event: str
    channel: str | None
    viewed_at: datetime
    business: ViewBusinessRef


class ViewRecordListResponse(BaseModel):
    items: list[ViewRecordResponse]
    total: int


class BusinessStatsResponse(BaseModel):
    business_id: str
    name: str
    views: int
    unique_sessions: int
    contacts: int


class OwnerSummaryResponse(BaseModel):
    items: list[BusinessStatsResponse]
    total_views: int
    total_contacts: int
