from __future__ import annotations

from fastapi import APIRouter, BackgroundTasks, Depends, Request, status
from sqlalchemy.orm import Session

from localbiz.core.deps import get_current_identity, get_viewer_if_valid
from localbiz.core.security import Identity
from localbiz.db.session import SessionLocal, get_db
from localbiz.schemas.analytics import (
    BusinessStatsResponse,
    OwnerSummaryResponse,
    TrackContactRequest,
    TrackViewRequest,
    ViewBusinessRef,
    ViewRecordListResponse,
    ViewRecordResponse,
)
from localbiz.services.analytics import (
    AnalyticsRecorder,
    ViewRecord,
    get_views_for_business,
    get_views_for_owner,
    summary_for_owner,
)

router = APIRouter(tags=["analytics"])

recorder = AnalyticsRecorder(SessionLocal)


def get_recorder() -> AnalyticsRecorder:
    return recorder


def _to_view_response(record: ViewRecord) -> ViewRecordResponse:
    v = record.view
    return ViewRecordResponse(
        id=v.id,
        business_id=v.business_id,
        user_id=v.user_id,
        session_id=v.session_id,
        user_agent=v.user_agent,
        referrer=v.referrer,
        source=v.source,
        event=v.event,
        channel=v.channel,
        viewed_at=v.viewed_at,
        business=ViewBusinessRef(id=v.business_id, name=record.business_name),
    )


def _records_response(records: list[ViewRecord]) -> ViewRecordListResponse:
    return ViewRecordListResponse(items=[_to_view_response(r) for r in records], total=len(records))


# Tracking endpoints always answer 202; the write happens after the response.

@router.post(
    "/businesses/{business_id}/views",
    status_code=status.HTTP_202_ACCEPTED,
)
def track_view(
    business_id: str,
    request: Request,
    background: BackgroundTasks,
    payload: TrackViewRequest | None = None,
    viewer: Identity | None = Depends(get_viewer_if_valid),
    rec: AnalyticsRecorder = Depends(get_recorder),
) -> dict:
    payload = payload or TrackViewRequest()
    background.add_task(
        rec.track_view,
        business_id,
        payload.source,
        user_id=viewer.id if viewer else None,
        session_id=payload.session_id,
        user_agent=request.headers.get("user-agent"),
        referrer=payload.referrer or request.headers.get("referer"),
    )
    return {"status": "accepted"}


@router.post(
    "/businesses/{business_id}/contacts",
    status_code=status.HTTP_202_ACCEPTED,
)
def track_contact(
    business_id: str,
    payload: TrackContactRequest,
    request: Request,
    background: BackgroundTasks,
    viewer: Identity | None = Depends(get_viewer_if_valid),
    rec: AnalyticsRecorder = Depends(get_recorder),
) -> dict:
    background.add_task(
        rec.track_contact,
        business_id,
        payload.channel,
        user_id=viewer.id if viewer else None,
        session_id=payload.session_id,
        user_agent=request.headers.get("user-agent"),
    )
    return {"status": "accepted"}


@router.get("/businesses/{business_id}/views", response_model=ViewRecordListResponse)
def business_views(
    business_id: str,
    current: Identity = Depends(get_current_identity),
    db: Session = Depends(get_db),
) -> ViewRecordListResponse:
    return _records_response(get_views_for_business(db, current, business_id))


@router.get("/analytics/views", response_model=ViewRecordListResponse)
def my_views(
    current: Identity = Depends(get_current_identity),
    db: Session = Depends(get_db),
) -> ViewRecordListResponse:
    return _records_response(get_views_for_owner(db, current.id))


@router.get("/analytics/summary", response_model=OwnerSummaryResponse)
def my_summary(
    current: Identity = Depends(get_current_identity),
    db: Session = Depends(get_db),
) -> OwnerSummaryResponse:
    stats = summary_for_owner(db, current.id)
    items = [
        BusinessStatsResponse(
            business_id=s.business_id,
            name=s.name,
            views=s.views,
            unique_sessions=s.unique_sessions,
            contacts=s.contacts,
        )
        for s in stats
    ]
    return OwnerSummaryResponse(
        items=items,
        total_views=sum(s.views for s in stats),
        total_contacts=sum(s.contacts for s in stats),
    )
