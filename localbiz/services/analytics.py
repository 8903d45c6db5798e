from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import delete, distinct, func, select
from sqlalchemy.orm import Session, sessionmaker

from localbiz.core.errors import AuthError, ForbiddenError, NotFoundError
from localbiz.core.security import Identity
from localbiz.models.analytics import BusinessView
from localbiz.models.businesses import Business
from localbiz.models.enums import ContactChannel, ViewEvent, ViewSource

logger = logging.getLogger(__name__)


def _trim(value: str | None, limit: int) -> str | None:
    return value[:limit] if value else None


@dataclass
class ViewRecord:
    view: BusinessView
    business_name: str


@dataclass
class BusinessStats:
    business_id: str
    name: str
    views: int
    unique_sessions: int
    contacts: int


class AnalyticsRecorder:
    """Fire-and-forget event log for business detail views and contact clicks.

    Nothing raised while recording ever reaches the caller.
    """

    def __init__(self, session_factory: sessionmaker) -> None:
        self.session_factory = session_factory

    def _record(self, business_id: str, **fields) -> bool:
        db: Session | None = None
        try:
            db = self.session_factory()
            db.add(BusinessView(business_id=business_id, **fields))
            db.commit()
            return True
        except Exception as exc:
            logger.warning("Analytics event for business %s dropped: %s", business_id, exc)
            return False
        finally:
            if db is not None:
                db.close()

    def track_view(
        self,
        business_id: str,
        source: ViewSource | str = ViewSource.direct,
        *,
        user_id: str | None = None,
        session_id: str | None = None,
        user_agent: str | None = None,
        referrer: str | None = None,
    ) -> None:
        try:
            source_value = ViewSource(source).value
        except ValueError:
            source_value = ViewSource.direct.value
        self._record(
            business_id,
            source=source_value,
            event=ViewEvent.view.value,
            user_id=user_id,
            session_id=_trim(session_id, 64),
            user_agent=_trim(user_agent, 500),
            referrer=_trim(referrer, 1000),
        )

    def track_contact(
        self,
        business_id: str,
        channel: ContactChannel | str,
        *,
        user_id: str | None = None,
        session_id: str | None = None,
        user_agent: str | None = None,
    ) -> None:
        try:
            channel_value = ContactChannel(channel).value
        except ValueError:
            logger.warning("Unknown contact channel %r for business %s ignored", channel, business_id)
            return
        self._record(
            business_id,
            source=ViewSource.direct.value,
            event=ViewEvent.contact.value,
            channel=channel_value,
            user_id=user_id,
            session_id=_trim(session_id, 64),
            user_agent=_trim(user_agent, 500),
        )


def get_views_for_owner(db: Session, owner_id: str) -> list[ViewRecord]:
    stmt = (
        select(BusinessView, Business.name)
        .join(Business, Business.id == BusinessView.business_id)
        .where(Business.owner_id == owner_id)
        .order_by(BusinessView.viewed_at.desc(), BusinessView.id.desc())
    )
    return [ViewRecord(view=v, business_name=name) for v, name in db.execute(stmt).all()]


def get_views_for_business(db: Session, identity: Identity | None, business_id: str) -> list[ViewRecord]:
    if identity is None:
        raise AuthError("Not authenticated")
    business = db.get(Business, business_id)
    if business is None:
        raise NotFoundError("Business not found")
    if business.owner_id != identity.id and not identity.is_admin:
        raise ForbiddenError("Not authorized to view analytics for this business")

    views = db.scalars(
        select(BusinessView)
        .where(BusinessView.business_id == business_id)
        .order_by(BusinessView.viewed_at.desc(), BusinessView.id.desc())
    ).all()
    return [ViewRecord(view=v, business_name=business.name) for v in views]


def summary_for_owner(db: Session, owner_id: str) -> list[BusinessStats]:
    is_view = BusinessView.event == ViewEvent.view.value
    is_contact = BusinessView.event == ViewEvent.contact.value
    stmt = (
        select(
            Business.id,
            Business.name,
            func.count(BusinessView.id).filter(is_view),
            func.count(distinct(BusinessView.session_id)).filter(is_view),
            func.count(BusinessView.id).filter(is_contact),
        )
        .outerjoin(BusinessView, BusinessView.business_id == Business.id)
        .where(Business.owner_id == owner_id)
        .group_by(Business.id, Business.name)
        .order_by(Business.name)
    )
    return [
        BusinessStats(business_id=bid, name=name, views=int(v or 0), unique_sessions=int(s or 0), contacts=int(c or 0))
        for bid, name, v, s, c in db.execute(stmt).all()
    ]


def prune_views(db: Session, *, older_than_days: int) -> int:
    """Delete view records older than the retention window; 0 disables pruning."""
    if older_than_days <= 0:
        return 0
    cutoff = datetime.utcnow() - timedelta(days=older_than_days)
    result = db.execute(delete(BusinessView).where(BusinessView.viewed_at < cutoff))
    db.commit()
    removed = int(result.rowcount or 0)
    logger.info("Pruned %s view records older than %s", removed, cutoff.isoformat())
    return removed
