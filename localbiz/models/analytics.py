from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from localbiz.db.base import Base
from localbiz.models.enums import ViewEvent, ViewSource


class BusinessView(Base):
    """Append-only log of detail-page views and contact clicks."""

    __tablename__ = "business_views"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    business_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("businesses.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    session_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(500), nullable=True)
    referrer: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    source: Mapped[str] = mapped_column(String(20), nullable=False, default=ViewSource.direct.value)
    event: Mapped[str] = mapped_column(String(20), nullable=False, default=ViewEvent.view.value)
    channel: Mapped[str | None] = mapped_column(String(20), nullable=True)
    viewed_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow, index=True)

    business: Mapped["Business"] = relationship(back_populates="views")


Index("ix_business_views_business_viewed_at", BusinessView.business_id, BusinessView.viewed_at)
