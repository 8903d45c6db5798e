from __future__ import annotations

import logging
import math

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from localbiz.core.config import settings
from localbiz.core.errors import StoreError
from localbiz.models.businesses import Business
from localbiz.models.reviews import Review

logger = logging.getLogger(__name__)


def compute_aggregate(count: int, avg: float | None) -> tuple[float, int]:
    """Mean rounded half-up to one decimal (4.25 -> 4.3), or 0 without reviews."""
    if not count:
        return 0.0, 0
    return math.floor(float(avg or 0.0) * 10 + 0.5) / 10, int(count)


def recompute_business_rating(db: Session, *, business_id: str, attempts: int | None = None) -> tuple[float, int]:
    """Recompute ``rating`` and ``review_count`` for a business from its reviews.

    The review set is re-read on every attempt so concurrent writers converge
    on the same values. The aggregate is written with a single UPDATE and the
    whole read+write is retried on database errors.
    """
    attempts = max(1, attempts or settings.aggregate_retry_attempts)
    last_exc: Exception | None = None

    for attempt in range(1, attempts + 1):
        try:
            stmt = select(func.count(Review.id), func.avg(Review.rating)).where(Review.business_id == business_id)
            cnt, avg = db.execute(stmt).one()
            rating, review_count = compute_aggregate(cnt, avg)

            db.execute(
                update(Business)
                .where(Business.id == business_id)
                .values(rating=rating, review_count=review_count)
            )
            db.commit()
            return rating, review_count
        except SQLAlchemyError as exc:
            db.rollback()
            last_exc = exc
            logger.warning(
                "Rating recompute for business %s failed (attempt %s/%s): %s",
                business_id, attempt, attempts, exc,
            )

    logger.error("Rating recompute for business %s gave up after %s attempts", business_id, attempts)
    raise StoreError("Could not update business rating") from last_exc
