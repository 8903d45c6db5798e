from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from localbiz.core.errors import AuthError, ForbiddenError, NotFoundError, StoreError
from localbiz.core.security import Identity
from localbiz.models.businesses import Business
from localbiz.models.enums import ApprovalStatus

logger = logging.getLogger(__name__)


class ApprovalWorkflow:
    """Admin-only transitions of ``Business.approval_status``.

    Every state can move to ``approved`` or ``rejected``; there is no terminal
    state. Each transition is a single UPDATE, so concurrent admins resolve
    as last-write-wins.
    """

    def __init__(self, db: Session) -> None:
        self.db = db

    @staticmethod
    def _require_admin(identity: Identity | None) -> Identity:
        if identity is None:
            raise AuthError("Not authenticated")
        if not identity.is_admin:
            raise ForbiddenError("Admin role required")
        return identity

    def _transition(self, identity: Identity | None, business_id: str, target: ApprovalStatus, notes: str | None) -> Business:
        admin = self._require_admin(identity)

        values: dict = {"approval_status": target.value}
        if notes is not None:
            values["admin_notes"] = notes
        if target is ApprovalStatus.approved:
            values["approved_at"] = datetime.utcnow()
            values["approved_by"] = admin.id
        else:
            values["approved_at"] = None
            values["approved_by"] = None

        try:
            result = self.db.execute(
                update(Business)
                .where(Business.id == business_id)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                self.db.rollback()
                raise NotFoundError("Business not found")
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise StoreError("Could not update approval status") from exc

        logger.info("Business %s -> %s by admin %s", business_id, target.value, admin.id)
        business = self.db.get(Business, business_id, populate_existing=True)
        if business is None:
            raise NotFoundError("Business not found")
        return business

    def approve(self, identity: Identity | None, business_id: str, notes: str | None = None) -> Business:
        return self._transition(identity, business_id, ApprovalStatus.approved, notes)

    def reject(self, identity: Identity | None, business_id: str, notes: str | None = None) -> Business:
        return self._transition(identity, business_id, ApprovalStatus.rejected, notes)

    def stats(self, identity: Identity | None) -> dict[str, int]:
        self._require_admin(identity)
        rows = self.db.execute(
            select(Business.approval_status, func.count(Business.id)).group_by(Business.approval_status)
        ).all()
        counts = {status.value: 0 for status in ApprovalStatus}
        for status, cnt in rows:
            counts[status] = int(cnt)
        return counts
