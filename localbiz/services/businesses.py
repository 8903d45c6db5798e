from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from sqlalchemy import delete, func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from localbiz.core.errors import AuthError, ForbiddenError, NotFoundError, StoreError, ValidationError
from localbiz.core.security import Identity
from localbiz.models.analytics import BusinessView
from localbiz.models.businesses import Business, BusinessImage
from localbiz.models.enums import ApprovalStatus
from localbiz.models.reviews import Review, ReviewVote
from localbiz.services.storage import ImageStorage, check_path, is_durable_reference

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("name", "category", "description", "address", "phone", "hours")
CONTENT_FIELDS = REQUIRED_FIELDS + ("email", "website", "price_range", "lat", "lng")
MAX_IMAGES = 5

SORT_ORDERS = {
    "newest": (Business.created_at.desc(), Business.id.desc()),
    "rating": (Business.rating.desc(), Business.review_count.desc(), Business.id.desc()),
    "name": (Business.name.asc(), Business.id.asc()),
}


@dataclass
class BusinessPage:
    items: list[Business]
    total: int
    page: int
    page_size: int

    @property
    def has_more(self) -> bool:
        return (self.page + 1) * self.page_size < self.total


def _clean(value: Any) -> Any:
    if isinstance(value, str):
        return value.strip() or None
    return value


def can_view(business: Business, identity: Identity | None) -> bool:
    if business.approval_status == ApprovalStatus.approved.value:
        return True
    if identity is None:
        return False
    return identity.is_admin or identity.id == business.owner_id


class BusinessRepository:
    """CRUD and status-filtered queries over businesses.

    Approval transitions are not handled here; see ``ApprovalWorkflow``.
    """

    def __init__(self, db: Session, storage: ImageStorage) -> None:
        self.db = db
        self.storage = storage

    def _base_query(self):
        return select(Business).options(selectinload(Business.images))

    def _commit(self) -> None:
        try:
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.exception("Business write failed")
            raise StoreError("Could not save business") from exc

    def _load(self, business_id: str) -> Business:
        business = self.db.scalar(self._base_query().where(Business.id == business_id))
        if business is None:
            raise NotFoundError("Business not found")
        return business

    def _check_owner_or_admin(self, business: Business, identity: Identity | None) -> None:
        if identity is None:
            raise AuthError("Not authenticated")
        if not identity.is_admin and business.owner_id != identity.id:
            raise ForbiddenError("Not authorized to modify this business")

    def _canonical(self, ref: str) -> str:
        return self.storage.path_from_url(ref) or ref

    def _normalize_images(self, images: list[str], *, owner_id: str, attached: set[str] | None = None) -> list[str]:
        """Validate image references and reduce stored objects to their bucket path.

        Objects must live under the owner's upload prefix unless they are
        already attached to the business.
        """
        cleaned = [ref.strip() for ref in images if ref and ref.strip()]
        if len(cleaned) > MAX_IMAGES:
            raise ValidationError(f"At most {MAX_IMAGES} images are allowed")
        if any(not is_durable_reference(ref) for ref in cleaned):
            raise ValidationError("Images must finish uploading before the business is saved")

        attached = attached or set()
        refs = []
        for ref in cleaned:
            path = self.storage.path_from_url(ref)
            if path is None:
                refs.append(ref)
                continue
            path = check_path(path)
            if path not in attached and not path.startswith(f"{owner_id}/"):
                raise ForbiddenError("Images must be uploaded by the business owner")
            refs.append(path)
        return refs

    def _unreferenced(self, paths: list[str], business_id: str) -> list[str]:
        if not paths:
            return []
        shared = set(
            self.db.scalars(
                select(BusinessImage.image_url).where(
                    BusinessImage.image_url.in_(paths), BusinessImage.business_id != business_id
                )
            ).all()
        )
        return [p for p in paths if p not in shared]

    def _set_images(self, business: Business, images: list[str]) -> None:
        business.images = [BusinessImage(image_url=ref, position=idx) for idx, ref in enumerate(images)]

    def create(self, identity: Identity | None, fields: dict[str, Any]) -> Business:
        if identity is None:
            raise AuthError("Not authenticated")

        values = {k: _clean(fields.get(k)) for k in CONTENT_FIELDS}
        missing = [k for k in REQUIRED_FIELDS if not values.get(k)]
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")
        images = self._normalize_images(list(fields.get("images") or []), owner_id=identity.id)

        business = Business(
            **values,
            approval_status=ApprovalStatus.pending.value,
            owner_id=identity.id,
            owner_email=identity.email,
            owner_name=identity.display_name,
            rating=0.0,
            review_count=0,
        )
        self._set_images(business, images)
        self.db.add(business)
        self._commit()
        logger.info("Business %s submitted by %s (pending)", business.id, identity.id)
        return self._load(business.id)

    def update(self, identity: Identity | None, business_id: str, fields: dict[str, Any]) -> Business:
        business = self._load(business_id)
        self._check_owner_or_admin(business, identity)

        if fields.get("approval_status") is not None:
            try:
                requested = ApprovalStatus(fields["approval_status"]).value
            except ValueError as exc:
                raise ValidationError(f"Unknown approval status: {fields['approval_status']}") from exc
            if requested != business.approval_status:
                raise ForbiddenError("Approval status can only be changed through the admin workflow")

        images = None
        dropped: list[str] = []
        if fields.get("images") is not None:
            current = {self._canonical(img.image_url) for img in business.images}
            images = self._normalize_images(list(fields["images"]), owner_id=business.owner_id, attached=current)
            dropped = self._unreferenced(sorted(current - set(images)), business_id)

        for key in CONTENT_FIELDS:
            if key not in fields:
                continue
            value = _clean(fields[key])
            if key in REQUIRED_FIELDS and not value:
                raise ValidationError(f"Field '{key}' cannot be empty")
            setattr(business, key, value)
        if images is not None:
            self._set_images(business, images)

        self._commit()
        if dropped:
            self.storage.delete_many(dropped, prefix=f"{business.owner_id}/")
        logger.info("Business %s updated by %s", business_id, identity.id)
        return self._load(business_id)

    def delete(self, identity: Identity | None, business_id: str) -> None:
        business = self._load(business_id)
        self._check_owner_or_admin(business, identity)

        image_refs = self._unreferenced([self._canonical(img.image_url) for img in business.images], business_id)
        if image_refs:
            removed = self.storage.delete_many(image_refs, prefix=f"{business.owner_id}/")
            logger.info("Removed %s/%s stored images for business %s", removed, len(image_refs), business_id)

        self.db.expunge(business)
        review_ids = select(Review.id).where(Review.business_id == business_id)
        try:
            self.db.execute(delete(ReviewVote).where(ReviewVote.review_id.in_(review_ids)))
            self.db.execute(delete(Review).where(Review.business_id == business_id))
            self.db.execute(delete(BusinessView).where(BusinessView.business_id == business_id))
            self.db.execute(delete(BusinessImage).where(BusinessImage.business_id == business_id))
            self.db.execute(delete(Business).where(Business.id == business_id))
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise StoreError("Could not delete business") from exc
        self._commit()
        logger.info("Business %s deleted by %s", business_id, identity.id)

    def get_by_id(self, business_id: str, *, viewer: Identity | None = None, enforce_visibility: bool = False) -> Business:
        business = self._load(business_id)
        if enforce_visibility and not can_view(business, viewer):
            raise NotFoundError("Business not found")
        return business

    def list_by_status(self, status: ApprovalStatus | str) -> list[Business]:
        status_value = ApprovalStatus(status).value
        stmt = (
            self._base_query()
            .where(Business.approval_status == status_value)
            .order_by(Business.created_at.desc(), Business.id.desc())
        )
        return list(self.db.scalars(stmt).all())

    def list_all(self) -> list[Business]:
        stmt = self._base_query().order_by(Business.created_at.desc(), Business.id.desc())
        return list(self.db.scalars(stmt).all())

    def list_approved(
        self,
        page: int = 0,
        page_size: int = 30,
        *,
        q: str | None = None,
        category: str | None = None,
        min_rating: float | None = None,
        sort: str = "newest",
    ) -> BusinessPage:
        if page < 0 or page_size < 1:
            raise ValidationError("Invalid page parameters")
        if sort not in SORT_ORDERS:
            raise ValidationError(f"Unknown sort order: {sort}")

        stmt = select(Business).where(Business.approval_status == ApprovalStatus.approved.value)
        if q and q.strip():
            pattern = f"%{q.strip().lower()}%"
            stmt = stmt.where(
                or_(
                    func.lower(Business.name).like(pattern),
                    func.lower(Business.description).like(pattern),
                    func.lower(Business.category).like(pattern),
                )
            )
        if category and category.strip():
            stmt = stmt.where(func.lower(Business.category) == category.strip().lower())
        if min_rating is not None:
            stmt = stmt.where(Business.rating >= min_rating)

        total = self.db.scalar(select(func.count()).select_from(stmt.subquery()))
        items = list(
            self.db.scalars(
                stmt.options(selectinload(Business.images))
                .order_by(*SORT_ORDERS[sort])
                .limit(page_size)
                .offset(page * page_size)
            ).all()
        )
        return BusinessPage(items=items, total=int(total or 0), page=page, page_size=page_size)

    def list_by_owner(self, owner_id: str) -> list[Business]:
        stmt = (
            self._base_query()
            .where(Business.owner_id == owner_id)
            .order_by(Business.created_at.desc(), Business.id.desc())
        )
        return list(self.db.scalars(stmt).all())

    def list_categories(self) -> list[str]:
        stmt = (
            select(Business.category)
            .where(Business.approval_status == ApprovalStatus.approved.value)
            .distinct()
            .order_by(Business.category)
        )
        return list(self.db.scalars(stmt).all())
