from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from localbiz.core.deps import require_role
from localbiz.core.security import Identity
from localbiz.db.session import get_db
from localbiz.models.enums import ApprovalStatus, UserRole
from localbiz.routers.businesses import _to_business_response, get_repository
from localbiz.schemas.admin import ApprovalRequest, ApprovalStatsResponse
from localbiz.schemas.businesses import BusinessListResponse, BusinessResponse
from localbiz.services.approval import ApprovalWorkflow
from localbiz.services.businesses import BusinessRepository

router = APIRouter(prefix="/admin", tags=["admin"])

require_admin = require_role(UserRole.admin)


def get_workflow(db: Session = Depends(get_db)) -> ApprovalWorkflow:
    return ApprovalWorkflow(db)


@router.get("/businesses", response_model=BusinessListResponse)
def list_businesses(
    status: ApprovalStatus | None = Query(default=None),
    admin: Identity = Depends(require_admin),
    repo: BusinessRepository = Depends(get_repository),
) -> BusinessListResponse:
    items = repo.list_by_status(status) if status else repo.list_all()
    return BusinessListResponse(
        items=[_to_business_response(b, repo.storage, include_admin=True) for b in items],
        total=len(items),
    )


@router.get("/stats", response_model=ApprovalStatsResponse)
def approval_stats(
    admin: Identity = Depends(require_admin),
    workflow: ApprovalWorkflow = Depends(get_workflow),
) -> ApprovalStatsResponse:
    counts = workflow.stats(admin)
    return ApprovalStatsResponse(**counts, total=sum(counts.values()))


@router.post("/businesses/{business_id}/approve", response_model=BusinessResponse)
def approve_business(
    business_id: str,
    payload: ApprovalRequest | None = None,
    admin: Identity = Depends(require_admin),
    workflow: ApprovalWorkflow = Depends(get_workflow),
    repo: BusinessRepository = Depends(get_repository),
) -> BusinessResponse:
    workflow.approve(admin, business_id, notes=payload.notes if payload else None)
    return _to_business_response(repo.get_by_id(business_id), repo.storage, include_admin=True)


@router.post("/businesses/{business_id}/reject", response_model=BusinessResponse)
def reject_business(
    business_id: str,
    payload: ApprovalRequest | None = None,
    admin: Identity = Depends(require_admin),
    workflow: ApprovalWorkflow = Depends(get_workflow),
    repo: BusinessRepository = Depends(get_repository),
) -> BusinessResponse:
    workflow.reject(admin, business_id, notes=payload.notes if payload else None)
    return _to_business_response(repo.get_by_id(business_id), repo.storage, include_admin=True)
