from __future__ import annotations

from pydantic import BaseModel, Field


class ApprovalRequest(BaseModel):
    notes: str | None = Field(default=None, max_length=5000)


class ApprovalStatsResponse(BaseModel):
    pending: int
    approved: int
    rejected: int
    total: int
