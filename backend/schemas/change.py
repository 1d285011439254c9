"""Pydantic schemas for detected changes."""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field


class ChangeResponse(BaseModel):
    """Response schema for a Change row."""

    id: str
    entity_type: str
    entity_id: str
    change_type: str
    field_name: Optional[str] = None
    source_value: Optional[str] = None
    target_value: Optional[str] = None
    status: str
    detected_at: datetime
    approved_by: Optional[str] = None
    approved_at: Optional[datetime] = None
    applied_at: Optional[datetime] = None
    error_message: Optional[str] = None
    metadata: Optional[dict[str, Any]] = Field(
        default=None, validation_alias="details"
    )

    model_config = {"from_attributes": True, "populate_by_name": True}


class ApproveRequest(BaseModel):
    """Request body for approving a change."""

    approved_by: str = "admin"


class RejectRequest(BaseModel):
    """Request body for rejecting a change."""

    rejected_by: str = "admin"
    reason: Optional[str] = None


class ApplyResponse(BaseModel):
    """Outcome of an apply attempt, with the change as it now stands."""

    success: bool
    applied: bool
    message: str
    error: Optional[str] = None
    change: ChangeResponse


class PendingByType(BaseModel):
    orphan: int = 0
    field_mismatch: int = 0
    inactive_user: int = 0


class ChangeStatsResponse(BaseModel):
    """Counts per status plus pending counts per change type."""

    total: int
    pending: int
    approved: int
    rejected: int
    applied: int
    pending_by_type: PendingByType
