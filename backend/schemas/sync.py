"""Pydantic schemas for sync status and history."""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field


class SyncHistoryResponse(BaseModel):
    """Response schema for a sync cycle record."""

    id: str
    cycle_id: str
    started_at: datetime
    completed_at: Optional[datetime] = None
    duration_ms: Optional[int] = None
    status: Optional[str] = None
    users_created: int = 0
    users_updated: int = 0
    users_deleted: int = 0
    groups_synced: int = 0
    errors: int = 0
    changes_detected: int = 0
    total_source_users: Optional[int] = None
    total_target_users: Optional[int] = None
    error_details: Optional[list[dict[str, Any]]] = None

    model_config = {"from_attributes": True}


class SyncConfigResponse(BaseModel):
    interval_minutes: int
    dry_run: bool
    sync_groups: bool
    create_users: bool
    update_users: bool
    delete_users: bool


class SyncStatusResponse(BaseModel):
    """Current orchestrator state."""

    status: str
    is_running: bool
    is_scheduled: bool
    last_sync_time: Optional[str] = None
    last_sync_duration_ms: Optional[int] = None
    current_cycle: Optional[str] = None
    is_connected: bool
    errors: list[dict[str, Any]]
    history: list[dict[str, Any]]
    config: SyncConfigResponse


class SyncStartRequest(BaseModel):
    """Request body for starting the scheduler."""

    interval_minutes: Optional[int] = Field(default=None, ge=1)


class SyncActionResponse(BaseModel):
    success: bool
    message: str
