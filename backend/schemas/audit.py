"""Pydantic schemas for the audit trail."""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel


class AuditEntryResponse(BaseModel):
    """Response schema for an audit log entry."""

    id: str
    timestamp: datetime
    action: str
    actor: Optional[str] = None
    entity_type: Optional[str] = None
    entity_id: Optional[str] = None
    changes: Optional[dict[str, Any]] = None
    source: Optional[str] = None
    ip_address: Optional[str] = None
    success: bool
    error_message: Optional[str] = None

    model_config = {"from_attributes": True}


class ActionCount(BaseModel):
    action: str
    count: int


class EntityCount(BaseModel):
    entity_type: Optional[str] = None
    count: int


class AuditStatsResponse(BaseModel):
    """Aggregate audit counts and the most recent entries."""

    total: int
    by_action: list[ActionCount]
    by_entity: list[EntityCount]
    recent: list[AuditEntryResponse]
