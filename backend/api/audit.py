"""Audit log API endpoints."""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from database import get_db
from schemas.audit import AuditEntryResponse, AuditStatsResponse
from services.audit_service import AuditService

router = APIRouter(prefix="/api/audit", tags=["audit"])


@router.get("", response_model=list[AuditEntryResponse])
def list_audit_entries(
    action: Optional[str] = None,
    entity_type: Optional[str] = None,
    actor: Optional[str] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    limit: int = 100,
    db: Session = Depends(get_db),
):
    """Query the audit trail, newest first."""
    return AuditService.query(
        db, action=action, entity_type=entity_type, actor=actor,
        start=start, end=end, limit=limit,
    )


@router.get("/stats", response_model=AuditStatsResponse)
def audit_stats(db: Session = Depends(get_db)):
    """Counts by action and entity type plus the latest entries."""
    return AuditService.stats(db)
