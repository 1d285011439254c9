"""Change review API endpoints."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from database import get_db
from integrations.directory_registry import get_directory_registry
from models import ChangeStatus
from schemas.change import (
    ApplyResponse,
    ApproveRequest,
    ChangeResponse,
    ChangeStatsResponse,
    RejectRequest,
)
from services.change_lifecycle_service import (
    ChangeLifecycleService,
    ChangeNotFoundError,
    InvalidChangeTransitionError,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/changes", tags=["changes"])


def get_lifecycle_service() -> ChangeLifecycleService:
    """Get the ChangeLifecycleService (dependency for injection in tests)."""
    return ChangeLifecycleService(target=get_directory_registry().target)


def _client_ip(request: Request) -> str | None:
    return request.client.host if request.client else None


@router.get("", response_model=list[ChangeResponse])
def list_changes(
    status: Optional[str] = None,
    entity_type: Optional[str] = None,
    change_type: Optional[str] = None,
    limit: int = 100,
    db: Session = Depends(get_db),
):
    """List changes, most recently detected first."""
    return ChangeLifecycleService.list_changes(
        db, status=status, entity_type=entity_type, change_type=change_type, limit=limit
    )


@router.get("/pending", response_model=list[ChangeResponse])
def list_pending(db: Session = Depends(get_db)):
    """List all changes awaiting a decision."""
    return ChangeLifecycleService.get_pending(db)


@router.get("/stats/summary", response_model=ChangeStatsResponse)
def change_stats(db: Session = Depends(get_db)):
    """Counts per status and pending counts per change type."""
    return ChangeLifecycleService.stats(db)


@router.get("/{change_id}", response_model=ChangeResponse)
def get_change(change_id: str, db: Session = Depends(get_db)):
    """Get a single change."""
    try:
        return ChangeLifecycleService.get(db, change_id)
    except ChangeNotFoundError:
        raise HTTPException(status_code=404, detail="Change not found")


@router.post("/{change_id}/approve", response_model=ChangeResponse)
def approve_change(
    change_id: str,
    request: Request,
    body: Optional[ApproveRequest] = None,
    db: Session = Depends(get_db),
    service: ChangeLifecycleService = Depends(get_lifecycle_service),
):
    """Approve a pending change and apply it to the target directory.

    Raises:
        HTTPException:
            - 404 Not Found: Unknown change
            - 409 Conflict: Change is not pending
            - 500 Internal Server Error: Approved, but the apply failed
    """
    approver = body.approved_by if body else "admin"
    try:
        change = service.approve(db, change_id, approver, ip_address=_client_ip(request))
    except ChangeNotFoundError:
        raise HTTPException(status_code=404, detail="Change not found")
    except InvalidChangeTransitionError as e:
        raise HTTPException(status_code=409, detail=str(e))

    if change.status == ChangeStatus.APPROVED.value and change.error_message:
        raise HTTPException(
            status_code=500,
            detail=f"Change approved but failed to apply: {change.error_message}",
        )
    return change


@router.post("/{change_id}/reject", response_model=ChangeResponse)
def reject_change(
    change_id: str,
    request: Request,
    body: Optional[RejectRequest] = None,
    db: Session = Depends(get_db),
):
    """Reject a pending change. The target directory is not touched.

    Raises:
        HTTPException:
            - 404 Not Found: Unknown change
            - 409 Conflict: Change is not pending
    """
    body = body or RejectRequest()
    try:
        return ChangeLifecycleService.reject(
            db, change_id, body.rejected_by, reason=body.reason, ip_address=_client_ip(request)
        )
    except ChangeNotFoundError:
        raise HTTPException(status_code=404, detail="Change not found")
    except InvalidChangeTransitionError as e:
        raise HTTPException(status_code=409, detail=str(e))


@router.post("/{change_id}/apply", response_model=ApplyResponse)
def apply_change(
    change_id: str,
    request: Request,
    db: Session = Depends(get_db),
    service: ChangeLifecycleService = Depends(get_lifecycle_service),
):
    """Retry applying an approved change.

    Raises:
        HTTPException:
            - 404 Not Found: Unknown change
            - 409 Conflict: Change is not approved
    """
    try:
        result = service.apply(db, change_id, actor="admin", ip_address=_client_ip(request))
    except ChangeNotFoundError:
        raise HTTPException(status_code=404, detail="Change not found")
    except InvalidChangeTransitionError as e:
        raise HTTPException(status_code=409, detail=str(e))

    change = ChangeLifecycleService.get(db, change_id)
    return ApplyResponse(
        success=result.success,
        applied=result.applied,
        message=result.message,
        error=result.error,
        change=ChangeResponse.model_validate(change),
    )
