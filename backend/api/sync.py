"""Sync API endpoints."""

import logging
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException
from sqlalchemy.orm import Session

from database import get_db
from schemas.sync import (
    SyncActionResponse,
    SyncHistoryResponse,
    SyncStartRequest,
    SyncStatusResponse,
)
from services.change_store import ChangeStore
from services.sync_service import (
    SyncInProgressError,
    SyncOrchestrator,
    get_sync_orchestrator,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/sync", tags=["sync"])

# Dependency injection for testing
_orchestrator_override: Optional[SyncOrchestrator] = None


def get_orchestrator() -> SyncOrchestrator:
    """Get the SyncOrchestrator, allowing for test overrides."""
    if _orchestrator_override is not None:
        return _orchestrator_override
    return get_sync_orchestrator()


def set_orchestrator_override(orchestrator: Optional[SyncOrchestrator]) -> None:
    """Set a SyncOrchestrator override for testing."""
    global _orchestrator_override
    _orchestrator_override = orchestrator


def _run_in_background(orchestrator: SyncOrchestrator) -> None:
    try:
        orchestrator.trigger_manual_cycle()
    except SyncInProgressError:
        logger.info("Manual sync skipped: a cycle started in the meantime")
    except Exception:
        logger.error("Manual sync cycle failed", exc_info=True)


@router.get("/status", response_model=SyncStatusResponse)
def get_status(orchestrator: SyncOrchestrator = Depends(get_orchestrator)):
    """Current sync state, recent errors and recent cycles."""
    return orchestrator.get_state()


@router.get("/history", response_model=list[SyncHistoryResponse])
def get_history(limit: int = 50, db: Session = Depends(get_db)):
    """Persisted sync cycle records, newest first."""
    return ChangeStore.recent_cycles(db, limit=limit)


@router.post("/run", response_model=SyncActionResponse, status_code=202)
def run_sync(
    background_tasks: BackgroundTasks,
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
):
    """Trigger one sync cycle in the background.

    Raises:
        HTTPException:
            - 409 Conflict: A cycle is already running
    """
    if orchestrator.is_running:
        raise HTTPException(
            status_code=409,
            detail="Sync already in progress. Please wait for the current sync to complete.",
        )
    background_tasks.add_task(_run_in_background, orchestrator)
    return SyncActionResponse(success=True, message="Sync started")


@router.post("/start", response_model=SyncActionResponse)
def start_scheduler(
    body: Optional[SyncStartRequest] = None,
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
):
    """Start periodic sync. The first cycle runs immediately."""
    interval = body.interval_minutes if body else None
    started = orchestrator.start(interval)
    if not started:
        return SyncActionResponse(success=False, message="Sync scheduler already running")
    return SyncActionResponse(success=True, message="Sync scheduler started")


@router.post("/stop", response_model=SyncActionResponse)
def stop_scheduler(orchestrator: SyncOrchestrator = Depends(get_orchestrator)):
    """Stop periodic sync. A running cycle is allowed to finish."""
    orchestrator.stop()
    return SyncActionResponse(success=True, message="Sync scheduler stopped")
