"""SyncHistory model - one row per sync cycle."""

from datetime import datetime, timezone

from sqlalchemy import JSON, Column, DateTime, Index, Integer, String

from database import Base
from models.utils import generate_uuid


class SyncHistory(Base):
    """Summary of a single sync cycle.

    Inserted when the cycle starts (status NULL) and finalized exactly once
    when it ends; never modified afterwards.
    """

    __tablename__ = "sync_history"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    cycle_id = Column(String(100), nullable=False, unique=True)
    started_at = Column(DateTime, nullable=False, default=lambda: datetime.now(timezone.utc))
    completed_at = Column(DateTime, nullable=True)
    duration_ms = Column(Integer, nullable=True)
    status = Column(String(50), nullable=True)  # "success" | "failed" | "partial"
    users_created = Column(Integer, default=0)
    users_updated = Column(Integer, default=0)
    users_deleted = Column(Integer, default=0)
    groups_synced = Column(Integer, default=0)
    errors = Column(Integer, default=0)
    changes_detected = Column(Integer, default=0)
    total_source_users = Column(Integer, nullable=True)
    total_target_users = Column(Integer, nullable=True)
    error_details = Column(JSON, nullable=True)  # list of {stage, entity_id, error}

    __table_args__ = (
        Index("idx_sync_history_started", started_at.desc()),
        Index("idx_sync_history_status", "status"),
    )

    @property
    def is_finalized(self) -> bool:
        return self.completed_at is not None
