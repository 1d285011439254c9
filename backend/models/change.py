"""Change model - a reviewable unit of detected directory drift."""

from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import JSON, Column, DateTime, Index, String, Text, func, text

from database import Base
from models.utils import generate_uuid


class ChangeType(str, Enum):
    """Kind of drift a Change records."""

    ORPHAN = "orphan"
    FIELD_MISMATCH = "field_mismatch"
    INACTIVE_USER = "inactive_user"


class ChangeStatus(str, Enum):
    """Lifecycle status. Only advances: pending -> approved|rejected, approved -> applied."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    APPLIED = "applied"


class Change(Base):
    """A detected difference between the source and target directories.

    At most one *pending* row exists per (entity_type, entity_id,
    change_type, field_name); re-detection refreshes that row. Rows are
    never deleted.
    """

    __tablename__ = "changes"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    entity_type = Column(String(50), nullable=False)  # "user" | "group"
    entity_id = Column(String(255), nullable=False)
    change_type = Column(String(50), nullable=False)
    field_name = Column(String(100), nullable=True)  # set only for field_mismatch
    source_value = Column(Text, nullable=True)
    target_value = Column(Text, nullable=True)
    status = Column(String(50), nullable=False, default=ChangeStatus.PENDING.value)
    detected_at = Column(DateTime, nullable=False, default=lambda: datetime.now(timezone.utc))
    approved_by = Column(String(255), nullable=True)
    approved_at = Column(DateTime, nullable=True)
    applied_at = Column(DateTime, nullable=True)
    error_message = Column(Text, nullable=True)
    # "metadata" is reserved on declarative classes
    details = Column("metadata", JSON, nullable=True)

    __table_args__ = (
        Index("idx_changes_status", "status"),
        Index("idx_changes_entity", "entity_type", "entity_id"),
        Index("idx_changes_detected", "detected_at"),
        Index(
            "uq_changes_pending_key",
            entity_type,
            entity_id,
            change_type,
            func.coalesce(field_name, ""),
            unique=True,
            sqlite_where=text("status = 'pending'"),
            postgresql_where=text("status = 'pending'"),
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<Change {self.id[:8] if self.id else '?'} {self.change_type} "
            f"{self.entity_type}:{self.entity_id} {self.field_name or ''} [{self.status}]>"
        )
