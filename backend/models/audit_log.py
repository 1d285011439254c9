"""AuditLogEntry model - append-only record of every state-changing action."""

from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import JSON, Boolean, Column, DateTime, Index, String, Text

from database import Base
from models.utils import generate_uuid


class AuditSource(str, Enum):
    """Where a mutating action originated."""

    SYNC = "sync"
    MANUAL = "manual"
    API = "api"
    SELF_SERVICE = "self_service"


class AuditLogEntry(Base):
    """One audited action, written regardless of outcome.

    Entries are never updated or deleted.
    """

    __tablename__ = "audit_log"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    timestamp = Column(DateTime, nullable=False, default=lambda: datetime.now(timezone.utc))
    action = Column(String(100), nullable=False)  # e.g. "user_created", "change_approved"
    actor = Column(String(255), nullable=True)  # operator name or "system"
    entity_type = Column(String(50), nullable=True)  # "user" | "group" | "change"
    entity_id = Column(String(255), nullable=True)
    changes = Column(JSON, nullable=True)  # before/after or outcome payload
    source = Column(String(50), nullable=True)
    ip_address = Column(String(45), nullable=True)
    success = Column(Boolean, nullable=False, default=True)
    error_message = Column(Text, nullable=True)

    __table_args__ = (
        Index("idx_audit_timestamp", timestamp.desc()),
        Index("idx_audit_entity", "entity_type", "entity_id"),
        Index("idx_audit_action", "action"),
        Index("idx_audit_actor", "actor"),
    )
